"""
CardTrader V2 API client with rate limiting, retries and a circuit breaker.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cardsync.core.config import get_settings
from cardsync.core.exceptions import CardTraderAPIError, RateLimitError
from cardsync.core.prometheus_metrics import (
    cardtrader_api_request_duration_seconds,
    cardtrader_api_requests_total,
    cardtrader_api_retries_total,
)
from cardsync.services.cardtrader_dtos import (
    BlueprintDTO,
    CategoryDTO,
    CreateListingDTO,
    ExpansionDTO,
    GameDTO,
    ListingResultDTO,
    OrderDTO,
    ProductDTO,
)
from cardsync.services.circuit_breaker import CardTraderCircuitBreaker, get_circuit_breaker
from cardsync.services.rate_limiter import FixedWindowRateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Statuses worth another attempt
TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# Returned by _make_request for an allowed 404
NOT_FOUND = object()


def _unwrap_list(data: Any) -> List[Any]:
    """CardTrader wraps some collections as ``{"array": [...]}``."""
    if data is None:
        return []
    if isinstance(data, dict):
        for key in ("array", "data", "results"):
            if isinstance(data.get(key), list):
                return data[key]
        return []
    if isinstance(data, list):
        return data
    return []


def _parse_list(model: Type[ModelT], data: Any, entity: str) -> List[ModelT]:
    records: List[ModelT] = []
    for raw in _unwrap_list(data):
        try:
            records.append(model.model_validate(raw))
        except PydanticValidationError as e:
            logger.warning(
                f"Dropping malformed {entity} record from CardTrader: {e.error_count()} error(s)",
                extra={"entity": entity, "record_id": raw.get("id") if isinstance(raw, dict) else None},
            )
    return records


class CardTraderClient:
    """Client for CardTrader V2 API."""

    def __init__(
        self,
        token: str,
        *,
        base_url: Optional[str] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        circuit_breaker: Optional[CardTraderCircuitBreaker] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize CardTrader client.

        Args:
            token: CardTrader API bearer token
            rate_limiter: Shared limiter (defaults to the process-wide one)
            circuit_breaker: Shared breaker (defaults to the process-wide one)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        settings = get_settings()
        self.base_url = base_url or settings.CARDTRADER_API_BASE_URL
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.circuit_breaker = circuit_breaker or get_circuit_breaker()
        self.max_retries = settings.RETRY_MAX_ATTEMPTS if max_retries is None else max_retries
        self.backoff_base_seconds = (
            settings.RETRY_BACKOFF_BASE_SECONDS
            if backoff_base_seconds is None
            else backoff_base_seconds
        )
        self._sleep = sleep
        timeout = timeout_seconds or settings.HTTP_TIMEOUT_SECONDS

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    def _backoff(self, attempt: int, response: Optional[httpx.Response] = None) -> float:
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    return float(retry_after)
                except ValueError:
                    pass
        return self.backoff_base_seconds * (2 ** attempt)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        *,
        allow_404: bool = False,
        **kwargs: Any,
    ) -> Any:
        """
        Make HTTP request with rate limiting, retries and circuit breaking.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint relative to the base URL
            allow_404: Return NOT_FOUND on 404 instead of raising
            **kwargs: Additional arguments for httpx request

        Returns:
            Decoded JSON body, None for empty bodies, NOT_FOUND for allowed 404s

        Raises:
            RateLimitError: Local queue full, or 429 persisted through retries
            CardTraderServiceUnavailableError: Circuit breaker is open
            CardTraderAPIError: Other API or network errors
        """
        attempt = 0
        while True:
            # An open breaker rejects before a permit is spent or queued for
            self.circuit_breaker.before_call()
            try:
                await self.rate_limiter.acquire()
            except (RateLimitError, asyncio.CancelledError):
                self.circuit_breaker.release()
                raise

            started = time.perf_counter()
            request_error: Optional[httpx.RequestError] = None
            try:
                response = await self.client.request(method, endpoint, **kwargs)
            except asyncio.CancelledError:
                self.circuit_breaker.release()
                raise
            except httpx.RequestError as e:
                request_error = e
            cardtrader_api_request_duration_seconds.labels(method, endpoint).observe(
                time.perf_counter() - started
            )

            if request_error is not None:
                self.circuit_breaker.record_failure("network_error")
                cardtrader_api_requests_total.labels(method, endpoint, "network_error").inc()
                if attempt < self.max_retries:
                    delay = self._backoff(attempt)
                    cardtrader_api_retries_total.labels(endpoint, "network_error").inc()
                    logger.warning(
                        f"Request error calling CardTrader {method} {endpoint} "
                        f"(attempt {attempt + 1}/{self.max_retries + 1}): {request_error}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    attempt += 1
                    await self._sleep(delay)
                    continue
                raise CardTraderAPIError(f"Request error: {request_error}") from request_error

            status_code = response.status_code
            cardtrader_api_requests_total.labels(method, endpoint, str(status_code)).inc()

            if status_code in TRANSIENT_STATUS_CODES:
                self.circuit_breaker.record_failure(
                    "rate_limit" if status_code == 429 else f"http_{status_code}"
                )
                if attempt < self.max_retries:
                    delay = self._backoff(attempt, response)
                    cardtrader_api_retries_total.labels(endpoint, str(status_code)).inc()
                    logger.warning(
                        f"CardTrader answered {status_code} to {method} {endpoint} "
                        f"(attempt {attempt + 1}/{self.max_retries + 1}), retrying in {delay:.2f}s"
                    )
                    attempt += 1
                    await self._sleep(delay)
                    continue
                if status_code == 429:
                    raise RateLimitError(
                        f"CardTrader rate limit persisted after {self.max_retries} retries",
                        retry_after=self._backoff(attempt, response),
                    )
                raise CardTraderAPIError(
                    f"CardTrader API error {status_code} after {self.max_retries} retries",
                    upstream_status=status_code,
                )

            # Non-transient answers mean the service is up
            self.circuit_breaker.record_success()

            if status_code == 404 and allow_404:
                return NOT_FOUND
            if status_code >= 400:
                error_msg = f"CardTrader API error {status_code}: {response.text[:500]}"
                logger.error(error_msg)
                raise CardTraderAPIError(error_msg, upstream_status=status_code)

            if not response.content or not response.content.strip():
                return None
            try:
                return response.json()
            except ValueError as e:
                raise CardTraderAPIError(
                    f"CardTrader returned invalid JSON for {method} {endpoint}",
                    upstream_status=status_code,
                ) from e

    # Catalog

    async def get_games(self) -> List[GameDTO]:
        data = await self._make_request("GET", "/games")
        return _parse_list(GameDTO, data, "game")

    async def get_expansions(self) -> List[ExpansionDTO]:
        data = await self._make_request("GET", "/expansions")
        return _parse_list(ExpansionDTO, data, "expansion")

    async def get_blueprints(self, expansion_id: int) -> List[BlueprintDTO]:
        """Blueprints of one expansion; an unknown expansion yields []."""
        data = await self._make_request(
            "GET",
            "/blueprints/export",
            params={"expansion_id": expansion_id},
            allow_404=True,
        )
        if data is NOT_FOUND:
            return []
        return _parse_list(BlueprintDTO, data, "blueprint")

    async def get_categories(self, game_id: Optional[int] = None) -> List[CategoryDTO]:
        params = {"game_id": game_id} if game_id is not None else None
        data = await self._make_request("GET", "/categories", params=params)
        return _parse_list(CategoryDTO, data, "category")

    # Inventory and orders

    async def get_products_export(self) -> List[ProductDTO]:
        """
        Export all products of the account.

        Note:
            This endpoint may take minutes for large collections.
        """
        data = await self._make_request("GET", "/products/export")
        return _parse_list(ProductDTO, data, "product")

    async def get_orders(self, **filters: Any) -> List[OrderDTO]:
        data = await self._make_request("GET", "/orders", params=filters or None)
        return _parse_list(OrderDTO, data, "order")

    # Listing mutations

    async def create_listing(self, listing: CreateListingDTO) -> ListingResultDTO:
        """
        Create a single product.

        Returns:
            Result with the new CardTrader product id, read from
            ``resource.id`` or the top-level ``id``.
        """
        data = await self._make_request(
            "POST",
            "/products",
            json=listing.model_dump(exclude_none=True),
        ) or {}
        product_id = None
        if isinstance(data, dict):
            resource = data.get("resource")
            if isinstance(resource, dict) and resource.get("id") is not None:
                product_id = int(resource["id"])
            elif data.get("id") is not None:
                product_id = int(data["id"])
        return ListingResultDTO(product_id=product_id, raw=data if isinstance(data, dict) else {})

    async def update_listing(
        self,
        product_id: int,
        price: Optional[float] = None,
        quantity: Optional[int] = None,
        properties: Optional[Dict[str, Any]] = None,
        user_data_field: Optional[str] = None,
    ) -> Dict[str, Any]:
        update_data: Dict[str, Any] = {}
        if price is not None:
            update_data["price"] = price
        if quantity is not None:
            update_data["quantity"] = quantity
        if properties is not None:
            update_data["properties"] = properties
        if user_data_field is not None:
            update_data["user_data_field"] = user_data_field
        return await self._make_request("PUT", f"/products/{product_id}", json=update_data) or {}

    async def delete_listing(self, product_id: int) -> bool:
        """
        Delete a product.

        Returns:
            True if deleted, False if CardTrader no longer had it (404).
        """
        result = await self._make_request("DELETE", f"/products/{product_id}", allow_404=True)
        if result is NOT_FOUND:
            logger.info(
                f"Product {product_id} not found on CardTrader (already deleted). "
                f"Treating as successful deletion."
            )
            return False
        return True

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
