"""
Shopify Connector

Reads customers from the Shopify Admin REST API and writes enrichment
results back (customer metafield and tags).
"""
import asyncio
import httpx
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse, parse_qs

from audience_sync.connectors.base import BaseConnector
from audience_sync.config import get_settings
from audience_sync.utils.dates import parse_datetime, isoformat_utc, utc_now
from audience_sync.utils.logger import log
from audience_sync.utils.retry import RetryStats, calculate_backoff, parse_retry_after
from audience_sync.utils.tags import TagSet

CALL_LIMIT_HEADER = "X-Shopify-Shop-Api-Call-Limit"
DEFAULT_CALL_LIMIT = 40
RATE_LIMIT_MARGIN = 5  # Back off when within this many calls of the bucket size

METAFIELD_NAMESPACE = "marketing"
METAFIELD_KEY = "inferred_gender"


class ShopifyConfigurationError(Exception):
    """Store domain or access token missing"""


class ShopifyAPIError(Exception):
    """Non-success response from the Shopify Admin API"""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Shopify API error {status_code}: {body[:500]}")


class RateLimitExceededError(ShopifyAPIError):
    """Still rate limited after the configured number of retries"""

    def __init__(self, attempts: int, body: str = ""):
        self.attempts = attempts
        super().__init__(429, body or f"rate limit still exceeded after {attempts} attempts")


@dataclass
class RateLimitState:
    """Leaky-bucket usage reported by Shopify as 'current/max'"""
    current: int = 0
    max: int = DEFAULT_CALL_LIMIT

    @classmethod
    def parse(cls, header: Optional[str]) -> "RateLimitState":
        if not header:
            return cls()
        try:
            current, maximum = (int(part) for part in header.split("/", 1))
        except ValueError:
            return cls()
        return cls(current=current or 0, max=maximum or DEFAULT_CALL_LIMIT)

    def near_limit(self, margin: int = RATE_LIMIT_MARGIN) -> bool:
        return self.current >= self.max - margin


@dataclass
class NormalizedCustomer:
    """Shopify customer flattened into the local customer shape"""
    external_id: int
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    tags: TagSet = field(default_factory=TagSet)
    orders_count: int = 0
    total_spent: Decimal = Decimal("0")
    created_at_source: Optional[datetime] = None
    updated_at_source: Optional[datetime] = None
    last_order_at: Optional[datetime] = None


@dataclass
class CustomerPage:
    records: List[NormalizedCustomer]
    next_page_info: Optional[str] = None


def _parse_money(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if amount.is_nan() or amount < 0:
        return Decimal("0")
    return amount.quantize(Decimal("0.01"))


def _parse_count(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


def normalize_customer(customer_data: Dict[str, Any]) -> NormalizedCustomer:
    """
    Translate a Shopify customer payload (REST or webhook) into NormalizedCustomer

    Args:
        customer_data: Raw customer object from Shopify

    Returns:
        NormalizedCustomer
    """
    address = customer_data.get("default_address") or {}

    return NormalizedCustomer(
        external_id=int(customer_data["id"]),
        email=customer_data.get("email") or None,
        phone=customer_data.get("phone") or None,
        first_name=customer_data.get("first_name") or None,
        last_name=customer_data.get("last_name") or None,
        city=address.get("city") or None,
        country=address.get("country") or None,
        province=address.get("province") or None,
        postal_code=address.get("zip") or None,
        tags=TagSet.parse(customer_data.get("tags")),
        orders_count=_parse_count(customer_data.get("orders_count")),
        total_spent=_parse_money(customer_data.get("total_spent")),
        created_at_source=parse_datetime(customer_data.get("created_at")),
        updated_at_source=parse_datetime(customer_data.get("updated_at")),
        last_order_at=parse_datetime(customer_data.get("last_order_date")),
    )


class ShopifyConnector(BaseConnector):
    """
    Connector for Shopify Admin API

    Pages through customers with cursor (page_info) pagination, watches the
    call-limit header, and retries 429 responses a bounded number of times.
    """

    def __init__(
        self,
        store_domain: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        page_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        page_delay: float = 0.5,
        rate_limit_backoff: float = 2.0,
        default_retry_after: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize Shopify connector

        Args:
            store_domain: Shopify store domain (e.g., "your-store.myshopify.com")
            access_token: Shopify Admin API access token
            api_version: API version to use
            page_size: Customers per page (max 250)
            max_retries: 429 retries per request before RateLimitExceededError
            page_delay: Pause between pages during fetch_all
            rate_limit_backoff: Pause when the call budget is nearly used up
            default_retry_after: First 429 wait when Retry-After is missing
            client: Shared httpx client (a new client per request if None)
            sleep: Awaitable used for every pause
        """
        super().__init__(source_name="shopify", source_type="ecommerce")
        settings = get_settings()

        domain = store_domain if store_domain is not None else settings.shopify_store_domain
        self.store_domain = (domain or "").replace("https://", "").replace("http://", "").rstrip("/")
        self.access_token = access_token if access_token is not None else settings.shopify_admin_access_token
        self.api_version = api_version or settings.shopify_api_version
        self.page_size = min(page_size or settings.shopify_page_size, 250)
        self.max_retries = max_retries if max_retries is not None else settings.shopify_max_retries
        self.base_url = f"https://{self.store_domain}/admin/api/{self.api_version}"

        self.page_delay = page_delay
        self.rate_limit_backoff = rate_limit_backoff
        self.default_retry_after = default_retry_after

        self.rate_limit = RateLimitState()
        self._client = client
        self._sleep = sleep

    def retry_config(self) -> Dict[str, Any]:
        return {
            "max_attempts": self.max_retries + 1,
            "base_delay": self.default_retry_after,
            "max_delay": self.RETRY_MAX_DELAY,
        }

    async def authenticate(self) -> bool:
        """
        Test Shopify authentication

        Returns:
            True if authenticated successfully
        """
        try:
            response = await self._request("GET", "/shop.json")
            shop = response.json().get("shop", {})
            log.info(f"Authenticated with Shopify store: {shop.get('name')}")
            self._authenticated = True
            return True
        except (ShopifyAPIError, ShopifyConfigurationError, httpx.HTTPError) as e:
            log.error(f"Shopify authentication failed: {str(e)}")
            return False

    # Reads

    async def fetch_page(
        self,
        page_info: Optional[str] = None,
        updated_since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> CustomerPage:
        """
        Fetch one page of customers

        Args:
            page_info: Cursor from the previous page's Link header
            updated_since: Only customers updated at or after this time
                (ignored when page_info is given; the cursor carries the filter)
            limit: Page size

        Returns:
            CustomerPage with normalized records and the next cursor
        """
        params: Dict[str, Any] = {"limit": limit or self.page_size}
        if page_info:
            params["page_info"] = page_info
        elif updated_since:
            params["updated_at_min"] = isoformat_utc(updated_since)

        response = await self._request("GET", "/customers.json", params=params)
        data = response.json()

        records = [normalize_customer(c) for c in data.get("customers", [])]
        next_page_info = self._get_next_page_info(response.headers.get("Link"))

        return CustomerPage(records=records, next_page_info=next_page_info)

    async def fetch_all(
        self,
        updated_since: Optional[datetime] = None,
        on_batch: Optional[Callable[[List[NormalizedCustomer]], Awaitable[None]]] = None
    ) -> int:
        """
        Page through every customer updated since updated_since

        Stops when there is no next cursor or a page comes back short.

        Args:
            updated_since: Lower bound on updated_at (None = all customers)
            on_batch: Awaited once per non-empty page, in page order

        Returns:
            Total number of customers fetched
        """
        total = 0
        page = 0
        page_info: Optional[str] = None
        limit = self.page_size

        while True:
            result = await self.fetch_page(
                page_info=page_info,
                updated_since=updated_since if page_info is None else None,
                limit=limit
            )
            page += 1
            log.info(f"Fetched customers page {page}: got {len(result.records)} customers")

            if on_batch and result.records:
                await on_batch(result.records)

            total += len(result.records)

            if not result.next_page_info or len(result.records) < limit:
                break

            page_info = result.next_page_info

            if self.rate_limit.near_limit():
                log.info(
                    f"Approaching Shopify rate limit ({self.rate_limit.current}/{self.rate_limit.max}), "
                    f"waiting {self.rate_limit_backoff}s..."
                )
                await self._sleep(self.rate_limit_backoff)
                # Budget has drained during the pause; next request goes straight out
                self.rate_limit = RateLimitState()
            else:
                await self._sleep(self.page_delay)

        log.info(f"Fetched {total} total customers from Shopify in {page} pages")
        return total

    # Writes

    async def upsert_customer_metafield(self, customer_id: int, gender: str) -> None:
        """Write inferred gender to the marketing.inferred_gender metafield"""
        await self._request(
            "POST",
            f"/customers/{customer_id}/metafields.json",
            json={
                "metafield": {
                    "namespace": METAFIELD_NAMESPACE,
                    "key": METAFIELD_KEY,
                    "type": "single_line_text_field",
                    "value": gender,
                    "description": "LLM-inferred gender used for marketing segmentation.",
                }
            }
        )
        log.info(f"Updated metafield for customer {customer_id} with gender: {gender}")

    async def update_customer_tags(self, customer_id: int, tags: TagSet) -> None:
        """Replace the customer's tag list in Shopify"""
        await self._request(
            "PUT",
            f"/customers/{customer_id}.json",
            json={"customer": {"id": customer_id, "tags": tags.serialize() or ""}}
        )
        log.info(f"Updated tags for customer {customer_id}: {tags.serialize()}")

    # HTTP plumbing

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for Shopify API requests"""
        return {
            "X-Shopify-Access-Token": self.access_token or "",
            "Content-Type": "application/json"
        }

    def _ensure_configured(self) -> None:
        if not self.store_domain or not self.access_token:
            raise ShopifyConfigurationError("Shopify credentials not configured")

    async def _send(self, method: str, url: str, params: Optional[Dict], json: Optional[Dict]) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(
                method, url, params=params, json=json, headers=self._get_headers(), timeout=60.0
            )
        async with httpx.AsyncClient() as client:
            return await client.request(
                method, url, params=params, json=json, headers=self._get_headers(), timeout=60.0
            )

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        Issue a request with proactive throttling and bounded 429 retries

        Raises:
            ShopifyConfigurationError: credentials missing
            RateLimitExceededError: still 429 after max_retries retries
            ShopifyAPIError: any other non-success status
        """
        self._ensure_configured()
        url = f"{self.base_url}{path}"
        stats = RetryStats()

        for attempt in range(1, self.max_retries + 2):
            if self.rate_limit.near_limit():
                log.info(
                    f"Approaching Shopify rate limit ({self.rate_limit.current}/{self.rate_limit.max}), "
                    f"waiting {self.rate_limit_backoff}s..."
                )
                await self._sleep(self.rate_limit_backoff)

            response = await self._send(method, url, params, json)
            self.request_count += 1
            self.last_request_at = utc_now()
            self.rate_limit = RateLimitState.parse(response.headers.get(CALL_LIMIT_HEADER))

            if response.status_code == 429:
                if attempt > self.max_retries:
                    self.error_count += 1
                    log.error(f"Shopify rate limit not cleared after {attempt} attempts: {stats.to_dict()}")
                    raise RateLimitExceededError(attempt)

                retry_after = parse_retry_after(response.headers.get("Retry-After"))
                if retry_after is None:
                    retry_after = calculate_backoff(
                        attempt,
                        base_delay=self.default_retry_after,
                        max_delay=self.RETRY_MAX_DELAY,
                        jitter=False
                    )

                stats.record_attempt(error="429 Too Many Requests", delay=retry_after)
                self.retry_count += 1
                log.warning(f"Shopify rate limited on {method} {path}, retrying in {retry_after:.1f}s...")
                await self._sleep(retry_after)
                continue

            if not response.is_success:
                self.error_count += 1
                raise ShopifyAPIError(response.status_code, response.text)

            return response

        # Loop always returns or raises
        raise RateLimitExceededError(self.max_retries + 1)

    def _get_next_page_info(self, link_header: Optional[str]) -> Optional[str]:
        """
        Parse the next-page cursor from the Link header

        Shopify uses cursor-based pagination with Link headers:
        <https://shop/admin/api/2024-01/customers.json?limit=250&page_info=abc>; rel="next"

        Args:
            link_header: Link header from response

        Returns:
            page_info cursor or None
        """
        if not link_header:
            return None

        for link in link_header.split(","):
            parts = link.split(";")
            if len(parts) >= 2 and 'rel="next"' in parts[1]:
                url = parts[0].strip().strip("<>")
                page_info = parse_qs(urlparse(url).query).get("page_info")
                return page_info[0] if page_info else None

        return None
