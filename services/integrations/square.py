"""Square API client"""
import asyncio
import logging
from typing import Dict, List, Any, Optional
from urllib.parse import urlencode

import httpx

from settings import get_settings

logger = logging.getLogger(__name__)

# Statuses worth another attempt; everything else fails fast
RETRY_STATUS_CODES = (500, 502, 503, 504)
MAX_BACKOFF_SECONDS = 10.0


class SquareAPIError(Exception):
    """Square returned an error response or an `errors` list"""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.errors = errors or []
        self.status_code = status_code

    def is_feature_unavailable(self) -> bool:
        """True when the merchant has not enabled the feature (e.g. Appointments)"""
        return any(
            e.get("code") == "SERVICE_UNAVAILABLE" or e.get("category") == "INVALID_REQUEST_ERROR"
            for e in self.errors
        )


def _raise_for_errors(response: httpx.Response, operation: str) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        data = {}
    errors = data.get("errors") if isinstance(data, dict) else None
    if response.is_error or errors:
        raise SquareAPIError(
            f"Square {operation} error ({response.status_code}): {errors or response.text}",
            errors=errors,
            status_code=response.status_code,
        )
    return data


class SquareClient:
    """Authenticated Square client bound to one access token"""

    REQUIRED_SCOPES = [
        "MERCHANT_PROFILE_READ",
        "PAYMENTS_READ",
        "ORDERS_READ",
        "CUSTOMERS_READ",
        "CUSTOMERS_WRITE",
        "ITEMS_READ",
        "APPOINTMENTS_READ",
        "APPOINTMENTS_WRITE",
        "INVENTORY_READ",
        "EMPLOYEES_READ",
    ]

    def __init__(self, access_token: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.access_token = access_token
        self._transport = transport

    @classmethod
    def _get_base_url(cls) -> str:
        return f"{get_settings().square_base_url}/v2"

    @classmethod
    def _get_oauth_url(cls) -> str:
        return f"{get_settings().square_base_url}/oauth2"

    def _get_headers(self) -> Dict[str, str]:
        """Get default headers for API requests"""
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Square-Version": get_settings().SQUARE_API_VERSION,
        }

    async def _make_request(
        self,
        method: str,
        path: str,
        json: Optional[Dict] = None,
        params: Optional[Dict] = None,
        operation: str = "request",
    ) -> Dict[str, Any]:
        """
        Make a request to the Square API.

        Every attempt carries a timeout. Connection errors, timeouts and 5xx
        responses are retried with exponential backoff; other failures raise
        immediately.
        """
        settings = get_settings()
        url = f"{self._get_base_url()}{path}"

        for attempt in range(settings.HTTP_MAX_RETRIES + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self._transport
                ) as client:
                    response = await client.request(
                        method=method,
                        url=url,
                        headers=self._get_headers(),
                        json=json,
                        params=params,
                    )
            except httpx.TransportError as e:
                if attempt >= settings.HTTP_MAX_RETRIES:
                    raise
                logger.warning(f"Square {operation} attempt {attempt + 1} failed: {e}")
                await self._sleep_backoff(attempt + 1)
                continue

            if response.status_code in RETRY_STATUS_CODES and attempt < settings.HTTP_MAX_RETRIES:
                logger.warning(
                    f"Square {operation} attempt {attempt + 1} returned {response.status_code}, retrying"
                )
                await self._sleep_backoff(attempt + 1)
                continue

            return _raise_for_errors(response, operation)

    @staticmethod
    async def _sleep_backoff(attempt: int) -> None:
        delay = get_settings().HTTP_RETRY_BACKOFF_SECONDS * (2 ** (attempt - 1))
        await asyncio.sleep(min(delay, MAX_BACKOFF_SECONDS))

    # ============ OAuth ============

    @classmethod
    def get_required_scopes(cls) -> List[str]:
        return list(cls.REQUIRED_SCOPES)

    @classmethod
    def get_authorization_url(cls, state: str) -> str:
        """Generate Square OAuth authorization URL"""
        settings = get_settings()
        params = {
            "client_id": settings.SQUARE_APP_ID or "",
            "scope": " ".join(cls.get_required_scopes()),
            "session": "false",
            "state": state,
        }
        if settings.SQUARE_REDIRECT_URI:
            params["redirect_uri"] = settings.SQUARE_REDIRECT_URI
        return f"{cls._get_oauth_url()}/authorize?{urlencode(params)}"

    @classmethod
    async def _token_request(
        cls, body: Dict[str, Any], transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> Dict[str, Any]:
        # Token grants are not idempotent, so a single attempt only
        settings = get_settings()
        payload = {
            "client_id": settings.SQUARE_APP_ID,
            "client_secret": settings.SQUARE_APP_SECRET,
            **body,
        }
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=transport) as client:
            response = await client.post(
                f"{cls._get_oauth_url()}/token",
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "Square-Version": settings.SQUARE_API_VERSION,
                },
            )
        data = _raise_for_errors(response, "obtainToken")

        return {
            "access_token": data["access_token"],
            "refresh_token": data.get("refresh_token"),
            "expires_at": data.get("expires_at"),  # Square returns ISO date
            "merchant_id": data.get("merchant_id"),
            "token_type": data.get("token_type", "bearer"),
        }

    @classmethod
    async def exchange_code_for_tokens(
        cls, code: str, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> Dict[str, Any]:
        """Exchange authorization code for tokens"""
        body = {"code": code, "grant_type": "authorization_code"}
        redirect_uri = get_settings().SQUARE_REDIRECT_URI
        if redirect_uri:
            body["redirect_uri"] = redirect_uri
        return await cls._token_request(body, transport=transport)

    @classmethod
    async def refresh_access_token(
        cls, refresh_token: str, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> Dict[str, Any]:
        """Exchange a refresh token for a new token pair"""
        tokens = await cls._token_request(
            {"refresh_token": refresh_token, "grant_type": "refresh_token"},
            transport=transport,
        )
        if not tokens.get("refresh_token"):
            tokens["refresh_token"] = refresh_token
        return tokens

    # ============ Data endpoints ============

    async def list_locations(self) -> Dict[str, Any]:
        return await self._make_request("GET", "/locations", operation="listLocations")

    async def search_catalog(self, body: Dict[str, Any]) -> Dict[str, Any]:
        # Unlike /catalog/list, search can return deleted objects
        return await self._make_request("POST", "/catalog/search", json=body, operation="searchCatalogObjects")

    async def list_customers(self, cursor: Optional[str] = None, limit: int = 100) -> Dict[str, Any]:
        params = {"limit": limit, "sort_field": "CREATED_AT", "sort_order": "ASC"}
        if cursor:
            params["cursor"] = cursor
        return await self._make_request("GET", "/customers", params=params, operation="listCustomers")

    async def search_orders(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._make_request("POST", "/orders/search", json=body, operation="searchOrders")

    async def retrieve_order(self, order_id: str) -> Dict[str, Any]:
        return await self._make_request("GET", f"/orders/{order_id}", operation="retrieveOrder")

    async def list_bookings(
        self,
        location_id: str,
        start_at_min: Optional[str] = None,
        start_at_max: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = 100,
    ) -> Dict[str, Any]:
        # Square caps start_at_max - start_at_min at 31 days and defaults the
        # max to min + 31 days when it is omitted
        params = {"limit": limit, "location_id": location_id}
        if start_at_min:
            params["start_at_min"] = start_at_min
        if start_at_max:
            params["start_at_max"] = start_at_max
        if cursor:
            params["cursor"] = cursor
        return await self._make_request("GET", "/bookings", params=params, operation="listBookings")


def build_square_client(access_token: str) -> SquareClient:
    """Build a client bound to one merchant's access token"""
    return SquareClient(access_token)
