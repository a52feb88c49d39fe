# negotiation_service/client/api_client.py
"""
Async HTTP client for the negotiation API.

Every presentation surface talks to the service through this client:
- Envelopes are unwrapped and parsed into the read schemas
- Error envelopes are raised as the matching domain exception
- Network failures, timeouts and 5xx answers surface as TransportError

Sends are never retried here; retrying is the caller's decision.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from negotiation_service.core.config import settings
from negotiation_service.core.exceptions import (
    ERROR_CODE_MAP,
    MalformedPayloadError,
    NegotiationServiceError,
    TransportError,
)
from negotiation_service.schemas.negotiation import (
    MessageCreate,
    MessageRead,
    NegotiationRead,
    NegotiationStart,
    Pagination,
)
from negotiation_service.schemas.purchase_order import (
    PurchaseOrderFromNegotiation,
    PurchaseOrderRead,
)

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass
class PurchaseOrderOutcome:
    purchase_order: PurchaseOrderRead
    created: bool
    message: str
    # Set once a re-fetched negotiation points at this purchase order
    confirmed: bool = False


class NegotiationAPIClient:
    """HTTP client for the negotiation service, acting as one bearer-token user."""

    def __init__(
        self,
        base_url: str = None,
        token: Optional[str] = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: API root including the version prefix
            token: Bearer token of the acting user
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url or settings.NEGOTIATION_API_BASE_URL
        self.token = token
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "NegotiationAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ===========================================
    # Transport
    # ===========================================

    async def _request(self, method: str, path: str, **kwargs) -> Tuple[dict, int]:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout calling negotiation service {method} {path}: {e}")
            raise TransportError(
                f"Request timed out after {self.timeout}s",
                details={"method": method, "path": path},
            )
        except httpx.RequestError as e:
            logger.warning(f"Network error calling negotiation service {method} {path}: {e}")
            raise TransportError(
                f"Could not reach negotiation service: {e}",
                details={"method": method, "path": path},
            )

        if response.is_server_error:
            self._raise_unavailable(response, method, path)

        try:
            body = response.json()
        except ValueError:
            raise MalformedPayloadError(
                f"Non-JSON response ({response.status_code}) from {path}",
                details={"status_code": response.status_code},
            )
        if not isinstance(body, dict):
            raise MalformedPayloadError(f"Unexpected payload from {path}")

        if response.is_error or body.get("success") is False:
            self._raise_error(body, response.status_code)
        return body, response.status_code

    @staticmethod
    def _raise_unavailable(response: httpx.Response, method: str, path: str) -> None:
        """5xx answers (gateway pages or server error envelopes) mean the service is unavailable."""
        details = {"method": method, "path": path, "status_code": response.status_code}
        message = f"Negotiation service unavailable ({response.status_code})"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            error = body.get("error") or {}
            if error.get("code"):
                details["code"] = error["code"]
            if body.get("message"):
                message = f"{message}: {body['message']}"
        logger.warning(f"Server error calling negotiation service {method} {path}: {response.status_code}")
        raise TransportError(message, details=details)

    @staticmethod
    def _raise_error(body: dict, status_code: int) -> None:
        error = body.get("error") or {}
        code = error.get("code")
        message = body.get("message") or body.get("detail") or f"Request failed with {status_code}"
        details = error.get("details") or {}

        exc_class = ERROR_CODE_MAP.get(code)
        if exc_class is not None:
            raise exc_class.from_payload(message, details)
        raise NegotiationServiceError(
            str(message), error_code=code or f"HTTP_{status_code}", details=details
        )

    @staticmethod
    def _parse(schema: Type[SchemaT], data: Any) -> SchemaT:
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Malformed {schema.__name__} payload: {e.error_count()} errors")
            raise MalformedPayloadError(
                f"Malformed {schema.__name__} payload",
                details={"errors": e.errors(include_url=False)},
            )

    # ===========================================
    # Negotiations
    # ===========================================

    async def list_negotiations(
        self,
        *,
        bid_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Tuple[List[NegotiationRead], Pagination]:
        params = {"page": page, "page_size": page_size}
        if bid_id:
            params["bid_id"] = bid_id
        if status:
            params["status"] = status
        body, _ = await self._request("GET", "/negotiations", params=params)
        items = [self._parse(NegotiationRead, item) for item in body.get("data") or []]
        return items, self._parse(Pagination, body.get("pagination"))

    async def get_negotiation(self, negotiation_id: str) -> NegotiationRead:
        body, _ = await self._request("GET", f"/negotiations/{negotiation_id}")
        return self._parse(NegotiationRead, body.get("data"))

    async def start_negotiation(
        self, bid_id: str, opening: Optional[NegotiationStart] = None
    ) -> Tuple[NegotiationRead, bool]:
        """Returns (negotiation, created)."""
        kwargs = {}
        if opening is not None:
            kwargs["json"] = opening.model_dump(mode="json", exclude_none=True)
        body, status_code = await self._request("POST", f"/negotiations/start/{bid_id}", **kwargs)
        return self._parse(NegotiationRead, body.get("data")), status_code == 201

    async def send_message(self, negotiation_id: str, draft: MessageCreate) -> MessageRead:
        body, _ = await self._request(
            "POST",
            f"/negotiations/{negotiation_id}/messages",
            json=draft.model_dump(mode="json", exclude_none=True),
        )
        return self._parse(MessageRead, body.get("data"))

    async def close_negotiation(self, negotiation_id: str) -> NegotiationRead:
        body, _ = await self._request("POST", f"/negotiations/{negotiation_id}/close")
        return self._parse(NegotiationRead, body.get("data"))

    # ===========================================
    # Purchase Orders
    # ===========================================

    async def create_purchase_order(
        self, negotiation_id: str, details: PurchaseOrderFromNegotiation
    ) -> PurchaseOrderOutcome:
        body, status_code = await self._request(
            "POST",
            f"/purchase-orders/from-negotiation/{negotiation_id}",
            json=details.model_dump(mode="json", exclude_none=True),
        )
        message = body.get("message") or ""
        return PurchaseOrderOutcome(
            purchase_order=self._parse(PurchaseOrderRead, body.get("data")),
            created=status_code == 201 and "already exists" not in message,
            message=message,
        )
