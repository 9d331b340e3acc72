"""
GHL Service - single entry point for all GoHighLevel API calls.

Hybrid transport: a tool-protocol call when the tool was discovered at
initialize(), otherwise (or when the tool call fails transiently) the direct REST
endpoint. Every public operation is rate limited per category and wrapped in
retry-with-backoff, so callers always receive either a result or a CRMError.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from services.ghl_config import (
    GHL_BASE_URL,
    GHL_LOCATION_ID,
    GHL_REQUEST_TIMEOUT_SECONDS,
    GHL_USE_TOOL_PROTOCOL,
    get_ghl_headers,
)
from services.ghl_errors import ToolProtocolError
from services.ghl_tool_client import GHLToolClient, ToolDescriptor
from utils.rate_limiter import RateLimiter, rate_limiter as shared_rate_limiter
from utils.retry import BASE_DELAY_SECONDS, MAX_RETRIES, with_retry

logger = logging.getLogger(__name__)

# Tool names with a REST equivalent
TOOL_SEARCH_CONTACTS = "contacts_get-contacts"
TOOL_UPSERT_CONTACT = "contacts_upsert-contact"
TOOL_GET_CONTACT = "contacts_get-contact"
TOOL_UPDATE_OPPORTUNITY = "opportunities_update-opportunity"
TOOL_SEND_MESSAGE = "conversations_send-a-new-message"

RATE_LIMIT_CATEGORIES = ("contacts", "opportunities", "conversations", "users", "media")


def should_fall_back(error: Exception) -> bool:
    """
    Whether a failed tool call should be retried over REST.

    Protocol errors, transport errors, timeouts and 5xx fall back. A 4xx means the
    request itself is wrong and REST would reject it the same way.
    """
    if isinstance(error, ToolProtocolError):
        return True
    status_code = getattr(error, "status_code", None)
    if status_code is not None and 400 <= status_code < 500:
        return False
    return True


class GHLService:
    """GoHighLevel API facade for one credential + location."""

    def __init__(
        self,
        api_key: str,
        location_id: str,
        use_tool_protocol: bool = True,
        use_rate_limiting: bool = True,
        retry_on_error: bool = True,
        max_retries: int = MAX_RETRIES,
        base_delay: float = BASE_DELAY_SECONDS,
        limiter: Optional[RateLimiter] = None,
        tool_client: Optional[GHLToolClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: str = GHL_BASE_URL,
        timeout: float = GHL_REQUEST_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not api_key or not api_key.strip():
            raise ValueError("API key is required for GHLService")
        if not location_id or not location_id.strip():
            raise ValueError("Location ID is required for GHLService")

        self.api_key = api_key.strip()
        self.location_id = location_id.strip()
        self.use_tool_protocol = use_tool_protocol
        self.use_rate_limiting = use_rate_limiting
        self.retry_on_error = retry_on_error
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.limiter = limiter or shared_rate_limiter
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self._headers = get_ghl_headers(self.api_key)

        self.tool_client: Optional[GHLToolClient] = None
        if use_tool_protocol:
            self.tool_client = tool_client or GHLToolClient(
                self.api_key, self.location_id, timeout=timeout, transport=transport
            )

        # Filled once by initialize()
        self.tools: List[ToolDescriptor] = []
        self.tools_loaded = False

    async def initialize(self) -> None:
        """Load the available tools. Safe to call repeatedly; only the first call does work."""
        if self.tool_client is None or self.tools_loaded:
            return
        try:
            self.tools = await self.tool_client.list_tools()
        except Exception as e:
            logger.warning(f"GHL tools unavailable, using direct API only: {e}")
            self.tools = []
        self.tools_loaded = True
        logger.info(f"GHLService initialized with {len(self.tools)} tools")

    def has_tool(self, tool_name: str) -> bool:
        return self.tool_client is not None and any(t.name == tool_name for t in self.tools)

    async def _execute_with_protection(self, category: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        if self.use_rate_limiting:
            await self.limiter.acquire(category)

        # With retries disabled the single attempt is still classified
        max_retries = self.max_retries if self.retry_on_error else 0
        return await with_retry(
            operation,
            max_retries=max_retries,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )

    async def _tool_or_rest(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        rest_call: Callable[[], Awaitable[Any]],
    ) -> Any:
        if self.has_tool(tool_name):
            try:
                return await self.tool_client.call_tool(tool_name, arguments)
            except Exception as e:
                if not should_fall_back(e):
                    raise
                logger.warning(f"Tool {tool_name} failed, falling back to direct API: {e}")
        return await rest_call()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def search_contacts(self, query: str, limit: int = 50) -> Any:
        async def rest():
            return await self._request(
                "GET", "/contacts/",
                params={"locationId": self.location_id, "query": query, "limit": limit},
            )

        async def operation():
            return await self._tool_or_rest(
                TOOL_SEARCH_CONTACTS,
                {"locationId": self.location_id, "query": query, "limit": limit},
                rest,
            )

        return await self._execute_with_protection("contacts", operation)

    async def upsert_contact(self, contact_data: Dict[str, Any]) -> Any:
        payload = {**contact_data, "locationId": self.location_id}

        async def rest():
            return await self._request("POST", "/contacts/upsert", json=payload)

        async def operation():
            return await self._tool_or_rest(TOOL_UPSERT_CONTACT, payload, rest)

        return await self._execute_with_protection("contacts", operation)

    async def get_contact(self, contact_id: str) -> Any:
        async def rest():
            return await self._request("GET", f"/contacts/{contact_id}")

        async def operation():
            return await self._tool_or_rest(TOOL_GET_CONTACT, {"contactId": contact_id}, rest)

        return await self._execute_with_protection("contacts", operation)

    async def add_contact_note(self, contact_id: str, body: str) -> Any:
        async def operation():
            return await self._request("POST", f"/contacts/{contact_id}/notes", json={"body": body})

        return await self._execute_with_protection("contacts", operation)

    # ------------------------------------------------------------------
    # Opportunities
    # ------------------------------------------------------------------

    async def create_opportunity(self, opportunity_data: Dict[str, Any]) -> Any:
        # No tool equivalent for creation
        payload = {**opportunity_data, "locationId": self.location_id}

        async def operation():
            return await self._request("POST", "/opportunities/", json=payload)

        return await self._execute_with_protection("opportunities", operation)

    async def update_opportunity(self, opportunity_id: str, update_data: Dict[str, Any]) -> Any:
        async def rest():
            return await self._request("PUT", f"/opportunities/{opportunity_id}", json=update_data)

        async def operation():
            return await self._tool_or_rest(
                TOOL_UPDATE_OPPORTUNITY, {"id": opportunity_id, **update_data}, rest
            )

        return await self._execute_with_protection("opportunities", operation)

    async def add_opportunity_note(self, opportunity_id: str, body: str) -> Any:
        async def operation():
            return await self._request(
                "POST", f"/opportunities/{opportunity_id}/notes", json={"body": body}
            )

        return await self._execute_with_protection("opportunities", operation)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_users(self) -> Any:
        async def operation():
            return await self._request("GET", "/users/", params={"locationId": self.location_id})

        return await self._execute_with_protection("users", operation)

    # ------------------------------------------------------------------
    # Conversations / messaging
    # ------------------------------------------------------------------

    async def send_message(self, message_data: Dict[str, Any]) -> Any:
        async def rest():
            return await self._request("POST", "/conversations/messages", json=message_data)

        async def operation():
            return await self._tool_or_rest(TOOL_SEND_MESSAGE, message_data, rest)

        return await self._execute_with_protection("conversations", operation)

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def upload_file(self, filename: str, content: bytes, content_type: str = "application/pdf") -> Any:
        """Upload a file to the location's media library. Response carries the public `url`."""
        async def operation():
            return await self._request(
                "POST", "/medias/upload-file",
                files={"file": (filename, content, content_type)},
            )

        return await self._execute_with_protection("media", operation)

    # ------------------------------------------------------------------
    # Utility
    # ------------------------------------------------------------------

    def get_rate_limit_stats(self) -> Dict[str, Dict[str, Any]]:
        return {category: self.limiter.get_stats(category) for category in RATE_LIMIT_CATEGORIES}

    def get_status(self) -> Dict[str, Any]:
        return {
            "tool_protocol_enabled": self.use_tool_protocol,
            "tool_protocol_available": self.tool_client is not None,
            "tools_loaded": self.tools_loaded,
            "tool_count": len(self.tools),
            "rate_limiting_enabled": self.use_rate_limiting,
            "retry_enabled": self.retry_on_error,
            "location_id": self.location_id,
        }


def user_list(users_response: Any) -> List[Dict[str, Any]]:
    """Normalise a get_users() response to a list of user dicts."""
    if isinstance(users_response, dict):
        return users_response.get("users") or []
    return users_response or []


def _default_factory(api_key: str) -> GHLService:
    return GHLService(
        api_key,
        GHL_LOCATION_ID,
        use_tool_protocol=GHL_USE_TOOL_PROTOCOL,
        use_rate_limiting=True,
        retry_on_error=True,
    )


class GHLServiceProvider:
    """
    Holds one initialized GHLService per credential.

    A different credential builds and initializes a fresh instance that replaces
    the previous one; an existing instance is never reconfigured.
    """

    def __init__(self, factory: Optional[Callable[[str], GHLService]] = None):
        self._factory = factory or _default_factory
        self._service: Optional[GHLService] = None

    async def get_service(self, api_key: str) -> GHLService:
        api_key = (api_key or "").strip()
        service = self._service
        if service is None or service.api_key != api_key:
            service = self._factory(api_key)
            await service.initialize()
            self._service = service
        return service

    def reset(self) -> None:
        self._service = None


ghl_service_provider = GHLServiceProvider()
