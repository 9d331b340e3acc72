"""
GHL tool-protocol (MCP) client.

JSON-RPC 2.0 over HTTP: `tools/list` for capability discovery and `tools/call`
to invoke a tool by name. Discovery never raises, so tool support stays optional.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from services.ghl_config import GHL_MCP_ENDPOINT, GHL_REQUEST_TIMEOUT_SECONDS
from services.ghl_errors import ToolProtocolError, ToolTransportError

logger = logging.getLogger(__name__)


@dataclass
class ToolDescriptor:
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolDescriptor":
        return cls(
            name=data.get("name", ""),
            description=data.get("description") or "",
            input_schema=data.get("inputSchema") or {},
        )


class GHLToolClient:
    """Thin request/response client for the GHL tool endpoint."""

    def __init__(
        self,
        api_key: str,
        location_id: str,
        endpoint: str = GHL_MCP_ENDPOINT,
        timeout: float = GHL_REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key or not api_key.strip():
            raise ValueError("API key is required for GHLToolClient")
        if not location_id or not location_id.strip():
            raise ValueError("Location ID is required for GHLToolClient")

        self.api_key = api_key.strip()
        self.location_id = location_id.strip()
        self.endpoint = endpoint
        self.timeout = timeout
        self._transport = transport
        self._request_id = 0

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "locationId": self.location_id,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.endpoint, json=payload, headers=self._headers())
            response.raise_for_status()
            return response.json()

    async def list_tools(self) -> List[ToolDescriptor]:
        """Discover available tools. Any failure is logged and yields an empty list."""
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_request_id(),
            "method": "tools/list",
        }
        try:
            data = await self._post(payload)
            if data.get("error"):
                error = data["error"]
                raise ToolProtocolError(
                    error.get("message") or "Failed to list tools",
                    code=error.get("code"),
                )
            tools = (data.get("result") or {}).get("tools") or []
            return [ToolDescriptor.from_dict(t) for t in tools if t.get("name")]
        except Exception as e:
            logger.warning(f"Failed to list GHL tools: {e}")
            return []

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        """Invoke a tool and return its unwrapped result payload."""
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_request_id(),
            "method": "tools/call",
            "params": {"name": tool_name, "arguments": arguments},
        }
        try:
            data = await self._post(payload)
        except httpx.HTTPStatusError as e:
            raise ToolTransportError(
                f"Tool call to {tool_name} failed: {e}",
                tool_name=tool_name,
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ToolTransportError(f"Tool call to {tool_name} failed: {e}", tool_name=tool_name) from e

        if data.get("error"):
            error = data["error"]
            raise ToolProtocolError(
                error.get("message") or "Tool call failed",
                code=error.get("code"),
                tool_name=tool_name,
            )
        return data.get("result")

    async def has_tool(self, tool_name: str) -> bool:
        tools = await self.list_tools()
        return any(t.name == tool_name for t in tools)
