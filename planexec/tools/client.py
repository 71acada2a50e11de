"""
Tool boundary: async clients that execute a named tool with parameters
"""

import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union, runtime_checkable

import httpx

from ..core.errors import ToolExecutionError
from ..logging.config import get_logger
from ..models.execution import ToolResult


@runtime_checkable
class ToolClient(Protocol):
    """Anything that can execute a tool by name"""

    async def execute(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        ...


ToolCallable = Callable[[str, Dict[str, Any]], Awaitable[Any]]


def normalize_tool_result(raw: Any) -> ToolResult:
    """
    Coerce a raw tool response into the ``{success, data, error}`` envelope

    A dict carrying a boolean ``success`` key is treated as an envelope;
    anything else is a bare payload and counts as success.
    """
    if isinstance(raw, ToolResult):
        return raw
    if isinstance(raw, dict) and isinstance(raw.get("success"), bool):
        return ToolResult(success=raw["success"], data=raw.get("data"), error=raw.get("error"))
    return ToolResult(success=True, data=raw)


class CallableToolClient:
    """Adapts a plain ``async (tool_name, params)`` callable to ToolClient"""

    def __init__(self, fn: ToolCallable):
        self.fn = fn

    async def execute(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        raw = self.fn(tool_name, params)
        if inspect.isawaitable(raw):
            raw = await raw
        return normalize_tool_result(raw)


class HttpToolClient:
    """Executes tools on a remote tool server over HTTP"""

    def __init__(self, base_url: str, timeout_seconds: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self.logger = get_logger(__name__)

    async def execute(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        """
        POST ``{"tool_name", "parameters"}`` to ``<base_url>/execute``

        Raises:
            ToolExecutionError: on transport failures or HTTP error statuses
        """
        payload = {
            "tool_name": tool_name,
            "parameters": params
        }

        try:
            response = await self.client.post(
                f"{self.base_url}/execute",
                json=payload,
                timeout=self.timeout_seconds
            )
            response.raise_for_status()
            body = response.json()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            retryable = status >= 500 or status == 429
            retry_after_ms = None
            retry_after = e.response.headers.get("retry-after")
            if retry_after and retry_after.isdigit():
                retry_after_ms = int(retry_after) * 1000
            raise ToolExecutionError(
                f"Tool server returned error {status}: {e.response.text}",
                tool=tool_name,
                retryable=retryable,
                status_code=status,
                retry_after_ms=retry_after_ms
            ) from e
        except httpx.RequestError as e:
            raise ToolExecutionError(
                f"Failed to connect to tool server {self.base_url}: {str(e)}",
                tool=tool_name,
                retryable=True
            ) from e
        except ValueError as e:
            raise ToolExecutionError(
                f"Malformed response from tool server for {tool_name}: {str(e)}",
                tool=tool_name,
                retryable=False
            ) from e

        return normalize_tool_result(body)

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()


def as_tool_client(tools: Union[ToolClient, ToolCallable]) -> ToolClient:
    """Accept either a ToolClient or a bare async callable"""
    if callable(tools):
        return CallableToolClient(tools)
    if isinstance(tools, ToolClient):
        return tools
    raise TypeError(f"Unsupported tool client: {type(tools).__name__}")
