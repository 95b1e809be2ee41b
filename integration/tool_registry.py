"""
Tool Registry - Tool registration and invocation

Nodes depend on one narrow contract:

    result = await tools.call(tool_name, args)

Tools are registered with a parameter schema and an optional result
schema. Arguments are validated before the call and results after it;
any failure (unknown tool, invalid arguments, execution error, invalid
result) raises ``ToolError``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from integration.base import ToolError
from utils.validators import PayloadValidator

logger = logging.getLogger(__name__)


class ToolStatus(Enum):
    """Tool availability status"""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"


@dataclass
class ToolSchema:
    """Parameter and result schema for a tool

    ``parameters`` maps argument names to JSON-schema property definitions,
    e.g. ``{"query": {"type": "string"}}``.
    """

    parameters: Dict[str, Any] = field(default_factory=dict)
    required_params: List[str] = field(default_factory=list)
    returns: Dict[str, Any] = field(default_factory=dict)
    allow_extra: bool = False

    def args_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": self.parameters,
            "required": self.required_params,
            "additionalProperties": self.allow_extra,
        }


@dataclass
class Tool:
    """A registered tool: a local handler or an HTTP endpoint"""

    name: str
    description: str
    endpoint: str = "local://handler"
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: int = 30
    schema: Optional[ToolSchema] = None
    api_key_header: Optional[str] = None
    api_key: Optional[str] = None

    # Runtime state
    status: ToolStatus = ToolStatus.UNKNOWN
    last_call: Optional[datetime] = None

    # Metrics
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_latency_ms: float = 0

    @property
    def is_local(self) -> bool:
        return self.endpoint.startswith("local://")


@dataclass
class ToolResult:
    """Result from a tool execution"""

    success: bool
    tool_name: str
    data: Any = None
    error: Optional[str] = None
    latency_ms: float = 0


class _TransientToolFailure(ToolError):
    """HTTP failure worth another attempt (5xx, 429, connection errors)"""

    def __init__(self, message: str, tool_name: str):
        super().__init__(message, tool_name=tool_name, retryable=True)


class ToolRegistry:
    """
    Registry for managing and invoking tools.

    Provides:
    - Local handler and HTTP tool registration
    - Argument and result validation
    - Retries for transient HTTP failures
    - Per-tool metrics

    Example:
        tools = ToolRegistry()
        tools.register_handler(
            "search_information",
            "Provides factual information on a topic",
            search,
            schema=ToolSchema(
                parameters={"query": {"type": "string"}},
                required_params=["query"],
            ),
        )
        text = await tools.call("search_information", {"query": "capital of France"})
    """

    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        self._tools: Dict[str, Tool] = {}
        self._handlers: Dict[str, Callable] = {}
        self._validator = PayloadValidator()

        self._session: Optional[aiohttp.ClientSession] = None

        retry_config = self.config.get("retry", {})
        self._max_attempts = retry_config.get("maxAttempts", 3)
        self._retry_delay = retry_config.get("initialDelay", 1)
        self._retry_multiplier = retry_config.get("multiplier", 2.0)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if not self._session or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        """Close registry and cleanup"""
        if self._session:
            await self._session.close()
            self._session = None

    # ==================== Registration ====================

    def register(
        self,
        name: str,
        description: str,
        endpoint: str,
        method: str = "POST",
        schema: ToolSchema = None,
        **kwargs,
    ) -> Tool:
        """
        Register an HTTP tool.

        Args:
            name: Unique tool name
            description: Tool description (shown to the reasoning service)
            endpoint: API endpoint URL
            method: HTTP method
            schema: Optional parameter/result schema
            **kwargs: Additional tool configuration (headers, timeout, api_key...)

        Returns:
            Registered Tool object
        """
        tool = Tool(
            name=name,
            description=description,
            endpoint=endpoint,
            method=method,
            schema=schema,
            **kwargs,
        )
        self._add(tool)
        self.logger.info(f"Registered tool: {name}")
        return tool

    def register_handler(
        self, name: str, description: str, handler: Callable, schema: ToolSchema = None
    ) -> Tool:
        """
        Register a handler function as a tool.

        The handler receives the arguments as keyword arguments and may be
        sync or async.
        """
        tool = Tool(name=name, description=description, schema=schema)
        self._add(tool)
        self._handlers[name] = handler
        self.logger.info(f"Registered handler tool: {name}")
        return tool

    def tool(self, name: str = None, description: str = None, schema: ToolSchema = None):
        """Decorator form of register_handler"""

        def decorator(func: Callable) -> Callable:
            self.register_handler(
                name or func.__name__,
                description or (func.__doc__ or "").strip(),
                func,
                schema=schema,
            )
            return func

        return decorator

    def _add(self, tool: Tool):
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        if tool.schema:
            self._validator.register_schema(f"{tool.name}.args", tool.schema.args_schema())
            if tool.schema.returns:
                self._validator.register_schema(f"{tool.name}.result", tool.schema.returns)

    def unregister(self, name: str):
        """Unregister a tool"""
        if name in self._tools:
            del self._tools[name]
            self._handlers.pop(name, None)
            self._validator.schemas.pop(f"{name}.args", None)
            self._validator.schemas.pop(f"{name}.result", None)
            self.logger.info(f"Unregistered tool: {name}")

    def get_tool(self, name: str) -> Optional[Tool]:
        """Get a tool by name"""
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> List[Dict[str, Any]]:
        """List all registered tools"""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "status": tool.status.value,
                "parameters": tool.schema.parameters if tool.schema else {},
                "required": tool.schema.required_params if tool.schema else [],
            }
            for tool in self._tools.values()
        ]

    def describe_tools(self) -> str:
        """Render the tool catalogue for a prompt, one tool per line"""
        lines = []
        for tool in self._tools.values():
            params = []
            if tool.schema:
                for param, spec in tool.schema.parameters.items():
                    optional = "" if param in tool.schema.required_params else "?"
                    params.append(f"{param}{optional}: {spec.get('type', 'any')}")
            lines.append(f"- {tool.name}({', '.join(params)}): {tool.description}")
        return "\n".join(lines)

    # ==================== Invocation ====================

    async def call(self, tool_name: str, args: Dict[str, Any] = None) -> Any:
        """
        Invoke a tool and return its result.

        Raises:
            ToolError: unknown tool, invalid arguments, execution failure
                or a result that does not match the result schema
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            raise ToolError(f"Tool '{tool_name}' not found", tool_name=tool_name)

        args = dict(args or {})
        self._check(f"{tool_name}.args", args, tool_name, "arguments")

        start_time = time.time()
        tool.total_calls += 1
        tool.last_call = datetime.now()

        try:
            if tool_name in self._handlers:
                result = await self._execute_handler(tool_name, args)
            else:
                result = await self._execute_http_with_retries(tool, args)
            self._check(f"{tool_name}.result", result, tool_name, "result")
        except ToolError as e:
            self._record_failure(tool)
            self.logger.warning(f"Tool {tool_name} failed: {e}")
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_failure(tool)
            self.logger.warning(f"Tool {tool_name} raised {type(e).__name__}: {e}")
            raise ToolError(
                f"Tool '{tool_name}' failed: {e}",
                tool_name=tool_name,
                details={"exception": type(e).__name__},
            ) from e

        latency_ms = (time.time() - start_time) * 1000
        tool.successful_calls += 1
        tool.total_latency_ms += latency_ms
        tool.status = ToolStatus.AVAILABLE
        return result

    async def execute(self, tool_name: str, params: Dict[str, Any] = None) -> ToolResult:
        """Invoke a tool, reporting failure in a ToolResult instead of raising"""
        start_time = time.time()
        try:
            data = await self.call(tool_name, params)
        except ToolError as e:
            return ToolResult(
                success=False,
                tool_name=tool_name,
                error=str(e),
                latency_ms=(time.time() - start_time) * 1000,
            )
        return ToolResult(
            success=True,
            tool_name=tool_name,
            data=data,
            latency_ms=(time.time() - start_time) * 1000,
        )

    def _check(self, schema_name: str, payload: Any, tool_name: str, what: str):
        if not self._validator.has_schema(schema_name):
            return
        result = self._validator.validate(payload, schema_name)
        if not result.valid:
            details = "; ".join(f"{i.path}: {i.message}" for i in result.errors)
            raise ToolError(
                f"Invalid {what} for tool '{tool_name}': {details}",
                tool_name=tool_name,
                error_code=f"invalid_{what}",
                details={"issues": [str(i) for i in result.errors]},
            )

    def _record_failure(self, tool: Tool):
        tool.failed_calls += 1
        tool.status = ToolStatus.DEGRADED

    async def _execute_handler(self, tool_name: str, args: Dict[str, Any]) -> Any:
        """Execute a local handler tool"""
        result = self._handlers[tool_name](**args)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def _execute_http_with_retries(self, tool: Tool, args: Dict[str, Any]) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self._max_attempts)),
            wait=wait_exponential(multiplier=self._retry_delay, exp_base=self._retry_multiplier),
            retry=retry_if_exception(lambda e: isinstance(e, _TransientToolFailure)),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await self._execute_http(tool, args)
        return result

    async def _execute_http(self, tool: Tool, args: Dict[str, Any]) -> Any:
        """Execute an HTTP-based tool"""
        session = await self._get_session()

        headers = dict(tool.headers)
        if tool.api_key and tool.api_key_header:
            headers[tool.api_key_header] = tool.api_key

        timeout = aiohttp.ClientTimeout(total=tool.timeout)

        try:
            async with session.request(
                tool.method, tool.endpoint, json=args, headers=headers, timeout=timeout
            ) as resp:
                if resp.status >= 500 or resp.status == 429:
                    raise _TransientToolFailure(
                        f"HTTP {resp.status}: {await resp.text()}", tool_name=tool.name
                    )
                if resp.status >= 400:
                    raise ToolError(
                        f"HTTP {resp.status}: {await resp.text()}",
                        tool_name=tool.name,
                        error_code=str(resp.status),
                    )

                if resp.content_type == "application/json":
                    return await resp.json()
                return await resp.text()
        except aiohttp.ClientError as e:
            raise _TransientToolFailure(f"{type(e).__name__}: {e}", tool_name=tool.name) from e

    # ==================== Metrics ====================

    def get_metrics(self, tool_name: str = None) -> Dict[str, Any]:
        """Get tool execution metrics"""
        if tool_name:
            tool = self._tools.get(tool_name)
            if not tool:
                return {}
            return self._tool_metrics(tool)

        return {name: self._tool_metrics(tool) for name, tool in self._tools.items()}

    def _tool_metrics(self, tool: Tool) -> Dict[str, Any]:
        """Get metrics for a single tool"""
        return {
            "name": tool.name,
            "status": tool.status.value,
            "total_calls": tool.total_calls,
            "successful_calls": tool.successful_calls,
            "failed_calls": tool.failed_calls,
            "success_rate": (
                tool.successful_calls / tool.total_calls if tool.total_calls > 0 else 0
            ),
            "avg_latency_ms": (
                tool.total_latency_ms / tool.successful_calls
                if tool.successful_calls > 0
                else 0
            ),
            "last_call": tool.last_call.isoformat() if tool.last_call else None,
        }


# Narrow name nodes depend on
ToolInvoker = ToolRegistry
