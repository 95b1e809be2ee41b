"""
Tests for tool registration and invocation
"""
import pytest

from integration.base import ToolError
from integration.tool_registry import ToolInvoker, ToolRegistry, ToolSchema, ToolStatus

LOOKUP_SCHEMA = ToolSchema(
    parameters={"city": {"type": "string"}, "days": {"type": "integer"}},
    required_params=["city"],
    returns={"type": "object", "required": ["forecast"]},
)


def forecast(city, days=1):
    return {"forecast": f"{days} day(s) of sun in {city}"}


@pytest.fixture
def tools():
    registry = ToolRegistry()
    registry.register_handler("forecast", "Weather forecast for a city", forecast, schema=LOOKUP_SCHEMA)
    return registry


class TestRegistration:
    """Test adding and removing tools"""

    def test_register_handler(self, tools):
        """Test a handler tool is listed with its parameters"""
        listed = tools.list_tools()

        assert "forecast" in tools
        assert listed[0]["name"] == "forecast"
        assert listed[0]["required"] == ["city"]
        assert tools.get_tool("forecast").is_local

    def test_duplicate_name_rejected(self, tools):
        """Test tool names are unique"""
        with pytest.raises(ValueError):
            tools.register_handler("forecast", "again", forecast)

    def test_unregister(self, tools):
        """Test an unregistered tool can no longer be found"""
        tools.unregister("forecast")

        assert "forecast" not in tools
        assert tools.get_tool("forecast") is None

    def test_decorator(self):
        """Test the decorator registers the function under its name"""
        registry = ToolRegistry()

        @registry.tool()
        def shout(text):
            """Upper-case the text"""
            return text.upper()

        assert registry.get_tool("shout").description == "Upper-case the text"

    def test_describe_tools(self, tools):
        """Test the prompt catalogue marks optional parameters"""
        assert tools.describe_tools() == (
            "- forecast(city: string, days?: integer): Weather forecast for a city"
        )

    def test_http_tool(self):
        """Test an HTTP tool is registered with its endpoint"""
        registry = ToolRegistry()
        tool = registry.register("search", "Web search", "http://search.local/api")

        assert not tool.is_local
        assert tool.method == "POST"

    def test_invoker_alias(self):
        """Test ToolInvoker is the registry"""
        assert ToolInvoker is ToolRegistry


class TestInvocation:
    """Test calling tools"""

    @pytest.mark.asyncio
    async def test_call(self, tools):
        """Test a valid call returns the handler result"""
        result = await tools.call("forecast", {"city": "Oslo", "days": 2})

        assert result == {"forecast": "2 day(s) of sun in Oslo"}
        metrics = tools.get_metrics("forecast")
        assert metrics["successful_calls"] == 1
        assert metrics["status"] == ToolStatus.AVAILABLE.value

    @pytest.mark.asyncio
    async def test_async_handler(self):
        """Test coroutine handlers are awaited"""
        registry = ToolRegistry()

        async def fetch(key):
            return f"value of {key}"

        registry.register_handler("fetch", "Fetch a key", fetch)

        assert await registry.call("fetch", {"key": "a"}) == "value of a"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tools):
        """Test calling an unregistered tool fails"""
        with pytest.raises(ToolError) as exc_info:
            await tools.call("translate", {})

        assert exc_info.value.tool_name == "translate"

    @pytest.mark.asyncio
    async def test_missing_argument(self, tools):
        """Test required parameters are enforced before the call"""
        with pytest.raises(ToolError) as exc_info:
            await tools.call("forecast", {"days": 2})

        assert exc_info.value.error_code == "invalid_arguments"
        assert tools.get_metrics("forecast")["total_calls"] == 0

    @pytest.mark.asyncio
    async def test_wrong_argument_type(self, tools):
        """Test parameter types are enforced, booleans are not integers"""
        with pytest.raises(ToolError):
            await tools.call("forecast", {"city": "Oslo", "days": True})

    @pytest.mark.asyncio
    async def test_unexpected_argument(self, tools):
        """Test arguments outside the schema are rejected"""
        with pytest.raises(ToolError):
            await tools.call("forecast", {"city": "Oslo", "units": "metric"})

    @pytest.mark.asyncio
    async def test_handler_exception_wrapped(self):
        """Test handler exceptions surface as ToolError"""
        registry = ToolRegistry()

        def broken(address):
            raise LookupError("Address not specific enough")

        registry.register_handler("locate", "Locate", broken)

        with pytest.raises(ToolError) as exc_info:
            await registry.call("locate", {"address": "somewhere"})

        assert "Address not specific enough" in str(exc_info.value)
        assert exc_info.value.details["exception"] == "LookupError"
        assert registry.get_metrics("locate")["failed_calls"] == 1
        assert registry.get_tool("locate").status == ToolStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_invalid_result(self):
        """Test results are checked against the result schema"""
        registry = ToolRegistry()
        registry.register_handler(
            "forecast", "Forecast", lambda city: "sunny", schema=ToolSchema(
                parameters={"city": {"type": "string"}},
                required_params=["city"],
                returns={"type": "object"},
            )
        )

        with pytest.raises(ToolError) as exc_info:
            await registry.call("forecast", {"city": "Oslo"})

        assert exc_info.value.error_code == "invalid_result"

    @pytest.mark.asyncio
    async def test_execute_reports_failure(self, tools):
        """Test execute() returns a failed ToolResult instead of raising"""
        ok = await tools.execute("forecast", {"city": "Oslo"})
        failed = await tools.execute("forecast", {})

        assert ok.success and ok.data["forecast"].endswith("Oslo")
        assert not failed.success
        assert failed.tool_name == "forecast"
        assert "city" in failed.error


class FakeHttpResponse:
    def __init__(self, status, data=None, text=""):
        self.status = status
        self.content_type = "application/json" if data is not None else "text/plain"
        self._data = data
        self._text = text

    async def json(self):
        return self._data

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeHttpSession:
    closed = False

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.requests.append({"method": method, "url": url, "json": json, "headers": headers})
        return self.responses.pop(0)


class TestHttpTools:
    """Test HTTP tools and their retry policy"""

    def registry(self, responses):
        registry = ToolRegistry({"retry": {"maxAttempts": 3, "initialDelay": 0}})
        registry.register(
            "search", "Web search", "http://search.local/api",
            api_key_header="X-Api-Key", api_key="secret",
        )
        registry._session = FakeHttpSession(responses)
        return registry

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self):
        """Test a 503 is retried and the JSON body returned"""
        registry = self.registry([
            FakeHttpResponse(503, text="unavailable"),
            FakeHttpResponse(200, {"hits": 3}),
        ])

        result = await registry.call("search", {"q": "tides"})

        assert result == {"hits": 3}
        requests = registry._session.requests
        assert len(requests) == 2
        assert requests[0]["json"] == {"q": "tides"}
        assert requests[0]["headers"] == {"X-Api-Key": "secret"}

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        """Test a 404 fails on the first attempt"""
        registry = self.registry([
            FakeHttpResponse(404, text="no such index"),
            FakeHttpResponse(200, {"hits": 3}),
        ])

        with pytest.raises(ToolError) as exc_info:
            await registry.call("search", {"q": "tides"})

        assert exc_info.value.error_code == "404"
        assert len(registry._session.requests) == 1

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self):
        """Test the last transient failure is raised after maxAttempts"""
        registry = self.registry([FakeHttpResponse(500, text="boom")] * 3)

        with pytest.raises(ToolError) as exc_info:
            await registry.call("search", {"q": "tides"})

        assert exc_info.value.retryable
        assert len(registry._session.requests) == 3
