from __future__ import annotations

import pytest

from mcp_manager.bridge import (
    load_langchain_tools,
    mcp_to_langchain_tool,
    render_result,
    tool_prompt_block,
)
from mcp_manager.errors import RequestTimedOut, ToolNotFound
from mcp_manager.models import CallToolResult, ImageContent, TextContent, Tool

ECHO = Tool.from_dict({
    "name": "echo",
    "description": "Echo a message",
    "inputSchema": {
        "type": "object",
        "properties": {
            "message": {"type": "string", "description": "What to echo"},
            "times": {"type": "integer"},
        },
        "required": ["message"],
    },
})
SLOW = Tool.from_dict({"name": "slow", "description": ""})


class FakeManager:
    def __init__(self):
        self.calls: list[tuple[str, dict]] = []

    def get_tools(self):
        return [ECHO, SLOW]

    def get_tool(self, name):
        return {"echo": ECHO, "slow": SLOW}.get(name)

    def call_tool_by_name(self, name, arguments=None, timeout=None):
        self.calls.append((name, arguments))
        if name == "slow":
            raise RequestTimedOut("srv", "tools/call", 5.0)
        return CallToolResult(content=[TextContent(text=arguments["message"])])


def test_wrapped_tool_proxies_to_manager() -> None:
    manager = FakeManager()
    tool = mcp_to_langchain_tool(manager, "echo")

    assert tool.name == "echo"
    assert tool.description == "Echo a message"
    assert tool.args_schema["required"] == ["message"]
    assert tool.func(message="hi") == "hi"
    assert manager.calls == [("echo", {"message": "hi"})]


def test_invoke_goes_through_langchain() -> None:
    manager = FakeManager()
    tool = mcp_to_langchain_tool(manager, "echo")

    assert tool.invoke({"message": "via invoke"}) == "via invoke"
    assert manager.calls == [("echo", {"message": "via invoke"})]


def test_transport_errors_come_back_as_text() -> None:
    tool = mcp_to_langchain_tool(FakeManager(), "slow")
    assert tool.description == "MCP tool: slow"
    assert tool.func().startswith("Error calling slow:")


def test_unknown_tool_cannot_be_wrapped() -> None:
    with pytest.raises(ToolNotFound):
        mcp_to_langchain_tool(FakeManager(), "missing")


def test_load_all_tools() -> None:
    tools = load_langchain_tools(FakeManager())
    assert [t.name for t in tools] == ["echo", "slow"]


def test_render_result() -> None:
    result = CallToolResult(
        content=[TextContent(text="chart below"), ImageContent(data="aGk=", mime_type="image/png")],
        is_error=False,
    )
    assert render_result(result) == "chart below\n[image: image/png, 4 base64 chars]"

    failed = CallToolResult(content=[TextContent(text="no such file")], is_error=True)
    assert render_result(failed) == "Error: no such file"


def test_tool_prompt_block() -> None:
    block = tool_prompt_block(ECHO)
    assert block.splitlines()[0] == "## Tool: echo"
    assert "  - message (string): What to echo" in block
    assert block.endswith("  - times (integer, optional):")
