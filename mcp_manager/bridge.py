"""
Bridge between MCP tool servers and LangChain.

Wraps the tools of running servers as LangChain StructuredTools so an
agent can call them like any other tool.

Usage:
    from mcp_manager.bridge import load_langchain_tools

    manager.start_all()
    tools = load_langchain_tools(manager)
    agent = create_react_agent(model, tools)
"""

from __future__ import annotations

import json
from typing import Any

from langchain_core.tools import StructuredTool

from mcp_manager.errors import MCPServerError, ToolNotFound
from mcp_manager.manager import ToolServerManager
from mcp_manager.models import CallToolResult, ImageContent, TextContent, Tool


def render_result(result: CallToolResult) -> str:
    """Flatten a tool result into the text an LLM sees."""
    parts = []
    for block in result.content:
        if isinstance(block, TextContent):
            parts.append(block.text)
        elif isinstance(block, ImageContent):
            parts.append(f"[image: {block.mime_type}, {len(block.data)} base64 chars]")
    text = "\n".join(parts)
    return f"Error: {text}" if result.is_error else text


def mcp_to_langchain_tool(
    manager: ToolServerManager,
    tool_name: str,
    description_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that proxies to an MCP tool.

    The returned tool, when invoked by an agent, routes through
    ``manager.call_tool_by_name`` and returns the result as text.
    Failures come back as text too, so the agent can react to them.

    Raises:
        ToolNotFound: if no running server declares ``tool_name``.
    """
    tool = manager.get_tool(tool_name)
    if tool is None:
        raise ToolNotFound(tool_name)

    description = description_override or tool.description or f"MCP tool: {tool_name}"

    def _call_mcp(**kwargs: Any) -> str:
        """Proxy call to MCP tool server."""
        try:
            return render_result(manager.call_tool_by_name(tool_name, kwargs))
        except MCPServerError as e:
            return f"Error calling {tool_name}: {e}"

    return StructuredTool.from_function(
        func=_call_mcp,
        name=tool_name,
        description=description,
        args_schema=_args_schema(tool),
    )


def load_langchain_tools(manager: ToolServerManager) -> list[StructuredTool]:
    """LangChain wrappers for every tool of every running server."""
    return [mcp_to_langchain_tool(manager, tool.name) for tool in manager.get_tools()]


def tool_prompt_block(tool: Tool) -> str:
    """Markdown description of a tool for system prompts and listings."""
    lines = [f"## Tool: {tool.name}", tool.description, ""]
    properties = tool.input_schema.properties or {}
    required = set(tool.input_schema.required or [])
    if properties:
        lines.append("Parameters:")
        for pname, details in properties.items():
            ptype = details.type or "any"
            flag = "" if pname in required else ", optional"
            pdesc = details.description or details.title or ""
            lines.append(f"  - {pname} ({ptype}{flag}): {pdesc}")

    return "\n".join(lines).rstrip()


def _args_schema(tool: Tool) -> dict[str, Any]:
    schema = json.loads(json.dumps(tool.raw_schema)) if tool.raw_schema else {}
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    schema.setdefault("title", tool.name)
    schema.setdefault("description", tool.description)
    return schema
