from __future__ import annotations

import io
import json

from mcp_manager.server import (
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    StdioToolServer,
)
from mcp_manager.servers.echo import EchoTool


def _server(stdin: str = "") -> tuple[StdioToolServer, io.StringIO]:
    out = io.StringIO()
    server = StdioToolServer("test", stdin=io.StringIO(stdin), stdout=out)
    server.register(EchoTool())
    return server, out


def test_initialize_and_list() -> None:
    server, _ = _server()
    init = server.handle_message({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}})
    assert init["result"]["serverInfo"]["name"] == "test"
    assert "tools" in init["result"]["capabilities"]

    listed = server.handle_message({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
    (tool,) = listed["result"]["tools"]
    assert tool["name"] == "echo"
    assert tool["inputSchema"]["required"] == ["message"]


def test_notifications_are_not_answered() -> None:
    server, _ = _server()
    assert server.handle_message({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None
    assert server.initialized


def test_call_and_errors() -> None:
    server, _ = _server()
    ok = server.handle_message({
        "jsonrpc": "2.0", "id": 3, "method": "tools/call",
        "params": {"name": "echo", "arguments": {"message": "hey"}},
    })
    assert ok["result"] == {"content": [{"type": "text", "text": "hey"}], "isError": False}

    unknown_tool = server.handle_message({
        "jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": {"name": "nope"},
    })
    assert unknown_tool["error"]["code"] == INVALID_PARAMS

    unknown_method = server.handle_message({"jsonrpc": "2.0", "id": 5, "method": "resources/list"})
    assert unknown_method["error"]["code"] == METHOD_NOT_FOUND


def test_run_loop_answers_each_line() -> None:
    requests = "\n".join([
        json.dumps({"jsonrpc": "2.0", "id": 1, "method": "ping"}),
        "",
        "not json",
        json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
        json.dumps({"jsonrpc": "2.0", "id": 2, "method": "tools/list"}),
    ]) + "\n"
    server, out = _server(requests)
    server.run()

    replies = [json.loads(line) for line in out.getvalue().splitlines()]
    assert [r.get("id") for r in replies] == [1, None, 2]
    assert replies[0]["result"] == {}
    assert replies[1]["error"]["code"] == PARSE_ERROR
