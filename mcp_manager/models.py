"""
MCP data models: tool descriptions and tool call results.

Payloads arrive as plain JSON trees (dict / list / str / int / float /
bool / None). These dataclasses are the decoded, immutable forms the
rest of the package and its callers work with.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from mcp_manager.errors import MalformedMessage

JSONValue = Union[None, bool, int, float, str, List["JSONValue"], Dict[str, "JSONValue"]]


def _as_flag(value: Any) -> bool | None:
    # Servers send both booleans and 0/1 for flags
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    raise ValueError(f"expected a boolean or number, got {value!r}")


def _type_name(value: Any) -> str | None:
    # JSON Schema allows "type": ["string", "null"]
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, list) and value:
        return next((t for t in value if t != "null"), value[0])
    raise ValueError(f"invalid schema type {value!r}")


@dataclass(frozen=True)
class PropertyDetails:
    type: str | None = None
    title: str | None = None
    description: str | None = None
    items: dict[str, Any] | None = None
    any_of: list[dict[str, Any]] | None = None
    default: JSONValue = None
    enum: list[JSONValue] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PropertyDetails":
        if not isinstance(data, dict):
            raise ValueError(f"property schema must be an object, got {data!r}")
        return cls(
            type=_type_name(data.get("type")),
            title=data.get("title"),
            description=data.get("description"),
            items=data.get("items"),
            any_of=data.get("anyOf"),
            default=data.get("default"),
            enum=data.get("enum"),
        )


@dataclass(frozen=True)
class InputSchema:
    type: str = "object"
    properties: dict[str, PropertyDetails] | None = None
    required: list[str] | None = None
    additional_properties: bool | None = None
    schema: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InputSchema":
        if not isinstance(data, dict):
            raise ValueError(f"inputSchema must be an object, got {data!r}")
        properties = data.get("properties")
        if properties is not None:
            if not isinstance(properties, dict):
                raise ValueError("inputSchema.properties must be an object")
            properties = {
                name: PropertyDetails.from_dict(details)
                for name, details in properties.items()
            }
        required = data.get("required")
        if required is not None and not isinstance(required, list):
            raise ValueError("inputSchema.required must be a list")
        return cls(
            type=_type_name(data.get("type")) or "object",
            properties=properties,
            required=[str(r) for r in required] if required is not None else None,
            additional_properties=_as_flag(data.get("additionalProperties")),
            schema=data.get("$schema"),
        )


@dataclass(frozen=True)
class Tool:
    """A named, schema-described capability exposed by one server."""
    name: str
    description: str
    input_schema: InputSchema
    raw_schema: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Any) -> "Tool":
        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            raise MalformedMessage(data, "tool entry needs a string 'name'")
        schema = data.get("inputSchema") or {"type": "object"}
        try:
            input_schema = InputSchema.from_dict(schema)
        except ValueError as e:
            raise MalformedMessage(data, f"tool '{data['name']}': {e}") from e
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            input_schema=input_schema,
            raw_schema=schema,
        )

    def to_dict(self, server_name: str | None = None) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.raw_schema,
        }
        if server_name is not None:
            entry["server"] = server_name
        return entry


@dataclass(frozen=True)
class TextContent:
    text: str
    type: str = "text"


@dataclass(frozen=True)
class ImageContent:
    data: str  # base64
    mime_type: str
    type: str = "image"


ContentBlock = Union[TextContent, ImageContent]


def content_from_dict(data: Any) -> ContentBlock:
    if not isinstance(data, dict):
        raise MalformedMessage(data, "content block must be an object")
    kind = data.get("type")
    if kind == "text" and isinstance(data.get("text"), str):
        return TextContent(text=data["text"])
    if kind == "image" and isinstance(data.get("data"), str):
        mime_type = data.get("mimeType")
        if not isinstance(mime_type, str):
            raise MalformedMessage(data, "image content needs 'mimeType'")
        return ImageContent(data=data["data"], mime_type=mime_type)
    raise MalformedMessage(data, f"unsupported content type: {kind!r}")


@dataclass(frozen=True)
class CallToolResult:
    content: list[ContentBlock]
    is_error: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "CallToolResult":
        if not isinstance(data, dict):
            raise MalformedMessage(data, "tools/call result must be an object")
        content = data.get("content")
        if not isinstance(content, list):
            raise MalformedMessage(data, "tools/call result needs a 'content' list")
        try:
            is_error = _as_flag(data.get("isError")) or False
        except ValueError as e:
            raise MalformedMessage(data, str(e)) from e
        return cls(
            content=[content_from_dict(block) for block in content],
            is_error=is_error,
        )

    @property
    def text(self) -> str:
        """All text blocks joined by newlines."""
        return "\n".join(b.text for b in self.content if isinstance(b, TextContent))

    def to_dict(self) -> dict[str, Any]:
        blocks: list[dict[str, Any]] = []
        for block in self.content:
            if isinstance(block, TextContent):
                blocks.append({"type": "text", "text": block.text})
            else:
                blocks.append({"type": "image", "data": block.data, "mimeType": block.mime_type})
        return {"content": blocks, "isError": self.is_error}
