"""
OpenAPI document loader.

Reduces an OpenAPI 3 JSON document to the parts request generation needs:
servers, the ordered path → method → operation tree, and component schemas.
"""

import json
from dataclasses import dataclass, field, replace
from typing import Optional

from .config import HTTP_METHODS, JSON_CONTENT_TYPE
from .errors import ConfigurationError


@dataclass(frozen=True)
class Parameter:
    name: str
    location: str  # path, query, header, cookie
    required: bool = False


@dataclass(frozen=True)
class RequestBody:
    required: bool = False
    ref: str = ""  # $ref of the application/json schema, if any


@dataclass(frozen=True)
class Property:
    name: str
    type: str = ""
    format: str = ""
    enum: tuple = ()
    items_ref: str = ""


@dataclass(frozen=True)
class Schema:
    name: str
    properties: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Operation:
    """One method on one path."""
    path: str
    method: str  # lower case, as declared
    summary: str = ""
    parameters: tuple = ()
    request_body: RequestBody = field(default_factory=RequestBody)
    responses: tuple = ()  # declared status codes, as strings

    def required(self, location: str) -> list[Parameter]:
        """Required parameters placed in ``location``, in declaration order."""
        return [
            p for p in self.parameters
            if p.required and p.location.lower() == location
        ]


@dataclass(frozen=True)
class SpecTree:
    title: str = ""
    servers: tuple = ()
    paths: dict = field(default_factory=dict)  # path -> {method: Operation}
    schemas: dict = field(default_factory=dict)  # name -> Schema

    def operations(self) -> list[Operation]:
        """Every operation in path-then-method declaration order."""
        return [op for methods in self.paths.values() for op in methods.values()]

    def with_target(self, target: str) -> "SpecTree":
        """Replace the server list with a single forced target."""
        return replace(self, servers=(target,))

    def without_methods(self, methods) -> "SpecTree":
        """Drop the given HTTP methods from every path."""
        drop = {m.lower() for m in methods}
        paths = {
            path: {m: op for m, op in ops.items() if m.lower() not in drop}
            for path, ops in self.paths.items()
        }
        return replace(self, paths=paths)


def _parse_parameter(raw: dict) -> Optional[Parameter]:
    if not isinstance(raw, dict) or "name" not in raw:
        return None
    return Parameter(
        name=str(raw["name"]),
        location=str(raw.get("in", "")),
        required=bool(raw.get("required", False)),
    )


def _merge_parameters(path_level: list, op_level: list) -> tuple:
    """Operation parameters override path parameters with the same name and location."""
    merged: dict[tuple, Parameter] = {}
    for raw in list(path_level) + list(op_level):
        param = _parse_parameter(raw)
        if param is not None:
            merged[(param.name, param.location)] = param
    return tuple(merged.values())


def _parse_request_body(raw: Optional[dict]) -> RequestBody:
    if not isinstance(raw, dict):
        return RequestBody()
    content = raw.get("content") or {}
    schema = (content.get(JSON_CONTENT_TYPE) or {}).get("schema") or {}
    return RequestBody(
        required=bool(raw.get("required", False)),
        ref=str(schema.get("$ref", "")),
    )


def _parse_property(name: str, raw: dict) -> Property:
    if not isinstance(raw, dict):
        raw = {}
    items = raw.get("items") or {}
    return Property(
        name=name,
        type=str(raw.get("type", "")),
        format=str(raw.get("format", "")),
        enum=tuple(str(e) for e in raw.get("enum") or ()),
        items_ref=str(items.get("$ref", "")) if isinstance(items, dict) else "",
    )


def _parse_schemas(components: dict) -> dict:
    schemas = {}
    for name, raw in (components.get("schemas") or {}).items():
        props = (raw or {}).get("properties") or {}
        schemas[name] = Schema(
            name=name,
            properties={p: _parse_property(p, v) for p, v in props.items()},
        )
    return schemas


def from_dict(doc: dict) -> SpecTree:
    """Build a SpecTree from a decoded OpenAPI document."""
    if not isinstance(doc, dict):
        raise ConfigurationError("API document must be a JSON object")

    info = doc.get("info") or {}
    servers = tuple(
        s["url"] for s in doc.get("servers") or [] if isinstance(s, dict) and s.get("url")
    )

    paths = {}
    for path, item in (doc.get("paths") or {}).items():
        if not isinstance(item, dict):
            continue
        shared = item.get("parameters") or []
        methods = {}
        for method, op in item.items():
            if method.lower() not in HTTP_METHODS or not isinstance(op, dict):
                continue
            methods[method] = Operation(
                path=path,
                method=method,
                summary=str(op.get("summary", "")),
                parameters=_merge_parameters(shared, op.get("parameters") or []),
                request_body=_parse_request_body(op.get("requestBody")),
                responses=tuple(str(code) for code in (op.get("responses") or {})),
            )
        paths[path] = methods

    return SpecTree(
        title=str(info.get("title", "")),
        servers=servers,
        paths=paths,
        schemas=_parse_schemas(doc.get("components") or {}),
    )


def loads(text: str) -> SpecTree:
    """Parse an OpenAPI JSON document from a string."""
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"could not parse API → {e}") from e
    return from_dict(doc)


def load(filepath: str) -> SpecTree:
    """Parse an OpenAPI JSON document from a file."""
    try:
        with open(filepath, "r") as f:
            return loads(f.read())
    except OSError as e:
        raise ConfigurationError(f"could not open API file {filepath}: {e}") from e
