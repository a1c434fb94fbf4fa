"""
Request Generator

Walks every path and method of an API description, fills required
parameters from the rule database and assembles one request per operation
that can be satisfied.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Optional

from yarl import URL

from .config import ScanConfig, SCHEMA_REF_PREFIX, JSON_CONTENT_TYPE, PLACEHOLDER_DATE
from .errors import AssemblyError, ConfigurationError, EncodingError, ResolutionError
from .openapi import Operation, Property, Schema, SpecTree
from .reporter import print_debug
from .resolver import Context, Result, resolve, system_random
from .rules import RuleStore

# RFC 9110 method token
METHOD_TOKEN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


@dataclass(frozen=True)
class GeneratedRequest:
    """A fully resolved request, tied to the operation it was built from."""
    method: str
    url: URL  # scheme, host and resolved path
    operation: Operation
    query: tuple = ()
    headers: dict = field(default_factory=dict)
    body: bytes = b""

    @property
    def path(self) -> str:
        return self.url.path

    @property
    def host(self) -> str:
        if self.url.port and not self.url.is_default_port():
            return f"{self.url.host}:{self.url.port}"
        return self.url.host or ""

    @property
    def full_url(self) -> URL:
        return self.url.with_query(list(self.query)) if self.query else self.url


@dataclass
class SynthesisResult:
    requests: list = field(default_factory=list)
    missed: dict = field(default_factory=dict)  # parameter name -> operations missed
    total: int = 0
    failures: dict = field(default_factory=dict)  # "METHOD path" -> reason

    @property
    def coverage(self) -> float:
        return len(self.requests) / self.total if self.total else 0.0


class _Skip(Exception):
    """Abandon the current operation."""


def default_value(prop: Property, rng=None):
    """Synthetic body value derived from a property's declared type."""
    rng = rng or system_random
    if prop.type == "string":
        if prop.format == "date-time":
            return PLACEHOLDER_DATE
        if prop.enum:
            return rng.choice(list(prop.enum))
        return ""
    if prop.type == "array":
        return []
    if prop.type == "integer":
        return 0
    return ""


def find_schema(api: SpecTree, ref: str) -> Optional[Schema]:
    """
    Locate the component schema a request body refers to.

    A schema matches by its own name, or when one of its properties has
    items referring to ``ref``. The ``#/components/schemas/`` prefix is
    optional on either side.
    """
    if not ref:
        return None
    bare = ref[len(SCHEMA_REF_PREFIX):] if ref.startswith(SCHEMA_REF_PREFIX) else ref
    wanted = (ref, bare)

    for name, schema in api.schemas.items():
        if name in wanted:
            return schema
        for prop in schema.properties.values():
            if prop.items_ref in wanted:
                return schema
    return None


class Generator:
    """
    Builds requests for every operation in an API description.
    """

    def __init__(self, api: SpecTree, store: RuleStore, config: Optional[ScanConfig] = None, rng=None):
        """
        Args:
            api: Parsed API description
            store: Rule database with identifier values
            config: Strict/all-bodies/proto/verbose settings
            rng: Randomness provider for fuzz selection and enum defaults
        """
        self.api = api
        self.store = store
        self.config = config or ScanConfig()
        self.rng = rng or system_random

    def log(self, message: str):
        """Emit a trace line (if verbose mode is enabled)."""
        if self.config.verbose:
            print_debug(message)

    def run(self) -> SynthesisResult:
        """
        Run synthesis over every path and method, in declaration order.

        Raises:
            ConfigurationError: no server configured, or a bad regex rule
            ResolutionError: strict mode and a required parameter missed
            AssemblyError: strict mode and a request could not be built
        """
        result = SynthesisResult()

        for path, methods in self.api.paths.items():
            self.log(f"{path}:")

            for method, operation in methods.items():
                result.total += 1
                self.log(f"\t{method}:")
                self.log(f"\t\t{operation.summary}")

                try:
                    request = self.build(operation, result)
                except _Skip:
                    continue
                except AssemblyError as e:
                    if self.config.strict:
                        raise
                    result.failures[f"{method.upper()} {path}"] = str(e)
                    continue

                result.requests.append(request)

        return result

    def build(self, operation: Operation, result: SynthesisResult) -> GeneratedRequest:
        """Build the request for one operation."""
        context = Context(path=operation.path, title=self.api.title)

        paths = operation.required("path")
        queries = operation.required("query")
        headers = operation.required("header")
        for param in paths + queries + headers:
            self.log(f"\t\t{param.location}: {param.name}")

        if not self.api.servers:
            raise ConfigurationError("need at least one server to call, none provided")

        resolved = operation.path
        for param in paths:
            value = self._lookup(param.name, "path", context, operation, result)
            resolved = resolved.replace(f"{{{param.name}}}", value)

        body = b""
        request_headers = {}
        if operation.request_body.required or self.config.all_bodies:
            body = self.build_body(operation, context)
            request_headers["Content-Type"] = JSON_CONTENT_TYPE

        method = operation.method.upper()
        url = self._url(resolved, method)

        query = []
        for param in queries:
            query.append((param.name, self._lookup(param.name, "query", context, operation, result)))

        for param in headers:
            request_headers[param.name] = self._lookup(param.name, "header", context, operation, result)

        return GeneratedRequest(
            method=method,
            url=url,
            operation=operation,
            query=tuple(query),
            headers=request_headers,
            body=body,
        )

    def build_body(self, operation: Operation, context: Context) -> bytes:
        """
        Build a JSON object body from the operation's schema.

        Known identifiers are filled from the rule database; anything else
        falls back to a default for its declared type. Unknown schemas
        yield ``{}``.
        """
        obj = {}
        schema = find_schema(self.api, operation.request_body.ref)
        if schema is not None:
            for name, prop in schema.properties.items():
                res = resolve(self.store, name, context, self.rng)
                if res.result is Result.FOUND and res.values:
                    obj[name] = res.first
                else:
                    obj[name] = default_value(prop, self.rng)

        try:
            return json.dumps(obj).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise EncodingError(f"could not encode body → {e}") from e

    def _lookup(self, name: str, location: str, context: Context, operation: Operation, result: SynthesisResult) -> str:
        res = resolve(self.store, name, context, self.rng)
        if res.result in (Result.FOUND, Result.NEEDS_FUZZ) and res.values:
            return res.first

        if self.config.strict:
            raise ResolutionError(name, location)

        result.missed[name] = result.missed.get(name, 0) + 1
        key = f"{operation.method.upper()} {operation.path}"
        result.failures[key] = f"could not find {location} parameter → {name}"
        raise _Skip()

    def _url(self, resolved: str, method: str) -> URL:
        if not METHOD_TOKEN.match(method):
            raise AssemblyError(f"invalid method {method!r}")

        server = self.api.servers[0]
        if "://" not in server:
            server = f"{self.config.proto}://{server.lstrip('/')}"

        try:
            url = URL(server.rstrip("/") + resolved)
        except (TypeError, ValueError) as e:
            raise AssemblyError(f"could not build request → {e}") from e

        if not url.is_absolute() or not url.host:
            raise AssemblyError(f"could not build request → no host in {url}")
        return url


def synthesize(api: SpecTree, store: RuleStore, config: Optional[ScanConfig] = None, rng=None) -> SynthesisResult:
    """Build every satisfiable request in ``api``."""
    return Generator(api, store, config, rng).run()
