"""
Tests for request generation.
"""

import json

import pytest

from apibola import openapi, rules
from apibola.config import ScanConfig
from apibola.errors import AssemblyError, ConfigurationError, ResolutionError
from apibola.generator import Generator, default_value, find_schema, synthesize
from apibola.openapi import Property


# ============== Test Helpers ==============

class FixedChoice:
    """Deterministic stand-in for the system random source."""

    def __init__(self, index: int = 0):
        self.index = index

    def choice(self, seq):
        return seq[self.index]


def param(name: str, location: str = "path", required: bool = True) -> dict:
    return {"name": name, "in": location, "required": required}


def make_api(paths: dict, schemas: dict = None, servers=("https://api.example.com",), title="Accounts API"):
    """Build a SpecTree from a compact paths mapping."""
    return openapi.from_dict({
        "info": {"title": title},
        "servers": [{"url": s} for s in servers],
        "paths": paths,
        "components": {"schemas": schemas or {}},
    })


def body_op(ref: str = "#/components/schemas/Account", required: bool = True) -> dict:
    return {
        "requestBody": {
            "required": required,
            "content": {"application/json": {"schema": {"$ref": ref}}},
        },
        "responses": {"201": {}},
    }


ACCOUNT_PATHS = {
    "/accounts/{id}": {
        "get": {"parameters": [param("id")], "responses": {"200": {}}},
    },
}


# ============== Fixtures ==============

@pytest.fixture
def api():
    return make_api(ACCOUNT_PATHS)


@pytest.fixture
def config():
    return ScanConfig(no_auth=True)


class TestEndToEnd:
    """Single-operation scenarios."""

    def test_known_identifier(self, api, config):
        store = rules.loads("id=abc-123\n")
        result = synthesize(api, store, config)

        assert result.total == 1
        assert result.missed == {}
        assert len(result.requests) == 1
        request = result.requests[0]
        assert request.method == "GET"
        assert request.path == "/accounts/abc-123"
        assert str(request.full_url) == "https://api.example.com/accounts/abc-123"
        assert request.host == "api.example.com"
        assert request.body == b""

    def test_disallowed_identifier(self, api, config):
        store = rules.loads('id=\n\tdisallow regex path=".*"\n')
        result = synthesize(api, store, config)

        assert result.requests == []
        assert result.missed == {"id": 1}
        assert result.total == 1
        assert "GET /accounts/{id}" in result.failures

    def test_strict_mode_raises(self, api):
        store = rules.loads("other=1\n")

        with pytest.raises(ResolutionError) as exc:
            synthesize(api, store, ScanConfig(strict=True))
        assert exc.value.name == "id"
        assert exc.value.location == "path"

    def test_no_server(self, config):
        api = make_api(ACCOUNT_PATHS, servers=())

        with pytest.raises(ConfigurationError):
            synthesize(api, rules.loads("id=1\n"), config)

    def test_no_server_without_operations(self, config):
        api = make_api({}, servers=())
        result = synthesize(api, rules.loads("id=1\n"), config)

        assert result.total == 0
        assert result.coverage == 0.0

    def test_declaration_ordering(self, config):
        api = make_api({
            "/b/{id}": {"put": {"parameters": [param("id")]}, "get": {"parameters": [param("id")]}},
            "/a/{id}": {"delete": {"parameters": [param("id")]}},
        })
        result = synthesize(api, rules.loads("id=1\n"), config)

        assert [(r.method, r.path) for r in result.requests] == [
            ("PUT", "/b/1"),
            ("GET", "/b/1"),
            ("DELETE", "/a/1"),
        ]

    def test_generation_is_repeatable(self, config):
        api = make_api({
            "/accounts/{id}": {
                "get": {"parameters": [param("id"), param("tenant", "query")]},
                "post": body_op(),
            },
        }, schemas={"Account": {"properties": {"id": {"type": "string"}}}})
        store = rules.loads("id=abc\ntenant=contoso\n")

        def snapshot():
            return [
                (r.method, str(r.full_url), r.headers, r.body)
                for r in synthesize(api, store, config).requests
            ]

        assert snapshot() == snapshot()


class TestCoverage:
    """Total and missed accounting."""

    def test_total_counts_every_operation(self, config):
        api = make_api({
            "/accounts/{id}": {
                "get": {"parameters": [param("id")]},
                "delete": {"parameters": [param("id")]},
            },
            "/tenants/{tenantId}": {"get": {"parameters": [param("tenantId")]}},
        })
        result = synthesize(api, rules.loads("id=1\n"), config)

        assert result.total == 3
        assert len(result.requests) == 2
        assert result.missed == {"tenantId": 1}
        assert result.coverage == pytest.approx(2 / 3)

    def test_miss_counted_per_operation(self, config):
        api = make_api({
            "/accounts/{id}": {
                "get": {"parameters": [param("id")]},
                "put": {"parameters": [param("id")]},
            },
        })
        result = synthesize(api, rules.loads("other=1\n"), config)

        assert result.missed == {"id": 2}
        assert len(result.requests) <= result.total

    def test_optional_parameters_ignored(self, config):
        api = make_api({
            "/accounts": {"get": {"parameters": [param("limit", "query", required=False)]}},
        })
        result = synthesize(api, rules.loads(""), config)

        assert len(result.requests) == 1
        assert result.requests[0].query == ()

    def test_fuzz_without_values_is_a_miss(self, api, config):
        store = rules.loads('id=abc\n\tpermit title="Accounts API"\n\tproperties fuzz\n')
        result = synthesize(api, store, config)

        assert result.requests == []
        assert result.missed == {"id": 1}

    def test_fuzz_value_used(self, api, config):
        store = rules.loads("id=abc\n\tvalues x y z\n\tproperties fuzz\n")
        result = synthesize(api, store, config, rng=FixedChoice(index=1))

        assert result.requests[0].path == "/accounts/y"

    def test_ignored_methods_leave_total(self, config):
        api = make_api({
            "/accounts/{id}": {
                "get": {"parameters": [param("id")]},
                "patch": {"parameters": [param("id")]},
            },
        }).without_methods(["PATCH"])
        result = synthesize(api, rules.loads("id=1\n"), config)

        assert result.total == 1
        assert [r.method for r in result.requests] == ["GET"]


class TestPlacement:
    """Query, header and URL assembly."""

    def test_query_and_header(self, config):
        api = make_api({
            "/accounts": {
                "get": {
                    "parameters": [
                        param("tenant", "query"),
                        param("region", "query"),
                        param("X-Tenant", "header"),
                    ],
                },
            },
        })
        store = rules.loads("tenant=contoso\nregion=eu west\nX-Tenant=contoso\n")
        request = synthesize(api, store, config).requests[0]

        assert request.query == (("tenant", "contoso"), ("region", "eu"))
        assert request.full_url.query_string == "tenant=contoso&region=eu"
        assert request.headers == {"X-Tenant": "contoso"}

    def test_first_value_used(self, api, config):
        store = rules.loads("id=\n\tvalues first second\n")

        assert synthesize(api, store, config).requests[0].path == "/accounts/first"

    def test_server_without_scheme(self, config):
        api = make_api(ACCOUNT_PATHS, servers=("api.example.com:8443",))
        config.proto = "http"
        request = synthesize(api, rules.loads("id=1\n"), config).requests[0]

        assert str(request.url) == "http://api.example.com:8443/accounts/1"
        assert request.host == "api.example.com:8443"

    def test_target_override(self, config):
        api = make_api(ACCOUNT_PATHS).with_target("https://staging.example.com")
        request = synthesize(api, rules.loads("id=1\n"), config).requests[0]

        assert request.host == "staging.example.com"

    def test_first_server_wins(self, config):
        api = make_api(ACCOUNT_PATHS, servers=("https://one.example.com/v1", "https://two.example.com"))
        request = synthesize(api, rules.loads("id=1\n"), config).requests[0]

        assert str(request.url) == "https://one.example.com/v1/accounts/1"

    def test_server_without_host(self, config):
        api = make_api(ACCOUNT_PATHS, servers=("http://",))
        result = synthesize(api, rules.loads("id=1\n"), config)

        assert result.requests == []
        assert "GET /accounts/{id}" in result.failures
        assert result.missed == {}

    def test_server_without_host_strict(self):
        api = make_api(ACCOUNT_PATHS, servers=("http://",))

        with pytest.raises(AssemblyError):
            synthesize(api, rules.loads("id=1\n"), ScanConfig(strict=True))


class TestBodies:
    """JSON body synthesis."""

    SCHEMAS = {
        "Account": {
            "properties": {
                "id": {"type": "string"},
                "created": {"type": "string", "format": "date-time"},
                "kind": {"type": "string", "enum": ["personal", "business"]},
                "tags": {"type": "array", "items": {"type": "string"}},
                "count": {"type": "integer"},
                "active": {"type": "boolean"},
            },
        },
    }

    def test_body_from_schema(self, config):
        api = make_api({"/accounts": {"post": body_op()}}, schemas=self.SCHEMAS)
        result = synthesize(api, rules.loads("id=abc-123\n"), config, rng=FixedChoice(index=1))
        request = result.requests[0]

        assert json.loads(request.body) == {
            "id": "abc-123",
            "created": "00-00-0000",
            "kind": "business",
            "tags": [],
            "count": 0,
            "active": "",
        }
        assert request.headers["Content-Type"] == "application/json"

    def test_property_order_preserved(self, config):
        api = make_api({"/accounts": {"post": body_op()}}, schemas=self.SCHEMAS)
        request = synthesize(api, rules.loads(""), config).requests[0]

        assert list(json.loads(request.body)) == ["id", "created", "kind", "tags", "count", "active"]

    def test_fuzz_property_falls_back_to_default(self, config):
        api = make_api({"/accounts": {"post": body_op()}}, schemas=self.SCHEMAS)
        store = rules.loads("count=\n\tvalues 7 8\n\tproperties fuzz\n")
        request = synthesize(api, store, config).requests[0]

        assert json.loads(request.body)["count"] == 0

    def test_unknown_schema(self, config):
        api = make_api({"/accounts": {"post": body_op("#/components/schemas/Missing")}})
        request = synthesize(api, rules.loads(""), config).requests[0]

        assert request.body == b"{}"

    def test_optional_body_skipped(self, config):
        api = make_api({"/accounts": {"post": body_op(required=False)}}, schemas=self.SCHEMAS)
        request = synthesize(api, rules.loads(""), config).requests[0]

        assert request.body == b""
        assert "Content-Type" not in request.headers

    def test_all_bodies(self, api):
        config = ScanConfig(no_auth=True, all_bodies=True)
        request = synthesize(api, rules.loads("id=1\n"), config).requests[0]

        assert request.body == b"{}"
        assert request.headers["Content-Type"] == "application/json"

    def test_body_does_not_count_misses(self, config):
        api = make_api({"/accounts": {"post": body_op()}}, schemas=self.SCHEMAS)
        result = synthesize(api, rules.loads(""), config)

        assert result.missed == {}


class TestSchemaLookup:
    """Component schema resolution."""

    def test_by_name(self):
        api = make_api({}, schemas={"Account": {"properties": {}}})

        assert find_schema(api, "#/components/schemas/Account").name == "Account"
        assert find_schema(api, "Account").name == "Account"

    def test_by_items_reference(self):
        api = make_api({}, schemas={
            "AccountList": {
                "properties": {"items": {"type": "array", "items": {"$ref": "#/components/schemas/Account"}}},
            },
        })

        assert find_schema(api, "#/components/schemas/Account").name == "AccountList"

    def test_empty_reference(self):
        api = make_api({}, schemas={"": {"properties": {}}})

        assert find_schema(api, "") is None

    def test_no_match(self):
        assert find_schema(make_api({}), "#/components/schemas/Account") is None


class TestDefaults:
    """Type-derived default values."""

    @pytest.mark.parametrize("prop,expected", [
        (Property("d", type="string", format="date-time"), "00-00-0000"),
        (Property("s", type="string"), ""),
        (Property("a", type="array"), []),
        (Property("i", type="integer"), 0),
        (Property("n", type="number"), ""),
        (Property("u"), ""),
    ])
    def test_default_for_type(self, prop, expected):
        assert default_value(prop) == expected

    def test_enum_choice(self):
        prop = Property("kind", type="string", enum=("a", "b", "c"))

        assert default_value(prop, FixedChoice(index=2)) == "c"
        assert default_value(prop) in ("a", "b", "c")


class TestGeneratorLogging:
    """Verbose trace output."""

    def test_trace_goes_to_stderr(self, api, capsys):
        Generator(api, rules.loads("id=1\n"), ScanConfig(verbose=True)).run()
        captured = capsys.readouterr()

        assert "/accounts/{id}:" in captured.err
        assert "path: id" in captured.err
        assert captured.out == ""

    def test_quiet_by_default(self, api, capsys):
        Generator(api, rules.loads("id=1\n"), ScanConfig()).run()

        assert capsys.readouterr().err == ""
