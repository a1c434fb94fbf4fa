"""
Tests for the OpenAPI document loader.
"""

import json

import pytest

from apibola import openapi
from apibola.errors import ConfigurationError
from apibola.openapi import Parameter


DOC = {
    "openapi": "3.0.1",
    "info": {"title": "Accounts API", "version": "1.0"},
    "servers": [{"url": "https://api.example.com"}, {"url": "https://backup.example.com"}],
    "paths": {
        "/accounts/{id}": {
            "parameters": [
                {"name": "id", "in": "path", "required": True},
                {"name": "X-Trace", "in": "header", "required": True},
            ],
            "get": {
                "summary": "Fetch an account",
                "parameters": [
                    {"name": "X-Trace", "in": "header", "required": False},
                    {"name": "expand", "in": "query"},
                ],
                "responses": {"200": {}, "404": {}},
            },
            "delete": {"responses": {"204": {}}},
            "summary": "not an operation",
        },
        "/accounts": {
            "post": {
                "requestBody": {
                    "required": True,
                    "content": {
                        "application/json": {"schema": {"$ref": "#/components/schemas/Account"}}
                    },
                },
                "responses": {"201": {}},
            },
        },
    },
    "components": {
        "schemas": {
            "Account": {
                "properties": {
                    "id": {"type": "string"},
                    "kind": {"type": "string", "enum": ["personal", "business"]},
                    "owners": {"type": "array", "items": {"$ref": "#/components/schemas/Owner"}},
                },
            },
        },
    },
}


@pytest.fixture
def api():
    return openapi.from_dict(DOC)


class TestDocument:
    """Top-level document fields."""

    def test_title_and_servers(self, api):
        assert api.title == "Accounts API"
        assert api.servers == ("https://api.example.com", "https://backup.example.com")

    def test_paths_and_methods_in_declaration_order(self, api):
        assert list(api.paths) == ["/accounts/{id}", "/accounts"]
        assert list(api.paths["/accounts/{id}"]) == ["get", "delete"]
        assert [(op.method, op.path) for op in api.operations()] == [
            ("get", "/accounts/{id}"),
            ("delete", "/accounts/{id}"),
            ("post", "/accounts"),
        ]

    def test_responses_kept_as_strings(self, api):
        assert api.paths["/accounts/{id}"]["get"].responses == ("200", "404")

    def test_missing_sections(self):
        api = openapi.from_dict({"paths": {}})

        assert api.title == ""
        assert api.servers == ()
        assert api.operations() == []

    def test_non_object_document(self):
        with pytest.raises(ConfigurationError):
            openapi.from_dict(["not", "a", "document"])

    def test_invalid_json(self):
        with pytest.raises(ConfigurationError):
            openapi.loads("{not json")

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "api.json"
        path.write_text(json.dumps(DOC))

        assert openapi.load(str(path)).title == "Accounts API"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            openapi.load(str(tmp_path / "missing.json"))


class TestParameters:
    """Parameter merging and filtering."""

    def test_operation_overrides_path_level(self, api):
        op = api.paths["/accounts/{id}"]["get"]

        assert op.parameters == (
            Parameter("id", "path", True),
            Parameter("X-Trace", "header", False),
            Parameter("expand", "query", False),
        )
        assert op.required("path") == [Parameter("id", "path", True)]
        assert op.required("header") == []
        assert op.required("query") == []

    def test_path_level_inherited(self, api):
        op = api.paths["/accounts/{id}"]["delete"]

        assert [p.name for p in op.required("header")] == ["X-Trace"]


class TestSchemas:
    """Request bodies and component schemas."""

    def test_request_body_ref(self, api):
        body = api.paths["/accounts"]["post"].request_body

        assert body.required
        assert body.ref == "#/components/schemas/Account"

    def test_no_request_body(self, api):
        body = api.paths["/accounts/{id}"]["get"].request_body

        assert not body.required
        assert body.ref == ""

    def test_properties(self, api):
        props = api.schemas["Account"].properties

        assert list(props) == ["id", "kind", "owners"]
        assert props["kind"].enum == ("personal", "business")
        assert props["owners"].type == "array"
        assert props["owners"].items_ref == "#/components/schemas/Owner"


class TestAdjustments:
    """Load-stage adjustments."""

    def test_with_target(self, api):
        forced = api.with_target("staging.example.com")

        assert forced.servers == ("staging.example.com",)
        assert api.servers[0] == "https://api.example.com"

    def test_without_methods_is_case_insensitive(self, api):
        trimmed = api.without_methods(["DELETE", "Post"])

        assert [op.method for op in trimmed.operations()] == ["get"]
        assert "/accounts" in trimmed.paths
        assert len(api.operations()) == 3
