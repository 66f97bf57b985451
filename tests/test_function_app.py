"""
tests/test_function_app.py

HTTP triggers as the Functions host calls them: preflight, CORS headers,
JSON bodies and the 500 path when the mapper cannot be built.
"""

from __future__ import annotations

import json

import azure.functions as func
import pytest

import function_app
from field_mapper.aliases import load_alias_dictionary
from field_mapper.matcher import FieldMapper


def _user_functions() -> dict:
    return {f.get_function_name(): f.get_user_function() for f in function_app.app.get_functions()}


def _request(method: str, route: str, payload=None) -> func.HttpRequest:
    body = json.dumps(payload).encode("utf-8") if payload is not None else b""
    return func.HttpRequest(method=method, url=f"/api/{route}", body=body)


@pytest.fixture
def mapper(monkeypatch) -> FieldMapper:
    built = FieldMapper(load_alias_dictionary())
    monkeypatch.setattr(function_app, "_mapper", built)
    return built


def test_routes_are_registered() -> None:
    assert set(_user_functions()) == {"field_mapper", "field_mapper_confirm"}


@pytest.mark.parametrize("name, route", [("field_mapper", "field-mapper"), ("field_mapper_confirm", "field-mapper/confirm")])
def test_options_preflight(name, route, mapper) -> None:
    resp = _user_functions()[name](_request("OPTIONS", route))
    assert resp.status_code == 200
    assert resp.get_body() == b""
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert "POST" in resp.headers["Access-Control-Allow-Methods"]


def test_auto_map_trigger(mapper) -> None:
    resp = _user_functions()["field_mapper"](
        _request(
            "POST",
            "field-mapper",
            {"sourceHeaders": ["Quantidade (kg)", "XYZ123"], "targetEntity": "waste_logs", "companyId": "c1"},
        )
    )
    assert resp.status_code == 200
    assert resp.mimetype == "application/json"
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    payload = json.loads(resp.get_body())
    assert payload["mappings"][0]["targetField"] == "quantity"
    assert payload["unmapped"] == ["XYZ123"]


def test_bad_body_is_500_with_cors(mapper) -> None:
    resp = _user_functions()["field_mapper"](_request("POST", "field-mapper", {"targetEntity": "waste_logs"}))
    assert resp.status_code == 500
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert set(json.loads(resp.get_body())) == {"error"}


def test_confirm_without_history_is_500(mapper) -> None:
    resp = _user_functions()["field_mapper_confirm"](
        _request("POST", "field-mapper/confirm", {"companyId": "c1", "targetEntity": "waste_logs", "mappings": []})
    )
    assert resp.status_code == 500
    assert "history" in json.loads(resp.get_body())["error"].lower()


@pytest.mark.parametrize("name, route", [("field_mapper", "field-mapper"), ("field_mapper_confirm", "field-mapper/confirm")])
def test_init_failure_is_500(name, route, monkeypatch) -> None:
    for key in ("FIELD_MAPPER_LLM_TIMEOUT", "FIELD_MAPPER_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(function_app, "_mapper", None)

    def broken(settings):
        raise FileNotFoundError("aliases.yaml")

    monkeypatch.setattr(function_app, "build_mapper", broken)
    resp = _user_functions()[name](_request("POST", route, {"sourceHeaders": [], "targetEntity": "waste_logs"}))
    assert resp.status_code == 500
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert json.loads(resp.get_body()) == {"error": "aliases.yaml"}
    assert function_app._mapper is None
