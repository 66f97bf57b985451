"""
Azure HTTP triggers for the field mapper.

    POST /api/field-mapper           {sourceHeaders, targetEntity, companyId}
                                     -> {mappings, unmapped, suggestions}
    POST /api/field-mapper/confirm   {companyId, targetEntity, mappings: [{sourceField, targetField}]}
                                     -> {recorded}

Any failure answers 500 with {"error": "<message>"}.

App settings (see field_mapper/config.py):
    ANTHROPIC_API_KEY / FIELD_MAPPER_LLM_AUTH_TOKEN   enable the AI fallback
    FIELD_MAPPER_AI_ENABLED                           set to false to force deterministic only
    FIELD_MAPPER_HISTORY_PATH                         YAML file for learned per-company aliases
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import azure.functions as func

from field_mapper.config import Settings
from field_mapper.http import CORS_HEADERS, handle_auto_map, handle_confirm
from field_mapper.matcher import FieldMapper, build_mapper

app = func.FunctionApp(http_auth_level=func.AuthLevel.FUNCTION)

_mapper: Optional[FieldMapper] = None


def _get_mapper() -> FieldMapper:
    """Build the mapper once per worker; the alias dictionary is read-only."""
    global _mapper
    if _mapper is None:
        settings = Settings.from_env()
        logging.getLogger().setLevel(settings.log_level)
        _mapper = build_mapper(settings)
        logging.info(
            f"Field mapper ready: entities={_mapper.dictionary.entities()} "
            f"ai={'on' if _mapper.resolver else 'off'} "
            f"history={'on' if _mapper.history else 'off'}"
        )
    return _mapper


def _respond(status_code: int, payload: Optional[dict]) -> func.HttpResponse:
    body = json.dumps(payload, ensure_ascii=False) if payload is not None else ""
    return func.HttpResponse(
        body,
        status_code=status_code,
        headers=CORS_HEADERS,
        mimetype="application/json",
        charset="utf-8",
    )


@app.route(route="field-mapper", methods=["POST", "OPTIONS"])
def field_mapper(req: func.HttpRequest) -> func.HttpResponse:
    if req.method == "OPTIONS":
        return _respond(200, None)
    try:
        mapper = _get_mapper()
    except Exception as exc:
        logging.exception("Could not initialise field mapper")
        return _respond(500, {"error": str(exc)})
    status_code, payload = handle_auto_map(req.get_body(), mapper)
    return _respond(status_code, payload)


@app.route(route="field-mapper/confirm", methods=["POST", "OPTIONS"])
def field_mapper_confirm(req: func.HttpRequest) -> func.HttpResponse:
    if req.method == "OPTIONS":
        return _respond(200, None)
    try:
        mapper = _get_mapper()
    except Exception as exc:
        logging.exception("Could not initialise field mapper")
        return _respond(500, {"error": str(exc)})
    status_code, payload = handle_confirm(req.get_body(), mapper)
    return _respond(status_code, payload)
