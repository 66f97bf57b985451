"""
Request handling behind the HTTP triggers in function_app.py.

Kept free of azure.functions so it can be driven directly in tests:
each handler takes the raw body bytes and returns (status_code, payload).
"""

from __future__ import annotations

import json
import logging
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .matcher import FieldMapper

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


class AutoMapRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_headers: List[str] = Field(alias="sourceHeaders")
    target_entity: str = Field(alias="targetEntity")
    company_id: str = Field(default="", alias="companyId")


class ConfirmedPair(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_field: str = Field(alias="sourceField")
    target_field: str = Field(alias="targetField")


class ConfirmMappingsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company_id: str = Field(alias="companyId", min_length=1)
    target_entity: str = Field(alias="targetEntity")
    mappings: List[ConfirmedPair]


def _error(exc: Exception) -> Tuple[int, dict]:
    logger.exception("field-mapper request failed: %s", exc)
    return 500, {"error": str(exc)}


def handle_auto_map(body: bytes, mapper: FieldMapper) -> Tuple[int, dict]:
    try:
        request = AutoMapRequest.model_validate(json.loads(body or b"null"))
        logger.info(
            "auto-map: %d headers -> %s (company=%s)",
            len(request.source_headers), request.target_entity, request.company_id or "-",
        )
        result = mapper.auto_map(request.source_headers, request.target_entity, request.company_id)
        return 200, result.to_dict()
    except Exception as exc:
        return _error(exc)


def handle_confirm(body: bytes, mapper: FieldMapper) -> Tuple[int, dict]:
    try:
        if mapper.history is None:
            raise RuntimeError("Mapping history is not configured (set FIELD_MAPPER_HISTORY_PATH)")
        request = ConfirmMappingsRequest.model_validate(json.loads(body or b"null"))
        recorded = mapper.history.record_confirmed(
            request.company_id,
            request.target_entity,
            [(m.source_field, m.target_field) for m in request.mappings],
            allowed_fields=mapper.dictionary.field_names(request.target_entity),
        )
        return 200, {"recorded": recorded}
    except Exception as exc:
        return _error(exc)
