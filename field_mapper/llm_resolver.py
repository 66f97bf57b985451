"""
AI fallback for headers the deterministic pass could not map.

One batched completion per call. The reply must be JSON of the form

  {"mappings": [{"sourceField": ..., "targetField": ... | null,
                 "confidence": 0..1, "transformation": ...}]}

and is validated before use; anything else is treated as "no suggestions".
Transport errors are raised to the caller (FieldMapper logs and drops them).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, List, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import (
    DEFAULT_LLM_MAX_TOKENS,
    DEFAULT_LLM_MODEL,
    DEFAULT_LLM_TEMPERATURE,
    DEFAULT_LLM_TIMEOUT,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


# ---------------------------------------------------------------------------
# PORT + ADAPTER
# ---------------------------------------------------------------------------


class CompletionClient(Protocol):
    def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


class AnthropicCompletionClient:
    """
    Chat completion over the Anthropic SDK. Accepts either an API key or a
    bearer auth token (gateway deployments, with base_url).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        auth_token: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = DEFAULT_LLM_MODEL,
        temperature: float = DEFAULT_LLM_TEMPERATURE,
        max_tokens: int = DEFAULT_LLM_MAX_TOKENS,
        timeout: float = DEFAULT_LLM_TIMEOUT,
    ) -> None:
        self.api_key = api_key
        self.auth_token = auth_token
        self.base_url = base_url
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = None  # lazy-init

    def _get_client(self):
        if self._client is None:
            import anthropic

            # single attempt: the fallback is best-effort
            self._client = anthropic.Anthropic(
                api_key=self.api_key,
                auth_token=self.auth_token,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        client = self._get_client()
        message = client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return message.content[0].text


# ---------------------------------------------------------------------------
# RESPONSE SCHEMA
# ---------------------------------------------------------------------------


class _AIMappingItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_field: str = Field(alias="sourceField")
    target_field: Optional[str] = Field(default=None, alias="targetField")
    confidence: float = 0.0
    transformation: Optional[str] = None


class _AIMappingResponse(BaseModel):
    mappings: List[_AIMappingItem]


@dataclass
class AIMapping:
    source_field: str
    target_field: str
    confidence: float
    transformation: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# RESOLVER
# ---------------------------------------------------------------------------


class AIFallbackResolver:
    def __init__(self, client: CompletionClient) -> None:
        self.client = client

    def resolve_unmapped(
        self,
        unmapped: Sequence[str],
        target_fields: Sequence[str],
        entity_type: str,
        company_id: Optional[str] = None,
    ) -> List[AIMapping]:
        if not unmapped or not target_fields:
            return []

        user_prompt = build_prompt(unmapped, target_fields, entity_type, company_id)
        logger.info(
            "Requesting AI mapping for %d header(s) into '%s'.", len(unmapped), entity_type
        )
        raw_text = self.client.complete(SYSTEM_PROMPT, user_prompt)

        try:
            parsed = extract_json(raw_text)
            response = _AIMappingResponse.model_validate(parsed)
        except (ValueError, ValidationError) as exc:
            logger.warning("Discarding AI mapping response: %s", exc)
            return []

        allowed_targets = set(target_fields)
        allowed_sources = set(unmapped)
        results: List[AIMapping] = []
        for item in response.mappings:
            if item.target_field is None:
                continue
            if item.target_field not in allowed_targets:
                logger.warning(
                    "AI suggested unknown field '%s' for header '%s'; dropping.",
                    item.target_field, item.source_field,
                )
                continue
            if item.source_field not in allowed_sources:
                logger.warning("AI answered for a header that was not asked: '%s'; dropping.", item.source_field)
                continue
            results.append(
                AIMapping(
                    source_field=item.source_field,
                    target_field=item.target_field,
                    confidence=max(0.0, min(float(item.confidence), 1.0)),
                    transformation=item.transformation,
                )
            )
        return results


def extract_json(text: str) -> Any:
    """
    Parse JSON from a model reply that may be wrapped in a markdown fence or
    surrounded by prose. Raises ValueError when nothing parseable is found.
    """
    if text is None:
        raise ValueError("Empty AI response")
    text = text.strip()

    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    start = min([p for p in (text.find("{"), text.find("[")) if p >= 0], default=-1)
    end = max(text.rfind("}"), text.rfind("]"))
    if start == -1 or end < start:
        raise ValueError(f"No JSON object found in AI response. Snippet: {text[:200]!r}")

    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ValueError(f"JSON decode error ({exc}). Snippet: {text[:200]!r}") from exc


def build_prompt(
    unmapped: Sequence[str],
    target_fields: Sequence[str],
    entity_type: str,
    company_id: Optional[str] = None,
) -> str:
    header_lines = "\n".join(f"  - {h}" for h in unmapped)
    field_lines = "\n".join(f"  - {f}" for f in target_fields)
    context = f"Company: {company_id}\n" if company_id else ""
    return (
        f"{context}"
        f"TARGET ENTITY: {entity_type}\n\n"
        f"SPREADSHEET HEADERS TO MAP ({len(unmapped)}):\n{header_lines}\n\n"
        f"CANDIDATE TARGET FIELDS ({len(target_fields)}):\n{field_lines}\n\n"
        'Return ONLY JSON: {"mappings": [{"sourceField": "<header>", '
        '"targetField": "<field or null>", "confidence": <0..1>, '
        '"transformation": "<optional note>"}]}'
    )


SYSTEM_PROMPT = """You map spreadsheet column headers to database fields for an ESG data import.
Headers are usually in Portuguese, sometimes English, and may carry units or abbreviations.

RULES:
1. Only use target fields from the provided list. Never invent fields.
2. If no field is a reasonable match, return null for targetField.
3. Use one object per header, with sourceField copied exactly as given.
4. confidence is between 0 and 1; below 0.5 prefer null.
5. transformation is optional: a short note when values need conversion (e.g. "kg -> t").

Return strict JSON only, no markdown and no explanation outside the JSON."""
