"""
Mapping orchestrator: spreadsheet headers -> target entity fields.

Deterministic pass (normalise + alias scoring) first; headers it cannot
place with confidence are sent once, as a batch, to the optional AI
fallback. The AI pass only ever adds suggestions for human review, it never
promotes a header into `mappings`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .aliases import AliasDictionary, FieldAliases, load_alias_dictionary
from .config import (
    LEARNED_ALIAS_MIN_USAGE,
    MAPPING_THRESHOLD,
    SCORE_PRECISION,
    SUGGESTION_THRESHOLD,
    Settings,
)
from .history import MappingHistory
from .llm_resolver import AIFallbackResolver, AIMapping, AnthropicCompletionClient
from .normalizer import normalize
from .scorer import score

logger = logging.getLogger(__name__)

STATUS_MAPPED = "mapped"
STATUS_SUGGESTED = "suggested"
STATUS_UNMAPPED = "unmapped"


# ---------------------------------------------------------------------------
# RESULT TYPES
# ---------------------------------------------------------------------------


@dataclass
class FieldMapping:
    source_field: str
    target_field: str
    confidence: float

    def to_dict(self) -> dict:
        return {
            "sourceField": self.source_field,
            "targetField": self.target_field,
            "confidence": self.confidence,
        }


@dataclass
class TargetCandidate:
    field: str
    confidence: float

    def to_dict(self) -> dict:
        return {"field": self.field, "confidence": self.confidence}


@dataclass
class Suggestion:
    source_field: str
    possible_targets: List[TargetCandidate] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sourceField": self.source_field,
            "possibleTargets": [t.to_dict() for t in self.possible_targets],
        }


@dataclass
class MappingResult:
    """
    Every input header lands in exactly one of `mappings` or `unmapped`.
    Headers in `suggestions` are also listed in `unmapped`.
    """

    mappings: List[FieldMapping] = field(default_factory=list)
    unmapped: List[str] = field(default_factory=list)
    suggestions: List[Suggestion] = field(default_factory=list)

    def suggestion_for(self, source_field: str) -> Optional[Suggestion]:
        return next((s for s in self.suggestions if s.source_field == source_field), None)

    def to_dict(self) -> dict:
        return {
            "mappings": [m.to_dict() for m in self.mappings],
            "unmapped": list(self.unmapped),
            "suggestions": [s.to_dict() for s in self.suggestions],
        }


# ---------------------------------------------------------------------------
# MAPPER
# ---------------------------------------------------------------------------


class FieldMapper:
    def __init__(
        self,
        dictionary: AliasDictionary,
        resolver: Optional[AIFallbackResolver] = None,
        history: Optional[MappingHistory] = None,
        mapping_threshold: float = MAPPING_THRESHOLD,
        suggestion_threshold: float = SUGGESTION_THRESHOLD,
        learned_min_usage: int = LEARNED_ALIAS_MIN_USAGE,
    ) -> None:
        self.dictionary = dictionary
        self.resolver = resolver
        self.history = history
        self.mapping_threshold = mapping_threshold
        self.suggestion_threshold = suggestion_threshold
        self.learned_min_usage = learned_min_usage

    def classify(self, confidence: float) -> str:
        if confidence >= self.mapping_threshold:
            return STATUS_MAPPED
        if confidence >= self.suggestion_threshold:
            return STATUS_SUGGESTED
        return STATUS_UNMAPPED

    @staticmethod
    def best_match(
        normalized_header: str, fields: Sequence[FieldAliases]
    ) -> Tuple[Optional[str], float]:
        """Best (field, confidence) for a normalised header; earlier fields win ties."""
        best_field: Optional[str] = None
        best_conf = 0.0
        for spec in fields:
            conf = round(score(normalized_header, spec.patterns), SCORE_PRECISION)
            if conf > best_conf:
                best_field, best_conf = spec.name, conf
                if conf >= 1.0:
                    break
        return best_field, best_conf

    def aliases_for(self, target_entity: str, company_id: str = "") -> AliasDictionary:
        """Dictionary to score against, including the company's learned aliases."""
        if self.history is None or not company_id or not self.dictionary.has_entity(target_entity):
            return self.dictionary
        learned = self.history.learned_aliases(
            company_id, target_entity, min_usage=self.learned_min_usage
        )
        if learned:
            logger.info(
                "Using learned aliases for company=%s entity=%s: %s",
                company_id, target_entity, sorted(learned),
            )
        return self.dictionary.with_learned_aliases(target_entity, learned)

    def auto_map(
        self,
        source_headers: Sequence[str],
        target_entity: str,
        company_id: str = "",
    ) -> MappingResult:
        dictionary = self.aliases_for(target_entity, company_id)
        fields = dictionary.fields(target_entity)
        if not fields:
            logger.warning("Unknown target entity '%s'; all headers left unmapped.", target_entity)

        result = MappingResult()
        for header in source_headers:
            header = str(header)
            target, conf = self.best_match(normalize(header), fields)
            status = self.classify(conf) if target else STATUS_UNMAPPED

            if status == STATUS_MAPPED:
                result.mappings.append(FieldMapping(header, target, conf))
                logger.debug("'%s' -> '%s' (%.4f)", header, target, conf)
                continue

            result.unmapped.append(header)
            if status == STATUS_SUGGESTED:
                logger.warning("LOW CONFIDENCE: '%s' -> '%s' (%.4f), needs review", header, target, conf)
                result.suggestions.append(
                    Suggestion(header, [TargetCandidate(target, conf)])
                )

        total = len(result.mappings) + len(result.unmapped)
        logger.info(
            "Mapped %d/%d headers for entity '%s' (%d suggestions, %d unmapped).",
            len(result.mappings), total, target_entity,
            len(result.suggestions), len(result.unmapped),
        )

        if self.resolver is not None and fields and result.unmapped:
            self._apply_ai_fallback(result, [f.name for f in fields], target_entity, company_id)

        return result

    def _apply_ai_fallback(
        self,
        result: MappingResult,
        target_fields: List[str],
        target_entity: str,
        company_id: str,
    ) -> None:
        pending = list(dict.fromkeys(result.unmapped))
        try:
            ai_mappings = self.resolver.resolve_unmapped(
                pending, target_fields, target_entity, company_id=company_id
            )
        except Exception as exc:
            logger.error("AI fallback failed for entity '%s': %s", target_entity, exc)
            return

        added = merge_ai_suggestions(result, ai_mappings)
        logger.info("AI fallback added %d suggestion(s) for entity '%s'.", added, target_entity)


def merge_ai_suggestions(result: MappingResult, ai_mappings: Sequence[AIMapping]) -> int:
    """Fold AI proposals into `result.suggestions`. Returns the number of targets added."""
    unmapped = set(result.unmapped)
    added = 0
    for ai in ai_mappings:
        if ai.source_field not in unmapped:
            continue
        existing = result.suggestion_for(ai.source_field)
        if existing is None:
            result.suggestions.append(
                Suggestion(ai.source_field, [TargetCandidate(ai.target_field, ai.confidence)])
            )
            added += 1
        elif all(t.field != ai.target_field for t in existing.possible_targets):
            existing.possible_targets.append(TargetCandidate(ai.target_field, ai.confidence))
            added += 1
    return added


def build_mapper(settings: Settings) -> FieldMapper:
    """Wire a FieldMapper from runtime settings."""
    dictionary = load_alias_dictionary(settings.aliases_path)

    resolver: Optional[AIFallbackResolver] = None
    if settings.ai_available:
        client = AnthropicCompletionClient(
            api_key=settings.api_key or None,
            auth_token=settings.auth_token or None,
            base_url=settings.base_url,
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
        )
        resolver = AIFallbackResolver(client)
    elif settings.ai_enabled:
        logger.warning("AI fallback enabled but no credential configured; running deterministic only.")

    history = MappingHistory(settings.history_path) if settings.history_path else None

    return FieldMapper(
        dictionary,
        resolver=resolver,
        history=history,
        mapping_threshold=settings.mapping_threshold,
        suggestion_threshold=settings.suggestion_threshold,
    )
