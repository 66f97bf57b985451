"""Mapping report artifacts (CSV per header + JSON payload) for CLI runs."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

import pandas as pd

from .aliases import AliasDictionary
from .matcher import STATUS_MAPPED, STATUS_SUGGESTED, STATUS_UNMAPPED, FieldMapper, MappingResult

logger = logging.getLogger(__name__)


def report_rows(result: MappingResult) -> List[dict]:
    """One row per header with its best target (mapped or suggested)."""
    rows: List[dict] = []
    for m in result.mappings:
        rows.append(
            {
                "source_field": m.source_field,
                "target_field": m.target_field,
                "confidence": m.confidence,
                "status": STATUS_MAPPED,
            }
        )
    for header in result.unmapped:
        sugg = result.suggestion_for(header)
        if sugg and sugg.possible_targets:
            top = max(sugg.possible_targets, key=lambda t: t.confidence)
            rows.append(
                {
                    "source_field": header,
                    "target_field": top.field,
                    "confidence": top.confidence,
                    "status": STATUS_SUGGESTED,
                }
            )
        else:
            rows.append(
                {
                    "source_field": header,
                    "target_field": "",
                    "confidence": 0.0,
                    "status": STATUS_UNMAPPED,
                }
            )
    return rows


def missing_required(result: MappingResult, dictionary: AliasDictionary, entity: str) -> List[str]:
    mapped = {m.target_field for m in result.mappings}
    return [f for f in dictionary.required_fields(entity) if f not in mapped]


def build_report_payload(
    result: MappingResult,
    mapper: FieldMapper,
    entity: str,
    company_id: str,
    input_file: str,
) -> Dict:
    total = len(result.mappings) + len(result.unmapped)
    return {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "input_file": input_file,
        "target_entity": entity,
        "company_id": company_id,
        "known_entity": mapper.dictionary.has_entity(entity),
        "thresholds": {
            "MAPPING_THRESHOLD": mapper.mapping_threshold,
            "SUGGESTION_THRESHOLD": mapper.suggestion_threshold,
        },
        "ai_fallback": mapper.resolver is not None,
        "coverage": {
            "headers": total,
            "mapped": len(result.mappings),
            "suggested": len(result.suggestions),
            "unmapped": len(result.unmapped),
            "mapped_pct": round(len(result.mappings) / total * 100, 1) if total else 0.0,
        },
        "missing_required": missing_required(result, mapper.dictionary, entity),
        "result": result.to_dict(),
    }


def write_report(payload: Dict, result: MappingResult, out_dir: Path, stem: str) -> Dict[str, Path]:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    csv_path = out_dir / f"{stem}_mapping_report.csv"
    json_path = out_dir / f"{stem}_field_mapping_report.json"

    pd.DataFrame(
        report_rows(result), columns=["source_field", "target_field", "confidence", "status"]
    ).to_csv(csv_path, index=False)
    json_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    logger.info("Wrote: %s", csv_path)
    logger.info("Wrote: %s", json_path)
    return {"csv": csv_path, "json": json_path}
