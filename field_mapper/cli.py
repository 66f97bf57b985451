#!/usr/bin/env python3
"""
cli.py

Map the header row of a spreadsheet (CSV/XLSX) onto an import entity and
write the mapping diagnostics.

Usage:
  field-mapper --input residuos_2024.xlsx --entity waste_logs \\
      --company-id 6f1c... --output-dir out

Outputs:
  <stem>_mapping_report.csv          one row per header
  <stem>_field_mapping_report.json   result + coverage + missing required fields
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Sequence

import pandas as pd

from .config import Settings
from .matcher import build_mapper
from .report import build_report_payload, write_report


def read_headers(path: Path, sep: str = ",") -> List[str]:
    """Header row only; data rows are never loaded."""
    if path.suffix.lower() in [".xlsx", ".xls"]:
        df = pd.read_excel(path, nrows=0)
    else:
        df = pd.read_csv(path, nrows=0, sep=sep)
    return [str(h) for h in df.columns]


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Map spreadsheet headers to an import entity")
    parser.add_argument("--input", required=True, help="CSV/XLSX file whose header row is mapped")
    parser.add_argument("--entity", required=True, help="Target entity, e.g. waste_logs, suppliers")
    parser.add_argument("--sep", default=",", help="CSV delimiter (e.g. ';' for Excel pt-BR exports)")
    parser.add_argument("--company-id", default="", help="Company whose learned aliases apply")
    parser.add_argument("--output-dir", default="out", help="Output directory")
    parser.add_argument("--output-prefix", help="Override output stem")
    parser.add_argument("--aliases", help="Alias dictionary YAML (default: packaged dictionary)")
    parser.add_argument("--history", help="Mapping history YAML for learned aliases")
    parser.add_argument(
        "--no-ai",
        action="store_true",
        help="Skip the AI fallback even if credentials are configured",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler()],
    )
    args = _parse_args(argv)

    input_path = Path(args.input)
    if not input_path.exists():
        raise FileNotFoundError(input_path)

    settings = Settings.from_env()
    if args.no_ai:
        settings.ai_enabled = False
    if args.aliases:
        settings.aliases_path = Path(args.aliases)
    if args.history:
        settings.history_path = Path(args.history)

    mapper = build_mapper(settings)
    if not mapper.dictionary.has_entity(args.entity):
        logging.warning(
            f"Entity '{args.entity}' is not in the alias dictionary "
            f"(known: {', '.join(mapper.dictionary.entities())})"
        )

    headers = read_headers(input_path, args.sep)
    result = mapper.auto_map(headers, args.entity, args.company_id)

    payload = build_report_payload(result, mapper, args.entity, args.company_id, str(input_path))
    write_report(payload, result, Path(args.output_dir), args.output_prefix or input_path.stem)

    coverage = payload["coverage"]
    print("\n" + "=" * 60)
    print(f"FIELD MAPPING REPORT: {input_path.name} -> {args.entity}")
    print("=" * 60)
    print(f"MAPPED:     {coverage['mapped']}/{coverage['headers']} ({coverage['mapped_pct']:.1f}%)")
    for m in result.mappings:
        print(f"  '{m.source_field}' -> {m.target_field} ({m.confidence:.2f})")
    print(f"\nSUGGESTED:  {coverage['suggested']}")
    for s in result.suggestions:
        targets = ", ".join(f"{t.field} ({t.confidence:.2f})" for t in s.possible_targets)
        print(f"  ? '{s.source_field}' -> {targets}")
    print(f"\nUNMAPPED:   {coverage['unmapped']}")
    if payload["missing_required"]:
        print(f"\nMISSING REQUIRED FIELDS: {', '.join(payload['missing_required'])}")
    print("=" * 60 + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
