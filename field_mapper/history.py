"""
Per-company mapping history.

Confirmed header -> field pairs are counted per company and entity. Pairs
confirmed often enough become learned aliases that the deterministic pass
uses on the next import, so the same spreadsheet layout stops needing
review or an AI call.

File layout (YAML):

  <company_id>:
    <entity>:
      <target_field>:
        <source header>: <usage count>
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import yaml

from .config import LEARNED_ALIAS_MIN_USAGE

logger = logging.getLogger(__name__)

# One lock per history file, shared by every MappingHistory in the process
_PATH_LOCKS: Dict[str, threading.Lock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(key, threading.Lock())


class MappingHistory:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = _lock_for(self.path)

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    def record(self, company_id: str, entity: str, source_field: str, target_field: str) -> int:
        """Count one confirmed use of source_field -> target_field. Returns the new count."""
        with self._lock:
            data = self._load()
            count = self._increment(data, company_id, entity, source_field, target_field)
            self._save(data)
        return count

    def record_confirmed(
        self,
        company_id: str,
        entity: str,
        pairs: Iterable[Tuple[str, str]],
        allowed_fields: Optional[Iterable[str]] = None,
    ) -> int:
        """
        Record a batch of reviewer-confirmed (source, target) pairs in one
        write. Targets outside *allowed_fields* are skipped.
        Returns the number of pairs recorded.
        """
        allowed = set(allowed_fields) if allowed_fields is not None else None
        pairs = list(pairs)
        with self._lock:
            data = self._load()
            recorded = 0
            for source_field, target_field in pairs:
                source_field = str(source_field or "").strip()
                if not source_field or not target_field:
                    continue
                if allowed is not None and target_field not in allowed:
                    logger.warning(
                        "Not recording '%s' -> '%s': '%s' is not a field of %s.",
                        source_field, target_field, target_field, entity,
                    )
                    continue
                count = self._increment(data, company_id, entity, source_field, target_field)
                logger.info(
                    "Mapping recorded for company=%s: '%s' -> %s.%s (uses=%d)",
                    company_id, source_field, entity, target_field, count,
                )
                recorded += 1

            if recorded:
                self._save(data)
        return recorded

    def learned_aliases(
        self,
        company_id: str,
        entity: str,
        min_usage: int = LEARNED_ALIAS_MIN_USAGE,
    ) -> Dict[str, List[str]]:
        """target_field -> source headers used at least *min_usage* times, most used first."""
        entity_node = (self._load().get(str(company_id)) or {}).get(entity) or {}
        learned: Dict[str, List[str]] = {}
        for target_field, sources in entity_node.items():
            if not isinstance(sources, dict):
                continue
            ranked = sorted(
                ((str(src), int(n)) for src, n in sources.items() if isinstance(n, int) and n >= min_usage),
                key=lambda item: item[1],
                reverse=True,
            )
            if ranked:
                learned[str(target_field)] = [src for src, _ in ranked]
        return learned

    def usage_count(self, company_id: str, entity: str, source_field: str, target_field: str) -> int:
        node = (((self._load().get(str(company_id)) or {}).get(entity) or {}).get(target_field)) or {}
        count = node.get(source_field, 0) if isinstance(node, dict) else 0
        return count if isinstance(count, int) else 0

    # ------------------------------------------------------------------
    # INTERNAL
    # ------------------------------------------------------------------

    @staticmethod
    def _increment(data: dict, company_id: str, entity: str, source_field: str, target_field: str) -> int:
        company = data.setdefault(str(company_id), {})
        fields = company.setdefault(entity, {})
        sources = fields.setdefault(target_field, {})
        current = sources.get(source_field, 0)
        sources[source_field] = (current if isinstance(current, int) else 0) + 1
        return sources[source_field]

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Could not read mapping history %s: %s; treating as empty.", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Mapping history %s is not a mapping; treating as empty.", self.path)
            return {}
        return data

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        header_comment = (
            "# Field mapping history (confirmed header -> field uses per company)\n"
            f"# Last updated: {timestamp}\n"
        )
        text = header_comment + yaml.safe_dump(
            data, sort_keys=True, allow_unicode=True, default_flow_style=False
        )
        # temp file in the same directory, then an atomic swap
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
