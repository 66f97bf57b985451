"""
Alias dictionary: target entity -> target field -> known header spellings.

Loaded from YAML (packaged default: data/aliases.yaml). Both shapes are
accepted per field:

  waste_logs:
    quantity:                       # long form
      required: true
      aliases: [quantidade, qtd]
    cost: [custo, valor]            # shorthand list
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import yaml

from .config import DEFAULT_ALIASES_PATH
from .normalizer import normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldAliases:
    name: str
    aliases: Tuple[str, ...]
    required: bool = False

    @property
    def patterns(self) -> Tuple[str, ...]:
        """Aliases plus the column name itself, spaced and as normalised (`collectiondate`)."""
        return self.aliases + (self.name.replace("_", " "), self.name.replace("_", ""))


class AliasDictionary:
    """Read-only alias table. Derive variants with with_learned_aliases()."""

    def __init__(self, entities: Mapping[str, Sequence[FieldAliases]]) -> None:
        self._entities: Dict[str, Tuple[FieldAliases, ...]] = {
            entity: tuple(fields) for entity, fields in entities.items()
        }

    def __repr__(self) -> str:
        return f"AliasDictionary(entities={self.entities()!r})"

    def entities(self) -> List[str]:
        return list(self._entities.keys())

    def has_entity(self, entity: str) -> bool:
        return entity in self._entities

    def fields(self, entity: str) -> Tuple[FieldAliases, ...]:
        """Fields of *entity* in dictionary order; unknown entities have none."""
        return self._entities.get(entity, ())

    def field_names(self, entity: str) -> List[str]:
        return [f.name for f in self.fields(entity)]

    def required_fields(self, entity: str) -> List[str]:
        return [f.name for f in self.fields(entity) if f.required]

    def with_learned_aliases(
        self, entity: str, learned: Mapping[str, Iterable[str]]
    ) -> "AliasDictionary":
        """
        Return a new dictionary where *entity* also carries *learned* aliases.
        Aliases already present (by normalised form) are not repeated and
        learned aliases for fields the entity does not define are ignored.
        """
        if not learned or entity not in self._entities:
            return self

        merged: List[FieldAliases] = []
        for spec in self._entities[entity]:
            extra = list(learned.get(spec.name, []) or [])
            if not extra:
                merged.append(spec)
                continue
            seen = {normalize(a) for a in spec.aliases}
            aliases = list(spec.aliases)
            for alias in extra:
                norm = normalize(alias)
                if norm and norm not in seen:
                    seen.add(norm)
                    aliases.append(str(alias))
            merged.append(replace(spec, aliases=tuple(aliases)))

        unknown = set(learned) - {f.name for f in merged}
        if unknown:
            logger.debug("Ignoring learned aliases for unknown %s fields: %s", entity, sorted(unknown))

        entities = dict(self._entities)
        entities[entity] = tuple(merged)
        return AliasDictionary(entities)

    @classmethod
    def from_mapping(cls, data: Mapping, source: str = "<mapping>") -> "AliasDictionary":
        if not isinstance(data, Mapping):
            raise ValueError(
                f"Alias dictionary {source} must be a mapping at top level, got {type(data).__name__}"
            )

        entities: Dict[str, List[FieldAliases]] = {}
        for entity, fields in data.items():
            if not isinstance(fields, Mapping):
                logger.warning("Skipping entity %r in %s: expected a mapping of fields.", entity, source)
                continue

            specs: List[FieldAliases] = []
            for field_name, meta in fields.items():
                # meta can be a list (shorthand) or a dict with 'aliases'
                if isinstance(meta, list):
                    aliases, required = meta, False
                elif isinstance(meta, Mapping):
                    aliases = meta.get("aliases", []) or []
                    required = bool(meta.get("required", False))
                elif meta is None:
                    aliases, required = [], False
                else:
                    logger.warning(
                        "Skipping %s.%s in %s: unexpected type %s.",
                        entity, field_name, source, type(meta).__name__,
                    )
                    continue
                specs.append(
                    FieldAliases(
                        name=str(field_name),
                        aliases=tuple(str(a) for a in aliases if a is not None),
                        required=required,
                    )
                )
            entities[str(entity)] = specs

        return cls(entities)


def load_alias_dictionary(path: Optional[Path] = None) -> AliasDictionary:
    path = Path(path) if path is not None else DEFAULT_ALIASES_PATH
    if not path.exists():
        raise FileNotFoundError(path)

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    dictionary = AliasDictionary.from_mapping(data, source=str(path))
    logger.info(
        "Loaded alias dictionary from %s (%d entities, %d fields)",
        path,
        len(dictionary.entities()),
        sum(len(dictionary.fields(e)) for e in dictionary.entities()),
    )
    return dictionary
