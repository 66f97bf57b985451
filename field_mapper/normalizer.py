import re
import unicodedata
from typing import List

_PARENS_RE = re.compile(r"\([^)]*\)")
_DISALLOWED_RE = re.compile(r"[^a-z0-9\s]")
_SPACES_RE = re.compile(r"\s+")


def normalize(raw: str) -> str:
    """Canonical form of a column header, used only for matching.

    "Quantidade (kg)" -> "quantidade", "Tipo de Resíduo" -> "tipo de residuo".
    """
    if raw is None:
        return ""
    s = str(raw).lower()
    # decompose, then drop the combining marks (accents, cedilla, tilde)
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = _PARENS_RE.sub(" ", s)
    s = _DISALLOWED_RE.sub("", s)
    s = _SPACES_RE.sub(" ", s)
    return s.strip()


def tokens(raw: str) -> List[str]:
    return normalize(raw).split()
