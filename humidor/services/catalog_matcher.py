"""
Local fuzzy matching against the bundled cigar reference catalog.

The catalog is loaded once and indexed in memory. Each entry is scored on
three fields (brand, brand + line, band description) with a weighted blend of
rapidfuzz token/partial scores plus a small metaphone bonus, so word order,
partial fragments and OCR-style typos are tolerated.

The matcher never raises: a missing or malformed dataset yields a matcher
that always returns None.
"""

import json
import logging
import unicodedata
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

import jellyfish
from rapidfuzz import fuzz

from ..config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogEntry:
    """One cigar line from the bundled reference dataset."""
    brand: str
    line: str
    band_description: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.brand} {self.line}".strip()


@dataclass
class CatalogMatch:
    """A catalog entry with the score that selected it."""
    entry: CatalogEntry
    score: float
    field: str  # "brand", "name" or "band"


@dataclass(frozen=True)
class _IndexedEntry:
    entry: CatalogEntry
    brand: str
    name: str
    band: str
    name_metaphone: str


def _normalize(text: str) -> str:
    """Lowercase, strip accents and collapse punctuation to spaces."""
    text = unicodedata.normalize("NFKD", text or "")
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = "".join(c if c.isalnum() else " " for c in text.lower())
    return " ".join(text.split())


def _metaphone(text: str) -> str:
    try:
        return jellyfish.metaphone(text[:20])  # Limit for performance
    except Exception:
        return ""


def load_catalog(path: Path) -> list[CatalogEntry]:
    """
    Load the bundled catalog.

    Expected shape: ``{"<brand>": {"cigars": [{"line": ..., "bandDescription": ...}]}}``.
    Malformed brands or lines are skipped; an unreadable file yields [].
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning(f"Cigar catalog not found at {path}; local matching disabled")
        return []
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Cigar catalog unreadable ({e}); local matching disabled")
        return []

    if not isinstance(data, dict):
        logger.warning("Cigar catalog root is not an object; local matching disabled")
        return []

    entries = []
    for brand, payload in data.items():
        cigars = payload.get("cigars") if isinstance(payload, dict) else None
        if not isinstance(cigars, list):
            continue
        for cigar in cigars:
            if not isinstance(cigar, dict) or not cigar.get("line"):
                continue
            entries.append(CatalogEntry(
                brand=str(brand).strip(),
                line=str(cigar["line"]).strip(),
                band_description=str(cigar.get("bandDescription") or "").strip(),
            ))
    return entries


class CigarCatalogMatcher:
    """
    In-memory fuzzy index over the bundled cigar catalog.

    Pure with respect to its dataset: match() has no side effects.
    """

    def __init__(
        self,
        entries: Optional[list[CatalogEntry]] = None,
        catalog_path: Optional[str] = None,
        threshold: float = Config.CATALOG_MATCH_THRESHOLD,
    ):
        """
        Initialize matcher.

        Args:
            entries: Catalog entries to index. Loaded from catalog_path when None.
            catalog_path: Path to the catalog JSON. Defaults to Config.catalog_path().
            threshold: Minimum weighted similarity (0-1) for a match.
        """
        if entries is None:
            entries = load_catalog(Path(catalog_path or Config.catalog_path()))
        self.threshold = threshold
        self._index = self._build_index(entries)
        logger.info(f"Cigar catalog indexed: {len(self._index)} lines")

    @staticmethod
    def _build_index(entries: list[CatalogEntry]) -> list[_IndexedEntry]:
        index = []
        for entry in entries:
            name = _normalize(entry.full_name)
            index.append(_IndexedEntry(
                entry=entry,
                brand=_normalize(entry.brand),
                name=name,
                band=_normalize(entry.band_description),
                name_metaphone=_metaphone(name),
            ))
        return index

    def __len__(self) -> int:
        return len(self._index)

    def _score(self, query: str, candidate: str) -> float:
        """Weighted blend of token-set, partial and token-sort similarity (0-1)."""
        if not candidate:
            return 0.0
        return (
            Config.WEIGHT_TOKEN_SET * fuzz.token_set_ratio(query, candidate) / 100.0
            + Config.WEIGHT_PARTIAL * fuzz.partial_ratio(query, candidate) / 100.0
            + Config.WEIGHT_TOKEN_SORT * fuzz.token_sort_ratio(query, candidate) / 100.0
        )

    def _score_entry(self, query: str, query_metaphone: str, item: _IndexedEntry) -> tuple[float, str]:
        name_score = self._score(query, item.name) * Config.FIELD_WEIGHT_LINE
        if query_metaphone and item.name_metaphone:
            if query_metaphone == item.name_metaphone:
                name_score += Config.PHONETIC_BONUS
            elif query_metaphone[:3] == item.name_metaphone[:3]:
                name_score += Config.PHONETIC_BONUS / 2

        scored = [
            (name_score, "name"),
            (self._score(query, item.brand) * Config.FIELD_WEIGHT_BRAND, "brand"),
            (self._score(query, item.band) * Config.FIELD_WEIGHT_BAND, "band"),
        ]
        score, field = max(scored, key=lambda s: s[0])
        return min(1.0, score), field

    def best_match(self, query: str) -> Optional[CatalogMatch]:
        """Best-scoring entry above threshold, with its score."""
        normalized = _normalize(query)
        if len(normalized) < Config.CATALOG_MIN_QUERY_LENGTH or not self._index:
            return None

        query_metaphone = _metaphone(normalized)
        best: Optional[CatalogMatch] = None
        for item in self._index:
            score, field = self._score_entry(normalized, query_metaphone, item)
            if best is None or score > best.score:
                best = CatalogMatch(entry=item.entry, score=score, field=field)

        if best is None or best.score < self.threshold:
            return None
        logger.debug(f"Catalog match '{query[:40]}' -> {best.entry.full_name} ({best.score:.2f} via {best.field})")
        return best

    def match(self, query: str) -> Optional[CatalogEntry]:
        """
        Resolve a vision-derived snippet to a catalog entry.

        Returns:
            The best entry clearing the threshold, or None.
        """
        try:
            found = self.best_match(query)
        except Exception as e:
            logger.warning(f"Catalog match failed for '{query[:40]}': {e}")
            return None
        return found.entry if found else None


@lru_cache(maxsize=1)
def get_catalog_matcher() -> CigarCatalogMatcher:
    """Process-wide matcher built from the bundled catalog."""
    return CigarCatalogMatcher()
