"""
Resolve free-text imported service names to catalog services.

Matching metric
---------------
Both sides are normalized (case-folded, trimmed, whitespace collapsed).
Equal normalized names are an ``exact`` match. Otherwise every catalog name is
scored with ``difflib.SequenceMatcher(None, a, b).ratio()`` after folding
diacritics (``Šišanje`` -> ``sisanje``, ``đ`` -> ``dj``), since salons type
service names with and without them. The best score wins; ties go to the
shorter catalog name, then the lexically smaller one, then the lower id. A
winning score at or above the threshold (0.90 by default) is a ``fuzzy``
match, anything lower is ``none``.
"""
import logging
import re
import unicodedata
from difflib import SequenceMatcher
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from app.core.config import settings
from app.domain.imports.errors import ServiceUnmatched
from app.domain.imports.models import CatalogService, MatchKind, ServiceMapping

logger = logging.getLogger(__name__)

Scorer = Callable[[str, str], float]

# Letters NFKD does not decompose.
_EXTRA_FOLDS = str.maketrans({"đ": "dj", "ø": "o", "ł": "l", "ß": "ss", "æ": "ae"})


def normalize_service_name(name: str) -> str:
    """Case-fold, trim and collapse whitespace."""
    return re.sub(r"\s+", " ", str(name)).strip().casefold()


def fold_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.translate(_EXTRA_FOLDS))
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def calculate_similarity(imported: str, catalog: str) -> float:
    """Similarity ratio between two normalized service names (0.0 to 1.0)."""
    return SequenceMatcher(None, fold_diacritics(imported), fold_diacritics(catalog)).ratio()


class ServiceMatcher:
    """
    Matches imported service names against one salon's active services.

    Results are cached per normalized name, so every row referencing the same
    name reuses one ServiceMapping.
    """

    def __init__(
        self,
        catalog: Sequence[CatalogService],
        *,
        threshold: Optional[float] = None,
        scorer: Optional[Scorer] = None,
        enabled: bool = True,
    ):
        self.threshold = settings.service_match_threshold if threshold is None else threshold
        self.scorer = scorer or calculate_similarity
        self.enabled = enabled
        self._catalog: List[Tuple[str, CatalogService]] = sorted(
            ((normalize_service_name(service.name), service) for service in catalog),
            key=lambda item: (len(item[0]), item[0], item[1].id),
        )
        self._exact: Dict[str, CatalogService] = {}
        for normalized, service in self._catalog:
            self._exact.setdefault(normalized, service)
        self._cache: Dict[str, ServiceMapping] = {}

    def match(self, imported_name: str) -> ServiceMapping:
        normalized = normalize_service_name(imported_name)
        cached = self._cache.get(normalized)
        if cached is not None:
            return cached

        mapping = self._resolve(imported_name, normalized)
        self._cache[normalized] = mapping
        return mapping

    def _resolve(self, imported_name: str, normalized: str) -> ServiceMapping:
        if not self.enabled or not normalized:
            return ServiceMapping(imported_name, None, None, MatchKind.NONE)

        exact = self._exact.get(normalized)
        if exact is not None:
            return ServiceMapping(imported_name, exact.id, exact.name, MatchKind.EXACT, 1.0)

        best: Optional[CatalogService] = None
        best_score = -1.0
        # The catalog is pre-sorted by the tie-break order, so only a strictly
        # higher score replaces the current winner.
        for catalog_name, service in self._catalog:
            score = self.scorer(normalized, catalog_name)
            if score > best_score:
                best, best_score = service, score

        if best is not None and best_score >= self.threshold:
            logger.debug("Fuzzy service match '%s' -> '%s' (%.3f)", imported_name, best.name, best_score)
            return ServiceMapping(imported_name, best.id, best.name, MatchKind.FUZZY, round(best_score, 4))

        unmatched = ServiceUnmatched(imported_name, round(best_score, 4) if best is not None else None)
        logger.info("%s (best score %s)", unmatched.message, unmatched.best_score)
        return ServiceMapping(imported_name, None, None, MatchKind.NONE, unmatched.best_score)

    def match_all(self, names: Iterable[str]) -> Dict[str, ServiceMapping]:
        """
        Resolve every distinct name.

        Returns:
            Mapping of normalized imported name -> ServiceMapping, in first-seen order.
        """
        mappings: Dict[str, ServiceMapping] = {}
        for name in names:
            normalized = normalize_service_name(name)
            if normalized and normalized not in mappings:
                mappings[normalized] = self.match(name)
        return mappings


def summarize_mappings(mappings: Dict[str, ServiceMapping]) -> Tuple[int, int]:
    """Return (matched, unmatched) counts over distinct imported names."""
    matched = sum(1 for mapping in mappings.values() if mapping.match_kind != MatchKind.NONE)
    return matched, len(mappings) - matched


def lookup_services(mappings: Dict[str, ServiceMapping], tokens: Iterable[str]) -> List[ServiceMapping]:
    """The mappings for one row's service tokens, in row order."""
    return [mappings[key] for key in (normalize_service_name(token) for token in tokens) if key in mappings]
