"""
Contraindication Alert Engine - Substance Name Matcher
Resolves free-text care-plan mentions to catalog substances
"""
import logging
from typing import List, Dict, Iterable, Tuple

from contraindication_engine.core.catalog import CatalogSnapshot
from contraindication_engine.core.models import Substance, MatchResult
from contraindication_engine.nlp.text_processor import TextProcessor

logger = logging.getLogger(__name__)


def substance_terms(substance: Substance) -> Tuple[str, ...]:
    """Normalized canonical name followed by normalized aliases, empties removed"""
    terms = [TextProcessor.normalize(substance.canonical_name)]
    terms.extend(TextProcessor.normalize(a) for a in sorted(substance.aliases))
    return tuple(t for t in terms if t)


def phrase_matches_terms(normalized_phrase: str, terms: Iterable[str]) -> bool:
    """Bidirectional substring containment between a phrase and any term"""
    if not normalized_phrase:
        return False
    return any(term in normalized_phrase or normalized_phrase in term for term in terms)


def matches_substance(substance: Substance, phrase: str) -> bool:
    """Check whether a single free-text phrase refers to a substance"""
    return phrase_matches_terms(TextProcessor.normalize(phrase), substance_terms(substance))


class SubstanceMatcher:
    """
    Permissive matcher for plan phrases.

    A phrase matches a substance when the normalized phrase contains the
    canonical name or an alias, or is contained in one. Partial, plural and
    abbreviated mentions therefore resolve; short names may over-match.
    """

    def __init__(self, snapshot: CatalogSnapshot):
        self.snapshot = snapshot
        self._index: List[Tuple[Substance, Tuple[str, ...]]] = [
            (substance, substance_terms(substance)) for substance in snapshot.substances
        ]

    def match(self, phrases: Iterable[str]) -> MatchResult:
        matched: Dict[str, Substance] = {}
        order: List[str] = []

        for phrase in phrases:
            normalized = TextProcessor.normalize(phrase)
            if not normalized:
                continue
            for substance, terms in self._index:
                if substance.id in matched:
                    continue
                if phrase_matches_terms(normalized, terms):
                    matched[substance.id] = substance
                    order.append(substance.id)

        if order:
            logger.debug(f"Matched {len(order)} substances from plan phrases")

        return MatchResult(substance_ids=tuple(order), substances=matched)

    def match_text(self, text: str) -> MatchResult:
        """Split a plan section on list delimiters and match every phrase"""
        return self.match(TextProcessor.split_plan_text(text))

    def preview(self, phrase: str, limit: int = 20) -> List[Substance]:
        """Substances a single phrase would resolve to, for editor hints"""
        normalized = TextProcessor.normalize(phrase)
        return [s for s, terms in self._index if phrase_matches_terms(normalized, terms)][:limit]
