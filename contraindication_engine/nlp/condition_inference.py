"""
Contraindication Alert Engine - Condition Inference
Derives an individual's condition set from intake answers and age
"""
import json
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple

from contraindication_engine.config.settings import (
    CONDITION_KEYWORDS_PATH, AGE_YOUNG_CHILD, AGE_CHILD
)
from contraindication_engine.core.catalog import CatalogSnapshot
from contraindication_engine.core.exceptions import KeywordDictionaryError
from contraindication_engine.core.models import Condition, InferredConditions, IntakeRecord
from contraindication_engine.nlp.text_processor import TextProcessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgeRule:
    """Infers a condition when the individual is younger than ``below_age``"""
    key: str
    below_age: int
    name_markers: Tuple[str, ...] = ()

    def applies(self, age: Optional[int]) -> bool:
        return age is not None and age < self.below_age


DEFAULT_AGE_RULES = (
    AgeRule("young-child", AGE_YOUNG_CHILD, ("moins de 6",)),
    AgeRule("child", AGE_CHILD, ("moins de 12",)),
)


@dataclass
class ConditionKeywordDictionary:
    """Versioned mapping of condition keys to colloquial synonyms"""
    version: str
    keywords: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    age_rules: Tuple[AgeRule, ...] = DEFAULT_AGE_RULES

    @classmethod
    def load(cls, path: str = CONDITION_KEYWORDS_PATH) -> "ConditionKeywordDictionary":
        """Load the dictionary from its JSON data file"""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise KeywordDictionaryError(f"Cannot read keyword dictionary: {e}", path=str(path)) from e

        return cls.from_dict(data, source=str(path))

    @classmethod
    def from_dict(cls, data: Dict, source: str = "<dict>") -> "ConditionKeywordDictionary":
        if not isinstance(data, dict) or "version" not in data or not isinstance(data.get("conditions"), dict):
            raise KeywordDictionaryError("Keyword dictionary needs 'version' and 'conditions'", path=source)

        keywords = {}
        for key, synonyms in data["conditions"].items():
            if not isinstance(synonyms, list):
                raise KeywordDictionaryError(f"Synonyms for '{key}' must be a list", path=source)
            keywords[key] = tuple(s for s in synonyms if TextProcessor.normalize(s))

        age_rules = DEFAULT_AGE_RULES
        if "age_rules" in data:
            try:
                age_rules = tuple(
                    AgeRule(
                        key=r["key"],
                        below_age=int(r["below_age"]),
                        name_markers=tuple(r.get("name_markers", [])),
                    )
                    for r in data["age_rules"]
                )
            except (KeyError, TypeError, ValueError) as e:
                raise KeywordDictionaryError(f"Invalid age rule: {e}", path=source) from e

        logger.info(f"Condition keyword dictionary v{data['version']}: {len(keywords)} conditions")
        return cls(version=str(data["version"]), keywords=keywords, age_rules=age_rules)


class ConditionInferenceResolver:
    """
    Infers catalog conditions for one individual.

    Three independent signals are unioned:
    - a condition's name appears verbatim in the intake answers
    - a keyword dictionary synonym appears in the answers
    - an age threshold rule holds
    """

    def __init__(self, dictionary: Optional[ConditionKeywordDictionary] = None):
        self.dictionary = dictionary or ConditionKeywordDictionary.load()
        self._normalized_keywords = {
            TextProcessor.normalize(key): tuple(TextProcessor.normalize(s) for s in synonyms)
            for key, synonyms in self.dictionary.keywords.items()
        }

    def answers_text(self, intake: IntakeRecord) -> str:
        """Normalized concatenation of every answer"""
        return TextProcessor.normalize(' '.join(TextProcessor.flatten(intake.answers)))

    def resolve(self, intake: Optional[IntakeRecord], snapshot: CatalogSnapshot) -> InferredConditions:
        if intake is None:
            return InferredConditions()

        inferred: Dict[str, str] = {}
        conditions_by_name = self._index_by_name(snapshot.conditions)
        text = self.answers_text(intake)

        if text:
            for normalized_name, condition in conditions_by_name.items():
                if normalized_name and normalized_name in text:
                    inferred[condition.id] = condition.name

            for key, synonyms in self._normalized_keywords.items():
                condition = conditions_by_name.get(key)
                if condition is None or condition.id in inferred:
                    continue
                if any(s in text for s in synonyms):
                    inferred[condition.id] = condition.name

        for rule in self.dictionary.age_rules:
            if not rule.applies(intake.age):
                continue
            for condition in self._age_conditions(rule, conditions_by_name):
                inferred[condition.id] = condition.name

        if inferred:
            logger.debug(f"Inferred {len(inferred)} conditions for {intake.individual_id}")

        return InferredConditions(condition_ids=frozenset(inferred), names=inferred)

    @staticmethod
    def _index_by_name(conditions: List[Condition]) -> Dict[str, Condition]:
        index = {}
        for condition in conditions:
            index.setdefault(TextProcessor.normalize(condition.name), condition)
        return index

    @staticmethod
    def _age_conditions(rule: AgeRule, conditions_by_name: Dict[str, Condition]) -> List[Condition]:
        key = TextProcessor.normalize(rule.key)
        markers = [TextProcessor.normalize(m) for m in rule.name_markers]
        return [
            condition for name, condition in conditions_by_name.items()
            if name == key or any(m and m in name for m in markers)
        ]
