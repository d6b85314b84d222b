"""
Contraindication Alert Engine - Condition Inference Tests
"""
import sys
import os
import json
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from contraindication_engine.core.catalog import CatalogSnapshot
from contraindication_engine.core.exceptions import KeywordDictionaryError
from contraindication_engine.core.models import Condition, IntakeRecord
from contraindication_engine.nlp.condition_inference import (
    AgeRule, ConditionInferenceResolver, ConditionKeywordDictionary
)


def intake(answers=None, age=None):
    return IntakeRecord(individual_id="ind-1", answers=answers or {}, age=age)


class TestKeywordDictionary:
    """Tests for the versioned keyword data file"""

    def test_bundled_dictionary_loads(self):
        dictionary = ConditionKeywordDictionary.load()
        assert dictionary.version
        assert "anticoagulants" in dictionary.keywords
        assert "warfarine" in dictionary.keywords["anticoagulants"]
        assert [r.below_age for r in dictionary.age_rules] == [6, 12]

    def test_missing_file(self, tmp_path):
        with pytest.raises(KeywordDictionaryError):
            ConditionKeywordDictionary.load(str(tmp_path / "absent.json"))

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "keywords.json"
        path.write_text(json.dumps({"conditions": []}), encoding="utf-8")
        with pytest.raises(KeywordDictionaryError):
            ConditionKeywordDictionary.load(str(path))

    def test_synonyms_must_be_list(self):
        with pytest.raises(KeywordDictionaryError):
            ConditionKeywordDictionary.from_dict({"version": "1", "conditions": {"diabete": "sucre"}})

    def test_age_rule_boundary(self):
        rule = AgeRule("child", 12)
        assert rule.applies(0)
        assert rule.applies(11)
        assert not rule.applies(12)
        assert not rule.applies(None)


class TestConditionInference:
    """Tests for the three inference signals over the sample catalog"""

    def test_keyword_synonym(self, resolver, snapshot):
        inferred = resolver.resolve(intake({"traitements": "je prends un anticoagulant"}), snapshot)
        assert "cond-anticoagulants" in inferred
        assert inferred.names["cond-anticoagulants"] == "Anticoagulants"

    def test_drug_name_synonym(self, resolver, snapshot):
        inferred = resolver.resolve(intake({"traitements": "Warfarine 5mg le soir"}), snapshot)
        assert inferred.condition_ids == frozenset({"cond-anticoagulants"})

    def test_direct_condition_name_with_accents(self, resolver, snapshot):
        inferred = resolver.resolve(intake({"antecedents": "Hypertension artérielle depuis 2019"}), snapshot)
        assert "cond-hta" in inferred

    def test_nested_answers(self, resolver, snapshot):
        answers = {
            "sante": {"situation": ["enceinte de 3 mois"], "autres": {"contraception": None}},
            "medicaments": [{"nom": "Sertraline"}],
        }
        inferred = resolver.resolve(intake(answers), snapshot)
        assert inferred.condition_ids == frozenset({"cond-grossesse", "cond-isrs"})

    def test_young_child_by_age_alone(self, resolver, snapshot):
        inferred = resolver.resolve(intake(age=4), snapshot)
        assert "cond-enfant-6" in inferred
        assert "cond-enfant-12" in inferred

    def test_young_child_key_name(self, resolver):
        catalog = CatalogSnapshot(conditions=[Condition("c1", "young-child"), Condition("c2", "Grossesse")])
        inferred = resolver.resolve(intake(age=4), catalog)
        assert inferred.condition_ids == frozenset({"c1"})

    def test_age_zero_counts(self, resolver, snapshot):
        inferred = resolver.resolve(intake(age=0), snapshot)
        assert "cond-enfant-6" in inferred

    def test_child_only(self, resolver, snapshot):
        inferred = resolver.resolve(intake(age=9), snapshot)
        assert inferred.condition_ids == frozenset({"cond-enfant-12"})

    def test_adult_without_answers(self, resolver, snapshot):
        assert len(resolver.resolve(intake(age=40), snapshot)) == 0

    def test_no_intake(self, resolver, snapshot):
        assert len(resolver.resolve(None, snapshot)) == 0

    def test_keyword_without_catalog_condition(self, resolver):
        catalog = CatalogSnapshot(conditions=[Condition("c2", "Grossesse")])
        inferred = resolver.resolve(intake({"q": "diabetique de type 2"}), catalog)
        assert len(inferred) == 0

    def test_negated_mention_still_inferred(self, resolver, snapshot):
        # Negation is not interpreted; dismissive statements over-infer
        inferred = resolver.resolve(intake({"q": "pas d'anticoagulant"}), snapshot)
        assert "cond-anticoagulants" in inferred

    def test_custom_dictionary(self, snapshot):
        dictionary = ConditionKeywordDictionary.from_dict({
            "version": "test",
            "conditions": {"diabete": ["glycemie"]},
            "age_rules": [],
        })
        resolver = ConditionInferenceResolver(dictionary)
        inferred = resolver.resolve(intake({"q": "Glycémie instable"}, age=3), snapshot)
        assert inferred.condition_ids == frozenset({"cond-diabete"})
