"""
Contraindication Alert Engine - Text Normalisation and Substance Matching Tests
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from contraindication_engine.core.catalog import CatalogSnapshot
from contraindication_engine.core.models import Substance, SubstanceType
from contraindication_engine.nlp.substance_matcher import (
    SubstanceMatcher, matches_substance, substance_terms
)
from contraindication_engine.nlp.text_processor import TextProcessor


millepertuis = Substance(
    id="1", canonical_name="Millepertuis", substance_type=SubstanceType.PLANT,
    aliases=frozenset({"Hypericum perforatum", "St John's Wort", "herbe de la Saint-Jean"}),
)
ginkgo = Substance(
    id="2", canonical_name="Ginkgo biloba", substance_type=SubstanceType.PLANT,
    aliases=frozenset({"Ginkgo", "arbre aux quarante ecus"}),
)
menthe_he = Substance(
    id="3", canonical_name="HE Menthe poivree", substance_type=SubstanceType.ESSENTIAL_OIL,
    aliases=frozenset({"Mentha piperita", "menthe poivree", "huile essentielle de menthe"}),
)
curcuma = Substance(
    id="4", canonical_name="Curcuma", substance_type=SubstanceType.PLANT,
    aliases=frozenset({"Curcuma longa", "turmeric", "safran des Indes", "curcumine"}),
)


class TestTextProcessor:
    """Tests for normalisation and plan splitting"""

    def test_lowercase(self):
        assert TextProcessor.normalize("Millepertuis") == "millepertuis"

    def test_removes_accents(self):
        assert TextProcessor.normalize("Menthe poivrée") == "menthe poivree"
        assert TextProcessor.normalize("Réglisse") == "reglisse"

    def test_precomposed_and_decomposed_forms_agree(self):
        assert TextProcessor.normalize("\u00e9pilepsie") == TextProcessor.normalize("e\u0301pilepsie") == "epilepsie"

    def test_trims_and_collapses_whitespace(self):
        assert TextProcessor.normalize("  curcuma   longa ") == "curcuma longa"

    def test_empty(self):
        assert TextProcessor.normalize("") == ""
        assert TextProcessor.normalize(None) == ""

    def test_flatten_nested_answers(self):
        answers = {
            "traitements": ["Warfarine", {"autre": "pilule"}],
            "remarques": None,
            "vide": "  ",
            "age_declare": 34,
        }
        assert sorted(TextProcessor.flatten(answers)) == ["34", "Warfarine", "pilule"]

    def test_split_plan_text_delimiters(self):
        text = "Millepertuis; Menthe poivree - Ginkgo\n• Curcuma · Valeriane,"
        assert TextProcessor.split_plan_text(text) == ["Millepertuis", "Menthe poivree", "Ginkgo", "Curcuma", "Valeriane"]

    def test_split_keeps_hyphenated_names(self):
        text = "Herbe de la Saint-Jean - Ginkgo\n- Menthe poivree\n-Curcuma"
        assert TextProcessor.split_plan_text(text) == [
            "Herbe de la Saint-Jean", "Ginkgo", "Menthe poivree", "Curcuma"
        ]

    def test_split_blank_text(self):
        assert TextProcessor.split_plan_text("") == []
        assert TextProcessor.split_plan_text(" ,;\n ") == []


class TestMatchesSubstance:
    """Bidirectional containment over canonical name and aliases"""

    def test_exact_name(self):
        assert matches_substance(millepertuis, "Millepertuis")

    def test_case_insensitive(self):
        assert matches_substance(millepertuis, "millepertuis")
        assert matches_substance(millepertuis, "MILLEPERTUIS")

    @pytest.mark.parametrize("alias", ["Hypericum perforatum", "St John's Wort", "herbe de la Saint-Jean"])
    def test_aliases(self, alias):
        assert matches_substance(millepertuis, alias)

    def test_input_contained_in_name(self):
        assert matches_substance(ginkgo, "ginkgo")

    def test_input_contains_name(self):
        assert matches_substance(curcuma, "Curcuma en gelules")

    def test_essential_oil_common_name(self):
        assert matches_substance(menthe_he, "menthe poivree")
        assert matches_substance(menthe_he, "Mentha piperita")
        assert matches_substance(menthe_he, "menthe poivrée")

    def test_curcuma_aliases(self):
        assert matches_substance(curcuma, "curcumine")
        assert matches_substance(curcuma, "turmeric")

    def test_unrelated_names(self):
        assert not matches_substance(millepertuis, "valeriane")
        assert not matches_substance(ginkgo, "millepertuis")
        assert not matches_substance(millepertuis, "aspirine")
        assert not matches_substance(curcuma, "paracetamol")

    def test_empty_phrase_never_matches(self):
        assert not matches_substance(millepertuis, "")
        assert not matches_substance(millepertuis, "   ")

    @pytest.mark.parametrize("substance", [millepertuis, ginkgo, menthe_he, curcuma])
    def test_reflexive_on_name_and_aliases(self, substance):
        for term in [substance.canonical_name, *substance.aliases]:
            assert matches_substance(substance, term)

    def test_empty_alias_ignored(self):
        s = Substance(id="9", canonical_name="Ortie", aliases=frozenset({"", "Urtica dioica"}))
        assert substance_terms(s) == ("ortie", "urtica dioica")
        assert not matches_substance(s, "valeriane")


class TestSubstanceMatcher:
    """Matching whole plan sections"""

    @pytest.fixture
    def matcher(self):
        return SubstanceMatcher(CatalogSnapshot(substances=[millepertuis, ginkgo, menthe_he, curcuma]))

    def test_comma_separated_list(self, matcher):
        result = matcher.match_text("Millepertuis, Curcuma, Valeriane")
        assert set(result.substance_ids) == {"1", "4"}

    def test_bullet_list(self, matcher):
        result = matcher.match_text("• Ginkgo biloba 120mg\n• Curcuma longa 500mg")
        assert len(result) == 2

    def test_semicolons_and_dashes(self, matcher):
        result = matcher.match_text("Millepertuis; Menthe poivree - Ginkgo")
        assert len(result) == 3

    def test_no_substances(self, matcher):
        result = matcher.match_text("Marcher 30 minutes par jour, boire 1.5L eau")
        assert len(result) == 0

    def test_deduplicated_in_first_match_order(self, matcher):
        result = matcher.match(["curcumine", "Millepertuis", "Curcuma longa", "hypericum perforatum"])
        assert result.substance_ids == ("4", "1")
        assert result.substances["1"] is millepertuis

    def test_blank_phrases_skipped(self, matcher):
        assert len(matcher.match(["", "  "])) == 0

    def test_preview(self, matcher):
        assert [s.id for s in matcher.preview("menthe")] == ["3"]
        assert matcher.preview("") == []
