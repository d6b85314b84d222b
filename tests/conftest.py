"""
Pytest Configuration and Fixtures

Shared reference catalog fixtures for alert engine tests.
"""
import sys
import os
import json
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from contraindication_engine.config.settings import DATA_DIR
from contraindication_engine.core.catalog import (
    CatalogSnapshot, CatalogStore, InMemoryReferenceDataSource, parse_rows,
    SUBSTANCES, CONDITIONS, CONTRAINDICATION_RULES, SUBSTANCE_INTERACTIONS
)
from contraindication_engine.nlp.condition_inference import ConditionInferenceResolver

# Fast retries for collaborator failure paths
FAST_RETRY = {"attempts": 2, "timeout": 0.5, "base_delay": 0, "max_delay": 0}


@pytest.fixture
def catalog_tables():
    """The bundled sample catalog as raw table rows"""
    with open(DATA_DIR / "sample_catalog.json", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def snapshot(catalog_tables):
    return CatalogSnapshot(
        substances=parse_rows(SUBSTANCES, catalog_tables[SUBSTANCES]),
        conditions=parse_rows(CONDITIONS, catalog_tables[CONDITIONS]),
        contraindication_rules=parse_rows(CONTRAINDICATION_RULES, catalog_tables[CONTRAINDICATION_RULES]),
        interaction_rules=parse_rows(SUBSTANCE_INTERACTIONS, catalog_tables[SUBSTANCE_INTERACTIONS]),
    )


@pytest.fixture
def catalog_store(catalog_tables):
    return CatalogStore(InMemoryReferenceDataSource(catalog_tables), **FAST_RETRY)


@pytest.fixture
def resolver():
    return ConditionInferenceResolver()


@pytest.fixture
def fast_retry():
    return dict(FAST_RETRY)
