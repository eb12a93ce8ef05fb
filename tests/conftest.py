"""Shared fixtures for the lubebot test suite.

Loads the REAL bundled knowledge tables (lubebot/knowledge/data) and the bundled
sample catalog, so tests pin the shipped data rather than mocks.
"""

import json
from pathlib import Path

import pytest

from lubebot.agent_pipeline import KnowledgeEngine
from lubebot.cache import TTLCache
from lubebot.catalog import Product, product_from_record
from lubebot.certification_matcher import CertificationMatcher
from lubebot.intent import IntentResolver
from lubebot.knowledge.knowledge_store import KnowledgeStore
from lubebot.motorcycle_rules import MotorcycleRules
from lubebot.query_builder import QueryBuilder
from lubebot.response_validator import ResponseValidator
from lubebot.symptom_matcher import SymptomMatcher
from lubebot.vehicle_matcher import VehicleMatcher

PACKAGE_DIR = Path(__file__).resolve().parent.parent / "lubebot"
SAMPLE_CATALOG = PACKAGE_DIR / "data" / "products.sample.json"


# =============================================================================
# KNOWLEDGE FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def store():
    """KnowledgeStore over the bundled knowledge data."""
    return KnowledgeStore(cache=TTLCache())


@pytest.fixture(scope="session")
def vehicle_matcher(store):
    return VehicleMatcher(store)


@pytest.fixture(scope="session")
def cert_matcher(store):
    return CertificationMatcher(store)


@pytest.fixture(scope="session")
def motorcycle_rules(store, cert_matcher):
    return MotorcycleRules(store, cert_matcher)


@pytest.fixture(scope="session")
def symptom_matcher(store):
    return SymptomMatcher(store)


@pytest.fixture(scope="session")
def query_builder(store):
    return QueryBuilder(store)


@pytest.fixture(scope="session")
def intent_resolver(store, vehicle_matcher, cert_matcher):
    return IntentResolver(store, vehicle_matcher, cert_matcher)


@pytest.fixture(scope="session")
def validator(store):
    return ResponseValidator(store)


@pytest.fixture(scope="session")
def engine(store):
    return KnowledgeEngine(store)


# =============================================================================
# PRODUCT FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def catalog_products():
    """Every product in the bundled sample catalog."""
    data = json.loads(SAMPLE_CATALOG.read_text(encoding="utf-8"))
    return [product_from_record(record) for record in data["products"]]


@pytest.fixture
def by_partno(catalog_products):
    return {product.partno: product for product in catalog_products}


@pytest.fixture
def motorcycle_products():
    """Scooter oil, manual-bike oil, and a car oil."""
    return [
        Product(
            partno="LM1505",
            title="Motorbike 4T Synth Scooter 10W-40",
            cert="JASO MB, API SN",
            viscosity="10W-40",
            category="【摩托車】機油",
        ),
        Product(
            partno="LM1521",
            title="Motorbike 4T Synth Street Race 10W-40",
            cert="JASO MA2, API SN",
            viscosity="10W-40",
            category="【摩托車】機油",
        ),
        Product(
            partno="LM20788",
            title="Top Tec 6200 0W-20",
            cert="API SP, ILSAC GF-6A",
            viscosity="0W-20",
            category="【汽車】機油",
        ),
    ]
