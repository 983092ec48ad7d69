"""Shared fixtures: the product-simple document served through one fixture cache."""

from __future__ import annotations

import pytest

from sextant.conduit.rules import DocumentRuleSet, InMemoryRuleRepository
from sextant.document.toolset import DocumentSnapshot
from sextant.fixtures.cache import FixtureCache, FixtureDocument
from sextant.fixtures.product_simple import PRODUCT_SIMPLE_ID, build_product_simple_rule_set


@pytest.fixture(scope="session")
def fixture_cache() -> FixtureCache:
    return FixtureCache()


@pytest.fixture
def product_document(fixture_cache: FixtureCache) -> FixtureDocument:
    return fixture_cache.load(PRODUCT_SIMPLE_ID)


@pytest.fixture
def product_html(product_document: FixtureDocument) -> str:
    return product_document.html


@pytest.fixture
def product_snapshot(product_document: FixtureDocument) -> DocumentSnapshot:
    return DocumentSnapshot(
        domain=product_document.domain,
        path=product_document.path,
        html=product_document.html,
    )


@pytest.fixture
def rule_set() -> DocumentRuleSet:
    return build_product_simple_rule_set()


@pytest.fixture
def rule_repository(rule_set: DocumentRuleSet) -> InMemoryRuleRepository:
    return InMemoryRuleRepository([rule_set])


@pytest.fixture
def empty_rule_repository() -> InMemoryRuleRepository:
    return InMemoryRuleRepository()
