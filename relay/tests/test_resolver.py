"""Tests for the product-to-plan resolver."""
import logging

import pytest

from relay.core.config import Settings
from relay.features.billing.resolver import ProductPlanResolver


def test_resolve_before_initialize_returns_none():
    resolver = ProductPlanResolver()
    assert resolver.initialized is False
    assert resolver.resolve("prod_pro") is None


def test_initialize_maps_configured_products(resolver):
    assert resolver.initialized is True
    assert resolver.resolve("prod_pro") == "pro"
    assert resolver.resolve("prod_master") == "master"
    assert resolver.product_for_plan("pro") == "prod_pro"
    assert resolver.product_for_plan("master") == "prod_master"


def test_unknown_product_resolves_to_none(resolver):
    assert resolver.resolve("prod_other") is None
    assert resolver.resolve("") is None
    assert resolver.resolve(None) is None


def test_missing_product_id_is_skipped_with_warning(caplog):
    cfg = Settings(_env_file=None, POLAR_PRO_PRODUCT_ID="prod_pro", POLAR_MASTER_PRODUCT_ID="")
    resolver = ProductPlanResolver()
    with caplog.at_level(logging.WARNING, logger="relay"):
        resolver.initialize(cfg)

    assert resolver.resolve("prod_pro") == "pro"
    assert resolver.product_for_plan("master") is None
    assert any(r.getMessage() == "resolver.product_missing" for r in caplog.records)


def test_initialize_twice_is_safe(resolver, test_settings):
    resolver.initialize(test_settings)
    assert resolver.resolve("prod_pro") == "pro"
    assert resolver.resolve("prod_master") == "master"


def test_mapping_is_read_only(resolver):
    with pytest.raises(TypeError):
        resolver._product_to_plan["prod_new"] = "pro"
