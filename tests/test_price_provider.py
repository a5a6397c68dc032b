"""Price provider selection."""

import pytest

from dex_deploy.price_provider import PriceProviderKind, select_and_deploy, select_price_provider


DEX = "0x000000000000000000000000000000000000D0C5"

DOC = "0x00000000000000000000000000000000000000d0"

BPRO = "0x00000000000000000000000000000000000000b0"

ORACLE = "0x9999999999999999999999999999999999999999"


@pytest.fixture()
def external_config(make_config):
    return make_config(externalPriceProvider={"DocToken": {"BproToken": ORACLE}})


def test_fake_network(make_config):
    spec = select_price_provider(make_config("development"), DEX, "DocToken", "BproToken", DOC, BPRO)
    assert spec.kind == PriceProviderKind.fake
    assert spec.unit == "TokenPriceProviderFake"
    assert spec.constructor_args == ()


def test_fake_wins_over_external(make_config):
    config = make_config(deployFakes=True, externalPriceProvider={"DocToken": {"BproToken": ORACLE}})
    assert select_price_provider(config, DEX, "DocToken", "BproToken", DOC, BPRO).kind == PriceProviderKind.fake


def test_external_oracle(external_config):
    spec = select_price_provider(external_config, DEX, "DocToken", "BproToken", DOC, BPRO)
    assert spec.kind == PriceProviderKind.external_oracle_fallback
    assert spec.unit == "ExternalOraclePriceProviderFallback"
    assert spec.constructor_args == (ORACLE, DEX, DOC, BPRO)


def test_last_closing_price(external_config):
    """An oracle configured for another pair does not apply."""
    spec = select_price_provider(external_config, DEX, "DocToken", "TestToken", DOC, BPRO)
    assert spec.kind == PriceProviderKind.last_closing_price
    assert spec.unit == "TokenPriceProviderLastClosingPrice"
    assert spec.constructor_args == (DEX, DOC, BPRO)


def test_selection_is_deterministic(external_config):
    first = select_price_provider(external_config, DEX, "DocToken", "BproToken", DOC, BPRO)
    second = select_price_provider(external_config, DEX, "DocToken", "BproToken", DOC, BPRO)
    assert first == second


def test_select_and_deploy(backend, external_config):
    handle = select_and_deploy(backend, external_config, DEX, "DocToken", "BproToken", DOC, BPRO, "docBproPriceProvider")

    (deployment,) = backend.deployments
    assert deployment.unit == "ExternalOraclePriceProviderFallback"
    assert deployment.args == (ORACLE, DEX, DOC, BPRO)
    assert handle.role == "docBproPriceProvider"
    assert handle.address == deployment.address
