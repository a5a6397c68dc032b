"""Token pair planning and registration."""

import json

import pytest

from dex_deploy.handles import ContractHandle, HandleAlreadyRegistered, HandleNotFound, HandleTable
from dex_deploy.pairs import REFERENCE_MARKETS, plan_token_pairs, register_token_pairs


@pytest.fixture()
def handles(backend) -> HandleTable:
    table = HandleTable()
    for role, unit in (("bpro", "BProToken"), ("wrbtc", "WRBTC"), ("doc", "DocToken"), ("test", "TestToken"), ("governor", "Governor"), ("dex", "MoCDecentralizedExchange")):
        table.register(backend.deploy(unit, role=role))
    for market in REFERENCE_MARKETS:
        table.register(backend.deploy("TokenPriceProviderFake", role=market.provider_role))
    return table


def test_plan(handles):
    pairs = plan_token_pairs(handles, REFERENCE_MARKETS, 10**18)

    assert len(pairs) == 5
    first = pairs[0]
    assert first.base_token == handles["doc"].address
    assert first.secondary_token == handles["bpro"].address
    assert first.price_provider == handles["docBproPriceProvider"].address
    assert first.as_args()[3:] == (10**18, 10**18)

    assert [(p.base_token, p.secondary_token) for p in pairs[3:]] == [
        (handles["wrbtc"].address, handles["bpro"].address),
        (handles["wrbtc"].address, handles["test"].address),
    ]


def test_plan_needs_price_provider(backend):
    table = HandleTable()
    for role in ("doc", "bpro"):
        table.register(backend.deploy("Token", role=role))

    with pytest.raises(HandleNotFound, match="docBproPriceProvider"):
        plan_token_pairs(table, REFERENCE_MARKETS[:1], 10**18)


def test_register_adds_pairs_in_order(backend, handles):
    pairs = plan_token_pairs(handles, REFERENCE_MARKETS, 10**18)

    summary = register_token_pairs(backend, pairs, handles["dex"], handles["governor"], add_pairs=True)

    calls = backend.get_calls("addTokenPair", role="dex")
    assert [c.args for c in calls] == [p.as_args() for p in pairs]
    assert not summary.dry_run


def test_dry_run_sends_nothing(backend, handles):
    pairs = plan_token_pairs(handles, REFERENCE_MARKETS, 10**18)

    dry = register_token_pairs(backend, pairs, handles["dex"], handles["governor"], add_pairs=False)
    assert backend.calls == []

    wet = register_token_pairs(backend, pairs, handles["dex"], handles["governor"], add_pairs=True)
    assert dry.pairs == wet.pairs
    assert dry.dry_run


def test_dry_run_summary_json(backend, handles):
    pairs = plan_token_pairs(handles, REFERENCE_MARKETS, 10**18)
    summary = register_token_pairs(backend, pairs, handles["dex"], handles["governor"], add_pairs=False)

    data = json.loads(summary.to_json())
    assert data["dex"] == handles["dex"].address
    assert data["governor"] == handles["governor"].address
    assert data["dryRun"] is True
    assert data["pairs"][0][3] == str(10**18)
    assert len(data["pairs"]) == 5


def test_handle_table_write_once():
    table = HandleTable()
    handle = ContractHandle(role="dex", address="0x1111111111111111111111111111111111111111", unit="MoCDecentralizedExchange")
    table.register(handle)

    with pytest.raises(HandleAlreadyRegistered):
        table.register(ContractHandle(role="dex", address="0x2222222222222222222222222222222222222222", unit="MoCDecentralizedExchange"))

    assert table["dex"] is handle
    assert table.has_address("0x1111111111111111111111111111111111111111")
    assert table.as_address_map() == {"dex": handle.address}
