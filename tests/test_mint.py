"""Initial balances."""

from dex_deploy.mint import mint_initial_balances


def test_every_token_to_every_address(backend, user_1, user_2, owner):
    tokens = [backend.deploy(unit, role=role) for role, unit in (("bpro", "BProToken"), ("doc", "DocToken"), ("test", "TestToken"))]

    receipts = mint_initial_balances(backend, tokens, [user_1, user_2, owner], 1000 * 10**18, max_concurrency=4)

    assert len(receipts) == 9
    for token in tokens:
        for holder in (user_1, user_2, owner):
            assert backend.balances[token.address][holder] == 1000 * 10**18

    assert backend.max_in_flight <= 4


def test_beneficiary_major_order(backend, user_1, user_2):
    tokens = [backend.deploy(unit, role=role) for role, unit in (("bpro", "BProToken"), ("doc", "DocToken"))]

    mint_initial_balances(backend, tokens, [user_1, user_2], 1, max_concurrency=1)

    calls = backend.get_calls("mint")
    assert [(c.role, c.args[0]) for c in calls] == [
        ("bpro", user_1),
        ("doc", user_1),
        ("bpro", user_2),
        ("doc", user_2),
    ]


def test_duplicate_beneficiaries_minted_once(backend, user_1, owner):
    token = backend.deploy("DocToken", role="doc")

    mint_initial_balances(backend, [token], [user_1, owner, user_1.lower()], 5, max_concurrency=2)

    assert len(backend.get_calls("mint")) == 2
    assert backend.balances[token.address][user_1] == 5


def test_no_beneficiaries(backend):
    token = backend.deploy("DocToken", role="doc")
    assert mint_initial_balances(backend, [token], [], 5, max_concurrency=2) == []
