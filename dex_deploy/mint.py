"""Initial token balances for freshly deployed tokens."""

import logging
from typing import Sequence

from eth_typing import HexAddress
from web3 import Web3

from dex_deploy.backend import DeploymentBackend
from dex_deploy.batch import DeploymentAction, run_batched
from dex_deploy.handles import ContractHandle


logger = logging.getLogger(__name__)


def mint_initial_balances(
    backend: DeploymentBackend,
    tokens: Sequence[ContractHandle],
    beneficiaries: Sequence[HexAddress],
    amount: int,
    max_concurrency: int,
) -> list:
    """Mint ``amount`` of every token to every beneficiary.

    One ``mint`` transaction per beneficiary and token, run as batches.
    Duplicate beneficiaries are minted once.

    :param amount:
        Raw amount, already scaled to token decimals

    :return:
        Receipts in beneficiary-major order
    """
    assert type(amount) == int, f"Got {type(amount)}"

    unique_beneficiaries = list(dict.fromkeys(Web3.to_checksum_address(a) for a in beneficiaries))

    def _mint_action(token: ContractHandle, beneficiary: HexAddress) -> DeploymentAction:
        return DeploymentAction(f"{token.role}.mint", lambda: backend.call(token, "mint", beneficiary, amount))

    actions = [_mint_action(token, beneficiary) for beneficiary in unique_beneficiaries for token in tokens]

    logger.info("Minting %d to %d addresses of %s", amount, len(unique_beneficiaries), ", ".join(t.role for t in tokens))
    return run_batched(actions, max_concurrency)
