"""Shared fixtures for deployment tests."""

import pytest

from dex_deploy.config import ConfigResolver, DeploymentConfig
from dex_deploy.testing import InMemoryBackend


#: Deployer of the in-memory chain
DEPLOYER = "0x000000000000000000000000000000000000dEaD"

BENEFICIARY = "0x00000000000000000000000000000000000b0b00"

USER_1 = "0x1111111111111111111111111111111111111111"

USER_2 = "0x2222222222222222222222222222222222222222"


def make_sources(**network_overrides) -> dict:
    """Configuration file contents with a ``default`` section and a ``testnet`` section."""
    return {
        "default": {
            "MAX_PENDING_TXS": 4,
            "ORDERS_FOR_TICK": 20,
            "MAX_BLOCKS_FOR_TICK": 12,
            "MIN_BLOCKS_FOR_TICK": 4,
            "MIN_ORDER_AMOUNT": 10 * 10**18,
            "MAX_ORDER_LIFESPAN": 10,
            "DEFAULT_PRICE_PRECISION": 10**18,
            "TOKEN_DECIMALS": 10**18,
            "COMMISSION_RATE": 0.001,
            "CANCELATION_PENALTY_RATE": 0.25,
            "EXPIRATION_PENALTY_RATE": 0.1,
            "MINIMUM_COMMISSION": 0.5,
            "TOKENS_TO_MINT": 1000,
            "MIN_MO_MULTIPLY_FACTOR": 0.01,
            "MAX_MO_MULTIPLY_FACTOR": 10,
            "beneficiaryAddress": BENEFICIARY,
            "addressesToHaveBalance": [USER_1],
        },
        "development": {
            "haveToAddTokenPairs": True,
        },
        "testnet": dict(network_overrides),
    }


def resolve(network="testnet", **network_overrides) -> DeploymentConfig:
    return ConfigResolver(make_sources(**network_overrides)).resolve(network)


@pytest.fixture()
def backend() -> InMemoryBackend:
    return InMemoryBackend(deployer=DEPLOYER)


@pytest.fixture()
def owner() -> str:
    return DEPLOYER


@pytest.fixture()
def make_config():
    """Factory resolving the test configuration with network overrides.

    .. code-block:: python

        config = make_config(deployFakes=True)
    """
    return resolve


@pytest.fixture()
def sources() -> dict:
    return make_sources()


@pytest.fixture()
def beneficiary() -> str:
    return BENEFICIARY


@pytest.fixture()
def user_1() -> str:
    return USER_1


@pytest.fixture()
def user_2() -> str:
    return USER_2
