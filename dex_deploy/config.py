"""Deployment configuration.

The configuration source is a JSON file with a ``default`` section and one
section per network:

.. code-block:: json

    {
        "default": {"MAX_PENDING_TXS": 4, "COMMISSION_RATE": 0.001, "...": "..."},
        "rskTestnet": {"haveToAddTokenPairs": true, "addressesToHaveBalance": ["0x..."]}
    }

:py:meth:`ConfigResolver.resolve` merges built-in defaults, the ``default``
section and the network section, the network winning. The result is an
immutable :py:class:`DeploymentConfig`.
"""

import json
import logging
from collections.abc import Mapping
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import Any

from eth_typing import HexAddress
from eth_utils import is_address
from web3 import Web3

from dex_deploy.errors import ConfigError


logger = logging.getLogger(__name__)

#: Networks where we deploy fake price providers, fake dex and test fixtures
FAKE_NETWORKS = ("development", "coverage")

#: Keys whose values are appended to, not replaced, by later sources
CONCATENATED_KEYS = ("addressesToHaveBalance",)

#: Must be present after merging all sources
REQUIRED_KEYS = (
    "MAX_PENDING_TXS",
    "ORDERS_FOR_TICK",
    "MAX_BLOCKS_FOR_TICK",
    "MIN_BLOCKS_FOR_TICK",
    "MIN_ORDER_AMOUNT",
    "MAX_ORDER_LIFESPAN",
    "DEFAULT_PRICE_PRECISION",
    "TOKEN_DECIMALS",
    "COMMISSION_RATE",
    "CANCELATION_PENALTY_RATE",
    "EXPIRATION_PENALTY_RATE",
    "TOKENS_TO_MINT",
    "MIN_MO_MULTIPLY_FACTOR",
    "MAX_MO_MULTIPLY_FACTOR",
    "MINIMUM_COMMISSION",
    "beneficiaryAddress",
)

#: Token names as used in ``existingTokens`` and ``externalPriceProvider``
TOKEN_NAMES = ("BproToken", "DocToken", "WRBTC", "TestToken")


def get_builtin_defaults(network: str) -> dict:
    """Lowest precedence configuration, before any file section."""
    return {
        "deployFakes": network in FAKE_NETWORKS,
        "haveToAddTokenPairs": False,
        "addressesToHaveBalance": [],
    }


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _check_address(key: str, value: Any) -> HexAddress:
    if not isinstance(value, str) or not is_address(value):
        raise ConfigError(f"{key} is not a valid address: {value!r}")
    return Web3.to_checksum_address(value)


class DeploymentConfig(Mapping):
    """Resolved, read-only configuration of one deployment run.

    Behaves as a mapping of parameter name -> value. Keys the orchestrator
    does not know about are kept as is. Nested mappings and lists are frozen.
    """

    def __init__(self, network: str, parameters: Mapping):
        self.network = network
        self._parameters = _freeze(parameters)

    def __getitem__(self, key: str) -> Any:
        return self._parameters[key]

    def __iter__(self):
        return iter(self._parameters)

    def __len__(self) -> int:
        return len(self._parameters)

    def __repr__(self):
        return f"<DeploymentConfig {self.network} with {len(self)} parameters>"

    @property
    def deploy_fakes(self) -> bool:
        return bool(self.get("deployFakes"))

    @property
    def have_to_add_token_pairs(self) -> bool:
        return bool(self.get("haveToAddTokenPairs"))

    @property
    def existing_tokens(self) -> Mapping[str, HexAddress] | None:
        """Token name -> address, or ``None`` when we deploy fresh tokens."""
        return self.get("existingTokens") or None

    @property
    def existing_governance(self) -> Mapping[str, HexAddress]:
        return self.get("existingGovernance") or {}

    @property
    def external_price_provider(self) -> Mapping[str, Mapping[str, HexAddress]]:
        return self.get("externalPriceProvider") or {}

    @property
    def addresses_to_have_balance(self) -> tuple[HexAddress, ...]:
        return tuple(self.get("addressesToHaveBalance") or ())

    @property
    def unblock_upgrades_at(self) -> int | None:
        return self.get("unblockUpgradesAt")

    @property
    def max_pending_txs(self) -> int:
        return self["MAX_PENDING_TXS"]

    @property
    def beneficiary_address(self) -> HexAddress:
        return Web3.to_checksum_address(self["beneficiaryAddress"])

    def scaled(self, key: str) -> int:
        """Scale a rate or amount parameter to token decimals.

        ``COMMISSION_RATE = 0.001`` with ``TOKEN_DECIMALS = 10**18`` gives ``10**15``.
        Uses :py:class:`Decimal` so that float representation errors do not leak on-chain.
        """
        scaled = Decimal(str(self[key])) * Decimal(str(self["TOKEN_DECIMALS"]))
        if scaled != scaled.to_integral_value():
            raise ConfigError(f"{key}={self[key]} does not scale to an integer with TOKEN_DECIMALS={self['TOKEN_DECIMALS']}")
        return int(scaled)


class ConfigResolver:
    """Merge configuration sources for a network.

    Example:

    .. code-block:: python

        resolver = ConfigResolver.from_file(Path("config/deploy-config.json"))
        config = resolver.resolve("rskTestnet")
        print(config.max_pending_txs)

    """

    def __init__(self, sources: Mapping[str, Mapping]):
        assert isinstance(sources, Mapping), f"Got {type(sources)}"
        self.sources = sources

    @classmethod
    def from_file(cls, path: Path) -> "ConfigResolver":
        path = Path(path)
        try:
            with open(path, "rt", encoding="utf-8") as f:
                sources = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not read configuration file {path}: {e}") from e

        if not isinstance(sources, dict):
            raise ConfigError(f"Configuration file {path} must contain a JSON object, got {type(sources).__name__}")
        return cls(sources)

    def resolve(self, network: str) -> DeploymentConfig:
        """Merge built-in defaults, the default section and the network section.

        :raise ConfigError:
            A required parameter is missing or a known parameter has a bad value
        """
        if network not in self.sources:
            logger.warning("No configuration section for network %s, using defaults only", network)

        merged: dict = {}
        for source in (get_builtin_defaults(network), self.sources.get("default", {}), self.sources.get(network, {})):
            for key, value in source.items():
                if key in CONCATENATED_KEYS and key in merged:
                    merged[key] = list(merged[key]) + list(value or [])
                else:
                    merged[key] = value

        missing = [k for k in REQUIRED_KEYS if merged.get(k) is None]
        if missing:
            raise ConfigError(f"Network {network} configuration is missing required parameters: {', '.join(missing)}")

        validate_parameters(merged)

        logger.info("Resolved configuration for %s, deployFakes: %s, existing tokens: %s", network, merged["deployFakes"], bool(merged.get("existingTokens")))
        return DeploymentConfig(network, merged)


def validate_parameters(parameters: dict):
    """Check values of the parameters the orchestrator interprets.

    Normalises addresses to checksummed format in place.
    """

    max_pending = parameters["MAX_PENDING_TXS"]
    if type(max_pending) != int or max_pending < 1:
        raise ConfigError(f"MAX_PENDING_TXS must be a positive integer, got {max_pending!r}")

    parameters["beneficiaryAddress"] = _check_address("beneficiaryAddress", parameters["beneficiaryAddress"])

    parameters["addressesToHaveBalance"] = [_check_address("addressesToHaveBalance", a) for a in parameters.get("addressesToHaveBalance") or []]

    existing_tokens = parameters.get("existingTokens")
    if existing_tokens:
        missing = [name for name in TOKEN_NAMES if name not in existing_tokens]
        if missing:
            raise ConfigError(f"existingTokens must name all of {', '.join(TOKEN_NAMES)}, missing {', '.join(missing)}")
        parameters["existingTokens"] = {name: _check_address(f"existingTokens.{name}", address) for name, address in existing_tokens.items()}

    existing_governance = parameters.get("existingGovernance")
    if existing_governance:
        parameters["existingGovernance"] = {role: _check_address(f"existingGovernance.{role}", address) for role, address in existing_governance.items()}

    external = parameters.get("externalPriceProvider")
    if external:
        parameters["externalPriceProvider"] = {base: {secondary: _check_address(f"externalPriceProvider.{base}.{secondary}", address) for secondary, address in secondaries.items()} for base, secondaries in external.items()}

    unblock_at = parameters.get("unblockUpgradesAt")
    if unblock_at is not None and (type(unblock_at) != int or unblock_at < 0):
        raise ConfigError(f"unblockUpgradesAt must be a Unix timestamp, got {unblock_at!r}")
