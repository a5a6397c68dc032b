"""Price provider selection per trading pair.

Each token pair of the exchange needs a price provider contract. Which one
is decided from the configuration:

1. On fake networks (``deployFakes``) a fixed value ``TokenPriceProviderFake``

2. If ``externalPriceProvider[base][secondary]`` names an external oracle,
   ``ExternalOraclePriceProviderFallback``, which falls back to the exchange's
   last closing price when the oracle has no valid price

3. Otherwise ``TokenPriceProviderLastClosingPrice`` reading the exchange's own trades
"""

import enum
import logging
from dataclasses import dataclass

from eth_typing import HexAddress

from dex_deploy.backend import DeploymentBackend
from dex_deploy.config import DeploymentConfig
from dex_deploy.handles import ContractHandle


logger = logging.getLogger(__name__)


class PriceProviderKind(enum.Enum):
    fake = "fake"
    external_oracle_fallback = "external_oracle_fallback"
    last_closing_price = "last_closing_price"


#: Contract unit deployed for each kind
PRICE_PROVIDER_UNITS = {
    PriceProviderKind.fake: "TokenPriceProviderFake",
    PriceProviderKind.external_oracle_fallback: "ExternalOraclePriceProviderFallback",
    PriceProviderKind.last_closing_price: "TokenPriceProviderLastClosingPrice",
}


@dataclass(frozen=True, slots=True)
class PriceProviderSpec:
    """What price provider to deploy for a pair."""

    kind: PriceProviderKind

    #: Constructor arguments in contract order
    constructor_args: tuple = ()

    @property
    def unit(self) -> str:
        return PRICE_PROVIDER_UNITS[self.kind]


def select_price_provider(
    config: DeploymentConfig,
    dex_address: HexAddress,
    base_token_name: str,
    secondary_token_name: str,
    base_token_address: HexAddress,
    secondary_token_address: HexAddress,
) -> PriceProviderSpec:
    """Choose the price provider for a pair.

    No side effects. The same configuration and pair always give the same kind.

    :param base_token_name:
        Token name as in ``externalPriceProvider``, e.g. ``DocToken``
    """
    if config.deploy_fakes:
        return PriceProviderSpec(PriceProviderKind.fake)

    external_oracle = config.external_price_provider.get(base_token_name, {}).get(secondary_token_name)
    if external_oracle:
        return PriceProviderSpec(
            PriceProviderKind.external_oracle_fallback,
            (external_oracle, dex_address, base_token_address, secondary_token_address),
        )

    return PriceProviderSpec(
        PriceProviderKind.last_closing_price,
        (dex_address, base_token_address, secondary_token_address),
    )


def deploy_price_provider(backend: DeploymentBackend, spec: PriceProviderSpec, role: str) -> ContractHandle:
    logger.info("Deploying %s price provider %s with args %s", spec.kind.value, role, spec.constructor_args)
    return backend.deploy(spec.unit, *spec.constructor_args, role=role)


def select_and_deploy(
    backend: DeploymentBackend,
    config: DeploymentConfig,
    dex_address: HexAddress,
    base_token_name: str,
    secondary_token_name: str,
    base_token_address: HexAddress,
    secondary_token_address: HexAddress,
    role: str,
) -> ContractHandle:
    """Select and deploy the price provider of one pair."""
    spec = select_price_provider(config, dex_address, base_token_name, secondary_token_name, base_token_address, secondary_token_address)
    return deploy_price_provider(backend, spec, role)
