"""Token pair plan and registration.

Adding a pair to the exchange is governance gated, so on production
networks the orchestrator usually only prints the plan and the pairs are
added later through a governance change. With ``haveToAddTokenPairs`` the
pairs are added right away, which works where the deployer is authorised by
the governor (development networks).
"""

import json
import logging
from dataclasses import asdict, dataclass
from pprint import pformat
from typing import Sequence

from eth_typing import HexAddress

from dex_deploy.backend import DeploymentBackend
from dex_deploy.constants import TOKENS_BY_NAME
from dex_deploy.handles import ContractHandle, HandleTable


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Market:
    """A pair to set up, by token name."""

    base: str
    secondary: str

    #: Role of the price provider deployed for this pair
    provider_role: str


#: Markets of the reference deployment
REFERENCE_MARKETS = (
    Market("DocToken", "BproToken", "docBproPriceProvider"),
    Market("DocToken", "TestToken", "docTestTokenPriceProvider"),
    Market("DocToken", "WRBTC", "docWrbtcPriceProvider"),
    Market("WRBTC", "BproToken", "wrbtcBproPriceProvider"),
    Market("WRBTC", "TestToken", "wrbtcTestTokenPriceProvider"),
)


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Arguments of ``MoCDecentralizedExchange.addTokenPair``."""

    base_token: HexAddress
    secondary_token: HexAddress
    price_provider: HexAddress
    base_price_precision: int
    secondary_price_precision: int

    def as_args(self) -> tuple:
        return (
            self.base_token,
            self.secondary_token,
            self.price_provider,
            self.base_price_precision,
            self.secondary_price_precision,
        )


@dataclass(frozen=True, slots=True)
class DryRunSummary:
    """The pairs to add, and who needs to add them."""

    pairs: tuple[TokenPair, ...]
    dex: HexAddress
    governor: HexAddress

    #: ``True`` if nothing was sent to the chain
    dry_run: bool

    def as_dict(self) -> dict:
        return {
            "dex": self.dex,
            "governor": self.governor,
            "dryRun": self.dry_run,
            # Precisions as strings, they do not fit JS numbers
            "pairs": [[p.base_token, p.secondary_token, p.price_provider, str(p.base_price_precision), str(p.secondary_price_precision)] for p in self.pairs],
        }

    def to_json(self) -> str:
        return json.dumps(self.as_dict(), indent=2)

    def pformat(self) -> str:
        return pformat([asdict(p) for p in self.pairs])


def plan_token_pairs(
    handles: HandleTable,
    markets: Sequence[Market],
    precision: int,
) -> list[TokenPair]:
    """Build one pair per market from already resolved handles.

    :param precision:
        Price precision for both sides, ``DEFAULT_PRICE_PRECISION``

    :raise dex_deploy.handles.HandleNotFound:
        A token or price provider of a market has not been deployed yet
    """
    assert type(precision) == int, f"Got {type(precision)}"
    pairs = []
    for market in markets:
        base = handles.get(TOKENS_BY_NAME[market.base].role)
        secondary = handles.get(TOKENS_BY_NAME[market.secondary].role)
        provider = handles.get(market.provider_role)
        pairs.append(TokenPair(base.address, secondary.address, provider.address, precision, precision))
    return pairs


def register_token_pairs(
    backend: DeploymentBackend,
    pairs: Sequence[TokenPair],
    dex: ContractHandle,
    governor: ContractHandle,
    add_pairs: bool,
) -> DryRunSummary:
    """Add the pairs to the exchange, or only report them.

    Pairs are added one by one in plan order, as the exchange keeps pairs in insertion order.

    :param add_pairs:
        ``haveToAddTokenPairs``. If ``False`` nothing is sent to the backend.
    """
    summary = DryRunSummary(tuple(pairs), dex.address, governor.address, dry_run=not add_pairs)

    if not add_pairs:
        logger.info("Token pairs that should be added to %s by governor %s:\n%s", dex.address, governor.address, summary.pformat())
        return summary

    logger.info("Adding %d token pairs to %s", len(pairs), dex.address)
    for pair in pairs:
        backend.call(dex, "addTokenPair", *pair.as_args())

    return summary
