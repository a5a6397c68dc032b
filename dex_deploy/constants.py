"""Contract names and roles of the exchange deployment."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TokenDefinition:
    #: Name used in ``existingTokens`` and ``externalPriceProvider`` configuration
    name: str

    #: Role in the handle table and the run summary
    role: str

    #: Contract unit for fresh deployments
    unit: str

    #: Gets initial balances minted on fresh deployments
    mintable: bool


TOKENS = (
    TokenDefinition("BproToken", "bpro", "BProToken", True),
    TokenDefinition("WRBTC", "wrbtc", "WRBTC", False),
    TokenDefinition("DocToken", "doc", "DocToken", True),
    TokenDefinition("TestToken", "test", "TestToken", True),
)

TOKENS_BY_NAME = {t.name: t for t in TOKENS}

#: Shared libraries deployed before anything else
LIBRARIES = ("MoCExchangeLib", "TickState", "SafeTransfer")

DEX_UNIT = "MoCDecentralizedExchange"

DEX_FAKE_UNIT = "MoCDexFake"

FEE_MANAGER_UNIT = "CommissionManager"

GOVERNOR_UNIT = "Governor"

STOPPER_UNIT = "Stopper"

#: Contracts that statically reference libraries
LIBRARY_LINKS = {
    DEX_UNIT: ("MoCExchangeLib", "TickState"),
}

#: Library links of the contracts only deployed on fake networks
FAKE_LIBRARY_LINKS = {
    DEX_FAKE_UNIT: ("MoCExchangeLib", "TickState"),
    "TickStateFake": ("TickState",),
}
