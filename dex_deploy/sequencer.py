"""Deploy the whole exchange protocol.

:py:class:`DeploymentSequencer` runs the deployment as strictly ordered
phases. Each phase is a barrier: it only starts after every action of the
previous phase has settled, and it only reads handles earlier phases wrote to
:py:attr:`DeploymentSequencer.handles`.

.. code-block:: text

    libraries       MoCExchangeLib, TickState, SafeTransfer, tokens       batched
    linking         libraries -> MoCDecentralizedExchange (+ fakes)
    tokens          adopt existingTokens or check the fresh ones
    infrastructure  implementations, proxy admin, governor, stopper      batched
    proxies         commission manager, dex (+ fake dex) proxies, initialised
    ownership       commission manager -> proxy admin -> delegator
    markets         price provider per pair (batched), pair plan, registration
    fixtures        test contracts, fake networks only                   batched
    minting         initial balances, fresh tokens only                  batched
    summary         role -> address

Any failure aborts the run with :py:class:`dex_deploy.errors.DeploymentAborted`.
Nothing is retried or rolled back: the handles produced so far stay in
:py:attr:`DeploymentSequencer.handles` for manual recovery.

Example:

.. code-block:: python

    config = ConfigResolver.from_file(Path("config/deploy-config.json")).resolve("rskTestnet")
    backend = Web3Backend(web3, account, Path("build/contracts"))
    summary = DeploymentSequencer(backend, config, owner=account.address).run()
    print(summary.to_json())

"""

import datetime
import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from pprint import pformat
from typing import Sequence

from eth_typing import HexAddress
from web3 import Web3

from dex_deploy.backend import DeploymentBackend
from dex_deploy.batch import DeploymentAction, run_batched
from dex_deploy.config import DeploymentConfig
from dex_deploy.constants import (
    DEX_FAKE_UNIT,
    DEX_UNIT,
    FAKE_LIBRARY_LINKS,
    FEE_MANAGER_UNIT,
    GOVERNOR_UNIT,
    LIBRARIES,
    LIBRARY_LINKS,
    STOPPER_UNIT,
    TOKENS,
    TOKENS_BY_NAME,
)
from dex_deploy.errors import BatchFailure, DeploymentAborted, DeploymentError
from dex_deploy.handles import ContractHandle, HandleTable
from dex_deploy.mint import mint_initial_balances
from dex_deploy.pairs import REFERENCE_MARKETS, DryRunSummary, Market, plan_token_pairs, register_token_pairs
from dex_deploy.price_provider import select_and_deploy
from dex_deploy.proxy import PROXY_ADMIN_UNIT, OwnershipChain, OwnerStage, ProxyOptions, ProxyOwnershipManager


logger = logging.getLogger(__name__)


@dataclass
class DeploymentSummary:
    """Outcome of a successful run."""

    network: str

    #: Role -> address of every contract created or adopted, in creation order
    addresses: dict[str, HexAddress]

    #: Token pairs that were added, or should be added
    token_pairs: DryRunSummary

    #: A ``BlockableUpgradeDelegator`` was deployed
    time_gated_delegator: bool

    #: Tokens came from ``existingTokens``
    tokens_adopted: bool

    completed_at: datetime.datetime = field(default_factory=lambda: datetime.datetime.now(datetime.timezone.utc))

    def __getitem__(self, role: str) -> HexAddress:
        return self.addresses[role]

    def as_dict(self) -> dict:
        return {
            "network": self.network,
            "completedAt": self.completed_at.isoformat(),
            "timeGatedDelegator": self.time_gated_delegator,
            "tokensAdopted": self.tokens_adopted,
            "addresses": self.addresses,
            "tokenPairs": self.token_pairs.as_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.as_dict(), indent=2)

    def pformat(self) -> str:
        return pformat(self.addresses)

    def write(self, path: Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wt", encoding="utf-8") as f:
            f.write(self.to_json())


class DeploymentSequencer:
    """Top-level driver of a deployment run."""

    def __init__(
        self,
        backend: DeploymentBackend,
        config: DeploymentConfig,
        owner: HexAddress | str,
        markets: Sequence[Market] = REFERENCE_MARKETS,
    ):
        """
        :param owner:
            Account running the deployment. Becomes the owner argument of the
            commission manager and the time-gated delegator, and gets initial balances.

        :param markets:
            Token pairs to set up
        """
        assert isinstance(backend, DeploymentBackend), f"Got {type(backend)}"
        assert isinstance(config, DeploymentConfig), f"Got {type(config)}"
        self.backend = backend
        self.config = config
        self.owner = Web3.to_checksum_address(owner)
        self.markets = tuple(markets)

        #: All resolved contracts of this run
        self.handles = HandleTable()

        self.proxies = ProxyOwnershipManager(backend)

        self.completed_phases: list[str] = []
        self.current_phase: str | None = None

        #: Role the current sequential step works on, for error reporting
        self.current_role: str | None = None

        self.chain: OwnershipChain | None = None
        self.token_pairs: DryRunSummary | None = None

    @property
    def max_concurrency(self) -> int:
        return self.config.max_pending_txs

    @contextmanager
    def phase(self, name: str):
        """Run a phase, turning any failure into :py:class:`DeploymentAborted`."""
        self.current_phase = name
        self.current_role = None
        logger.info("Phase %s started", name)
        try:
            yield
        except Exception as e:
            role = getattr(e, "label", None) or self.current_role
            where = f" at {role}" if role else ""
            logger.error("Deployment aborted in phase %s%s: %s", name, where, e)
            raise DeploymentAborted(name, role, f"Deployment aborted in phase {name}{where}: {e}") from e
        self.completed_phases.append(name)
        logger.info("Phase %s completed", name)

    def _deploy_action(self, unit: str, *args, role: str) -> DeploymentAction:
        return DeploymentAction(role, partial(self.backend.deploy, unit, *args, role=role))

    def _run_and_register(self, actions: list[DeploymentAction]) -> list[ContractHandle]:
        # Registration happens here, in the orchestrating thread, after the batches settled
        try:
            handles = run_batched(actions, self.max_concurrency)
        except BatchFailure as e:
            # Contracts of the failed group that did deploy exist on chain
            self.handles.register_all([r.value for r in e.results if not r.failed])
            raise
        return self.handles.register_all(handles)

    def deploy_libraries_and_tokens(self):
        actions = [self._deploy_action(lib, role=lib) for lib in LIBRARIES]
        if self.config.existing_tokens:
            logger.info("Using existing tokens, not deploying them")
        else:
            actions += [self._deploy_action(t.unit, role=t.role) for t in TOKENS]
        self._run_and_register(actions)

    def link_libraries(self):
        links = dict(LIBRARY_LINKS)
        if self.config.deploy_fakes:
            links.update(FAKE_LIBRARY_LINKS)

        for unit, libraries in links.items():
            self.current_role = unit
            self.backend.link(unit, {name: self.handles[name] for name in libraries})

    def resolve_tokens(self):
        existing = self.config.existing_tokens
        for token in TOKENS:
            self.current_role = token.role
            if existing:
                self.handles.register(ContractHandle(role=token.role, address=existing[token.name], unit=token.unit))
            else:
                self.handles.get(token.role)

    def deploy_infrastructure(self):
        governance = self.config.existing_governance

        actions = [
            self._deploy_action(FEE_MANAGER_UNIT, role="commissionManagerImplementation"),
            self._deploy_action(DEX_UNIT, role="dexImplementation"),
            self._deploy_action(PROXY_ADMIN_UNIT, role="proxyAdmin"),
        ]

        if self.config.deploy_fakes:
            actions.append(self._deploy_action(DEX_FAKE_UNIT, role="dexFakeImplementation"))

        for role, unit in (("governor", GOVERNOR_UNIT), ("stopper", STOPPER_UNIT)):
            if governance.get(role):
                logger.info("Using existing %s at %s", role, governance[role])
                self.handles.register(ContractHandle(role=role, address=governance[role], unit=unit))
            else:
                actions.append(self._deploy_action(unit, role=role))

        self._run_and_register(actions)

    def get_fee_manager_init_args(self) -> list:
        config = self.config
        return [
            config.beneficiary_address,
            config.scaled("COMMISSION_RATE"),
            config.scaled("CANCELATION_PENALTY_RATE"),
            config.scaled("EXPIRATION_PENALTY_RATE"),
            self.handles["governor"].address,
            self.owner,
            config.scaled("MINIMUM_COMMISSION"),
        ]

    def get_dex_init_args(self) -> list:
        config = self.config
        return [
            self.handles["doc"].address,
            self.handles["commissionManager"].address,
            int(config["ORDERS_FOR_TICK"]),
            int(config["MAX_BLOCKS_FOR_TICK"]),
            int(config["MIN_BLOCKS_FOR_TICK"]),
            int(config["MIN_ORDER_AMOUNT"]),
            config.scaled("MIN_MO_MULTIPLY_FACTOR"),
            config.scaled("MAX_MO_MULTIPLY_FACTOR"),
            int(config["MAX_ORDER_LIFESPAN"]),
            self.handles["governor"].address,
            self.handles["stopper"].address,
        ]

    def create_proxies(self):
        proxy_admin = self.handles["proxyAdmin"]

        self.current_role = "commissionManager"
        self.handles.register(
            self.proxies.create_proxy(
                FEE_MANAGER_UNIT,
                "initialize",
                self.get_fee_manager_init_args(),
                ProxyOptions("commissionManager", proxy_admin, implementation=self.handles["commissionManagerImplementation"]),
            )
        )

        dex_args = self.get_dex_init_args()

        self.current_role = "dex"
        self.handles.register(
            self.proxies.create_proxy(
                DEX_UNIT,
                "initialize",
                dex_args,
                ProxyOptions("dex", proxy_admin, implementation=self.handles["dexImplementation"]),
            )
        )

        if self.config.deploy_fakes:
            self.current_role = "dexFake"
            self.handles.register(
                self.proxies.create_proxy(
                    DEX_FAKE_UNIT,
                    "initialize",
                    dex_args,
                    ProxyOptions("dexFake", proxy_admin, implementation=self.handles["dexFakeImplementation"]),
                )
            )

    def hand_over_ownership(self):
        governor = self.handles["governor"]
        proxy_admin = self.handles["proxyAdmin"]
        self.proxies.start_chain(governor, proxy_admin)

        self.current_role = "commissionManager"
        self.proxies.transfer_ownership(self.handles["commissionManager"], proxy_admin, OwnerStage.admin)

        self.current_role = "upgradeDelegator"
        try:
            self.chain = self.proxies.build_ownership_chain(self.config, governor, proxy_admin, self.owner)
        finally:
            # Registered also when the handoff failed half way
            delegator = self.proxies.chain.delegator
            if delegator is not None and delegator.role not in self.handles:
                self.handles.register(delegator)

    def set_up_markets(self):
        dex = self.handles["dex"]

        actions = []
        for market in self.markets:
            base = self.handles[TOKENS_BY_NAME[market.base].role]
            secondary = self.handles[TOKENS_BY_NAME[market.secondary].role]
            actions.append(
                DeploymentAction(
                    market.provider_role,
                    partial(
                        select_and_deploy,
                        self.backend,
                        self.config,
                        dex.address,
                        market.base,
                        market.secondary,
                        base.address,
                        secondary.address,
                        market.provider_role,
                    ),
                )
            )
        self._run_and_register(actions)

        self.current_role = "dex"
        pairs = plan_token_pairs(self.handles, self.markets, int(self.config["DEFAULT_PRICE_PRECISION"]))
        self.token_pairs = register_token_pairs(self.backend, pairs, dex, self.handles["governor"], self.config.have_to_add_token_pairs)

    def deploy_fixtures(self):
        """Contracts used by the exchange test suite on development networks."""
        if not self.config.deploy_fakes:
            logger.info("Not a fake network, no test fixtures")
            return

        self._run_and_register(
            [
                self._deploy_action("ERC20WithBlacklist", role="erc20WithBlacklist"),
                self._deploy_action("TickStateFake", role="tickStateFake"),
                self._deploy_action("MocStateFake", self.handles["docBproPriceProvider"].address, 0, 0, 0, role="mocStateFake"),
            ]
        )

        self.current_role = "tickStateFake"
        self.proxies.initialize(
            self.handles["tickStateFake"],
            "initialize",
            [
                self.handles["doc"].address,
                self.handles["bpro"].address,
                int(self.config["ORDERS_FOR_TICK"]),
                int(self.config["MAX_BLOCKS_FOR_TICK"]),
                int(self.config["MIN_BLOCKS_FOR_TICK"]),
            ],
        )

    def get_beneficiaries(self) -> list[HexAddress]:
        return list(self.config.addresses_to_have_balance) + [self.owner]

    def mint_balances(self):
        if self.config.existing_tokens:
            logger.info("Tokens were not deployed by us, not minting")
            return

        tokens = [self.handles[t.role] for t in TOKENS if t.mintable]
        mint_initial_balances(
            self.backend,
            tokens,
            self.get_beneficiaries(),
            self.config.scaled("TOKENS_TO_MINT"),
            self.max_concurrency,
        )

    def build_summary(self) -> DeploymentSummary:
        return DeploymentSummary(
            network=self.config.network,
            addresses=self.handles.as_address_map(),
            token_pairs=self.token_pairs,
            time_gated_delegator=self.chain.time_gated,
            tokens_adopted=bool(self.config.existing_tokens),
        )

    def run(self) -> DeploymentSummary:
        """Run all phases.

        :raise DeploymentAborted:
            Some phase failed. ``phase`` and ``role`` tell where.

        :raise DeploymentError:
            This sequencer already ran, successfully or not. Use a new one.
        """
        if self.current_phase is not None:
            raise DeploymentError(f"Sequencer already ran up to phase {self.current_phase}, completed: {', '.join(self.completed_phases) or '-'}")

        logger.info("Deploying to %s as %s, max %d pending transactions", self.config.network, self.owner, self.max_concurrency)

        with self.phase("libraries"):
            self.deploy_libraries_and_tokens()

        with self.phase("linking"):
            self.link_libraries()

        with self.phase("tokens"):
            self.resolve_tokens()

        with self.phase("infrastructure"):
            self.deploy_infrastructure()

        with self.phase("proxies"):
            self.create_proxies()

        with self.phase("ownership"):
            self.hand_over_ownership()

        with self.phase("markets"):
            self.set_up_markets()

        with self.phase("fixtures"):
            self.deploy_fixtures()

        with self.phase("minting"):
            self.mint_balances()

        with self.phase("summary"):
            summary = self.build_summary()

        logger.info("Deployment complete:\n%s", summary.to_json())
        return summary
