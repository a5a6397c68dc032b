"""Upgradeable proxies and the upgrade ownership chain.

Upgrade authority flows

.. code-block:: text

    Governor -> UpgradeDelegator -> ProxyAdmin -> TransparentUpgradeableProxy -> logic contract

- Every proxy is created with the :term:`proxy admin` as its admin

- The proxy admin is first owned by the deployer and then handed to the
  delegator, which only acts on the governor's say

- With ``unblockUpgradesAt`` configured the delegator is a
  ``BlockableUpgradeDelegator`` that refuses upgrades until that timestamp

Ownership only moves forward: deployer -> admin -> delegator.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Sequence

from eth_typing import HexAddress

from dex_deploy.backend import DeploymentBackend
from dex_deploy.config import DeploymentConfig
from dex_deploy.errors import ActionFailure, OwnershipTransferError, ProxyInitError
from dex_deploy.handles import ContractHandle


logger = logging.getLogger(__name__)

#: OpenZeppelin transparent proxy, constructor ``(logic, admin, data)``
PROXY_UNIT = "TransparentUpgradeableProxy"

PROXY_ADMIN_UNIT = "ProxyAdmin"

UPGRADE_DELEGATOR_UNIT = "UpgradeDelegator"

BLOCKABLE_UPGRADE_DELEGATOR_UNIT = "BlockableUpgradeDelegator"


class OwnerStage(enum.IntEnum):
    """Who controls a contract's ownership or admin slot."""

    deployer = 0
    admin = 1
    delegator = 2


@dataclass(slots=True)
class ProxyOptions:
    """How to create one upgradeable proxy."""

    #: Role of the proxy handle, e.g. ``dex``
    role: str

    #: Proxy admin that will control upgrades of this proxy
    proxy_admin: ContractHandle

    #: Reuse an already deployed logic contract instead of deploying a new one
    implementation: ContractHandle | None = None

    #: Role for a freshly deployed logic contract, default ``<role>Implementation``
    implementation_role: str | None = None


@dataclass
class OwnershipChain:
    """Who owns what in the upgrade governance.

    :py:attr:`stages` is keyed by contract role and only advances.
    """

    governor: ContractHandle
    proxy_admin: ContractHandle

    #: Set once :py:meth:`ProxyOwnershipManager.build_ownership_chain` deployed it
    delegator: ContractHandle | None = None

    #: ``BlockableUpgradeDelegator`` was used
    time_gated: bool = False

    #: Unix timestamp until which upgrades are blocked
    unblock_upgrades_at: int | None = None

    stages: dict[str, OwnerStage] = field(default_factory=dict)

    def get_stage(self, role: str) -> OwnerStage:
        return self.stages.get(role, OwnerStage.deployer)

    def advance(self, role: str, stage: OwnerStage):
        current = self.get_stage(role)
        if stage <= current:
            raise OwnershipTransferError(f"Ownership of {role} is at {current.name}, cannot move it to {stage.name}")
        self.stages[role] = stage

    @property
    def is_complete(self) -> bool:
        return self.delegator is not None and self.get_stage(self.proxy_admin.role) == OwnerStage.delegator


class ProxyOwnershipManager:
    """Create proxies and drive the ownership handoff.

    Remembers which proxies it has initialised, so that a second
    initialisation is refused before it reaches the chain.
    """

    def __init__(self, backend: DeploymentBackend):
        assert isinstance(backend, DeploymentBackend), f"Got {type(backend)}"
        self.backend = backend
        self.chain: OwnershipChain | None = None
        self._initialized: set[HexAddress] = set()

    def initialize(self, handle: ContractHandle, initializer: str, init_args: Sequence):
        """Run a one-time initializer.

        :raise ProxyInitError:
            Already initialised, or argument count does not match the ABI
        """
        if handle.address in self._initialized:
            raise ProxyInitError(f"{handle.role} at {handle.address} is already initialized")

        inputs = self.backend.get_function_inputs(handle.unit, initializer)
        if inputs is not None and len(inputs) != len(init_args):
            raise ProxyInitError(f"{handle.unit}.{initializer} takes {len(inputs)} arguments ({', '.join(inputs)}), got {len(init_args)}")

        self.backend.call(handle, initializer, *init_args)
        self._initialized.add(handle.address)

    def create_proxy(
        self,
        logical_contract: str,
        initializer: str,
        init_args: Sequence,
        options: ProxyOptions,
    ) -> ContractHandle:
        """Deploy an upgradeable instance of a contract.

        - Deploy the logic contract, unless ``options.implementation`` is given

        - Deploy a transparent proxy pointing to it, administered by ``options.proxy_admin``

        - Call the initializer through the proxy

        :param logical_contract:
            Unit name of the logic contract, e.g. ``MoCDecentralizedExchange``

        :return:
            Handle with the proxy address and the logic contract ABI
        """

        implementation = options.implementation
        if implementation is None:
            implementation = self.backend.deploy(logical_contract, role=options.implementation_role or f"{options.role}Implementation")
        else:
            assert implementation.unit == logical_contract, f"Implementation {implementation} is not {logical_contract}"

        logger.info("Creating proxy %s for %s at %s", options.role, logical_contract, implementation.address)
        proxy = self.backend.deploy(PROXY_UNIT, implementation.address, options.proxy_admin.address, b"", role=f"{options.role}Proxy")

        handle = ContractHandle(role=options.role, address=proxy.address, unit=logical_contract)
        self.initialize(handle, initializer, init_args)
        return handle

    def transfer_ownership(self, handle: ContractHandle, new_owner: ContractHandle, stage: OwnerStage):
        """Hand ``Ownable`` ownership of a contract forward in the chain.

        :raise OwnershipTransferError:
            Backwards move or failed transaction. The stage is not advanced on failure.
        """
        assert self.chain is not None, "start_chain() first"
        current = self.chain.get_stage(handle.role)
        if stage <= current:
            raise OwnershipTransferError(f"Ownership of {handle.role} is at {current.name}, cannot move it to {stage.name}")

        logger.info("Transferring ownership of %s to %s %s", handle.role, stage.name, new_owner.address)
        try:
            self.backend.call(handle, "transferOwnership", new_owner.address)
        except ActionFailure as e:
            raise OwnershipTransferError(
                f"Could not transfer ownership of {handle.role} at {handle.address} to {new_owner.role} at {new_owner.address}, still at {current.name}: {e}"
            ) from e

        self.chain.advance(handle.role, stage)

    def start_chain(self, governor: ContractHandle, proxy_admin: ContractHandle) -> OwnershipChain:
        if self.chain is None:
            self.chain = OwnershipChain(governor=governor, proxy_admin=proxy_admin)
        else:
            assert self.chain.governor == governor and self.chain.proxy_admin == proxy_admin, "Ownership chain already started with different contracts"
        return self.chain

    def build_ownership_chain(
        self,
        config: DeploymentConfig,
        governor: ContractHandle,
        proxy_admin: ContractHandle,
        owner: HexAddress,
    ) -> OwnershipChain:
        """Deploy the upgrade delegator and give it the proxy admin.

        - ``unblockUpgradesAt`` set: ``BlockableUpgradeDelegator.initialize(owner, governor, admin, unblockUpgradesAt)``

        - otherwise: ``UpgradeDelegator.initialize(governor, admin)``

        - then ``proxyAdmin.transferOwnership(delegator)``

        If the initialisation or the transfer fails, the delegator stays deployed
        while the proxy admin stays with the deployer. Nothing is rolled back.
        :py:attr:`OwnershipChain.delegator` is set as soon as the delegator is
        deployed, so the caller can still find it for manual recovery.

        :raise OwnershipTransferError:
            The proxy admin could not be handed over
        """
        chain = self.start_chain(governor, proxy_admin)
        if chain.delegator is not None:
            raise OwnershipTransferError(f"Ownership chain already has delegator {chain.delegator.address}")

        unblock_at = config.unblock_upgrades_at
        if unblock_at:
            logger.info("Deploying time-gated upgrade delegator, upgrades blocked until %d", unblock_at)
            chain.delegator = delegator = self.backend.deploy(BLOCKABLE_UPGRADE_DELEGATOR_UNIT, role="upgradeDelegator")
            chain.time_gated = True
            chain.unblock_upgrades_at = unblock_at
            self.initialize(delegator, "initialize", [owner, governor.address, proxy_admin.address, unblock_at])
        else:
            logger.info("Deploying upgrade delegator")
            chain.delegator = delegator = self.backend.deploy(UPGRADE_DELEGATOR_UNIT, role="upgradeDelegator")
            self.initialize(delegator, "initialize", [governor.address, proxy_admin.address])

        self.transfer_ownership(proxy_admin, delegator, OwnerStage.delegator)
        logger.info("Proxy admin %s is now owned by delegator %s", proxy_admin.address, delegator.address)
        return chain
