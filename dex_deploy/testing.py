"""In-memory deployment backend.

Simulates just enough of the chain to rehearse a deployment run:
addresses are allocated deterministically, deployments and calls are
recorded, and a few contract behaviours the orchestrator relies on are
emulated:

- ``initialize`` succeeds once per address, like OpenZeppelin ``Initializable``

- ``transferOwnership`` updates :py:attr:`InMemoryBackend.owners`

- ``mint`` updates :py:attr:`InMemoryBackend.balances`

Used in the unit tests and by ``scripts/deploy-dex.py`` with ``DRY_RUN_BACKEND=true``.
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from eth_typing import HexAddress
from web3 import Web3

from dex_deploy.backend import DeploymentBackend
from dex_deploy.errors import ContractDeploymentFailed, TransactionFailed
from dex_deploy.handles import ContractHandle


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RecordedDeployment:
    unit: str
    role: str
    address: HexAddress
    args: tuple


@dataclass(frozen=True, slots=True)
class RecordedCall:
    role: str
    address: HexAddress
    method: str
    args: tuple


@dataclass
class InMemoryBackend(DeploymentBackend):
    """A fake chain for rehearsals and tests.

    Example:

    .. code-block:: python

        backend = InMemoryBackend(deployer="0x0000000000000000000000000000000000000Dea", fail_units={"Stopper"})
        with pytest.raises(ContractDeploymentFailed):
            backend.deploy("Stopper")

    """

    #: Default owner of every deployed contract
    deployer: HexAddress = "0x000000000000000000000000000000000000dEaD"

    #: Simulated latency of each deployment or call, seconds
    latency: float = 0.0

    #: Deployments of these units fail
    fail_units: set = field(default_factory=set)

    #: Calls of these methods fail, as ``method`` or ``role.method``
    fail_calls: set = field(default_factory=set)

    #: Unit -> method -> input types, to emulate ABI knowledge
    abis: dict = field(default_factory=dict)

    #: Units whose bytecode references libraries: unit -> library names
    link_references: dict = field(default_factory=dict)

    deployments: list = field(default_factory=list)
    calls: list = field(default_factory=list)
    links: dict = field(default_factory=dict)

    #: Contract address -> owner address
    owners: dict = field(default_factory=dict)

    #: Addresses that had ``initialize`` called
    initialized: set = field(default_factory=set)

    #: Token address -> holder address -> amount
    balances: dict = field(default_factory=lambda: defaultdict(lambda: defaultdict(int)))

    #: Highest number of actions in flight at the same time
    max_in_flight: int = 0

    def __post_init__(self):
        self.deployer = Web3.to_checksum_address(self.deployer)
        self._lock = threading.Lock()
        self._counter = 0
        self._in_flight = 0

    def _enter(self):
        with self._lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)

    def _leave(self):
        with self._lock:
            self._in_flight -= 1

    def _next_address(self) -> HexAddress:
        with self._lock:
            self._counter += 1
            return Web3.to_checksum_address(f"0x{0xC0DE0000 + self._counter:040x}")

    def deploy(self, unit: str, *constructor_args, role: str | None = None) -> ContractHandle:
        role = role or unit
        self._enter()
        try:
            if self.latency:
                time.sleep(self.latency)

            if unit in self.fail_units:
                raise ContractDeploymentFailed(role, f"Simulated deployment failure of {unit}")

            missing = set(self.link_references.get(unit, ())) - set(self.links.get(unit, {}))
            if missing:
                raise ContractDeploymentFailed(role, f"Contract {unit} needs libraries linked before deployment: {', '.join(sorted(missing))}")

            address = self._next_address()
            with self._lock:
                self.deployments.append(RecordedDeployment(unit, role, address, tuple(constructor_args)))
                self.owners[address] = self.deployer
            logger.debug("Deployed %s as %s at %s", unit, role, address)
            return ContractHandle(role=role, address=address, unit=unit)
        finally:
            self._leave()

    def call(self, handle: ContractHandle, method: str, *args) -> Any:
        label = f"{handle.role}.{method}"
        self._enter()
        try:
            if self.latency:
                time.sleep(self.latency)

            if method in self.fail_calls or label in self.fail_calls:
                raise TransactionFailed(label, f"Simulated failure of {label}")

            with self._lock:
                if method == "initialize":
                    if handle.address in self.initialized:
                        raise TransactionFailed(label, "Initializable: contract is already initialized")
                    self.initialized.add(handle.address)
                elif method == "transferOwnership":
                    (new_owner,) = args
                    self.owners[handle.address] = Web3.to_checksum_address(new_owner)
                elif method == "mint":
                    holder, amount = args
                    self.balances[handle.address][Web3.to_checksum_address(holder)] += amount

                self.calls.append(RecordedCall(handle.role, handle.address, method, tuple(args)))
            return {"status": 1}
        finally:
            self._leave()

    def link(self, unit: str, libraries: dict[str, ContractHandle]):
        with self._lock:
            self.links.setdefault(unit, {}).update({name: h.address for name, h in libraries.items()})

    def get_function_inputs(self, unit: str, method: str) -> list[str] | None:
        return self.abis.get(unit, {}).get(method)

    def get_deployments(self, unit: str) -> list[RecordedDeployment]:
        return [d for d in self.deployments if d.unit == unit]

    def get_calls(self, method: str, role: str | None = None) -> list[RecordedCall]:
        return [c for c in self.calls if c.method == method and (role is None or c.role == role)]
