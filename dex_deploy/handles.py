"""Deployed contract handles and the run-wide handle table."""

import logging
from dataclasses import dataclass
from typing import Iterator

from eth_typing import HexAddress
from web3 import Web3


logger = logging.getLogger(__name__)


class HandleNotFound(KeyError):
    """A later phase asked for a role no earlier phase produced."""


class HandleAlreadyRegistered(Exception):
    """A role was produced twice."""


@dataclass(frozen=True, slots=True)
class ContractHandle:
    """Reference to a deployed contract.

    - Proxy handles use the unit of the logic contract with the address of the proxy,
      so calls go through the proxy with the logic ABI
    """

    #: Logical role this contract fulfills, e.g. ``proxyAdmin`` or ``docBproPriceProvider``
    role: str

    #: Checksummed address
    address: HexAddress

    #: Artifact name describing the ABI at :py:attr:`address`, e.g. ``CommissionManager``
    unit: str

    def __post_init__(self):
        assert isinstance(self.address, str), f"Got {type(self.address)}"
        assert self.address.startswith("0x"), f"Not a hex address: {self.address}"
        object.__setattr__(self, "address", Web3.to_checksum_address(self.address))

    def __repr__(self):
        return f"<{self.role} {self.unit} at {self.address}>"


class HandleTable:
    """Write-once table of resolved handles keyed by role.

    Each role is written by exactly one phase and read-only afterwards.
    Insertion order is preserved and used for the run summary.
    """

    def __init__(self):
        self._handles: dict[str, ContractHandle] = {}

    def register(self, handle: ContractHandle) -> ContractHandle:
        assert isinstance(handle, ContractHandle), f"Got {type(handle)}"
        if handle.role in self._handles:
            raise HandleAlreadyRegistered(f"Role {handle.role} already resolved to {self._handles[handle.role].address}, cannot set {handle.address}")
        logger.debug("Resolved %s", handle)
        self._handles[handle.role] = handle
        return handle

    def register_all(self, handles: list[ContractHandle]) -> list[ContractHandle]:
        return [self.register(h) for h in handles]

    def get(self, role: str) -> ContractHandle:
        try:
            return self._handles[role]
        except KeyError as e:
            raise HandleNotFound(f"No handle for role {role}, known roles: {', '.join(self._handles)}") from e

    def __getitem__(self, role: str) -> ContractHandle:
        return self.get(role)

    def __contains__(self, role: str) -> bool:
        return role in self._handles

    def __iter__(self) -> Iterator[ContractHandle]:
        return iter(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)

    def has_address(self, address: HexAddress | str) -> bool:
        address = Web3.to_checksum_address(address)
        return any(h.address == address for h in self._handles.values())

    def as_address_map(self) -> dict[str, HexAddress]:
        return {role: h.address for role, h in self._handles.items()}
