"""Deployment backend.

The orchestrator only needs to

- deploy a contract unit with constructor arguments and get a handle back

- call a state changing function of a deployed contract and get a receipt back

- link libraries into a unit before it is deployed

:py:class:`DeploymentBackend` is that interface. :py:class:`Web3Backend`
implements it for any JSON-RPC node using web3.py and compiled artifacts.
For unit tests and rehearsals see :py:class:`dex_deploy.testing.InMemoryBackend`.
"""

import abc
import datetime
import logging
import threading
from pathlib import Path
from typing import Any, Type

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.types import TxReceipt

from dex_deploy.abi import get_artifact, get_bytecode, get_function_inputs, get_link_references, has_placeholders, link_libraries, UnlinkedBytecode
from dex_deploy.errors import ContractDeploymentFailed, TransactionFailed
from dex_deploy.handles import ContractHandle


logger = logging.getLogger(__name__)


class DeploymentBackend(abc.ABC):
    """Submit an action, await inclusion, return a handle or fail.

    Implementations must be safe to call from several threads at once,
    as :py:func:`dex_deploy.batch.run_batched` runs a group of actions concurrently.
    """

    @abc.abstractmethod
    def deploy(self, unit: str, *constructor_args, role: str | None = None) -> ContractHandle:
        """Deploy a contract.

        :param unit:
            Contract (artifact) name

        :param role:
            Logical role for the returned handle. Defaults to the unit name.

        :raise ContractDeploymentFailed:
            Deployment did not succeed
        """

    @abc.abstractmethod
    def call(self, handle: ContractHandle, method: str, *args) -> Any:
        """Call a state changing contract function and wait for it.

        :raise TransactionFailed:
            Transaction reverted or could not be broadcast
        """

    @abc.abstractmethod
    def link(self, unit: str, libraries: dict[str, ContractHandle]):
        """Link deployed libraries into a unit, so later deploys of the unit use them."""

    def get_function_inputs(self, unit: str, method: str) -> list[str] | None:
        """Solidity input types of a function, if the backend knows the ABI."""
        return None


class Web3Backend(DeploymentBackend):
    """Deploy compiled artifacts over a JSON-RPC connection.

    Example:

    .. code-block:: python

        web3 = Web3(HTTPProvider(os.environ["JSON_RPC_URL"]))
        account = Account.from_key(os.environ["PRIVATE_KEY"])
        backend = Web3Backend(web3, account, Path("build/contracts"))
        governor = backend.deploy("Governor")

    - With a :py:class:`LocalAccount` the transactions are signed locally and
      the nonce is managed locally, so that several transactions can be
      pending at the same time

    - With an address string the node must have the account unlocked (Anvil, Ganache, Ethereum Tester)

    Nonce allocation and broadcast are serialised behind a lock,
    waiting for receipts is not.
    """

    def __init__(
        self,
        web3: Web3,
        deployer: HexAddress | str | LocalAccount,
        artifacts_path: Path,
        gas: int | None = None,
        confirmation_timeout=datetime.timedelta(minutes=5),
    ):
        """
        :param deployer:
            Deployer account.

            Either address (use node unlocked accounts) or LocalAccount.

        :param artifacts_path:
            Folder of compiled JSON artifacts

        :param gas:
            Gas limit.

            If not set tries to estimate and probably may hit reverts when doing so.

        :param confirmation_timeout:
            How long to wait for each receipt
        """
        assert isinstance(web3, Web3), f"Got {type(web3)}"
        self.web3 = web3
        self.deployer = deployer
        self.artifacts_path = Path(artifacts_path)
        self.gas = gas
        self.confirmation_timeout = confirmation_timeout
        self._lock = threading.Lock()
        self._linked_bytecode: dict[str, str] = {}
        self._nonce: int | None = None

    def __repr__(self):
        return f"<Web3Backend {self.deployer_address} artifacts at {self.artifacts_path}>"

    @property
    def deployer_address(self) -> HexAddress:
        if isinstance(self.deployer, LocalAccount):
            return self.deployer.address
        return Web3.to_checksum_address(self.deployer)

    def get_contract(self, unit: str) -> Type[Contract]:
        """Contract proxy class for calling a deployed unit."""
        artifact = get_artifact(self.artifacts_path, unit)
        return self.web3.eth.contract(abi=artifact["abi"])

    def get_deployable_contract(self, unit: str) -> Type[Contract]:
        """Contract proxy class with creation bytecode, linked if :py:meth:`link` was called.

        :raise UnlinkedBytecode:
            The unit uses libraries and was not linked yet
        """
        artifact = get_artifact(self.artifacts_path, unit)
        bytecode = self._linked_bytecode.get(unit)
        if bytecode is None:
            bytecode = get_bytecode(artifact)
        if has_placeholders(bytecode):
            raise UnlinkedBytecode(f"Contract {unit} needs libraries linked before deployment")
        return self.web3.eth.contract(abi=artifact["abi"], bytecode=bytecode)

    def get_function_inputs(self, unit: str, method: str) -> list[str] | None:
        return get_function_inputs(get_artifact(self.artifacts_path, unit), method)

    def link(self, unit: str, libraries: dict[str, ContractHandle]):
        artifact = get_artifact(self.artifacts_path, unit)
        bytecode = link_libraries(
            get_bytecode(artifact),
            get_link_references(artifact),
            {name: handle.address for name, handle in libraries.items()},
        )
        logger.info("Linked %s into %s", ", ".join(libraries), unit)
        with self._lock:
            self._linked_bytecode[unit] = bytecode

    def _allocate_nonce(self) -> int:
        # Must hold the lock
        if self._nonce is None:
            self._nonce = self.web3.eth.get_transaction_count(self.deployer_address, "pending")
        nonce = self._nonce
        self._nonce += 1
        return nonce

    def _send(self, build, transact) -> HexBytes:
        """Broadcast a transaction.

        :param build:
            Callable taking tx params and returning a built transaction dict, for local signing

        :param transact:
            Callable taking tx params and returning a tx hash, for node unlocked accounts
        """
        with self._lock:
            if isinstance(self.deployer, LocalAccount):
                tx_params = {
                    "from": self.deployer.address,
                    "nonce": self._allocate_nonce(),
                    "chainId": self.web3.eth.chain_id,
                }
                if self.gas:
                    tx_params["gas"] = self.gas
                try:
                    tx_data = build(tx_params)
                    signed_tx = self.deployer.sign_transaction(tx_data)
                    return self.web3.eth.send_raw_transaction(signed_tx.raw_transaction)
                except Exception:
                    # The nonce was not consumed, resync on next send
                    self._nonce = None
                    raise
            else:
                tx_params = {"from": self.deployer}
                if self.gas:
                    tx_params["gas"] = self.gas
                return transact(tx_params)

    def _wait(self, tx_hash: HexBytes) -> TxReceipt:
        return self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.confirmation_timeout.total_seconds())

    def deploy(self, unit: str, *constructor_args, role: str | None = None) -> ContractHandle:
        role = role or unit

        logger.info("Deploying %s as %s", unit, role)
        try:
            Contract = self.get_deployable_contract(unit)
            constructor = Contract.constructor(*constructor_args)
            tx_hash = self._send(constructor.build_transaction, constructor.transact)
            receipt = self._wait(tx_hash)
        except Exception as e:
            # web3 raises a zoo of provider specific exceptions for reverts and RPC errors
            raise ContractDeploymentFailed(role, f"Contract {unit} deployment failed with args {constructor_args}: {e}") from e

        if receipt["status"] != 1:
            raise ContractDeploymentFailed(role, f"Contract {unit} deployment failed with args {constructor_args}, tx hash is {tx_hash.hex()}", tx_hash=tx_hash)

        address = receipt["contractAddress"]
        logger.info("Deployed %s at %s", role, address)
        return ContractHandle(role=role, address=address, unit=unit)

    def call(self, handle: ContractHandle, method: str, *args) -> TxReceipt:
        label = f"{handle.role}.{method}"

        logger.info("Calling %s", label)
        try:
            contract = self.get_contract(handle.unit)(address=handle.address)
            bound_call = getattr(contract.functions, method)(*args)
            tx_hash = self._send(bound_call.build_transaction, bound_call.transact)
            receipt = self._wait(tx_hash)
        except Exception as e:
            raise TransactionFailed(label, f"{label}{args} failed: {e}") from e

        if receipt["status"] != 1:
            raise TransactionFailed(label, f"{label}{args} reverted, tx hash is {tx_hash.hex()}", tx_hash=tx_hash)

        return receipt
