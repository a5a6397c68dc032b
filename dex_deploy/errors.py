"""Deployment error taxonomy.

All errors raised by the orchestrator derive from :py:class:`DeploymentError`,
so the deployment script can turn any of them into a non-zero exit.

- :py:class:`ConfigError` is raised before anything touches the chain

- :py:class:`ActionFailure` and its subclasses describe a single failed
  deployment or contract call

- :py:class:`ProxyInitError` and :py:class:`OwnershipTransferError` are
  raised by :py:mod:`dex_deploy.proxy`

- :py:class:`DeploymentAborted` wraps any of the above with the phase
  the run was in
"""

from hexbytes import HexBytes


class DeploymentError(Exception):
    """Base class for all deployment errors."""


class ConfigError(DeploymentError):
    """Missing or invalid configuration parameter."""


class ActionFailure(DeploymentError):
    """A single deployment or contract call failed at the backend."""

    def __init__(self, label: str, msg: str):
        super().__init__(msg)
        #: Logical role or call label of the failed action
        self.label = label


class ContractDeploymentFailed(ActionFailure):
    """Did not get successful tx receipt from a deployment."""

    def __init__(self, label: str, msg: str, tx_hash: HexBytes | None = None):
        super().__init__(label, msg)
        self.tx_hash = tx_hash


class TransactionFailed(ActionFailure):
    """A contract call transaction reverted or could not be broadcast."""

    def __init__(self, label: str, msg: str, tx_hash: HexBytes | None = None):
        super().__init__(label, msg)
        self.tx_hash = tx_hash


class BatchFailure(ActionFailure):
    """One or more actions of a batch group failed.

    The group was drained before this was raised, and no later group was started.
    """

    def __init__(self, results: list, failures: list):
        labels = ", ".join(f.label for f in failures)
        super().__init__(failures[0].label, f"{len(failures)} action(s) failed: {labels}")

        #: Every settled :py:class:`dex_deploy.batch.ActionResult` so far, in input order
        self.results = results

        #: The :py:class:`dex_deploy.batch.ActionResult` entries that failed
        self.failures = failures


class ProxyInitError(DeploymentError):
    """Proxy initializer invoked twice, or with a wrong number of arguments."""


class OwnershipTransferError(DeploymentError):
    """Ownership chain could not be advanced.

    The chain may be left half way, e.g. a delegator initialised but the
    proxy admin still owned by the deployer. Needs manual recovery.
    """


class DeploymentAborted(DeploymentError):
    """The deployment run was aborted in a phase."""

    def __init__(self, phase: str, role: str | None, msg: str):
        super().__init__(msg)
        self.phase = phase
        self.role = role
