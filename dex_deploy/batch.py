"""Run independent deployment actions with bounded concurrency.

Some nodes start dropping transactions when an address has too many of them
pending, RSK nodes do this at around four. :py:func:`run_batched` therefore
runs actions in contiguous groups of at most ``max_concurrency`` and
waits each group to settle before starting the next one.

Example:

.. code-block:: python

    actions = [
        DeploymentAction("TickState", lambda: backend.deploy("TickState")),
        DeploymentAction("SafeTransfer", lambda: backend.deploy("SafeTransfer")),
    ]
    tick_state, safe_transfer = run_batched(actions, max_concurrency=4)

"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from joblib import Parallel, delayed

from dex_deploy.errors import BatchFailure
from dex_deploy.utils import chunked


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeploymentAction:
    """A deferred deployment or contract call.

    Invoking the action performs exactly one backend operation.
    Actions declare no dependencies: the caller runs them only after
    everything they reference exists.
    """

    #: Logical role this action produces, or ``role.method`` for calls
    label: str

    #: Zero-argument callable doing the work
    func: Callable[[], Any]

    def __call__(self) -> Any:
        return self.func()


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Settled outcome of one action."""

    label: str
    value: Any = None
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def settle(action: DeploymentAction) -> ActionResult:
    """Run an action and capture its outcome instead of raising."""
    try:
        return ActionResult(action.label, value=action())
    except Exception as e:
        logger.error("Action %s failed: %s", action.label, e)
        return ActionResult(action.label, error=e)


def run_group(group: Sequence[DeploymentAction]) -> list[ActionResult]:
    """Dispatch all actions of a group at once and wait for all of them.

    :return:
        Results in the order of ``group``, regardless of completion order
    """
    if len(group) == 1:
        return [settle(group[0])]

    worker_processor = Parallel(n_jobs=len(group), backend="threading", pre_dispatch="all", batch_size=1)
    return worker_processor(delayed(settle)(action) for action in group)


def run_batched(actions: Sequence[DeploymentAction], max_concurrency: int) -> list[Any]:
    """Run actions in groups of at most ``max_concurrency``.

    - Groups are contiguous slices of ``actions``

    - All members of a group are dispatched concurrently

    - A group always finishes completely, even if some member fails

    - After a group with a failure, no further group is started

    :param actions:
        Independent actions

    :param max_concurrency:
        Max actions in flight, e.g. ``MAX_PENDING_TXS``

    :raise BatchFailure:
        If any action failed. Carries all settled results.

    :return:
        Action return values in the order of ``actions``
    """
    if type(max_concurrency) != int or max_concurrency < 1:
        raise ValueError(f"max_concurrency must be a positive integer, got {max_concurrency!r}")

    settled: list[ActionResult] = []
    groups = list(chunked(actions, max_concurrency))

    for idx, group in enumerate(groups, start=1):
        logger.info("Running batch %d/%d with %d actions: %s", idx, len(groups), len(group), ", ".join(a.label for a in group))
        results = run_group(group)
        settled.extend(results)

        failures = [r for r in results if r.failed]
        if failures:
            skipped = len(actions) - len(settled)
            logger.error("Batch %d/%d had %d failures, not starting %d remaining actions", idx, len(groups), len(failures), skipped)
            raise BatchFailure(settled, failures) from failures[0].error

    return [r.value for r in settled]
