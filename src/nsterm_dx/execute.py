"""
Remediation executor and post-fix verification.

execute() runs an ordered plan through the cluster mutator, one step at a
time, collecting a result per step. A failed step never stops the rest of
the plan and nothing is retried; callers re-run diagnosis after a pass.
verify() waits once, re-reads each namespace and reports what is left.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from .config import VERIFY_WAIT_SECONDS
from .errors import ConnectivityError, KubectlError, MutationError, NamespaceNotFound
from .evaluate import collect_cluster_state, collect_inventory, evaluate
from .kubectl import MutationOutcome
from .model import (
    ClusterState,
    Phase,
    RemediationStep,
    StepKind,
    StepResult,
    StepStatus,
    VerificationOutcome,
    VerificationResult,
)

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    DRY_RUN = "dry-run"
    APPLY = "apply"
    APPLY_WITH_CONFIRMATION = "confirm"


def apply_step(mutator: Any, step: RemediationStep) -> MutationOutcome:
    """Dispatch one step to the matching mutator call."""
    if step.kind is StepKind.DELETE_APISERVICE:
        return mutator.delete_apiservice(step.target)
    if step.kind is StepKind.FORCE_DELETE_RESOURCES:
        return mutator.force_delete_resources(step.resource_kind, step.namespace)
    if step.kind is StepKind.DELETE_WEBHOOK:
        return mutator.delete_webhook(step.webhook_kind, step.target)
    return mutator.clear_finalizers(step.target)


def execute(
    steps: Iterable[RemediationStep],
    mutator: Any,
    mode: Mode,
    confirm: Optional[Callable[[RemediationStep], bool]] = None,
    cancel: Optional[threading.Event] = None,
) -> list[StepResult]:
    """
    Run `steps` in order and report a result for each.

    Args:
        steps: Ordered plan, usually from plan() or merge_plans().
        mutator: Object providing delete_apiservice, force_delete_resources,
            delete_webhook and clear_finalizers.
        mode: DRY_RUN never touches the cluster; APPLY runs every step;
            APPLY_WITH_CONFIRMATION asks `confirm` before each step.
        confirm: Yes/no callback, required for APPLY_WITH_CONFIRMATION.
        cancel: Once set, no further mutating calls are made and the
            remaining steps are reported as Cancelled.

    Returns:
        One StepResult per step, in plan order.
    """
    if mode is Mode.APPLY_WITH_CONFIRMATION and confirm is None:
        raise ValueError("APPLY_WITH_CONFIRMATION requires a confirm callback")

    results: list[StepResult] = []
    for step in steps:
        if cancel is not None and cancel.is_set():
            results.append(StepResult(step, StepStatus.CANCELLED, "cancelled before execution"))
            continue
        if mode is Mode.DRY_RUN:
            results.append(StepResult(step, StepStatus.DRY_RUN, step.description))
            continue
        if mode is Mode.APPLY_WITH_CONFIRMATION and not confirm(step):
            logger.info("declined: %s", step.description)
            results.append(StepResult(step, StepStatus.DECLINED, "not confirmed"))
            continue
        try:
            outcome = apply_step(mutator, step)
        except MutationError as exc:
            logger.warning("step failed: %s: %s", step.description, exc)
            results.append(StepResult(step, StepStatus.FAILED, exc.stderr or str(exc)))
            continue
        if outcome is MutationOutcome.ALREADY_ABSENT:
            logger.info("already absent: %s", step.description)
            results.append(StepResult(step, StepStatus.ALREADY_ABSENT, "target already absent"))
        else:
            results.append(StepResult(step, StepStatus.SUCCEEDED))
    return results


def verify(
    provider: Any,
    namespaces: Iterable[str],
    wait: float = VERIFY_WAIT_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> list[VerificationResult]:
    """
    Re-read each namespace once after a bounded wait.

    A namespace that is gone is Deleted; one that reads back Active is
    Reverted; one still Terminating is Incomplete and carries the blockers
    found by one more evaluation pass. Read failures give Unknown.
    """
    names = list(namespaces)
    if not names:
        return []
    if wait > 0:
        logger.info("waiting %.1fs before verification", wait)
        sleep(wait)

    cluster: Optional[ClusterState] = None
    results: list[VerificationResult] = []
    for name in names:
        try:
            snapshot = provider.get_namespace(name)
        except NamespaceNotFound:
            results.append(VerificationResult(name, VerificationOutcome.DELETED))
            continue
        except KubectlError as exc:
            logger.warning("could not re-read namespace %s: %s", name, exc)
            results.append(VerificationResult(name, VerificationOutcome.UNKNOWN, detail=str(exc)))
            continue

        if snapshot.phase is Phase.ACTIVE:
            logger.warning("namespace %s is Active again after remediation", name)
            results.append(VerificationResult(name, VerificationOutcome.REVERTED, detail="namespace phase is Active"))
        elif snapshot.phase is Phase.TERMINATING:
            try:
                if cluster is None:
                    cluster = collect_cluster_state(provider)
                inventory = collect_inventory(provider, name)
            except ConnectivityError as exc:
                logger.warning("could not re-evaluate namespace %s: %s", name, exc)
                results.append(
                    VerificationResult(name, VerificationOutcome.INCOMPLETE, detail=f"re-evaluation failed: {exc}")
                )
                continue
            blockers = tuple(evaluate(snapshot, inventory, cluster))
            results.append(
                VerificationResult(name, VerificationOutcome.INCOMPLETE, blockers=blockers, detail="still Terminating")
            )
        else:
            results.append(VerificationResult(name, VerificationOutcome.UNKNOWN, detail=f"phase {snapshot.phase.value}"))
    return results
