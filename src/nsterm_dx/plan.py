"""
Remediation planning.

plan() maps a namespace's blockers to remediation steps in a fixed order:
unavailable APIServices are deleted first (they block enumeration cluster-wide),
then remaining resources, then broken webhooks, and namespace finalizers are
cleared last so resources are never orphaned. Both functions are pure.
"""

from __future__ import annotations

from typing import Iterable

from .model import (
    STEP_ORDER,
    Blocker,
    BlockerKind,
    RemediationStep,
    StepKind,
)


def _steps_for(blocker: Blocker) -> list[RemediationStep]:
    if blocker.kind is BlockerKind.APISERVICE:
        return [RemediationStep(StepKind.DELETE_APISERVICE, target=a.name) for a in blocker.targets]
    if blocker.kind is BlockerKind.RESOURCE:
        return [
            RemediationStep(
                StepKind.FORCE_DELETE_RESOURCES,
                target=blocker.namespace,
                namespace=blocker.namespace,
                resource_kind=entry.kind,
            )
            for entry in blocker.targets
            if entry.count > 0
        ]
    if blocker.kind is BlockerKind.WEBHOOK:
        # Webhooks matched only by namespace selector are reported, not deleted.
        return [
            RemediationStep(StepKind.DELETE_WEBHOOK, target=h.name, webhook_kind=h.kind)
            for h in blocker.targets
            if h.missing_services
        ]
    if blocker.targets:
        return [RemediationStep(StepKind.CLEAR_FINALIZERS, target=blocker.namespace, namespace=blocker.namespace)]
    return []


def _sort_key(step: RemediationStep) -> tuple:
    return (
        STEP_ORDER[step.kind],
        step.namespace or "",
        step.target,
        step.resource_kind or "",
        step.webhook_kind.value if step.webhook_kind else "",
    )


def plan(blockers: Iterable[Blocker]) -> list[RemediationStep]:
    """Ordered, duplicate-free remediation steps for a set of blockers."""
    steps = {step for blocker in blockers for step in _steps_for(blocker)}
    return sorted(steps, key=_sort_key)


def merge_plans(plans: Iterable[Iterable[RemediationStep]]) -> list[RemediationStep]:
    """
    Combine per-namespace plans into one.

    Cluster-scoped steps shared by several namespaces (APIService and webhook
    deletions) appear once. Per-namespace order is preserved because the
    merged list keeps the global step order.
    """
    steps = {step for p in plans for step in p}
    return sorted(steps, key=_sort_key)
