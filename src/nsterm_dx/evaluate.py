"""
State collection and the condition evaluator.

collect_cluster_state() and collect_inventory() read what the evaluator
needs from the cluster; evaluate() turns one namespace snapshot plus that
state into the blockers keeping the namespace from being deleted.
"""

from __future__ import annotations

import logging
from typing import Any

from .config import SAMPLE_SIZE
from .errors import ConnectivityError, KubectlError, PartialEnumerationError
from .model import (
    Blocker,
    BlockerKind,
    ClusterState,
    NamespaceSnapshot,
    ResourceInventory,
    ResourceInventoryEntry,
    WebhookRef,
)

logger = logging.getLogger(__name__)


def collect_cluster_state(provider: Any) -> ClusterState:
    """
    Read APIService and webhook state once for the whole run.

    A failed read leaves that list empty and adds a warning; only
    ConnectivityError propagates.
    """
    warnings: list[str] = []
    try:
        apiservices = tuple(provider.list_apiservices())
    except ConnectivityError:
        raise
    except KubectlError as exc:
        logger.warning("APIService state unknown: %s", exc)
        warnings.append(f"APIService state unknown: {exc}")
        apiservices = ()
    try:
        webhooks = tuple(provider.list_webhooks())
    except ConnectivityError:
        raise
    except KubectlError as exc:
        logger.warning("webhook state unknown: %s", exc)
        warnings.append(f"webhook state unknown: {exc}")
        webhooks = ()
    return ClusterState(apiservices=apiservices, webhooks=webhooks, warnings=tuple(warnings))


def collect_inventory(provider: Any, namespace: str, sample_size: int = SAMPLE_SIZE) -> ResourceInventory:
    """
    Count live instances of every discoverable namespaced kind in `namespace`.

    Kinds that cannot be listed are skipped (count 0) and recorded in
    skipped_kinds instead of aborting the enumeration.
    """
    try:
        kinds = provider.list_resource_kinds(namespaced=True)
    except ConnectivityError:
        raise
    except KubectlError as exc:
        logger.warning("could not discover resource kinds for %s: %s", namespace, exc)
        return ResourceInventory(namespace=namespace, skipped_kinds=("api-resources",))

    entries: list[ResourceInventoryEntry] = []
    skipped: list[str] = []
    for kind in kinds:
        try:
            names = provider.list_resource_names(kind, namespace)
        except PartialEnumerationError as exc:
            logger.warning("skipping %s in %s: %s", kind, namespace, exc.stderr or exc)
            skipped.append(kind)
            continue
        if names:
            entries.append(ResourceInventoryEntry(kind=kind, count=len(names), sample=tuple(names[:sample_size])))
    return ResourceInventory(namespace=namespace, entries=tuple(entries), skipped_kinds=tuple(skipped))


def _requirement_matches(expr: dict, labels: dict[str, str]) -> bool:
    key = expr.get("key", "")
    op = expr.get("operator", "")
    values = expr.get("values") or []
    if op == "In":
        return labels.get(key) in values
    if op == "NotIn":
        return key not in labels or labels[key] not in values
    if op == "Exists":
        return key in labels
    if op == "DoesNotExist":
        return key not in labels
    # Unknown operator: assume it may match.
    return True


def selector_targets(selector: dict, labels: dict[str, str]) -> bool:
    """
    True when a non-empty namespace selector could match a namespace with `labels`.

    An empty selector selects every namespace and is not treated as targeting
    any one of them.
    """
    match_labels = selector.get("matchLabels") or {}
    expressions = selector.get("matchExpressions") or []
    if not match_labels and not expressions:
        return False
    if any(labels.get(k) != v for k, v in match_labels.items()):
        return False
    return all(_requirement_matches(e, labels) for e in expressions)


def webhook_blocks(hook: WebhookRef, snapshot: NamespaceSnapshot) -> bool:
    if hook.missing_services:
        return True
    return any(selector_targets(sel, snapshot.labels) for sel in hook.namespace_selectors)


def evaluate(
    snapshot: NamespaceSnapshot,
    inventory: ResourceInventory,
    cluster: ClusterState,
) -> list[Blocker]:
    """
    Blockers for one namespace, in remediation order.

    Namespaces that are not Terminating have no blockers. Each rule is
    checked independently, so several blockers can apply at once.
    """
    if not snapshot.terminating:
        return []
    name = snapshot.name
    blockers: list[Blocker] = []

    unavailable = cluster.unavailable_apiservices
    if unavailable:
        blockers.append(
            Blocker(
                kind=BlockerKind.APISERVICE,
                namespace=name,
                reason=f"{len(unavailable)} unavailable APIService(s) block namespace deletion cluster-wide",
                targets=unavailable,
            )
        )

    if inventory.total > 0:
        blockers.append(
            Blocker(
                kind=BlockerKind.RESOURCE,
                namespace=name,
                reason=f"{inventory.total} resource(s) of {len(inventory.entries)} kind(s) still present",
                targets=inventory.entries,
            )
        )

    hooks = tuple(h for h in cluster.webhooks if webhook_blocks(h, snapshot))
    if hooks:
        broken = sum(1 for h in hooks if h.missing_services)
        blockers.append(
            Blocker(
                kind=BlockerKind.WEBHOOK,
                namespace=name,
                reason=(
                    f"{len(hooks)} webhook(s) may intercept deletion "
                    f"({broken} pointing at missing services)"
                ),
                targets=hooks,
            )
        )

    if snapshot.finalizers:
        blockers.append(
            Blocker(
                kind=BlockerKind.FINALIZER,
                namespace=name,
                reason=f"finalizers still set: {', '.join(snapshot.finalizers)}",
                targets=snapshot.finalizers,
            )
        )
    return blockers
