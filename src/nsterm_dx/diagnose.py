"""
Diagnosis and fix orchestration.

Provides list_terminating() for a quick summary, run_diagnosis() which
prints a full report per terminating namespace (finalizers, remaining
resources, unavailable API services, webhooks, planned remediation), and
run_fix() which applies the merged plan and verifies the result.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional, Sequence

from .config import (
    BOLD,
    DEFAULT_WORKERS,
    EXIT_OK,
    EXIT_UNRESOLVED,
    KNOWN_BLOCKING_API_GROUPS,
    MAX_RESOURCE_ROWS,
    SGR0,
    VERIFY_WAIT_SECONDS,
)
from .evaluate import collect_cluster_state, collect_inventory, evaluate
from .execute import Mode, execute, verify
from .model import (
    BlockerKind,
    ClusterState,
    NamespaceDiagnosis,
    NamespaceSnapshot,
    RemediationStep,
    ResourceInventory,
    StepResult,
    StepStatus,
    VerificationOutcome,
    VerificationResult,
)
from .plan import merge_plans, plan
from .scope import resolve_scope

logger = logging.getLogger(__name__)

SEPARATOR = "----------------------------------------"


def build_diagnosis(provider: Any, snapshot: NamespaceSnapshot, cluster: ClusterState) -> NamespaceDiagnosis:
    """Inventory, blockers and plan for one namespace. Non-terminating namespaces are not enumerated."""
    if not snapshot.terminating:
        return NamespaceDiagnosis(snapshot=snapshot, inventory=ResourceInventory(namespace=snapshot.name))
    inventory = collect_inventory(provider, snapshot.name)
    blockers = evaluate(snapshot, inventory, cluster)
    return NamespaceDiagnosis(
        snapshot=snapshot,
        inventory=inventory,
        blockers=tuple(blockers),
        steps=tuple(plan(blockers)),
    )


def diagnose_all(
    provider: Any,
    snapshots: Sequence[NamespaceSnapshot],
    cluster: ClusterState,
    workers: int = DEFAULT_WORKERS,
) -> list[NamespaceDiagnosis]:
    """
    Diagnose each namespace, optionally on a bounded thread pool.

    Results keep the order of `snapshots`. Cluster-wide state is read once by
    the caller and shared read-only between workers.
    """
    if workers <= 1 or len(snapshots) <= 1:
        return [build_diagnosis(provider, s, cluster) for s in snapshots]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(lambda s: build_diagnosis(provider, s, cluster), snapshots))


def _print_table(headers: Sequence[str], rows: Sequence[Sequence[str]], indent: str = "    ") -> None:
    widths = [max(len(h), *(len(r[i]) for r in rows)) if rows else len(h) for i, h in enumerate(headers)]
    fmt = indent + "  ".join(f"{{{i}:<{w}}}" for i, w in enumerate(widths))
    print(fmt.format(*headers).rstrip())
    print(indent + "  ".join("-" * w for w in widths))
    for row in rows:
        print(fmt.format(*row).rstrip())


def _print_apiservices(cluster: ClusterState) -> None:
    unavailable = cluster.unavailable_apiservices
    if not unavailable:
        print("  APIServices: all available")
        return
    print("  Unavailable APIServices (block deletion of every namespace):")
    for api in unavailable:
        print(f"    {api.name}")
        print(f"      Reason: {api.reason}")
        if api.message:
            print(f"      Message: {api.message}")
        if api.service is not None:
            if api.service_exists is False:
                state = "service does not exist"
            elif api.has_endpoints is False:
                state = "service has no endpoints"
            elif api.has_endpoints:
                state = "service has endpoints"
            else:
                state = "service state unknown"
            print(f"      Service: {api.service} ({state})")


def inventory_rows(inventory: ResourceInventory, limit: int = MAX_RESOURCE_ROWS) -> tuple[list[tuple[str, str]], int]:
    """
    Table rows for the remaining resources, capped near `limit`.

    Returns:
        (rows, hidden) where hidden counts instances of kinds cut off
        entirely once the cap was reached.
    """
    rows: list[tuple[str, str]] = []
    hidden = 0
    for entry in inventory.entries:
        if len(rows) >= limit:
            hidden += entry.count
            continue
        sample = entry.sample[: limit - len(rows)]
        rows.extend((entry.kind, name) for name in sample)
        if entry.count > len(sample):
            rows.append((entry.kind, f"... and {entry.count - len(sample)} more"))
    return rows, hidden


def _print_inventory(inventory: ResourceInventory) -> None:
    if inventory.total == 0:
        print("  Remaining resources: none")
    else:
        print(f"  Remaining resources in namespace ({inventory.total}):")
        rows, hidden = inventory_rows(inventory)
        _print_table(("RESOURCE TYPE", "RESOURCE"), rows)
        if hidden:
            print(f"    ... and {hidden} more in other resource types")
    if inventory.skipped_kinds:
        print(f"  Could not list (counted as 0): {', '.join(inventory.skipped_kinds)}")


def _print_steps(steps: Sequence[RemediationStep], kubeconfig: Optional[str]) -> None:
    rows = [(str(i), s.description, s.command(kubeconfig)) for i, s in enumerate(steps, 1)]
    _print_table(("#", "ACTION", "COMMAND"), rows)


def print_diagnosis(diag: NamespaceDiagnosis, cluster: ClusterState, kubeconfig: Optional[str] = None) -> None:
    """Full report for one namespace."""
    snap = diag.snapshot
    print()
    print(f"{BOLD}Namespace: {snap.name}{SGR0}")
    print(SEPARATOR)
    print(f"  Status: {snap.phase.value}")
    if not snap.terminating:
        print("  Namespace is not in Terminating state; nothing to diagnose.")
        print()
        return
    print(f"  Deletion requested: {snap.deletion_timestamp or '?'}")
    if snap.finalizers:
        print(f"  Finalizers: {', '.join(snap.finalizers)}")
    else:
        print("  Finalizers: none")
    for cond in snap.conditions:
        if cond.get("status") == "True":
            print(f"  Condition {cond.get('type', '?')}: {cond.get('message', '')}")

    _print_inventory(diag.inventory)
    _print_apiservices(cluster)

    hooks = [t for b in diag.blockers if b.kind is BlockerKind.WEBHOOK for t in b.targets]
    if hooks:
        print("  Webhooks that may block deletion:")
        for hook in hooks:
            missing = ", ".join(str(s) for s in hook.missing_services)
            note = f"missing service {missing}" if missing else "namespace selector matches"
            print(f"    {hook.kind.value}WebhookConfiguration/{hook.name} ({note})")

    if not diag.blockers:
        print("  Blockers: none found (deletion may still be in progress)")
        print()
        return
    print("  Blockers:")
    for blocker in diag.blockers:
        print(f"    {blocker.kind.value}: {blocker.reason}")
    if diag.steps:
        print("  Remediation (run in this order; finalizers last):")
        _print_steps(diag.steps, kubeconfig)
    print()


def _print_known_blockers(cluster: ClusterState) -> None:
    known = [
        a for a in cluster.unavailable_apiservices
        if any(group in a.name for group in KNOWN_BLOCKING_API_GROUPS)
    ]
    if known:
        print(f"  Known blocker: {len(known)} Kyverno/policy-report APIService(s) unavailable:")
        for api in known:
            print(f"    {api.name} ({api.reason})")
    else:
        print("  Known blockers: Kyverno/policy-report APIServices OK")


def list_terminating(provider: Any) -> int:
    """
    Print a quick summary of namespaces stuck in Terminating.

    Returns:
        Number of terminating namespaces found.
    """
    print()
    print(f"{BOLD}Namespaces stuck in Terminating{SGR0}")
    print(SEPARATOR)
    snapshots = resolve_scope(provider)
    if not snapshots:
        print("  (none found)")
        print()
        return 0
    cluster = collect_cluster_state(provider)
    unavailable = len(cluster.unavailable_apiservices)
    rows = []
    for snap in snapshots:
        inventory = collect_inventory(provider, snap.name)
        rows.append(
            (
                snap.name,
                snap.deletion_timestamp or "?",
                ",".join(snap.finalizers) or "-",
                str(inventory.total),
            )
        )
    _print_table(("NAMESPACE", "DELETION REQUESTED", "FINALIZERS", "RESOURCES"), rows, indent="  ")
    print()
    print(f"  Unavailable APIServices: {unavailable}")
    _print_known_blockers(cluster)
    print()
    return len(snapshots)


def run_diagnosis(
    provider: Any,
    name: Optional[str] = None,
    workers: int = DEFAULT_WORKERS,
    kubeconfig: Optional[str] = None,
) -> list[NamespaceDiagnosis]:
    """
    Diagnose one namespace, or every terminating namespace, and print a report.

    Raises:
        NamespaceNotFound: `name` does not exist.
        ConnectivityError: the cluster cannot be reached.
    """
    snapshots = resolve_scope(provider, name)
    if not snapshots:
        print("No namespaces in Terminating state found.")
        return []
    cluster = collect_cluster_state(provider)
    for warning in cluster.warnings:
        print(f"Warning: {warning}")
    diagnoses = diagnose_all(provider, snapshots, cluster, workers)
    for diag in diagnoses:
        print_diagnosis(diag, cluster, kubeconfig)

    if len(diagnoses) > 1:
        merged = merge_plans(d.steps for d in diagnoses)
        if merged:
            print(f"{BOLD}Combined remediation for all namespaces{SGR0}")
            print(SEPARATOR)
            _print_steps(merged, kubeconfig)
            print()
    return diagnoses


def _print_results(results: Sequence[StepResult]) -> None:
    rows = [(r.status.value, r.step.description, r.detail if r.status is not StepStatus.DRY_RUN else "") for r in results]
    _print_table(("STATUS", "STEP", "DETAIL"), rows)


def _print_verification(results: Sequence[VerificationResult]) -> None:
    for res in results:
        if res.outcome is VerificationOutcome.DELETED:
            print(f"  {res.namespace}: deleted")
        elif res.outcome is VerificationOutcome.REVERTED:
            print(f"  {res.namespace}: Active again (unexpected; investigate)")
        elif res.outcome is VerificationOutcome.INCOMPLETE:
            print(f"  {res.namespace}: still Terminating")
            for blocker in res.blockers:
                print(f"    {blocker.kind.value}: {blocker.reason}")
            if not res.blockers and res.detail:
                print(f"    {res.detail}")
        else:
            print(f"  {res.namespace}: unknown ({res.detail})")


def run_fix(
    provider: Any,
    name: Optional[str] = None,
    mode: Mode = Mode.APPLY_WITH_CONFIRMATION,
    confirm: Optional[Callable[[RemediationStep], bool]] = None,
    wait: float = VERIFY_WAIT_SECONDS,
    workers: int = DEFAULT_WORKERS,
    kubeconfig: Optional[str] = None,
    cancel: Optional[threading.Event] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> int:
    """
    Diagnose, apply the merged remediation plan, then verify.

    Returns:
        EXIT_OK when nothing is left to do (or in dry-run mode),
        EXIT_UNRESOLVED when a step failed or a namespace is still stuck.
    """
    diagnoses = run_diagnosis(provider, name, workers=workers, kubeconfig=kubeconfig)
    merged = merge_plans(d.steps for d in diagnoses)
    if not merged:
        print("Nothing to fix.")
        return EXIT_OK

    print(f"{BOLD}Applying remediation ({mode.value}){SGR0}")
    print(SEPARATOR)
    results = execute(merged, provider, mode, confirm=confirm, cancel=cancel)
    _print_results(results)
    print()
    if mode is Mode.DRY_RUN:
        return EXIT_OK

    terminating = [d.snapshot.name for d in diagnoses if d.snapshot.terminating]
    print(f"{BOLD}Verification{SGR0}")
    print(SEPARATOR)
    kwargs = {"sleep": sleep} if sleep is not None else {}
    verifications = verify(provider, terminating, wait=wait, **kwargs)
    _print_verification(verifications)
    print()

    failed = [r for r in results if r.failed]
    unresolved = [v for v in verifications if not v.resolved]
    if failed or unresolved:
        logger.info("%d failed step(s), %d unresolved namespace(s)", len(failed), len(unresolved))
        print("Some blockers remain; re-run diagnosis after addressing them.")
        return EXIT_UNRESOLVED
    return EXIT_OK
