"""
Data model for namespace termination diagnosis.

Snapshots (namespaces, API services, webhooks, resource inventories) are
read-only projections of kubectl JSON, built fresh on every run. Blockers,
remediation steps and their results are derived and live for a single
diagnose-to-fix cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Phase(str, Enum):
    ACTIVE = "Active"
    TERMINATING = "Terminating"
    UNKNOWN = "Unknown"


class WebhookKind(str, Enum):
    MUTATING = "Mutating"
    VALIDATING = "Validating"

    @property
    def resource(self) -> str:
        """Kubectl resource name for configurations of this kind."""
        return f"{self.value.lower()}webhookconfiguration"


class BlockerKind(str, Enum):
    FINALIZER = "FinalizerBlocker"
    RESOURCE = "ResourceBlocker"
    APISERVICE = "APIServiceBlocker"
    WEBHOOK = "WebhookBlocker"


class StepKind(str, Enum):
    DELETE_APISERVICE = "DeleteAPIService"
    FORCE_DELETE_RESOURCES = "ForceDeleteResources"
    DELETE_WEBHOOK = "DeleteWebhook"
    CLEAR_FINALIZERS = "ClearFinalizers"


# Execution order: cluster-wide API services first, namespace finalizers last.
STEP_ORDER = {
    StepKind.DELETE_APISERVICE: 0,
    StepKind.FORCE_DELETE_RESOURCES: 1,
    StepKind.DELETE_WEBHOOK: 2,
    StepKind.CLEAR_FINALIZERS: 3,
}


class StepStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    ALREADY_ABSENT = "AlreadyAbsent"
    FAILED = "Failed"
    DRY_RUN = "DryRun"
    DECLINED = "Declined"
    CANCELLED = "Cancelled"


class VerificationOutcome(str, Enum):
    DELETED = "Deleted"
    REVERTED = "Reverted"
    INCOMPLETE = "Incomplete"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class NamespaceSnapshot:
    name: str
    phase: Phase
    deletion_timestamp: Optional[str] = None
    finalizers: tuple[str, ...] = ()
    creation_timestamp: Optional[str] = None
    labels: dict[str, str] = field(default_factory=dict, compare=False)
    conditions: tuple[dict[str, Any], ...] = field(default=(), compare=False)

    @property
    def terminating(self) -> bool:
        return self.phase is Phase.TERMINATING

    @classmethod
    def from_json(cls, obj: dict) -> "NamespaceSnapshot":
        """
        Build a snapshot from `kubectl get namespace -o json` output.

        A set deletionTimestamp always yields Terminating, whatever the
        reported phase says.
        """
        meta = obj.get("metadata", {}) or {}
        status = obj.get("status", {}) or {}
        spec = obj.get("spec", {}) or {}
        deletion_ts = meta.get("deletionTimestamp")
        reported = status.get("phase")
        if deletion_ts or reported == Phase.TERMINATING.value:
            phase = Phase.TERMINATING
        elif reported == Phase.ACTIVE.value:
            phase = Phase.ACTIVE
        else:
            phase = Phase.UNKNOWN
        return cls(
            name=meta.get("name", ""),
            phase=phase,
            deletion_timestamp=deletion_ts,
            finalizers=tuple(spec.get("finalizers") or ()),
            creation_timestamp=meta.get("creationTimestamp"),
            labels=dict(meta.get("labels") or {}),
            conditions=tuple(status.get("conditions") or ()),
        )


@dataclass(frozen=True)
class ResourceInventoryEntry:
    kind: str
    count: int
    sample: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResourceInventory:
    """Live instances per kind in one namespace. Kinds with zero instances are omitted."""

    namespace: str
    entries: tuple[ResourceInventoryEntry, ...] = ()
    skipped_kinds: tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return sum(e.count for e in self.entries)

    def count(self, kind: str) -> int:
        for entry in self.entries:
            if entry.kind == kind:
                return entry.count
        return 0


@dataclass(frozen=True)
class ServiceRef:
    name: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class APIServiceHealth:
    name: str
    available: bool
    reason: str = ""
    message: str = ""
    service: Optional[ServiceRef] = None
    service_exists: Optional[bool] = None
    has_endpoints: Optional[bool] = None

    @classmethod
    def from_json(cls, obj: dict) -> "APIServiceHealth":
        """
        Build from one item of `kubectl get apiservices -o json`.

        Only an Available condition with status "False" marks the service
        unavailable; a missing condition is treated as available.
        """
        meta = obj.get("metadata", {}) or {}
        spec = obj.get("spec", {}) or {}
        cond = next(
            (c for c in (obj.get("status", {}) or {}).get("conditions") or [] if c.get("type") == "Available"),
            {},
        )
        available = cond.get("status") != "False"
        reason = cond.get("reason") or ""
        if not available and not reason:
            reason = "Unknown"
        svc = spec.get("service") or None
        service = None
        if svc and svc.get("name"):
            service = ServiceRef(name=svc["name"], namespace=svc.get("namespace", ""))
        return cls(
            name=meta.get("name", ""),
            available=available,
            reason=reason,
            message=cond.get("message") or "",
            service=service,
        )


@dataclass(frozen=True)
class WebhookService:
    name: str
    namespace: str
    exists: Optional[bool] = None

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class WebhookRef:
    kind: WebhookKind
    name: str
    services: tuple[WebhookService, ...] = ()
    namespace_selectors: tuple[dict, ...] = field(default=(), compare=False)

    @property
    def missing_services(self) -> tuple[WebhookService, ...]:
        return tuple(s for s in self.services if s.exists is False)

    @classmethod
    def from_json(cls, obj: dict) -> "WebhookRef":
        """Build from one item of `kubectl get {mutating,validating}webhookconfigurations -o json`."""
        kind = WebhookKind.MUTATING if obj.get("kind", "").startswith("Mutating") else WebhookKind.VALIDATING
        services: list[WebhookService] = []
        selectors: list[dict] = []
        for hook in obj.get("webhooks") or []:
            svc = (hook.get("clientConfig") or {}).get("service") or {}
            if svc.get("name"):
                ref = WebhookService(name=svc["name"], namespace=svc.get("namespace", ""))
                if ref not in services:
                    services.append(ref)
            if hook.get("namespaceSelector") is not None:
                selectors.append(hook["namespaceSelector"])
        return cls(
            kind=kind,
            name=(obj.get("metadata") or {}).get("name", ""),
            services=tuple(services),
            namespace_selectors=tuple(selectors),
        )


@dataclass(frozen=True)
class ClusterState:
    """Cluster-wide inputs shared by every namespace evaluation in one run."""

    apiservices: tuple[APIServiceHealth, ...] = ()
    webhooks: tuple[WebhookRef, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def unavailable_apiservices(self) -> tuple[APIServiceHealth, ...]:
        return tuple(a for a in self.apiservices if not a.available)


@dataclass(frozen=True)
class Blocker:
    """
    One reason a namespace cannot finish deleting.

    `targets` holds the offending entities: finalizer strings, inventory
    entries, APIServiceHealth or WebhookRef objects depending on `kind`.
    """

    kind: BlockerKind
    namespace: str
    reason: str
    targets: tuple[Any, ...] = ()

    @property
    def target_names(self) -> list[str]:
        names = []
        for t in self.targets:
            if isinstance(t, ResourceInventoryEntry):
                names.append(f"{t.kind} ({t.count})")
            elif isinstance(t, WebhookRef):
                names.append(f"{t.kind.value}WebhookConfiguration/{t.name}")
            else:
                names.append(getattr(t, "name", str(t)))
        return names


@dataclass(frozen=True)
class RemediationStep:
    kind: StepKind
    target: str
    namespace: Optional[str] = None
    resource_kind: Optional[str] = None
    webhook_kind: Optional[WebhookKind] = None

    @property
    def description(self) -> str:
        if self.kind is StepKind.DELETE_APISERVICE:
            return f"Delete unavailable APIService {self.target}"
        if self.kind is StepKind.FORCE_DELETE_RESOURCES:
            return f"Force delete all {self.resource_kind} in namespace {self.namespace}"
        if self.kind is StepKind.DELETE_WEBHOOK:
            kind = self.webhook_kind.value if self.webhook_kind else ""
            return f"Delete {kind.lower()} webhook {self.target}"
        return f"Clear finalizers on namespace {self.target}"

    def command(self, kubeconfig: Optional[str] = None) -> str:
        """Equivalent kubectl command line, for display only."""
        base = "kubectl" + (f" --kubeconfig={kubeconfig}" if kubeconfig else "")
        if self.kind is StepKind.DELETE_APISERVICE:
            return f"{base} delete apiservice {self.target}"
        if self.kind is StepKind.FORCE_DELETE_RESOURCES:
            return f"{base} delete {self.resource_kind} --all -n {self.namespace} --force --grace-period=0"
        if self.kind is StepKind.DELETE_WEBHOOK:
            resource = self.webhook_kind.resource if self.webhook_kind else "webhookconfiguration"
            return f"{base} delete {resource} {self.target}"
        return (
            f"{base} get ns {self.target} -o json | jq '.spec.finalizers = []' | "
            f"{base} replace --raw /api/v1/namespaces/{self.target}/finalize -f -"
        )


@dataclass(frozen=True)
class StepResult:
    step: RemediationStep
    status: StepStatus
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.status is StepStatus.FAILED


@dataclass(frozen=True)
class NamespaceDiagnosis:
    snapshot: NamespaceSnapshot
    inventory: ResourceInventory
    blockers: tuple[Blocker, ...] = ()
    steps: tuple[RemediationStep, ...] = ()


@dataclass(frozen=True)
class VerificationResult:
    namespace: str
    outcome: VerificationOutcome
    blockers: tuple[Blocker, ...] = ()
    detail: str = ""

    @property
    def resolved(self) -> bool:
        return self.outcome is VerificationOutcome.DELETED
