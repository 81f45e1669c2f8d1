"""Shared fixtures: an in-memory cluster standing in for kubectl."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Optional

import pytest

from nsterm_dx.errors import KubectlError, MutationError, NamespaceNotFound, PartialEnumerationError
from nsterm_dx.kubectl import MutationOutcome
from nsterm_dx.model import (
    APIServiceHealth,
    NamespaceSnapshot,
    Phase,
    ServiceRef,
    WebhookKind,
    WebhookRef,
    WebhookService,
)


def terminating_ns(name: str, finalizers: Iterable[str] = ("kubernetes",), labels: Optional[dict] = None) -> NamespaceSnapshot:
    return NamespaceSnapshot(
        name=name,
        phase=Phase.TERMINATING,
        deletion_timestamp="2024-05-01T10:00:00Z",
        finalizers=tuple(finalizers),
        creation_timestamp="2024-01-01T00:00:00Z",
        labels=labels if labels is not None else {"kubernetes.io/metadata.name": name},
    )


def active_ns(name: str, finalizers: Iterable[str] = ("kubernetes",)) -> NamespaceSnapshot:
    return NamespaceSnapshot(
        name=name,
        phase=Phase.ACTIVE,
        finalizers=tuple(finalizers),
        creation_timestamp="2024-01-01T00:00:00Z",
        labels={"kubernetes.io/metadata.name": name},
    )


def apiservice(name: str, available: bool = True, reason: str = "") -> APIServiceHealth:
    return APIServiceHealth(
        name=name,
        available=available,
        reason=reason if reason or available else "MissingEndpoints",
        service=ServiceRef(name="svc", namespace="kyverno"),
        service_exists=True,
        has_endpoints=available,
    )


def webhook(name: str, service_exists: bool = True, selectors: Iterable[dict] = (), kind=WebhookKind.VALIDATING) -> WebhookRef:
    return WebhookRef(
        kind=kind,
        name=name,
        services=(WebhookService(name=f"{name}-svc", namespace="hooks", exists=service_exists),),
        namespace_selectors=tuple(selectors),
    )


class FakeCluster:
    """
    In-memory provider and mutator.

    Clearing finalizers removes a namespace only once nothing is left in it,
    roughly what the namespace controller does.
    """

    def __init__(
        self,
        namespaces: Iterable[NamespaceSnapshot] = (),
        resources: Optional[dict] = None,
        apiservices: Iterable[APIServiceHealth] = (),
        webhooks: Iterable[WebhookRef] = (),
        failing_kinds: Iterable[str] = (),
        failing_steps: Iterable[tuple] = (),
    ) -> None:
        self.namespaces = {ns.name: ns for ns in namespaces}
        self.resources = resources or {}
        self.apiservices = list(apiservices)
        self.webhooks = list(webhooks)
        self.kinds = ["pods", "configmaps", "persistentvolumeclaims", "widgets.example.com"]
        self.failing_kinds = set(failing_kinds)
        self.failing_steps = set(failing_steps)
        self.mutations: list[tuple] = []

    # read path

    def list_namespaces(self):
        return list(self.namespaces.values())

    def get_namespace(self, name):
        if name not in self.namespaces:
            raise NamespaceNotFound(name)
        return self.namespaces[name]

    def list_resource_kinds(self, namespaced=True):
        return list(self.kinds)

    def list_resource_names(self, kind, namespace):
        if kind in self.failing_kinds:
            raise PartialEnumerationError(kind, namespace, KubectlError("forbidden", stderr="forbidden"))
        return list(self.resources.get(namespace, {}).get(kind, []))

    def count_resources(self, kind, namespace):
        try:
            return len(self.list_resource_names(kind, namespace))
        except PartialEnumerationError:
            return 0

    def list_apiservices(self):
        return list(self.apiservices)

    def list_webhooks(self):
        return list(self.webhooks)

    # write path

    def _check(self, op, target):
        self.mutations.append((op, target))
        if (op, target) in self.failing_steps:
            raise MutationError(f"{op} {target} failed", stderr="forbidden")

    def delete_apiservice(self, name):
        self._check("delete_apiservice", name)
        before = len(self.apiservices)
        self.apiservices = [a for a in self.apiservices if a.name != name]
        return MutationOutcome.APPLIED if len(self.apiservices) < before else MutationOutcome.ALREADY_ABSENT

    def force_delete_resources(self, kind, namespace):
        self._check("force_delete_resources", f"{namespace}/{kind}")
        removed = self.resources.get(namespace, {}).pop(kind, None)
        return MutationOutcome.APPLIED if removed else MutationOutcome.ALREADY_ABSENT

    def delete_webhook(self, kind, name):
        self._check("delete_webhook", name)
        before = len(self.webhooks)
        self.webhooks = [w for w in self.webhooks if w.name != name]
        return MutationOutcome.APPLIED if len(self.webhooks) < before else MutationOutcome.ALREADY_ABSENT

    def clear_finalizers(self, namespace):
        self._check("clear_finalizers", namespace)
        if namespace not in self.namespaces:
            return MutationOutcome.ALREADY_ABSENT
        if any(self.resources.get(namespace, {}).values()):
            self.namespaces[namespace] = replace(self.namespaces[namespace], finalizers=())
        else:
            del self.namespaces[namespace]
        return MutationOutcome.APPLIED


@pytest.fixture
def kyverno_cluster():
    """The kyverno namespace held up only by a broken policy-report APIService."""
    return FakeCluster(
        namespaces=[terminating_ns("kyverno"), active_ns("default")],
        apiservices=[
            apiservice("v1.apps"),
            apiservice("v1alpha2.wgpolicyk8s.io", available=False, reason="MissingEndpoints"),
        ],
    )
