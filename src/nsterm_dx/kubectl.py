"""
Kubectl invocation and the cluster client built on it.

All cluster access goes through subprocess kubectl calls with argument
lists (never a shell). ClusterClient is both the read side used for
diagnosis and the write side used to apply remediation steps.
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import replace
from enum import Enum
from typing import Optional

from .config import CONNECTIVITY_MARKERS, KUBECTL_TIMEOUT, kubectl_binary
from .errors import (
    ConnectivityError,
    KubectlError,
    MutationError,
    NamespaceNotFound,
    PartialEnumerationError,
)
from .model import APIServiceHealth, NamespaceSnapshot, WebhookKind, WebhookRef, WebhookService

logger = logging.getLogger(__name__)


class MutationOutcome(str, Enum):
    APPLIED = "Applied"
    ALREADY_ABSENT = "AlreadyAbsent"


def run_kubectl(
    args: list[str],
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
    input_text: Optional[str] = None,
    timeout: int = KUBECTL_TIMEOUT,
) -> subprocess.CompletedProcess:
    """
    Run kubectl with the given args.

    Args:
        args: List of arguments (e.g. ["get", "namespaces", "-o", "json"]).
        kubeconfig: Optional kubeconfig path passed as --kubeconfig.
        context: Optional context name passed as --context.
        input_text: Optional text written to kubectl's stdin (for `-f -`).
        timeout: Seconds before the call is abandoned.

    Returns:
        CompletedProcess with returncode, stdout, stderr.

    Raises:
        ConnectivityError: kubectl is missing or the call timed out.
    """
    cmd = [kubectl_binary()]
    if kubeconfig:
        cmd.append(f"--kubeconfig={kubeconfig}")
    if context:
        cmd.append(f"--context={context}")
    cmd += args
    logger.debug("running: %s", " ".join(cmd))
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            input=input_text,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise ConnectivityError(f"kubectl not found: {cmd[0]}", args=args) from exc
    except subprocess.TimeoutExpired as exc:
        raise ConnectivityError(f"kubectl timed out after {timeout}s", args=args) from exc


def is_connectivity_failure(stderr: str) -> bool:
    text = (stderr or "").lower()
    return any(marker in text for marker in CONNECTIVITY_MARKERS)


def check_result(result: subprocess.CompletedProcess, args: list[str]) -> str:
    """
    Return stdout of a finished kubectl call, raising on failure.

    Raises:
        ConnectivityError: stderr shows the API server was unreachable.
        KubectlError: any other non-zero exit.
    """
    if result.returncode == 0:
        return result.stdout or ""
    stderr = (result.stderr or "").strip()
    error_cls = ConnectivityError if is_connectivity_failure(stderr) else KubectlError
    raise error_cls(
        f"kubectl {' '.join(args)} failed: {stderr or 'exit ' + str(result.returncode)}",
        args=args,
        returncode=result.returncode,
        stderr=stderr,
    )


def items_of(obj: dict) -> list[dict]:
    """Handle both a list response (obj["items"]) and a single-object response."""
    if "items" in obj:
        return list(obj.get("items") or [])
    return [obj] if obj else []


class ClusterClient:
    """
    Reads and writes cluster state through kubectl.

    Reads raise ConnectivityError when the API server is unreachable and
    KubectlError for other failures; count_resources is the one tolerant read.
    Writes return a MutationOutcome or raise MutationError.
    """

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        timeout: int = KUBECTL_TIMEOUT,
    ) -> None:
        self.kubeconfig = kubeconfig
        self.context = context
        self.timeout = timeout

    def _run(self, args: list[str], input_text: Optional[str] = None) -> subprocess.CompletedProcess:
        return run_kubectl(
            args,
            kubeconfig=self.kubeconfig,
            context=self.context,
            input_text=input_text,
            timeout=self.timeout,
        )

    def _output(self, args: list[str], input_text: Optional[str] = None) -> str:
        return check_result(self._run(args, input_text=input_text), args)

    def _json(self, args: list[str]) -> dict:
        out = self._output(args)
        try:
            return json.loads(out) if out.strip() else {}
        except json.JSONDecodeError as exc:
            raise KubectlError(f"kubectl {' '.join(args)} returned invalid JSON", args=args) from exc

    # -- read path ---------------------------------------------------------

    def list_namespaces(self) -> list[NamespaceSnapshot]:
        obj = self._json(["get", "namespaces", "-o", "json"])
        return [NamespaceSnapshot.from_json(item) for item in items_of(obj)]

    def get_namespace(self, name: str) -> NamespaceSnapshot:
        try:
            obj = self._json(["get", "namespace", name, "-o", "json"])
        except ConnectivityError:
            raise
        except KubectlError as exc:
            if exc.not_found:
                raise NamespaceNotFound(name) from exc
            raise
        return NamespaceSnapshot.from_json(obj)

    def list_resource_kinds(self, namespaced: bool = True) -> list[str]:
        """
        Resource kinds from API discovery that can be both listed and deleted.

        Read-only kinds such as pods.metrics.k8s.io are left out. When an
        aggregated API is down, kubectl exits non-zero but still prints every
        kind it could discover; those are returned.
        """
        args = ["api-resources", "--verbs=list,delete", f"--namespaced={'true' if namespaced else 'false'}", "-o", "name"]
        result = self._run(args)
        if result.returncode != 0 and (result.stdout or "").strip() and not is_connectivity_failure(result.stderr):
            logger.warning("API discovery incomplete: %s", (result.stderr or "").strip())
            out = result.stdout
        else:
            out = check_result(result, args)
        return [line.strip() for line in out.splitlines() if line.strip()]

    def list_resource_names(self, kind: str, namespace: str) -> list[str]:
        """
        Names of live instances of `kind` in `namespace`.

        Raises:
            PartialEnumerationError: this kind could not be listed.
        """
        args = ["get", kind, "-n", namespace, "--ignore-not-found", "-o", "name"]
        try:
            out = self._output(args)
        except ConnectivityError:
            raise
        except KubectlError as exc:
            raise PartialEnumerationError(kind, namespace, exc) from exc
        names = []
        for line in out.splitlines():
            line = line.strip()
            if line:
                # -o name prints kind.group/name
                names.append(line.split("/", 1)[-1])
        return names

    def count_resources(self, kind: str, namespace: str) -> int:
        """Instance count of `kind` in `namespace`; a kind that cannot be listed counts 0."""
        try:
            return len(self.list_resource_names(kind, namespace))
        except PartialEnumerationError as exc:
            logger.warning("%s", exc)
            return 0

    def list_apiservices(self) -> list[APIServiceHealth]:
        """
        All APIServices, with unavailable ones enriched by backing-service checks.
        """
        obj = self._json(["get", "apiservices", "-o", "json"])
        services = []
        for item in items_of(obj):
            api = APIServiceHealth.from_json(item)
            if not api.available and api.service is not None:
                api = self._with_backing_service(api)
            services.append(api)
        return services

    def _with_backing_service(self, api: APIServiceHealth) -> APIServiceHealth:
        if api.service is None:
            return api
        try:
            exists = self.service_exists(api.service.name, api.service.namespace)
            endpoints = self.get_service_endpoints(api.service.name, api.service.namespace) if exists else None
        except ConnectivityError:
            raise
        except KubectlError as exc:
            logger.warning("could not check backing service %s of %s: %s", api.service, api.name, exc)
            return api
        return replace(api, service_exists=exists, has_endpoints=bool(endpoints))

    def list_webhooks(self) -> list[WebhookRef]:
        """Mutating and validating webhook configurations, services annotated with existence."""
        hooks = []
        for resource in ("mutatingwebhookconfigurations", "validatingwebhookconfigurations"):
            obj = self._json(["get", resource, "-o", "json"])
            for item in items_of(obj):
                if not item.get("kind"):
                    kind = WebhookKind.MUTATING if resource.startswith("mutating") else WebhookKind.VALIDATING
                    item = dict(item, kind=f"{kind.value}WebhookConfiguration")
                hook = WebhookRef.from_json(item)
                checked = tuple(replace(svc, exists=self._checked_service(hook, svc)) for svc in hook.services)
                hooks.append(replace(hook, services=checked))
        return hooks

    def _checked_service(self, hook: WebhookRef, svc: WebhookService) -> Optional[bool]:
        """Existence of one webhook service; None when the lookup itself failed."""
        try:
            return self.service_exists(svc.name, svc.namespace)
        except ConnectivityError:
            raise
        except KubectlError as exc:
            logger.warning("could not check service %s of webhook %s: %s", svc, hook.name, exc)
            return None

    def service_exists(self, name: str, namespace: str) -> bool:
        args = ["get", "service", name, "-n", namespace, "--ignore-not-found", "-o", "name"]
        return bool(self._output(args).strip())

    def get_service_endpoints(self, name: str, namespace: str) -> Optional[list[str]]:
        """Ready endpoint addresses of a service, or None when no Endpoints object exists."""
        args = ["get", "endpoints", name, "-n", namespace, "--ignore-not-found", "-o", "json"]
        out = self._output(args)
        if not out.strip():
            return None
        try:
            obj = json.loads(out)
        except json.JSONDecodeError as exc:
            raise KubectlError(f"kubectl {' '.join(args)} returned invalid JSON", args=args) from exc
        return [
            addr.get("ip", "")
            for subset in obj.get("subsets") or []
            for addr in subset.get("addresses") or []
        ]

    # -- write path --------------------------------------------------------

    def _mutate(self, args: list[str], input_text: Optional[str] = None) -> MutationOutcome:
        try:
            out = self._output(args, input_text=input_text)
        except ConnectivityError as exc:
            raise MutationError(str(exc), args=args, returncode=exc.returncode, stderr=exc.stderr) from exc
        except KubectlError as exc:
            if exc.not_found:
                return MutationOutcome.ALREADY_ABSENT
            raise MutationError(str(exc), args=args, returncode=exc.returncode, stderr=exc.stderr) from exc
        logger.info("kubectl %s: %s", " ".join(args[:3]), out.strip() or "ok")
        return MutationOutcome.APPLIED

    def delete_apiservice(self, name: str) -> MutationOutcome:
        return self._mutate(["delete", "apiservice", name])

    def force_delete_resources(self, kind: str, namespace: str) -> MutationOutcome:
        return self._mutate(
            [
                "delete", kind, "--all", "-n", namespace,
                "--force", "--grace-period=0", "--ignore-not-found", "--wait=false",
            ]
        )

    def delete_webhook(self, kind: WebhookKind, name: str) -> MutationOutcome:
        return self._mutate(["delete", kind.resource, name])

    def clear_finalizers(self, namespace: str) -> MutationOutcome:
        """
        Empty spec.finalizers through the namespace finalize sub-resource.

        The namespace object is re-read, its spec.finalizers replaced by [],
        and the result PUT to /api/v1/namespaces/<name>/finalize.
        """
        try:
            obj = self._json(["get", "namespace", namespace, "-o", "json"])
        except KubectlError as exc:
            if exc.not_found and not isinstance(exc, ConnectivityError):
                return MutationOutcome.ALREADY_ABSENT
            raise MutationError(str(exc), args=exc.kubectl_args, returncode=exc.returncode, stderr=exc.stderr) from exc
        obj.setdefault("spec", {})["finalizers"] = []
        return self._mutate(
            ["replace", "--raw", f"/api/v1/namespaces/{namespace}/finalize", "-f", "-"],
            input_text=json.dumps(obj),
        )
