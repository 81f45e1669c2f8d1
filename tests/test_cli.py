"""Tests for nsterm-dx CLI."""

import signal
import threading

import pytest
from click.testing import CliRunner

from conftest import FakeCluster, terminating_ns

from nsterm_dx import cli
from nsterm_dx.cli import main
from nsterm_dx.config import EXIT_ERROR, EXIT_OK, EXIT_UNRESOLVED
from nsterm_dx.errors import ConnectivityError, KubectlError


@pytest.fixture
def use_cluster(monkeypatch):
    """Route the CLI to an in-memory cluster."""
    def install(cluster):
        seen = {}

        def make_client(kubeconfig, context):
            seen["kubeconfig"] = kubeconfig
            seen["context"] = context
            return cluster

        monkeypatch.setattr(cli, "make_client", make_client)
        return seen

    return install


def test_cli_help():
    """CLI --help exits 0 and shows usage."""
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "nsterm-dx" in result.output
    assert "terminating" in result.output.lower()


def test_list(use_cluster, kyverno_cluster):
    seen = use_cluster(kyverno_cluster)
    result = CliRunner().invoke(main, ["--kubeconfig", "/tmp/kc", "--context", "prod", "list"])
    assert result.exit_code == EXIT_OK
    assert "kyverno" in result.output
    assert seen == {"kubeconfig": "/tmp/kc", "context": "prod"}


def test_diagnose_missing_namespace(use_cluster, kyverno_cluster):
    use_cluster(kyverno_cluster)
    result = CliRunner().invoke(main, ["diagnose", "nope"])
    assert result.exit_code == EXIT_ERROR
    assert "does not exist" in result.output


def test_diagnose_invalid_namespace_name(use_cluster, kyverno_cluster):
    use_cluster(kyverno_cluster)
    result = CliRunner().invoke(main, ["diagnose", "Bad_Name"])
    assert result.exit_code != EXIT_OK
    assert "not a valid namespace name" in result.output


def test_diagnose_unreachable_cluster(use_cluster):
    class Offline(FakeCluster):
        def list_namespaces(self):
            raise ConnectivityError("Unable to connect to the server: connection refused")

    use_cluster(Offline())
    result = CliRunner().invoke(main, ["diagnose"])
    assert result.exit_code == EXIT_ERROR
    assert "cannot reach the cluster" in result.output


def test_diagnose_prints_plan(use_cluster, kyverno_cluster):
    use_cluster(kyverno_cluster)
    result = CliRunner().invoke(main, ["diagnose", "kyverno"])
    assert result.exit_code == EXIT_OK
    assert "APIServiceBlocker" in result.output
    assert "FinalizerBlocker" in result.output
    assert kyverno_cluster.mutations == []


def test_fix_dry_run(use_cluster, kyverno_cluster):
    use_cluster(kyverno_cluster)
    result = CliRunner().invoke(main, ["fix", "--dry-run"])
    assert result.exit_code == EXIT_OK
    assert kyverno_cluster.mutations == []


def test_fix_yes(use_cluster, kyverno_cluster):
    use_cluster(kyverno_cluster)
    result = CliRunner().invoke(main, ["fix", "kyverno", "--yes", "--wait", "0"])
    assert result.exit_code == EXIT_OK
    assert kyverno_cluster.mutations == [
        ("delete_apiservice", "v1alpha2.wgpolicyk8s.io"),
        ("clear_finalizers", "kyverno"),
    ]


def test_fix_confirm_declined(use_cluster, kyverno_cluster):
    """Declining every prompt leaves the namespace stuck and exits non-zero."""
    use_cluster(kyverno_cluster)
    result = CliRunner().invoke(main, ["fix", "--wait", "0"], input="n\nn\n")
    assert result.exit_code == EXIT_UNRESOLVED
    assert kyverno_cluster.mutations == []
    assert "Declined" in result.output


def test_fix_confirm_accepted(use_cluster, kyverno_cluster):
    use_cluster(kyverno_cluster)
    result = CliRunner().invoke(main, ["fix", "--wait", "0"], input="y\ny\n")
    assert result.exit_code == EXIT_OK
    assert "kyverno: deleted" in result.output


def test_fix_remaining_resources(use_cluster):
    cluster = FakeCluster(
        namespaces=[terminating_ns("test1", finalizers=())],
        resources={"test1": {"pods": ["a"]}},
        failing_steps={("force_delete_resources", "test1/pods")},
    )
    use_cluster(cluster)
    result = CliRunner().invoke(main, ["fix", "-y", "--wait", "0"])
    assert result.exit_code == EXIT_UNRESOLVED


class Forbidden(FakeCluster):
    """Cluster whose namespace reads are refused by RBAC."""

    def list_namespaces(self):
        raise KubectlError("Error from server (Forbidden): namespaces is forbidden", stderr="Forbidden")

    def get_namespace(self, name):
        raise KubectlError(f"Error from server (Forbidden): namespaces {name!r} is forbidden", stderr="Forbidden")


@pytest.mark.parametrize(
    "args",
    [
        ["list"],
        ["diagnose"],
        ["diagnose", "kyverno"],
        ["fix", "--yes"],
        ["fix", "kyverno", "--dry-run"],
    ],
)
def test_kubectl_read_failure_exits_with_message(use_cluster, args):
    """A non-connectivity kubectl failure is reported, not raised."""
    use_cluster(Forbidden(namespaces=[terminating_ns("kyverno")]))
    result = CliRunner().invoke(main, args)
    assert result.exit_code == EXIT_ERROR
    assert not isinstance(result.exception, KubectlError)
    assert "kubectl failed" in result.output
    assert "Forbidden" in result.output


def test_fix_hands_cancel_event_to_run_fix(monkeypatch, use_cluster, kyverno_cluster):
    use_cluster(kyverno_cluster)
    seen = {}

    def fake_run_fix(provider, namespace, **kwargs):
        seen.update(kwargs)
        return EXIT_OK

    monkeypatch.setattr(cli, "run_fix", fake_run_fix)
    result = CliRunner().invoke(main, ["fix", "--yes"])
    assert result.exit_code == EXIT_OK
    assert isinstance(seen["cancel"], threading.Event)
    assert not seen["cancel"].is_set()


def test_interrupt_handler_cancels_then_aborts():
    cancel = threading.Event()
    handler = cli.interrupt_handler(cancel)
    handler(signal.SIGINT, None)
    assert cancel.is_set()
    with pytest.raises(KeyboardInterrupt):
        handler(signal.SIGINT, None)
