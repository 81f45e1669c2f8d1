"""
CLI entry point for nsterm-dx.

Parses options and arguments, then delegates to list_terminating(),
run_diagnosis() or run_fix(). Cluster access errors and unknown namespaces
are reported here and turned into exit codes.
"""

from __future__ import annotations

import signal
import sys
import threading
from typing import Optional

import click

from . import __version__
from .config import DEFAULT_WORKERS, EXIT_ERROR, EXIT_OK, VERIFY_WAIT_SECONDS
from .diagnose import list_terminating, run_diagnosis, run_fix
from .errors import ConnectivityError, KubectlError, NamespaceNotFound
from .execute import Mode
from .kubectl import ClusterClient
from .logging_config import resolve_level, setup_logging
from .model import RemediationStep
from .scope import is_valid_namespace_name

# Shown at the bottom of nsterm-dx --help / nsterm-dx -h
EPILOG = """
Examples:

  nsterm-dx list                         # Quick summary of namespaces stuck terminating
  nsterm-dx diagnose                     # Diagnose every terminating namespace
  nsterm-dx diagnose kyverno             # Diagnose why namespace kyverno is stuck
  nsterm-dx fix --dry-run                # Show what would be fixed, change nothing
  nsterm-dx fix kyverno                  # Fix kyverno, confirming each step
  nsterm-dx fix --yes                    # Fix every terminating namespace without prompts
  nsterm-dx --kubeconfig ~/.kube/prod diagnose

Exit codes: 0 ok, 1 cluster unreachable, kubectl failure or namespace missing, 2 blockers remain after fix.
"""


def make_client(kubeconfig: Optional[str], context: Optional[str]) -> ClusterClient:
    return ClusterClient(kubeconfig=kubeconfig, context=context)


def _validate_namespace(ctx: click.Context, param: click.Parameter, value: Optional[str]) -> Optional[str]:
    if value is not None and not is_valid_namespace_name(value):
        raise click.BadParameter(f"{value!r} is not a valid namespace name")
    return value


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(EXIT_ERROR)


def interrupt_handler(cancel: threading.Event):
    """
    SIGINT handler for fix: the first Ctrl-C sets `cancel` so no further
    steps are started; a second one aborts immediately.
    """
    def handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        click.echo("Interrupted: remaining steps will be skipped (Ctrl-C again to abort)", err=True)

    return handler


@click.group(
    context_settings={"help_option_names": ["-h", "--help"]},
    epilog=EPILOG,
)
@click.version_option(version=__version__, prog_name="nsterm-dx")
@click.option(
    "--kubeconfig",
    envvar="KUBECONFIG",
    metavar="PATH",
    help="Kubeconfig file for the cluster (default: $KUBECONFIG or kubectl's default)",
)
@click.option("--context", "kube_context", metavar="NAME", help="Kubeconfig context to use")
@click.option("-v", "--verbose", is_flag=True, help="Log progress to stderr")
@click.option("--debug", is_flag=True, help="Log every kubectl call to stderr")
@click.pass_context
def main(
    ctx: click.Context,
    kubeconfig: Optional[str],
    kube_context: Optional[str],
    verbose: bool,
    debug: bool,
) -> None:
    """
    Diagnose and fix Kubernetes namespaces stuck in Terminating state.

    Checks finalizers, remaining resources, unavailable APIServices and
    webhooks, and builds an ordered remediation plan.
    """
    setup_logging(resolve_level(verbose=verbose, debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["kubeconfig"] = kubeconfig
    ctx.obj["client"] = make_client(kubeconfig, kube_context)


@main.command("list")
@click.pass_context
def list_cmd(ctx: click.Context) -> None:
    """Quick summary of namespaces stuck in Terminating."""
    try:
        list_terminating(ctx.obj["client"])
    except ConnectivityError as exc:
        _fail(f"cannot reach the cluster: {exc}")
    except KubectlError as exc:
        _fail(f"kubectl failed: {exc}")
    sys.exit(EXIT_OK)


@main.command()
@click.argument("namespace", required=False, callback=_validate_namespace)
@click.option(
    "-w",
    "--workers",
    type=click.IntRange(1, 16),
    default=DEFAULT_WORKERS,
    show_default=True,
    help="Namespaces diagnosed in parallel",
)
@click.pass_context
def diagnose(ctx: click.Context, namespace: Optional[str], workers: int) -> None:
    """
    Diagnose NAMESPACE, or every namespace stuck in Terminating.

    Prints blockers and the remediation commands; changes nothing.
    """
    try:
        run_diagnosis(ctx.obj["client"], namespace, workers=workers, kubeconfig=ctx.obj["kubeconfig"])
    except NamespaceNotFound as exc:
        _fail(str(exc))
    except ConnectivityError as exc:
        _fail(f"cannot reach the cluster: {exc}")
    except KubectlError as exc:
        _fail(f"kubectl failed: {exc}")
    sys.exit(EXIT_OK)


@main.command()
@click.argument("namespace", required=False, callback=_validate_namespace)
@click.option("--dry-run", is_flag=True, help="Show what would be done without making changes")
@click.option("-y", "--yes", is_flag=True, help="Apply every step without asking")
@click.option(
    "--wait",
    type=click.FloatRange(min=0),
    default=VERIFY_WAIT_SECONDS,
    show_default=True,
    help="Seconds to wait before verifying",
)
@click.option(
    "-w",
    "--workers",
    type=click.IntRange(1, 16),
    default=DEFAULT_WORKERS,
    show_default=True,
    help="Namespaces diagnosed in parallel",
)
@click.pass_context
def fix(
    ctx: click.Context,
    namespace: Optional[str],
    dry_run: bool,
    yes: bool,
    wait: float,
    workers: int,
) -> None:
    """
    Fix NAMESPACE, or every namespace stuck in Terminating.

    Steps run in order: delete unavailable APIServices, force delete remaining
    resources, delete webhooks whose service is gone, clear finalizers. Each
    step is confirmed unless --yes is given.
    """
    if dry_run:
        mode = Mode.DRY_RUN
    elif yes:
        mode = Mode.APPLY
    else:
        mode = Mode.APPLY_WITH_CONFIRMATION

    def confirm(step: RemediationStep) -> bool:
        return click.confirm(f"{step.description}?", default=False)

    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, interrupt_handler(cancel))
    try:
        code = run_fix(
            ctx.obj["client"],
            namespace,
            mode=mode,
            confirm=confirm,
            wait=wait,
            workers=workers,
            kubeconfig=ctx.obj["kubeconfig"],
            cancel=cancel,
        )
    except NamespaceNotFound as exc:
        _fail(str(exc))
    except ConnectivityError as exc:
        _fail(f"cannot reach the cluster: {exc}")
    except KubectlError as exc:
        _fail(f"kubectl failed: {exc}")
    finally:
        signal.signal(signal.SIGINT, previous)
    sys.exit(code)


if __name__ == "__main__":
    main()
