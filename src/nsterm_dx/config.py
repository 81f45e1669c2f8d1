"""
Constants and defaults for nsterm-dx.

Defines ANSI codes for output formatting, kubectl timeouts, display limits,
and the exit codes the CLI returns.
"""

import os

# ANSI escape sequences for terminal output
BOLD = "\033[1m"   # Start bold
SGR0 = "\033[0m"   # Reset (end bold)

# Seconds before a single kubectl call is abandoned.
KUBECTL_TIMEOUT = 60

# Seconds to wait after a fix pass before re-reading namespace state.
VERIFY_WAIT_SECONDS = 5.0

# Instance names kept per resource kind for display.
SAMPLE_SIZE = 5

# Rows shown in the remaining-resources table before truncating.
MAX_RESOURCE_ROWS = 50

# Worker threads used for per-namespace diagnosis (1 = sequential).
DEFAULT_WORKERS = 1

# API groups whose aggregated APIServices are a recurring cause of stuck namespaces.
KNOWN_BLOCKING_API_GROUPS = ("kyverno", "wgpolicyk8s", "openreports")

# Exit codes
EXIT_OK = 0
EXIT_ERROR = 1        # cannot reach the cluster, or named namespace does not exist
EXIT_UNRESOLVED = 2   # blockers remain after a fix attempt

# Substrings of kubectl stderr that mean the API server could not be reached at all.
CONNECTIVITY_MARKERS = (
    "unable to connect to the server",
    "connection refused",
    "i/o timeout",
    "no such host",
    "tls handshake timeout",
    "context deadline exceeded",
)


def kubectl_binary() -> str:
    """Return the kubectl executable, overridable with NSTERM_DX_KUBECTL."""
    return os.environ.get("NSTERM_DX_KUBECTL", "kubectl")
