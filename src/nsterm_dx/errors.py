"""
Error taxonomy for nsterm-dx.

Only ConnectivityError is fatal to a diagnostic pass. Enumeration and
mutation failures are recovered where they happen and reported per kind or
per step; NamespaceNotFound is a scope condition the CLI reports.
"""

from __future__ import annotations

from typing import Optional, Sequence


class NstermDxError(Exception):
    """Base class for nsterm-dx errors."""


class KubectlError(NstermDxError):
    """A kubectl invocation failed."""

    def __init__(
        self,
        message: str,
        args: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.kubectl_args = list(args or [])
        self.returncode = returncode
        self.stderr = stderr or ""

    @property
    def not_found(self) -> bool:
        """True when kubectl reported the target object as missing."""
        text = self.stderr.lower()
        return "notfound" in text or "not found" in text


class ConnectivityError(KubectlError):
    """The API server could not be reached at all."""


class PartialEnumerationError(KubectlError):
    """Listing one resource kind failed; the rest of the enumeration continues."""

    def __init__(self, kind: str, namespace: str, cause: KubectlError) -> None:
        super().__init__(
            f"could not list {kind} in namespace {namespace}: {cause}",
            args=cause.kubectl_args,
            returncode=cause.returncode,
            stderr=cause.stderr,
        )
        self.kind = kind
        self.namespace = namespace


class MutationError(KubectlError):
    """A remediation write call failed."""


class NamespaceNotFound(NstermDxError):
    """The named namespace does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(f"namespace {name!r} does not exist")
        self.name = name
