"""Scope resolution: which namespaces a run looks at."""

from __future__ import annotations

import re
from typing import Any, Optional

from .model import NamespaceSnapshot

# RFC 1123 label, the format of every namespace name.
_NAMESPACE_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def is_valid_namespace_name(name: str) -> bool:
    return len(name) <= 63 and bool(_NAMESPACE_RE.match(name))


def resolve_scope(provider: Any, name: Optional[str] = None) -> list[NamespaceSnapshot]:
    """
    Namespaces to diagnose.

    Without a name: every namespace currently Terminating, from a single
    list call. With a name: that namespace alone, whatever its phase.

    Raises:
        ValueError: `name` is not a valid namespace name.
        NamespaceNotFound: the named namespace does not exist.
    """
    if name is None:
        return [ns for ns in provider.list_namespaces() if ns.terminating]
    if not is_valid_namespace_name(name):
        raise ValueError(f"invalid namespace name: {name!r}")
    return [provider.get_namespace(name)]
