"""
nsterm_dx: Diagnose and fix Kubernetes namespaces stuck in Terminating state.

Classifies why a terminating namespace cannot finish deletion (finalizers,
remaining resources, unavailable API services, broken webhooks), builds an
ordered remediation plan, and optionally applies it through kubectl.
"""

__version__ = "0.1.0"
