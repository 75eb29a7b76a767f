"""Deterministic identifiers for services, plans and clusters.

Plan IDs are derived only from (provider, size or template name, project)
so rebuilding the catalog from the same inputs yields the same IDs.
"""

from __future__ import annotations

import re

ID_PREFIX = "aosb-cluster"

# Backend limit on cluster name length.
MAX_CLUSTER_NAME_LENGTH = 23

_FORBIDDEN = re.compile(r"[^-a-zA-Z0-9]+")


def normalize(raw: str) -> str:
    """Lower-case *raw* and collapse each run of forbidden characters to ``_``."""
    return _FORBIDDEN.sub("_", raw).lower()


def service_id(provider_name: str) -> str:
    return f"{ID_PREFIX}-service-{provider_name.lower()}"


def plan_id(provider_name: str, name: str, group_id: str = "") -> str:
    """Plan ID for an instance size or template name on a provider.

    *group_id* is only given for auto-generated per-project plans.
    """
    result = f"{ID_PREFIX}-plan-{provider_name.lower()}-{name.lower()}"
    if not group_id:
        return result
    return f"{result}-{group_id}"


def cluster_name(instance_id: str) -> str:
    """Derive a backend cluster name from a service instance ID."""
    return instance_id[:MAX_CLUSTER_NAME_LENGTH]
