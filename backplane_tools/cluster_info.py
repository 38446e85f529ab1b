"""Printing a short summary of a cluster's state."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Any, Protocol, TextIO

logger = logging.getLogger(__name__)

_FIELD_WIDTH = 25


@dataclass(frozen=True)
class ClusterInfo:
    """The cluster details shown to the user."""

    id: str = ""
    name: str = ""
    state: str = ""
    region: str = ""
    cloud_provider: str = ""
    hypershift_enabled: bool = False
    openshift_version: str = ""
    limited_support_reason_count: int = 0


class ClusterInfoSource(Protocol):
    def get_cluster_info_by_id(self, cluster_id: str) -> ClusterInfo: ...
    def setup_ocm_connection(self) -> Any: ...
    def is_cluster_access_protection_enabled(self, connection: Any, cluster_id: str) -> bool: ...


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _print_field(out: TextIO, name: str, value: Any) -> None:
    out.write(f"{name:<{_FIELD_WIDTH}} {_format_value(value)}\n")


def print_cluster_info(
    ocm: ClusterInfoSource, cluster_id: str, out: TextIO | None = None
) -> None:
    """Print the cluster's basic details, support status and access protection."""
    out = sys.stdout if out is None else out
    try:
        info = ocm.get_cluster_info_by_id(cluster_id)
    except Exception as exc:
        raise RuntimeError(f"error retrieving cluster info: {exc}") from exc

    _print_field(out, "Cluster ID:", info.id)
    _print_field(out, "Cluster Name:", info.name)
    _print_field(out, "Cluster Status:", info.state)
    _print_field(out, "Cluster Region:", info.region)
    _print_field(out, "Cluster Provider:", info.cloud_provider)
    _print_field(out, "Hypershift Enabled:", info.hypershift_enabled)
    _print_field(out, "Version:", info.openshift_version)
    get_limited_support_status(ocm, cluster_id, out)
    get_access_protection_status(ocm, cluster_id, out)
    logger.info("Basic cluster information displayed. clusterID=%s", cluster_id)


def get_access_protection_status(
    ocm: ClusterInfoSource, cluster_id: str, out: TextIO | None = None
) -> str:
    """Print and return 'Enabled' or 'Disabled'; on failure return the error text."""
    out = sys.stdout if out is None else out
    try:
        connection = ocm.setup_ocm_connection()
    except Exception as exc:
        logger.error("Error setting up OCM connection: %s", exc)
        return f"Error setting up OCM connection: {exc}"
    try:
        try:
            enabled = ocm.is_cluster_access_protection_enabled(connection, cluster_id)
        except Exception as exc:
            out.write(f"Error retrieving access protection status:  {exc}\n")
            return f"Error retrieving access protection status: {exc}"
        status = "Enabled" if enabled else "Disabled"
        out.write(f"{'Access Protection:':<{_FIELD_WIDTH}} {status}\n")
        return status
    finally:
        close = getattr(connection, "close", None)
        if connection is not None and callable(close):
            close()


def get_limited_support_status(
    ocm: ClusterInfoSource, cluster_id: str, out: TextIO | None = None
) -> str:
    """Print whether the cluster is in limited support; return the reason count as text."""
    out = sys.stdout if out is None else out
    try:
        info = ocm.get_cluster_info_by_id(cluster_id)
    except Exception as exc:
        return f"Error retrieving cluster info: {exc}"
    status = "Limited Support" if info.limited_support_reason_count != 0 else "Fully Supported"
    out.write(f"{'Limited Support Status: ':<{_FIELD_WIDTH}} {status}\n")
    return str(info.limited_support_reason_count)