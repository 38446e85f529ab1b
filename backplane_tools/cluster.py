"""Locating the backplane cluster a command should act on."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from backplane_tools.info import BACKPLANE_URL_ENV_NAME
from backplane_tools.kubeconfig import current_server, default_kubeconfig_path, load_kubeconfig
from backplane_tools.utils import CLUSTER_ID_REGEXP

logger = logging.getLogger(__name__)

_CLUSTER_ID_PATTERN = re.compile(CLUSTER_ID_REGEXP)


@dataclass(frozen=True)
class BackplaneCluster:
    """A cluster reached through backplane."""

    cluster_id: str
    cluster_url: str
    backplane_host: str


def get_cluster_id_and_host_from_cluster_url(cluster_url: str) -> tuple[str, str]:
    """Split a '<host>/backplane/cluster/<id>/' URL into the cluster ID and 'https://<host>'."""
    parts = urlsplit(cluster_url)
    host = parts.netloc.rpartition("@")[2]
    backplane_host = "https://" + host
    match = _CLUSTER_ID_PATTERN.search(parts.path)
    if match is None:
        raise ValueError("couldn't find cluster-id from the backplane cluster url")
    return match.group(1), backplane_host


def _backplane_url_from_env() -> str:
    url = os.environ.get(BACKPLANE_URL_ENV_NAME, "")
    if not url:
        raise ValueError(f"can't find backplane url: {BACKPLANE_URL_ENV_NAME} is not set")
    return url


class ClusterUtils:
    """Finds the target cluster from a search key or from the kubeconfig."""

    def __init__(
        self,
        ocm: Any = None,
        backplane_url_provider: Callable[[], str] | None = None,
        kubeconfig_path: str | None = None,
    ) -> None:
        self.ocm = ocm
        self.backplane_url_provider = backplane_url_provider or _backplane_url_from_env
        self.kubeconfig_path = kubeconfig_path

    def from_config(self) -> BackplaneCluster:
        """Read the cluster from the current context of the kubeconfig."""
        logger.debug("Finding target cluster from kube config")
        path = self.kubeconfig_path or default_kubeconfig_path()
        host = current_server(load_kubeconfig(path))
        cluster_id, backplane_host = get_cluster_id_and_host_from_cluster_url(host)
        cluster = BackplaneCluster(
            cluster_id=cluster_id, cluster_url=host, backplane_host=backplane_host
        )
        logger.debug("Found target cluster: %s", cluster)
        return cluster

    def from_cluster_key(self, cluster_key: str) -> BackplaneCluster:
        """Search OCM for the cluster and build its backplane URL."""
        logger.debug("Finding target cluster with search key %s", cluster_key)
        if self.ocm is None:
            raise RuntimeError("no OCM client configured")
        cluster_id, cluster_name = self.ocm.get_target_cluster(cluster_key)
        backplane_url = self.backplane_url_provider()
        cluster = BackplaneCluster(
            cluster_id=cluster_id,
            cluster_url=f"{backplane_url}/backplane/cluster/{cluster_id}",
            backplane_host=backplane_url,
        )
        logger.debug("Found target cluster %s: %s", cluster_name, cluster)
        return cluster

    def get_backplane_cluster(self, cluster_key: str = "") -> BackplaneCluster:
        """Search by key when one is given, otherwise read the kubeconfig."""
        if cluster_key:
            return self.from_cluster_key(cluster_key)
        return self.from_config()