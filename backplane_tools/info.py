"""Version lookup and well-known names shared across the tools."""

from __future__ import annotations

from collections.abc import Callable
from importlib import metadata

BACKPLANE_URL_ENV_NAME = "BACKPLANE_URL"
BACKPLANE_PROXY_ENV_NAME = "HTTPS_PROXY"
BACKPLANE_CONFIG_PATH_ENV_NAME = "BACKPLANE_CONFIG"
BACKPLANE_KUBECONFIG_ENV_NAME = "KUBECONFIG"

BACKPLANE_CONFIG_DEFAULT_FILE_PATH = ".config/backplane"
BACKPLANE_CONFIG_DEFAULT_FILE_NAME = "config.json"

BACKPLANE_DEFAULT_SESSION_DIRECTORY = "backplane"

MONITORING_PLUGIN_NGINX_CONFIG_FILENAME = "monitoring-plugin-nginx-%s.conf"

# Set by the release process; empty when running from a source checkout.
VERSION = ""

_DISTRIBUTION_NAME = "backplane_tools"


def read_build_info() -> str | None:
    """Return the installed distribution's version, or None when it is not installed."""
    try:
        return metadata.version(_DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return None


class InfoService:
    """Works out the version of the running tool from the available sources."""

    def __init__(
        self,
        version: str | None = None,
        build_info: Callable[[], str | None] = read_build_info,
    ) -> None:
        self.version = VERSION if version is None else version
        self.build_info = build_info

    def get_version(self) -> str:
        """Return the preset version, else the build version without a leading 'v', else 'unknown'."""
        if self.version:
            return self.version
        build_version = self.build_info()
        if build_version is not None:
            return build_version.lstrip("v")
        return "unknown"