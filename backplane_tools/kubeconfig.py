"""Reading, writing and adjusting kubeconfig files for backplane logins."""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import shutil
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import yaml

from backplane_tools.info import BACKPLANE_KUBECONFIG_ENV_NAME
from backplane_tools.utils import append_unique_non_empty, ask_question_from_prompt

logger = logging.getLogger(__name__)

ELEVATE_EXTENSION_NAME = "ElevateContext"
ELEVATE_EXTENSION_RETENTION_MINUTES = 20
ELEVATION_IMPERSONATED_USER = "backplane-cluster-admin"

_TEMP_KUBECONFIG_PREFIX = "config"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_TIME_PATTERN = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)

_DEFAULT_KUBECONFIG: dict[str, Any] = {
    "apiVersion": "v1",
    "kind": "Config",
    "preferences": {},
    "clusters": [
        {
            "name": "dummy_cluster",
            "cluster": {
                "server": "https://api-backplane.apps.something.com/backplane/cluster/configcluster",
            },
        }
    ],
    "contexts": [
        {
            "name": "default/test123/anonymous",
            "context": {"cluster": "dummy_cluster", "namespace": "default"},
        }
    ],
    "current-context": "default/test123/anonymous",
    "users": [],
}


def _parse_time(text: str) -> datetime:
    match = _TIME_PATTERN.match(text)
    if match is None:
        raise ValueError(f"invalid timestamp: {text!r}")
    base, fraction, zone = match.groups()
    if fraction:
        base += "." + fraction[:6].ljust(6, "0")
    if zone == "Z":
        zone = "+00:00"
    return datetime.fromisoformat(base + zone)


def _format_time(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ElevateContext:
    """Elevation reasons remembered in a kubeconfig context, with when they were last used."""

    reasons: list[str] = field(default_factory=list)
    last_used: datetime = _EPOCH

    def to_dict(self) -> dict[str, Any]:
        return {"reasons": list(self.reasons), "lastUsed": _format_time(self.last_used)}

    @classmethod
    def from_dict(cls, data: Any) -> ElevateContext:
        """Build from the stored form; raise ValueError if it is malformed."""
        if not isinstance(data, dict):
            raise ValueError("elevate context must be a mapping")
        reasons = data.get("reasons") or []
        if not isinstance(reasons, list) or not all(isinstance(r, str) for r in reasons):
            raise ValueError("elevate context reasons must be a list of strings")
        last_used_raw = data.get("lastUsed")
        if last_used_raw is None:
            last_used = _EPOCH
        elif isinstance(last_used_raw, datetime):
            last_used = last_used_raw
            if last_used.tzinfo is None:
                last_used = last_used.replace(tzinfo=timezone.utc)
        elif isinstance(last_used_raw, str):
            last_used = _parse_time(last_used_raw)
        else:
            raise ValueError("elevate context lastUsed must be a timestamp")
        return cls(reasons=list(reasons), last_used=last_used)


def default_kubeconfig() -> dict[str, Any]:
    """Return a fresh copy of the placeholder kubeconfig used when none is given."""
    return copy.deepcopy(_DEFAULT_KUBECONFIG)


def load_kubeconfig(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read a kubeconfig file into a dict; raise ValueError if it is not a YAML mapping."""
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid kubeconfig {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"invalid kubeconfig {path}: not a mapping")
    return data


def write_kubeconfig(config: dict[str, Any], path: str | os.PathLike[str]) -> None:
    """Write a kubeconfig dict to a file as YAML, replacing what was there."""
    Path(path).write_text(
        yaml.safe_dump(config, default_flow_style=False, sort_keys=False), encoding="utf-8"
    )


def _named(items: Any, name: str) -> dict[str, Any] | None:
    for item in items or []:
        if isinstance(item, dict) and item.get("name") == name:
            return item
    return None


def _current_context(config: dict[str, Any]) -> dict[str, Any] | None:
    name = config.get("current-context")
    if not name:
        return None
    entry = _named(config.get("contexts"), name)
    if entry is None:
        return None
    if not isinstance(entry.get("context"), dict):
        entry["context"] = {}
    return entry["context"]


def current_server(config: dict[str, Any]) -> str:
    """Return the API server URL of the current context's cluster."""
    context = _current_context(config)
    if context is None:
        raise ValueError("invalid configuration: no configuration has been provided")
    cluster_entry = _named(config.get("clusters"), context.get("cluster", ""))
    if cluster_entry is None:
        raise ValueError(
            f"invalid configuration: cluster {context.get('cluster', '')!r} not found"
        )
    server = (cluster_entry.get("cluster") or {}).get("server")
    if not server:
        raise ValueError("invalid configuration: no server found for cluster")
    return server


def default_kubeconfig_path() -> str:
    """Return the kubeconfig file that tools read and modify by default."""
    env_value = os.environ.get(BACKPLANE_KUBECONFIG_ENV_NAME, "")
    candidates = list(dict.fromkeys(p for p in env_value.split(os.pathsep) if p))
    if len(candidates) == 1:
        return candidates[0]
    if candidates:
        for candidate in candidates:
            if os.path.exists(candidate):
                return candidate
        return candidates[-1]
    return str(Path.home() / ".kube" / "config")


def _modify_config(config: dict[str, Any], path: str | None = None) -> None:
    target = Path(path or default_kubeconfig_path())
    target.parent.mkdir(parents=True, exist_ok=True)
    write_kubeconfig(config, target)


def create_temp_kubeconfig(config: dict[str, Any] | None = None) -> str:
    """Write the config (or the placeholder one) to a temporary file and point KUBECONFIG at it."""
    if config is None:
        config = default_kubeconfig()
    handle, path = tempfile.mkstemp(prefix=_TEMP_KUBECONFIG_PREFIX)
    os.close(handle)
    write_kubeconfig(config, path)
    os.environ[BACKPLANE_KUBECONFIG_ENV_NAME] = path
    return path


def remove_temp_kubeconfig() -> None:
    """Delete the file KUBECONFIG points at, if it is set."""
    path = os.environ.get(BACKPLANE_KUBECONFIG_ENV_NAME)
    if path is None:
        return
    try:
        os.remove(path)
    except OSError:
        pass


def _base_path(base_path: str | os.PathLike[str] | None) -> Path:
    return Path(base_path) if base_path else Path.home() / ".kube"


def create_cluster_kubeconfig(
    cluster_id: str,
    config: dict[str, Any],
    base_path: str | os.PathLike[str] | None = None,
) -> str:
    """Write a cluster's own kubeconfig under base_path/<cluster_id>/config and select it."""
    directory = _base_path(base_path) / cluster_id
    directory.mkdir(parents=True, exist_ok=True)
    filename = directory / "config"
    write_kubeconfig(config, filename)
    os.environ[BACKPLANE_KUBECONFIG_ENV_NAME] = str(filename)
    return str(filename)


def remove_cluster_kubeconfig(
    cluster_id: str, base_path: str | os.PathLike[str] | None = None
) -> None:
    """Delete a cluster's own kubeconfig directory, if present."""
    directory = _base_path(base_path) / cluster_id
    if directory.exists():
        shutil.rmtree(directory, ignore_errors=True)


def save_kubeconfig(
    cluster_id: str,
    config: dict[str, Any],
    is_multi: bool,
    kube_path: str = "",
) -> None:
    """Store a login's kubeconfig per cluster (multi mode) or into the default kubeconfig."""
    if is_multi:
        path = create_cluster_kubeconfig(cluster_id, config, kube_path or None)
        if not kube_path:
            print(f"# Execute the following command to log into the cluster {cluster_id} ")
            print(f"export {BACKPLANE_KUBECONFIG_ENV_NAME}={path}")
    else:
        _modify_config(config)
    logger.debug("Wrote Kube configuration")
    logger.debug(json.dumps(config, default=str))


def get_elevate_context_reasons(
    config: dict[str, Any], now: datetime | None = None
) -> list[str]:
    """Return the elevation reasons stored in the current context while still within retention."""
    context = _current_context(config)
    if context is None:
        return []
    entry = _named(context.get("extensions"), ELEVATE_EXTENSION_NAME)
    if entry is None or entry.get("extension") is None:
        return []
    stored = entry["extension"]
    if isinstance(stored, ElevateContext):
        elevate = stored
    else:
        try:
            elevate = ElevateContext.from_dict(stored)
        except ValueError:
            return []
    now = datetime.now(timezone.utc) if now is None else now
    if now - elevate.last_used <= timedelta(minutes=ELEVATE_EXTENSION_RETENTION_MINUTES):
        return list(elevate.reasons)
    return []


def add_elevation_reasons(config: dict[str, Any], reasons: list[str]) -> None:
    """Make the current user impersonate the elevated admin, carrying the given reasons."""
    logger.debug("Adding reason for backplane-cluster-admin elevation")
    context = _current_context(config)
    if context is None:
        raise ValueError("no current kubeconfig context")
    user_entry = _named(config.get("users"), context.get("user", ""))
    if user_entry is None:
        raise ValueError("no current user information")
    if not isinstance(user_entry.get("user"), dict):
        user_entry["user"] = {}
    user = user_entry["user"]
    if not isinstance(user.get("as-user-extra"), dict):
        user["as-user-extra"] = {}
    user["as-user-extra"]["reason"] = list(reasons)
    user["as"] = ELEVATION_IMPERSONATED_USER


def save_elevate_context_reasons(
    config: dict[str, Any],
    reason: str,
    prompt: Callable[[str], str] = ask_question_from_prompt,
    path: str | None = None,
) -> list[str]:
    """Record elevation reasons in the current context and save the kubeconfig."""
    context = _current_context(config)
    if context is None:
        raise ValueError("no current kubeconfig context")

    reasons = append_unique_non_empty(get_elevate_context_reasons(config), reason)
    if not reasons:
        reasons = append_unique_non_empty(
            reasons,
            prompt(
                "Please enter a reason for elevation, it will be stored in current "
                f"context for {ELEVATE_EXTENSION_RETENTION_MINUTES} minutes : "
            ),
        )
    if not reasons:
        raise ValueError("please enter a reason for elevation")

    if not isinstance(context.get("extensions"), list):
        context["extensions"] = []
    stored = ElevateContext(reasons=reasons, last_used=datetime.now(timezone.utc)).to_dict()
    entry = _named(context["extensions"], ELEVATE_EXTENSION_NAME)
    if entry is None:
        context["extensions"].append({"name": ELEVATE_EXTENSION_NAME, "extension": stored})
    else:
        entry["extension"] = stored

    _modify_config(config, path)
    return reasons