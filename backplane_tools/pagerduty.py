"""PagerDuty incidents and alerts, reduced to the cluster they concern."""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.pagerduty.com"

STATUS_TRIGGERED = "triggered"
STATUS_ACKNOWLEDGED = "acknowledged"
STATUS_HIGH = "high"
STATUS_LOW = "low"

_NOT_AVAILABLE = "N/A"
_ACCEPT = "application/vnd.pagerduty+json;version=2"


class PagerDutyAPIError(Exception):
    """The PagerDuty API answered with an error status."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


@dataclass
class Alert:
    """The data of one alert that the tools care about."""

    id: str = ""
    name: str = ""
    incident_id: str = ""
    severity: str = ""
    status: str = ""
    created_at: datetime | None = None
    web_url: str = ""
    cluster_id: str = ""
    cluster_name: str = ""


class PagerDutyClient(Protocol):
    def list_incidents(self, params: dict[str, Any] | None = None) -> dict[str, Any]: ...
    def list_incident_alerts(self, incident_id: str) -> list[dict[str, Any]]: ...
    def get_service(self, service_id: str) -> dict[str, Any]: ...


class PagerDutyHTTPClient:
    """A small client for the PagerDuty REST API."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL) -> None:
        self.base_url = base_url.rstrip("/")
        self._auth_token: str | None = None

    def connect(self, auth_token: str) -> None:
        """Remember the API token used for every later request."""
        if not auth_token:
            raise ValueError("empty pagerduty token")
        self._auth_token = auth_token

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        if self._auth_token is None:
            raise RuntimeError("pagerduty client is not connected")
        url = self.base_url + path
        if params:
            url += "?" + urllib.parse.urlencode(params, doseq=True)
        request = urllib.request.Request(
            url,
            headers={
                "Accept": _ACCEPT,
                "Content-Type": "application/json",
                "Authorization": f"Token token={self._auth_token}",
            },
        )
        try:
            with urllib.request.urlopen(request) as response:
                payload = response.read()
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")
            raise PagerDutyAPIError(
                f"HTTP response failed with status code {exc.code}: {body}", exc.code
            ) from exc
        data = json.loads(payload or b"{}")
        if not isinstance(data, dict):
            raise PagerDutyAPIError("unexpected response from PagerDuty")
        return data

    def list_incidents(self, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Return one page of incidents matching the query parameters."""
        return self._get("/incidents", params)

    def list_incident_alerts(self, incident_id: str) -> list[dict[str, Any]]:
        """Return the alerts of an incident."""
        quoted = urllib.parse.quote(incident_id, safe="")
        return list(self._get(f"/incidents/{quoted}/alerts").get("alerts") or [])

    def get_service(self, service_id: str) -> dict[str, Any]:
        """Return a service by its ID."""
        quoted = urllib.parse.quote(service_id, safe="")
        return dict(self._get(f"/services/{quoted}").get("service") or {})


def _sprint(value: Any) -> str:
    """Render a decoded JSON value the way a plain print of it reads."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_sprint(item) for item in value) + "]"
    if isinstance(value, dict):
        inner = " ".join(f"{_sprint(k)}:{_sprint(v)}" for k, v in sorted(value.items()))
        return f"map[{inner}]"
    return str(value)


class PagerDuty:
    """Reads incident alerts and works out which cluster they belong to."""

    def __init__(self, client: PagerDutyClient) -> None:
        self.client = client

    def get_incident_alerts(self, incident_id: str) -> list[Alert]:
        """Return every alert of an incident, formatted."""
        try:
            raw_alerts = self.client.list_incident_alerts(incident_id)
        except PagerDutyAPIError as exc:
            if exc.rate_limited:
                raise PagerDutyAPIError("API rate limited", exc.status_code) from exc
            raise PagerDutyAPIError(
                f"status code: {exc.status_code}, error: {exc}", exc.status_code
            ) from exc
        return [self.format_alert(alert) for alert in raw_alerts]

    def format_alert(self, alert: dict[str, Any]) -> Alert:
        """Reduce a raw alert to an Alert, resolving its cluster ID and name."""
        result = Alert(
            incident_id=(alert.get("incident") or {}).get("id", ""),
            name=alert.get("summary", ""),
            status=alert.get("status", ""),
            web_url=alert.get("html_url", ""),
        )
        details = (alert.get("body") or {}).get("details")
        if not isinstance(details, dict):
            raise ValueError("alert body has no details")

        notes = details.get("notes")
        if notes is not None:
            # Cluster-has-gone-missing alerts carry the cluster in their notes.
            lines = _sprint(notes).split("\n")
            logger.debug("alert notes: %s", lines)
            result.cluster_id = lines[0].replace("cluster_id: ", "", 1)
            result.cluster_name = _sprint(details.get("name")).split(".")[0]
        else:
            result.cluster_id = _sprint(details.get("cluster_id"))
            service_id = (alert.get("service") or {}).get("id", "")
            try:
                result.cluster_name = self.get_cluster_name(service_id)
            except (PagerDutyAPIError, OSError, ValueError, KeyError):
                result.cluster_name = _NOT_AVAILABLE

        if not result.cluster_id:
            result.cluster_id = _NOT_AVAILABLE
        return result

    def get_cluster_name(self, service_id: str) -> str:
        """Return the cluster name, the first word of the service description."""
        service = self.client.get_service(service_id)
        return (service.get("description") or "").split(" ")[0]

    def get_cluster_info_from_incident(self, incident_id: str) -> Alert:
        """Return the alert describing the incident's cluster; all alerts must agree on it."""
        alerts = self.get_incident_alerts(incident_id)
        if not alerts:
            raise LookupError("no alerts found for the given incident ID")
        first = alerts[0]
        if any(alert.cluster_id != first.cluster_id for alert in alerts):
            raise ValueError("not all alerts have the same cluster ID")
        return first


def new_with_token(auth_token: str, base_url: str = DEFAULT_BASE_URL) -> PagerDuty:
    """Return a PagerDuty connected with the given API token."""
    client = PagerDutyHTTPClient(base_url)
    client.connect(auth_token)
    return PagerDuty(client)