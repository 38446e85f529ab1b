import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from backplane_tools.pagerduty import (
    STATUS_ACKNOWLEDGED,
    STATUS_TRIGGERED,
    Alert,
    PagerDuty,
    PagerDutyAPIError,
    PagerDutyHTTPClient,
    new_with_token,
)

INCIDENT_ID = "incident-id-000"
CLUSTER_ID = "cluster-id-000"
SERVICE_ID = "service-id-000"
CLUSTER_NAME = "test-cluster-name"
ALERT_NAME = "alert-error-budget"


def alert(incident_id, service_id, name, cluster_id, status):
    body = {"details": {"cluster_id": cluster_id}}
    if name == "CHGM":
        body = {"details": {"notes": ["cluster_id: " + cluster_id]}}
    return {
        "incident": {"id": incident_id},
        "service": {"id": service_id},
        "summary": name,
        "body": body,
        "status": status,
    }


class FakeClient:
    def __init__(self, alerts=None, service=None, alerts_error=None, service_error=None):
        self.alerts = alerts or []
        self.service = service
        self.alerts_error = alerts_error
        self.service_error = service_error
        self.alert_calls = []
        self.service_calls = []

    def list_incidents(self, params=None):
        return {"incidents": []}

    def list_incident_alerts(self, incident_id):
        self.alert_calls.append(incident_id)
        if self.alerts_error:
            raise self.alerts_error
        return self.alerts

    def get_service(self, service_id):
        self.service_calls.append(service_id)
        if self.service_error:
            raise self.service_error
        return self.service


def test_returns_incident_alerts():
    client = FakeClient(
        alerts=[alert(INCIDENT_ID, SERVICE_ID, ALERT_NAME, CLUSTER_ID, STATUS_TRIGGERED)],
        service={"description": CLUSTER_NAME},
    )
    alerts = PagerDuty(client).get_incident_alerts(INCIDENT_ID)
    assert len(alerts) == 1
    assert client.alert_calls == [INCIDENT_ID]
    assert client.service_calls == [SERVICE_ID]


def test_returns_cluster_id_for_incident():
    client = FakeClient(
        alerts=[alert(INCIDENT_ID, SERVICE_ID, ALERT_NAME, CLUSTER_ID, STATUS_TRIGGERED)],
        service={"description": CLUSTER_NAME},
    )
    info = PagerDuty(client).get_cluster_info_from_incident(INCIDENT_ID)
    assert info.cluster_id == CLUSTER_ID


def test_no_alerts_raises():
    client = FakeClient(alerts=[])
    with pytest.raises(LookupError, match="no alerts found"):
        PagerDuty(client).get_cluster_info_from_incident(INCIDENT_ID)


def test_format_alert():
    client = FakeClient(service={"description": CLUSTER_NAME})
    raw = alert(INCIDENT_ID, SERVICE_ID, ALERT_NAME, CLUSTER_ID, STATUS_TRIGGERED)
    formatted = PagerDuty(client).format_alert(raw)
    assert formatted.cluster_id == CLUSTER_ID
    assert formatted.cluster_name == CLUSTER_NAME
    assert formatted.name == ALERT_NAME
    assert formatted.incident_id == INCIDENT_ID
    assert formatted.status == STATUS_TRIGGERED
    assert client.service_calls == [SERVICE_ID]


def test_first_cluster_id_for_multiple_alerts():
    client = FakeClient(
        alerts=[
            alert(INCIDENT_ID, SERVICE_ID, ALERT_NAME, CLUSTER_ID, STATUS_TRIGGERED),
            alert("incident-id-001", SERVICE_ID, ALERT_NAME, CLUSTER_ID, STATUS_TRIGGERED),
        ],
        service={"description": CLUSTER_NAME},
    )
    info = PagerDuty(client).get_cluster_info_from_incident(INCIDENT_ID)
    assert info.cluster_id == CLUSTER_ID
    assert info.incident_id == INCIDENT_ID
    assert len(client.service_calls) == 2


def test_mismatched_cluster_ids_raise():
    client = FakeClient(
        alerts=[
            alert(INCIDENT_ID, SERVICE_ID, ALERT_NAME, CLUSTER_ID, STATUS_TRIGGERED),
            alert("incident-id-001", SERVICE_ID, ALERT_NAME, "cluster-id-001", STATUS_ACKNOWLEDGED),
        ],
        service={"description": CLUSTER_NAME},
    )
    with pytest.raises(ValueError) as excinfo:
        PagerDuty(client).get_cluster_info_from_incident(INCIDENT_ID)
    assert str(excinfo.value) == "not all alerts have the same cluster ID"
    assert len(client.service_calls) == 2


def test_chgm_cluster_id_from_notes():
    client = FakeClient(
        alerts=[alert(INCIDENT_ID, SERVICE_ID, "CHGM", CLUSTER_ID, STATUS_TRIGGERED)]
    )
    info = PagerDuty(client).get_cluster_info_from_incident(INCIDENT_ID)
    assert CLUSTER_ID in info.cluster_id
    assert client.service_calls == []


def test_chgm_cluster_name_from_details_name():
    raw = {
        "incident": {"id": INCIDENT_ID},
        "summary": "CHGM",
        "body": {"details": {"notes": "cluster_id: abc\nmore", "name": "mycluster.example.com"}},
    }
    formatted = PagerDuty(FakeClient()).format_alert(raw)
    assert formatted.cluster_id == "abc"
    assert formatted.cluster_name == "mycluster"


def test_service_lookup_failure_gives_not_available():
    client = FakeClient(service_error=PagerDutyAPIError("not found", 404))
    raw = alert(INCIDENT_ID, SERVICE_ID, ALERT_NAME, CLUSTER_ID, STATUS_TRIGGERED)
    formatted = PagerDuty(client).format_alert(raw)
    assert formatted.cluster_name == "N/A"
    assert formatted.cluster_id == CLUSTER_ID


def test_empty_cluster_id_gives_not_available():
    client = FakeClient(service={"description": CLUSTER_NAME})
    raw = alert(INCIDENT_ID, SERVICE_ID, ALERT_NAME, "", STATUS_TRIGGERED)
    assert PagerDuty(client).format_alert(raw).cluster_id == "N/A"


def test_cluster_name_is_first_word_of_description():
    client = FakeClient(service={"description": "prod-cluster hosted service"})
    assert PagerDuty(client).get_cluster_name(SERVICE_ID) == "prod-cluster"


def test_rate_limited_error():
    client = FakeClient(alerts_error=PagerDutyAPIError("slow down", 429))
    with pytest.raises(PagerDutyAPIError, match="API rate limited"):
        PagerDuty(client).get_incident_alerts(INCIDENT_ID)


def test_other_api_error_carries_status():
    client = FakeClient(alerts_error=PagerDutyAPIError("boom", 500))
    with pytest.raises(PagerDutyAPIError) as excinfo:
        PagerDuty(client).get_incident_alerts(INCIDENT_ID)
    assert excinfo.value.status_code == 500
    assert str(excinfo.value).startswith("status code: 500")


def test_connect_rejects_empty_token():
    with pytest.raises(ValueError, match="empty pagerduty token"):
        PagerDutyHTTPClient().connect("")


def test_unconnected_client_raises():
    with pytest.raises(RuntimeError):
        PagerDutyHTTPClient("http://localhost:1").get_service(SERVICE_ID)


@pytest.fixture
def api_server():
    seen = []

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            seen.append((self.path, self.headers.get("Authorization")))
            if self.path == f"/incidents/{INCIDENT_ID}/alerts":
                payload = {"alerts": [alert(INCIDENT_ID, SERVICE_ID, ALERT_NAME, CLUSTER_ID, STATUS_TRIGGERED)]}
            elif self.path == f"/services/{SERVICE_ID}":
                payload = {"service": {"description": CLUSTER_NAME + " service"}}
            else:
                self.send_response(429)
                self.end_headers()
                self.wfile.write(b'{"error": "rate"}')
                return
            data = json.dumps(payload).encode()
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}", seen
    server.shutdown()
    server.server_close()


def test_http_client_end_to_end(api_server):
    base_url, seen = api_server
    pagerduty = new_with_token("token", base_url)
    info = pagerduty.get_cluster_info_from_incident(INCIDENT_ID)
    assert info == Alert(
        name=ALERT_NAME,
        incident_id=INCIDENT_ID,
        status=STATUS_TRIGGERED,
        cluster_id=CLUSTER_ID,
        cluster_name=CLUSTER_NAME,
    )
    assert all(auth == "Token token=token" for _, auth in seen)


def test_http_client_error_status(api_server):
    base_url, _ = api_server
    client = PagerDutyHTTPClient(base_url)
    client.connect("token")
    with pytest.raises(PagerDutyAPIError) as excinfo:
        client.list_incidents({"statuses[]": ["triggered"]})
    assert excinfo.value.rate_limited is True