"""Local reverse proxy to a cluster's monitoring dashboards through backplane."""

from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Protocol
from urllib.parse import SplitResult, urlsplit

from backplane_tools.cluster import get_cluster_id_and_host_from_cluster_url
from backplane_tools.kubeconfig import current_server, default_kubeconfig_path, load_kubeconfig
from backplane_tools.utils import get_free_port, match_base_domain

logger = logging.getLogger(__name__)

ALERTMANAGER = "alertmanager"
PROMETHEUS = "prometheus"
THANOS = "thanos"
GRAFANA = "grafana"
OPENSHIFT_MONITORING_NS = "openshift-monitoring"

VALID_MONITORING_NAMES = (PROMETHEUS, ALERTMANAGER, THANOS, GRAFANA)

_BACKPLANE_CLUSTER_PATH = "backplane/cluster"
_NOT_BACKPLANE_MESSAGE = (
    "the api server is not a backplane url, please make sure you login to the cluster using backplane"
)
_DEPRECATED_UIS = (PROMETHEUS, ALERTMANAGER, GRAFANA)
_SERVICE_ACCOUNT_PREFIX = "system:serviceaccount:"
_SEMVER_PATTERN = re.compile(
    r"^v?([0-9]+)(\.[0-9]+)?(\.[0-9]+)?"
    r"(-([0-9A-Za-z\-]+(\.[0-9A-Za-z\-]+)*))?"
    r"(\+([0-9A-Za-z\-]+(\.[0-9A-Za-z\-]+)*))?$"
)
_HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-connection",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


class MonitoringError(Exception):
    """The monitoring proxy could not be set up."""


@dataclass
class MonitoringOptions:
    """User choices for the monitoring proxy."""

    namespace: str = ""
    selector: str = ""
    port: str = ""
    origin_url: str = ""
    listen_addr: str = ""
    browser: bool = False
    keep_alive: bool = False


class MonitoringOCM(Protocol):
    def get_ocm_access_token(self) -> str: ...
    def get_cluster_info_by_id(self, cluster_id: str) -> Any: ...


def single_joining_slash(a: str, b: str) -> str:
    """Join two URL paths with exactly one slash between them."""
    a_slash = a.endswith("/")
    b_slash = b.startswith("/")
    if a_slash and b_slash:
        return a + b[1:]
    if not a_slash and not b_slash:
        return a + "/" + b
    return a + b


def backplane_monitoring_url(host: str, monitoring_type: str) -> str:
    """Turn a backplane cluster API URL into the URL of the given monitoring service."""
    if _BACKPLANE_CLUSTER_PATH not in host:
        raise MonitoringError(_NOT_BACKPLANE_MESSAGE)
    url = host.replace(_BACKPLANE_CLUSTER_PATH, f"backplane/{monitoring_type}", 1)
    return url.removesuffix("/")


def _minor_version(version: str) -> int:
    match = _SEMVER_PATTERN.match(version)
    if match is None:
        raise MonitoringError("Invalid Semantic Version")
    minor = match.group(2)
    return int(minor[1:]) if minor else 0


def validate_cluster_version(namespace: str, cluster_version: str, monitoring_name: str) -> None:
    """Refuse the deprecated monitoring UIs on clusters from 4.11 onwards."""
    if namespace != OPENSHIFT_MONITORING_NS or not cluster_version:
        return
    if _minor_version(cluster_version) >= 11 and monitoring_name in _DEPRECATED_UIS:
        raise MonitoringError(
            "this cluster's version is 4.11 or greater. "
            "Following version 4.11, Prometheus, AlertManager and Grafana monitoring UIs are deprecated, "
            "please use 'ocm backplane console' and use the observe tab for the same"
        )


def build_proxy_headers(
    options: MonitoringOptions,
    user_name: str,
    access_token: str,
    is_grafana: bool,
    headers: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the request headers with the backplane routing and authorization headers set."""
    result = dict(headers or {})

    def set_header(name: str, value: str) -> None:
        for key in [k for k in result if k.lower() == name.lower()]:
            del result[key]
        result[name] = value

    if not any(key.lower() == "user-agent" for key in result):
        result["User-Agent"] = ""
    if is_grafana:
        set_header("X-Forwarded-User", user_name)
    if options.namespace:
        set_header("X-Namespace", options.namespace)
    if options.selector:
        set_header("X-Selector", options.selector)
    if options.port:
        set_header("X-Port", options.port)
    set_header("Authorization", f"Bearer {access_token}")
    return result


def proxy_target_url(proxy_url: str, path: str, query: str = "") -> str:
    """Return the upstream HTTPS URL for a request path on the local proxy."""
    target = urlsplit(proxy_url)
    joined = single_joining_slash(target.path, path)
    url = f"https://{target.netloc}{joined}"
    return f"{url}?{query}" if query else url


def serve_url(
    options: MonitoringOptions, base_domain: str, route_hosts: Iterable[str]
) -> SplitResult:
    """Return the local URL to show the user, without its host, checking any origin URL given."""
    if not options.origin_url:
        return SplitResult("http", "", "", "", "")

    origin = urlsplit(options.origin_url)
    hostname = origin.hostname or ""
    if not match_base_domain(hostname, base_domain):
        raise MonitoringError(
            f"the basedomain {base_domain} of the current logged cluster does not match the "
            "provided url, please login to the corresponding cluster first"
        )
    if not options.namespace:
        raise MonitoringError(
            "namepace should not be blank, please specify namespace by --namespace"
        )
    if not any(match_base_domain(hostname, host) for host in route_hosts):
        raise MonitoringError(
            f"cannot find a matching route in namespace {options.namespace} for the given url, "
            "please specify a correct namespace by --namespace"
        )
    return SplitResult("http", "", origin.path, origin.query, origin.fragment)


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: D102
        return None


def _split_listen_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise MonitoringError(f"listen tcp {addr}: missing port in address")
    try:
        return host.strip("[]"), int(port)
    except ValueError as exc:
        raise MonitoringError(f"listen tcp {addr}: invalid port") from exc


class MonitoringClient:
    """Serves a monitoring dashboard of the logged-in cluster on a local address."""

    def __init__(
        self,
        url: str = "",
        options: MonitoringOptions | None = None,
        ocm: MonitoringOCM | None = None,
        proxy_url: str | None = None,
    ) -> None:
        self.url = url
        self.options = options if options is not None else MonitoringOptions()
        self.ocm = ocm
        self.proxy_url = proxy_url
        handlers: list[urllib.request.BaseHandler] = [_NoRedirect()]
        if proxy_url:
            handlers.append(urllib.request.ProxyHandler({"http": proxy_url, "https": proxy_url}))
            logger.debug("Using backplane Proxy URL: %s", proxy_url)
        self._opener = urllib.request.build_opener(*handlers)

    def _current_cluster(self, kube_host: str) -> Any:
        if self.ocm is None:
            raise MonitoringError("no OCM client configured")
        try:
            cluster_id, _ = get_cluster_id_and_host_from_cluster_url(kube_host)
        except ValueError as exc:
            raise MonitoringError(str(exc)) from exc
        return self.ocm.get_cluster_info_by_id(cluster_id)

    def _get_json(self, url: str, access_token: str) -> Any:
        request = urllib.request.Request(
            url, headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        )
        with self._opener.open(request) as response:
            return json.loads(response.read() or b"null")

    def _route_hosts(self, kube_host: str, namespace: str, access_token: str) -> Iterator[str]:
        base = kube_host.rstrip("/")
        quoted = urllib.parse.quote(namespace, safe="")
        try:
            routes = self._get_json(
                f"{base}/apis/route.openshift.io/v1/namespaces/{quoted}/routes", access_token
            )
        except (OSError, ValueError) as exc:
            logger.warning("cannot get routes: %s", exc)
            return
        for route in (routes or {}).get("items") or []:
            for ingress in (route.get("status") or {}).get("ingress") or []:
                host = ingress.get("host", "")
                logger.debug("found route ingress %s", host)
                yield host

    def _grafana_user(self, kube_host: str, access_token: str) -> str:
        try:
            user = self._get_json(
                f"{kube_host.rstrip('/')}/apis/user.openshift.io/v1/users/~", access_token
            )
        except (OSError, ValueError) as exc:
            raise MonitoringError(f"cannot get the current user: {exc}") from exc
        name = ((user or {}).get("metadata") or {}).get("name", "")
        return name.replace(_SERVICE_ACCOUNT_PREFIX, "", 1)

    def _forward(
        self,
        target: str,
        user_name: str,
        access_token: str,
        is_grafana: bool,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: bytes | None,
    ) -> tuple[int, str, list[tuple[str, str]], bytes]:
        request_path, _, query = path.partition("?")
        url = proxy_target_url(target, request_path, query)
        passed = {
            key: value
            for key, value in headers.items()
            if key.lower() not in _HOP_BY_HOP and key.lower() != "host"
        }
        request = urllib.request.Request(
            url,
            data=body,
            headers=build_proxy_headers(self.options, user_name, access_token, is_grafana, passed),
            method=method,
        )
        try:
            with self._opener.open(request) as response:
                return response.status, response.reason, list(response.headers.items()), response.read()
        except urllib.error.HTTPError as exc:
            return exc.code, str(exc.reason), list(exc.headers.items()), exc.read()

    def run(self, monitoring_type: str, kube_host: str | None = None) -> str:
        """Check the monitoring service, start the local proxy and return its URL."""
        if not monitoring_type:
            raise MonitoringError("monitoring type is empty")
        if kube_host is None:
            kube_host = current_server(load_kubeconfig(default_kubeconfig_path()))
        if _BACKPLANE_CLUSTER_PATH not in kube_host:
            raise MonitoringError(_NOT_BACKPLANE_MESSAGE)

        target = self.url or backplane_monitoring_url(kube_host, monitoring_type)
        if self.ocm is None:
            raise MonitoringError("no OCM client configured")
        access_token = self.ocm.get_ocm_access_token()

        options = self.options
        cluster_version = ""
        if options.namespace == OPENSHIFT_MONITORING_NS:
            cluster_version = getattr(self._current_cluster(kube_host), "openshift_version", "")
        validate_cluster_version(options.namespace, cluster_version, monitoring_type)

        if options.origin_url:
            base_domain = getattr(self._current_cluster(kube_host), "base_domain", "")
            route_hosts: Iterable[str] = self._route_hosts(
                kube_host, options.namespace, access_token
            )
            local_url = serve_url(options, base_domain, route_hosts)
        else:
            local_url = serve_url(options, "", ())

        is_grafana = monitoring_type == GRAFANA
        user_name = self._grafana_user(kube_host, access_token) if is_grafana else ""

        def forward(method, path, headers, body):
            return self._forward(
                target, user_name, access_token, is_grafana, method, path, headers, body
            )

        try:
            status, _, _, payload = forward("GET", "/", {}, None)
        except OSError as exc:
            raise MonitoringError(f"connecting to server {exc}") from exc
        if status >= 400:
            raise MonitoringError(payload.decode("utf-8", errors="replace"))

        addr = options.listen_addr or f"127.0.0.1:{get_free_port()}"
        host, port = _split_listen_addr(addr)
        try:
            server = ThreadingHTTPServer((host, port), _make_handler(forward))
        except OSError as exc:
            raise MonitoringError(f"listen tcp {addr}: {exc}") from exc

        url = local_url._replace(netloc=addr).geturl()
        with server:
            if options.browser:
                logger.warning(
                    "failed opening a browser: opening a browser is not supported, visit %s", url
                )
            if options.keep_alive:
                if not options.browser:
                    print(f"Serving {monitoring_type} at {url}")
                server.serve_forever()
        return url


def _make_handler(forward):
    class _ProxyHandler(BaseHTTPRequestHandler):
        def _proxy(self) -> None:
            length = int(self.headers.get("Content-Length") or 0)
            body = self.rfile.read(length) if length else None
            try:
                status, reason, headers, payload = forward(
                    self.command, self.path, dict(self.headers.items()), body
                )
            except OSError as exc:
                logger.error("http: proxy error: %s", exc)
                self.send_error(502)
                return
            self.send_response(status, reason)
            for key, value in headers:
                if key.lower() in _HOP_BY_HOP or key.lower() == "content-length":
                    continue
                self.send_header(key, value)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = do_HEAD = do_OPTIONS = _proxy

        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
            logger.debug(format, *args)

    return _ProxyHandler