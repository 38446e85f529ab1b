"""Connectivity checks for the VPN, the proxy and the backplane API."""

from __future__ import annotations

import logging
import socket
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass, replace
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

VPN_INTERFACE_PREFIXES = ("tun", "tap", "ppp", "wg", "utun")

HttpGet = Callable[[str, "str | None"], int]


class HealthCheckError(Exception):
    """A connectivity check failed."""


def list_interface_names() -> list[str]:
    """Return the names of the network interfaces of this machine."""
    return [name for _, name in socket.if_nameindex()]


def http_get_status(url: str, proxy_url: str | None = None) -> int:
    """GET the URL, through the proxy when one is given, and return the HTTP status code."""
    if proxy_url:
        handler = urllib.request.ProxyHandler({"http": proxy_url, "https": proxy_url})
        opener = urllib.request.build_opener(handler)
    else:
        opener = urllib.request.build_opener()
    try:
        with opener.open(url) as response:
            return response.status
    except urllib.error.HTTPError as exc:
        return exc.code


def _check_endpoint(url: str, http_get: HttpGet, proxy_url: str | None = None) -> None:
    logger.debug("Making GET request to %s", url)
    status = http_get(url, proxy_url)
    logger.debug("Received response status code: %d", status)
    if status != 200:
        message = f"Unexpected status code: {status}"
        logger.error(message)
        raise HealthCheckError(message)


@dataclass(frozen=True)
class HealthCheckConfig:
    """The parts of the backplane configuration the checks rely on."""

    url: str = ""
    proxy_url: str | None = None
    proxy_check_endpoint: str = ""
    vpn_check_endpoint: str = ""

    def check_api_connection(self, http_get: HttpGet = http_get_status) -> None:
        """Check that the backplane API answers, through the configured proxy if any."""
        if not self.url:
            raise HealthCheckError("backplane URL is not configured")
        try:
            _check_endpoint(self.url, http_get, self.proxy_url or None)
        except OSError as exc:
            raise HealthCheckError(str(exc)) from exc


class HealthChecker:
    """Runs the VPN, proxy and backplane API connectivity checks."""

    def __init__(
        self,
        config_provider: Callable[[], HealthCheckConfig],
        interfaces_provider: Callable[[], list[str]] | None = list_interface_names,
        http_get: HttpGet | None = http_get_status,
    ) -> None:
        self.config_provider = config_provider
        self.interfaces_provider = interfaces_provider
        self.http_get = http_get

    def _config(self) -> HealthCheckConfig:
        try:
            return self.config_provider()
        except Exception as exc:
            logger.error("Failed to get backplane configuration: %s", exc)
            raise HealthCheckError(f"failed to get backplane configuration: {exc}") from exc

    def _get(self) -> HttpGet:
        return self.http_get if self.http_get is not None else http_get_status

    def vpn_check_endpoint(self) -> str:
        """Return the configured endpoint that is only reachable over the VPN."""
        config = self._config()
        if not config.vpn_check_endpoint:
            message = "VPN check endpoint not configured"
            logger.warning(message)
            raise HealthCheckError(message)
        return config.vpn_check_endpoint

    def proxy_test_endpoint(self) -> str:
        """Return the configured endpoint used to test the proxy."""
        config = self._config()
        if not config.proxy_check_endpoint:
            message = "proxy test endpoint not configured"
            logger.warning(message)
            raise HealthCheckError(message)
        return config.proxy_check_endpoint

    def check_vpn_connectivity(self) -> None:
        """Check that a VPN interface is up and the VPN endpoint answers."""
        if self.interfaces_provider is None:
            raise HealthCheckError("network interfaces are not configured")
        try:
            names = self.interfaces_provider()
        except Exception as exc:
            logger.error("Failed to get network interfaces: %s", exc)
            raise HealthCheckError(f"failed to get network interfaces: {exc}") from exc

        if not any(name.startswith(VPN_INTERFACE_PREFIXES) for name in names):
            message = f"No VPN interfaces found: [{' '.join(VPN_INTERFACE_PREFIXES)}]"
            logger.warning(message)
            raise HealthCheckError(message)

        endpoint = self.vpn_check_endpoint()
        try:
            _check_endpoint(endpoint, self._get())
        except (HealthCheckError, OSError) as exc:
            message = f"Failed to access internal URL {endpoint}: {exc}"
            logger.error(message)
            raise HealthCheckError(message) from exc

    def check_proxy_connectivity(self) -> str:
        """Check that the test endpoint answers through the configured proxy; return the proxy URL."""
        logger.debug("Starting proxy connectivity check")
        config = self._config()
        proxy_url = config.proxy_url
        if not proxy_url:
            message = "no proxy URL configured in backplane configuration"
            logger.warning(message)
            raise HealthCheckError(message)

        logger.info(
            "Getting the working proxy URL ['%s'] from local backplane configuration.", proxy_url
        )
        try:
            urlsplit(proxy_url)
        except ValueError as exc:
            logger.error("Invalid proxy URL: %s", exc)
            raise HealthCheckError(f"invalid proxy URL: {exc}") from exc

        endpoint = self.proxy_test_endpoint()
        logger.info(
            "Testing connectivity to the pre-defined test endpoint ['%s'] with the proxy.",
            endpoint,
        )
        try:
            _check_endpoint(endpoint, self._get(), proxy_url)
        except (HealthCheckError, OSError) as exc:
            message = f"Failed to access target endpoint ['{endpoint}'] with the proxy: {exc}"
            logger.error(message)
            raise HealthCheckError(message) from exc

        logger.debug("Successfully connected to proxy test endpoint: %s", endpoint)
        return proxy_url

    def check_backplane_api_connectivity(self, proxy_url: str = "") -> None:
        """Check that the backplane API answers, using the given proxy when it is set."""
        logger.debug("Starting backplane API connectivity check")
        config = self._config()
        if proxy_url:
            config = replace(config, proxy_url=proxy_url)
        try:
            config.check_api_connection(self._get())
        except (HealthCheckError, OSError) as exc:
            logger.error("Failed to access backplane API: %s", exc)
            raise HealthCheckError(f"failed to access backplane API: {exc}") from exc
        print("Successfully connected to the backplane API!")

    def run(self, check_vpn: bool = False, check_proxy: bool = False) -> int:
        """Run the selected checks, report on stdout, and return the exit status."""
        if self.interfaces_provider is None or self.http_get is None:
            logger.error("Network interfaces or HTTP client is not configured")
            return 1

        if check_vpn:
            print("Checking VPN connectivity...")
            return self._report_vpn()

        if check_proxy:
            try:
                self.check_vpn_connectivity()
            except HealthCheckError as exc:
                print("VPN connectivity check failed:", exc)
                print(
                    "Note: Proxy connectivity check requires VPN to be connected. "
                    "Please ensure VPN is connected and try again."
                )
                return 1
            print("Checking proxy connectivity...")
            return 0 if self._report_proxy() is not None else 1

        print("Checking VPN connectivity...")
        if self._report_vpn():
            return 1
        print("Checking proxy connectivity...")
        proxy_url = self._report_proxy()
        if proxy_url is None:
            return 1
        print("Checking backplane API connectivity...")
        try:
            self.check_backplane_api_connectivity(proxy_url)
        except HealthCheckError as exc:
            print("Backplane API connectivity check failed:", exc)
            return 1
        print("Backplane API connectivity check passed!")
        return 0

    def _report_vpn(self) -> int:
        try:
            self.check_vpn_connectivity()
        except HealthCheckError as exc:
            print("VPN connectivity check failed:", exc)
            return 1
        print("VPN connectivity check passed!")
        return 0

    def _report_proxy(self) -> str | None:
        try:
            proxy_url = self.check_proxy_connectivity()
        except HealthCheckError as exc:
            print("Proxy connectivity check failed:", exc)
            return None
        print("Proxy connectivity check passed!")
        return proxy_url