# backplane_tools

A library of building blocks for engineers who reach clusters through a
backplane API. It needs Python 3.10 or later and depends only on PyYAML.

## Modules

- **`backplane_tools.info`** – `InfoService.get_version()` returns a preset
  version, else the installed distribution's version without a leading `v`
  (from `read_build_info()`), else `"unknown"`. Also holds well-known names
  such as `BACKPLANE_URL_ENV_NAME` and `BACKPLANE_KUBECONFIG_ENV_NAME`.
- **`backplane_tools.utils`** – `get_free_port`, `check_health`,
  `match_base_domain`, `parse_params_flag`, `append_unique_non_empty`,
  `check_valid_prompt`, `ask_question_from_prompt`, `is_valid_shell`,
  JWT claim reading without signature checks (`get_string_field_from_jwt`,
  `get_username_from_jwt`), `get_context_nickname`, and backplane API error
  decoding (`parse_backplane_api_error`, `formatted_api_error`,
  `BackplaneAPIErrorBody`).
- **`backplane_tools.rendering`** – `render_tabbed_table` (fits the terminal,
  truncating every column but the first), `render_table` (borderless,
  upper-case headers), `render_json`, plus the helpers
  `optimal_column_width` and `truncate_columns`. Each writes to `out`, or to
  standard output when none is given.
- **`backplane_tools.kubeconfig`** – kubeconfig files as plain dicts:
  `load_kubeconfig`, `write_kubeconfig`, `current_server`,
  `default_kubeconfig`, `default_kubeconfig_path`, temporary and per-cluster
  kubeconfigs (`create_temp_kubeconfig`, `remove_temp_kubeconfig`,
  `create_cluster_kubeconfig`, `remove_cluster_kubeconfig`,
  `save_kubeconfig`), and elevation reasons kept in the current context for
  20 minutes (`ElevateContext`, `get_elevate_context_reasons`,
  `add_elevation_reasons`, `save_elevate_context_reasons`).
- **`backplane_tools.cluster`** – `get_cluster_id_and_host_from_cluster_url`
  and `ClusterUtils`, which finds a `BackplaneCluster` from the current
  kubeconfig or, given a cluster key, through an OCM client object you supply.
  The backplane URL comes from the `BACKPLANE_URL` environment variable unless
  you pass `backplane_url_provider`.
- **`backplane_tools.healthcheck`** – `HealthChecker` runs VPN, proxy and
  backplane API connectivity checks against a `HealthCheckConfig`;
  `HealthChecker.run()` prints progress and returns an exit status.
- **`backplane_tools.jira`** – `OHSSService.get_issue()` returns an
  `OHSSIssue` for issues of the OHSS project; `IssueServiceDecorator`
  forwards calls to an issue service obtained lazily from a getter.
- **`backplane_tools.pagerduty`** – `PagerDutyHTTPClient` for the PagerDuty
  REST API and `PagerDuty`, which turns an incident's alerts into `Alert`
  objects and works out the cluster they concern.
- **`backplane_tools.cluster_info`** – `print_cluster_info`,
  `get_limited_support_status` and `get_access_protection_status` print a
  summary of a `ClusterInfo`.
- **`backplane_tools.monitoring`** – `MonitoringClient.run()` checks a
  backplane monitoring endpoint (prometheus, alertmanager, thanos, grafana)
  and serves a local reverse proxy to it, returning the local URL.

## Examples

### Utilities

```python
from backplane_tools.utils import match_base_domain, parse_params_flag

match_base_domain("a.b.c.example.com", "example.com")   # True
match_base_domain("a.example.com.io", "example.com")    # False

parse_params_flag(["k1=v1", "k2=v2"])  # {"k1": "v1", "k2": "v2"}
parse_params_flag(["k1"])              # raises ValueError
```

### Cluster URLs

```python
from backplane_tools.cluster import get_cluster_id_and_host_from_cluster_url

cluster_id, host = get_cluster_id_and_host_from_cluster_url(
    "https://api-backplane.apps.com/backplane/cluster/abcd123/"
)
# cluster_id == "abcd123", host == "https://api-backplane.apps.com"
```

### Per-cluster kubeconfig

```python
from backplane_tools.kubeconfig import (
    create_cluster_kubeconfig,
    default_kubeconfig,
    remove_cluster_kubeconfig,
)

path = create_cluster_kubeconfig("test123", default_kubeconfig(), "/tmp/kube")
# KUBECONFIG now points at `path`
remove_cluster_kubeconfig("test123", "/tmp/kube")
```

### Health checks

```python
from backplane_tools.healthcheck import HealthChecker, HealthCheckConfig

checker = HealthChecker(
    config_provider=lambda: HealthCheckConfig(
        url="https://backplane.example.com",
        proxy_url="http://proxy.example.com:3128",
        vpn_check_endpoint="http://internal.example.com",
        proxy_check_endpoint="http://proxy-check.example.com",
    ),
    interfaces_provider=lambda: ["lo", "tun0"],
)
checker.check_vpn_connectivity()            # raises HealthCheckError on failure
proxy = checker.check_proxy_connectivity()  # returns the working proxy URL
status = checker.run()                      # 0 when every check passes, else 1
```

### PagerDuty

```python
from backplane_tools.pagerduty import new_with_token

pd = new_with_token("token", "https://api.pagerduty.example.com")
alert = pd.get_cluster_info_from_incident("incident-id-000")
print(alert.cluster_id, alert.cluster_name)
```

### Jira

```python
from backplane_tools.jira import OHSSService

# issue_service: any object whose get(issue_id, options) returns a JiraIssue or None
service = OHSSService(issue_service)
issue = service.get_issue("OHSS-1000")
print(issue.key, issue.cluster_id, issue.web_url)
```

## Errors

Failures are raised as exceptions: `HealthCheckError` from the health
checks, `PagerDutyAPIError` from the PagerDuty client, `MonitoringError` from
the monitoring proxy, `LookupError` when an issue or alert is not found, and
`ValueError` for malformed input such as bad parameters, tokens, URLs or
kubeconfigs.

## What the package does not do

- It has no command-line program; everything is called from Python.
- It has no OCM client. `ClusterUtils`, `MonitoringClient` and the
  `cluster_info` functions take an object you supply that provides methods
  such as `get_target_cluster`, `get_cluster_info_by_id`,
  `get_ocm_access_token`, `setup_ocm_connection` and
  `is_cluster_access_protection_enabled`.
- It does not read a backplane configuration file. The health checks take a
  `config_provider` that returns a `HealthCheckConfig`.
- It has no Jira HTTP client; `OHSSService` and `IssueServiceDecorator` work
  with an issue service you supply.
- `MonitoringClient` does not open a browser; with `browser=True` it only
  logs the URL to visit.

## Running the tests

Install the `test` extra, then run `pytest` from the project directory.