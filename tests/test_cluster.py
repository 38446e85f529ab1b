import pytest

from backplane_tools.cluster import (
    BackplaneCluster,
    ClusterUtils,
    get_cluster_id_and_host_from_cluster_url,
)

LOGGED_IN_YAML_SINGLE = """
apiVersion: v1
clusters:
- cluster:
    server: https://api-backplane.apps.com/backplane/cluster/1f0o1maej9brj6j9k6ehbe7rm0k2lng7/
  name: dummy_cluster
contexts:
- context:
    cluster: dummy_cluster
    namespace: default
    user: example.openshift
  name: default/openshift
current-context: default/openshift
kind: Config
preferences: {}
users:
- name: example.openshift
  user:
    exec:
      apiVersion: client.authentication.k8s.io/v1beta1
      args:
      - /bin/echo nothing
      command: bash
      env: null
- name: blue-user
  user:
    token: token
- name: green-user
  user:
    client-certificate: path/to/my/client/cert
    client-key: path/to/my/client/key
"""

LOGGED_IN_NOT_BACKPLANE = """
apiVersion: v1
clusters:
- cluster:
    server: https://myopenshiftcluster.openshiftapps.com
  name: myopenshiftcluster
contexts:
- context:
    cluster: myopenshiftcluster
    namespace: default
    user: example.openshift
  name: default/myopenshiftcluster/example.openshift
current-context: default/myopenshiftcluster/example.openshift
kind: Config
preferences: {}
users:
- name: example.openshift
  user:
    exec:
      apiVersion: client.authentication.k8s.io/v1beta1
      args:
      - /bin/echo nothing
      command: bash
      env: null
"""

INVALID_YAML = """
hello: world
"""


class FakeOCM:
    def __init__(self):
        self.keys = []

    def get_target_cluster(self, key):
        self.keys.append(key)
        return "1234", "cluster-key"


def _write(tmp_path, text):
    path = tmp_path / "config"
    path.write_text(text)
    return str(path)


def test_from_config(tmp_path):
    utils = ClusterUtils(kubeconfig_path=_write(tmp_path, LOGGED_IN_YAML_SINGLE))
    assert utils.from_config() == BackplaneCluster(
        cluster_id="1f0o1maej9brj6j9k6ehbe7rm0k2lng7",
        cluster_url="https://api-backplane.apps.com/backplane/cluster/1f0o1maej9brj6j9k6ehbe7rm0k2lng7/",
        backplane_host="https://api-backplane.apps.com",
    )


@pytest.mark.parametrize("text", [LOGGED_IN_NOT_BACKPLANE, INVALID_YAML])
def test_from_config_errors(tmp_path, text):
    utils = ClusterUtils(kubeconfig_path=_write(tmp_path, text))
    with pytest.raises(ValueError):
        utils.from_config()


def test_from_config_uses_kubeconfig_env(tmp_path, monkeypatch):
    monkeypatch.setenv("KUBECONFIG", _write(tmp_path, LOGGED_IN_YAML_SINGLE))
    assert ClusterUtils().get_backplane_cluster().cluster_id == "1f0o1maej9brj6j9k6ehbe7rm0k2lng7"


@pytest.mark.parametrize(
    "url, cluster_id, host",
    [
        ("https://example.com/backplane/cluster/abcd123", "abcd123", "https://example.com"),
        ("http://example.com/foo/backplane/cluster/abcd123", "abcd123", "https://example.com"),
        (
            "https://api-backplane.apps.com/backplane/cluster/abcd123/",
            "abcd123",
            "https://api-backplane.apps.com",
        ),
    ],
)
def test_cluster_id_and_host(url, cluster_id, host):
    assert get_cluster_id_and_host_from_cluster_url(url) == (cluster_id, host)


@pytest.mark.parametrize(
    "url",
    [
        "magict@@@@!HAAHAH!#@$SDHBVDZNBZVCKZKKZK()*I&UYLKJLNp/////////////things.com/backplane/cluster/abc",
        "https://things.com/somethingelse/cluster/abc",
        "https://things.com/backplane/notcluster/abc",
        "https://things.com/backplane/cluster/",
    ],
)
def test_cluster_id_and_host_errors(url):
    with pytest.raises(ValueError):
        get_cluster_id_and_host_from_cluster_url(url)


def test_from_cluster_key(monkeypatch):
    monkeypatch.setenv("BACKPLANE_URL", "https://backplane-url.cluster-key.example.com")
    ocm = FakeOCM()
    cluster = ClusterUtils(ocm=ocm).from_cluster_key("cluster-key")
    assert ocm.keys == ["cluster-key"]
    assert cluster == BackplaneCluster(
        cluster_id="1234",
        backplane_host="https://backplane-url.cluster-key.example.com",
        cluster_url="https://backplane-url.cluster-key.example.com/backplane/cluster/1234",
    )


def test_get_backplane_cluster_with_key_uses_provider():
    utils = ClusterUtils(ocm=FakeOCM(), backplane_url_provider=lambda: "https://bp.example.com")
    cluster = utils.get_backplane_cluster("cluster-key")
    assert cluster.cluster_url == "https://bp.example.com/backplane/cluster/1234"


def test_from_cluster_key_without_backplane_url(monkeypatch):
    monkeypatch.delenv("BACKPLANE_URL", raising=False)
    with pytest.raises(ValueError):
        ClusterUtils(ocm=FakeOCM()).from_cluster_key("cluster-key")