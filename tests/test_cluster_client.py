"""
Brief: Tests for minilb.cluster.client credential selection.

Inputs:
  - None

Outputs:
  - None
"""

import os

import minilb.cluster.client as client_mod


def test_explicit_kubeconfig_wins(tmp_path):
    """Brief: A configured path is used even inside a pod.

    Inputs:
      - tmp_path: pytest temporary directory.

    Outputs:
      - None; asserts the explicit path.
    """

    token = tmp_path / "token"
    token.write_text("t")
    assert client_mod.resolve_kubeconfig("/etc/kube/config", token_path=str(token)) == "/etc/kube/config"


def test_in_cluster_when_token_present(tmp_path):
    """Brief: An empty path with a mounted token selects in-cluster auth.

    Inputs:
      - tmp_path: pytest temporary directory.

    Outputs:
      - None; asserts "".
    """

    token = tmp_path / "token"
    token.write_text("t")
    assert client_mod.resolve_kubeconfig("", token_path=str(token)) == ""


def test_home_kubeconfig_fallback(tmp_path, monkeypatch):
    """Brief: Outside a pod the user's ~/.kube/config is used.

    Inputs:
      - tmp_path: pytest temporary directory.
      - monkeypatch: pytest monkeypatch fixture.

    Outputs:
      - None; asserts the home path.
    """

    monkeypatch.setenv("HOME", str(tmp_path))
    path = client_mod.resolve_kubeconfig(None, token_path=str(tmp_path / "absent"))
    assert path == os.path.join(str(tmp_path), ".kube", "config")


def test_build_api_client_loads_kubeconfig(tmp_path, monkeypatch):
    """Brief: build_api_client passes the resolved path to load_kube_config.

    Inputs:
      - tmp_path: pytest temporary directory.
      - monkeypatch: pytest monkeypatch fixture.

    Outputs:
      - None; asserts loader arguments.
    """

    calls = []

    def fake_load(config_file=None, client_configuration=None):
        calls.append(config_file)
        client_configuration.host = "https://k8s.example:6443"

    monkeypatch.setattr(client_mod.config, "load_kube_config", fake_load)
    api = client_mod.build_api_client(str(tmp_path / "kc"))
    assert calls == [str(tmp_path / "kc")]
    assert api.configuration.host == "https://k8s.example:6443"
