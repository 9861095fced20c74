"""
Brief: Tests for YAML settings loading and validation.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

import os

import pytest

from kvdns.config import Settings, split_endpoints

EXAMPLE = os.path.join(os.path.dirname(__file__), os.pardir, "kvdns.example.yaml")


def test_defaults():
    settings = Settings()
    assert settings.backend == "cassandra"
    assert settings.endpoints == ["127.0.0.1"]
    assert settings.port == 8053


def test_missing_file_uses_defaults(tmp_path):
    assert Settings.load(str(tmp_path / "absent.yaml")) == Settings()
    assert Settings.load(None) == Settings()
    with pytest.raises(FileNotFoundError):
        Settings.load(str(tmp_path / "absent.yaml"), force=True)


def test_example_file_loads():
    settings = Settings.load(EXAMPLE, force=True)
    assert settings.endpoints == ["192.168.0.240", "192.168.0.241", "192.168.0.242"]
    assert settings.host == "0.0.0.0"


def test_load_coerces_values(tmp_path):
    path = tmp_path / "kvdns.yaml"
    path.write_text(
        "backend: Redis\nendpoints: 'r1:7000, r2:7000'\nport: '5353'\ntimeout: 2\nlog_level: debug\n",
        encoding="utf-8",
    )
    settings = Settings.load(str(path))
    assert settings.backend == "redis"
    assert settings.endpoints == ["r1:7000", "r2:7000"]
    assert settings.port == 5353
    assert settings.timeout == 2.0
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    "content",
    [
        "backend: mongodb\n",
        "port: 70000\n",
        "workers: 0\n",
        "verbose: 'yes'\n",
        "endpoints: []\n",
        "unknown_key: 1\n",
        "- just\n- a list\n",
        "backend: [unclosed\n",
    ],
)
def test_invalid_files_are_rejected(tmp_path, content):
    """
    Brief: Bad values, unknown keys and malformed YAML raise ValueError.

    Inputs:
      - content: YAML text

    Outputs:
      - None: Asserts ValueError
    """
    path = tmp_path / "kvdns.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ValueError):
        Settings.load(str(path))


def test_override_ignores_unset_flags():
    settings = Settings().override(backend="etcd", endpoints="e1,e2", port=None)
    assert settings.backend == "etcd"
    assert settings.endpoints == ["e1", "e2"]
    assert settings.port == 8053


def test_split_endpoints():
    assert split_endpoints(["a", " b "]) == ["a", "b"]
    with pytest.raises(ValueError):
        split_endpoints(42)
