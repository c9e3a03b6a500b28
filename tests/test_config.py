"""Tests for QOSConfig."""

from __future__ import annotations

import json
import sys

import pytest

from lagguard.config import QOSConfig


class TestQOSConfigDefaults:
    def test_defaults(self):
        config = QOSConfig()
        assert config.min_lag == 70
        assert config.max_lag == 300
        assert config.user_lag == 500
        assert config.min_bad_host_threshold == 0.50
        assert config.max_bad_host_threshold == 0.01
        assert config.min_bad_ip_threshold == 0.50
        assert config.max_bad_ip_threshold == 0.01
        assert config.min_host_requests == 30
        assert config.min_ip_requests == 100
        assert config.history_size == 500
        assert config.error_status_code == 503
        assert config.exempt_local_address is True

    def test_frozen(self):
        config = QOSConfig()
        with pytest.raises(AttributeError):
            config.min_lag = 10  # type: ignore[misc]


class TestQOSConfigValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"min_lag": -1},
            {"min_lag": 100, "max_lag": 50},
            {"min_bad_host_threshold": 1.5},
            {"max_bad_ip_threshold": -0.1},
            {"history_size": 0},
            {"min_ip_requests": -1},
            {"error_status_code": 42},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            QOSConfig(**kwargs)

    def test_equal_lag_bounds_allowed(self):
        config = QOSConfig(min_lag=100, max_lag=100)
        assert config.min_lag == config.max_lag


class TestQOSConfigLoading:
    def test_from_dict_snake_and_camel_case(self):
        config = QOSConfig.from_dict(
            {"min_lag": 50, "maxLag": 200, "exemptLocalAddress": False, "historySize": 10}
        )
        assert config.min_lag == 50
        assert config.max_lag == 200
        assert config.exempt_local_address is False
        assert config.history_size == 10

    def test_from_dict_ignores_unknown_keys(self):
        config = QOSConfig.from_dict({"future_option": 1, "user_lag": 800})
        assert config.user_lag == 800

    def test_from_dict_coerces_strings(self):
        config = QOSConfig.from_dict(
            {"minLag": "70", "historySize": "250", "exemptLocalAddress": "no"}
        )
        assert config.min_lag == 70.0
        assert config.history_size == 250
        assert config.exempt_local_address is False

    @pytest.mark.parametrize(
        "data",
        [
            {"minLag": "abc"},
            {"minLag": None},
            {"historySize": 2.5},
            {"exemptLocalAddress": 1},
            {"errorStatusCode": True},
        ],
    )
    def test_from_dict_bad_value_raises_value_error(self, data):
        with pytest.raises(ValueError):
            QOSConfig.from_dict(data)

    def test_from_yaml_quoted_number(self, tmp_path):
        pytest.importorskip("yaml")
        path = tmp_path / "qos.yaml"
        path.write_text('minLag: "70"\n')
        assert QOSConfig.from_yaml(path).min_lag == 70.0

    def test_json_roundtrip(self, tmp_path):
        original = QOSConfig(min_lag=40, max_lag=250, error_status_code=429)
        path = tmp_path / "qos.json"
        with open(path, "w") as fh:
            json.dump(original.to_dict(), fh)

        loaded = QOSConfig.from_yaml(str(path))

        assert loaded == original

    def test_from_yaml(self, tmp_path):
        pytest.importorskip("yaml")
        path = tmp_path / "qos.yaml"
        path.write_text("minLag: 20\nmax_lag: 90\nmin_host_requests: 5\n")

        config = QOSConfig.from_yaml(path)

        assert config.min_lag == 20
        assert config.max_lag == 90
        assert config.min_host_requests == 5

    def test_from_yaml_raises_without_pyyaml(self, tmp_path, monkeypatch):
        path = tmp_path / "qos.yaml"
        path.write_text("min_lag: 20\n")

        monkeypatch.setitem(sys.modules, "yaml", None)

        with pytest.raises(RuntimeError, match="PyYAML is required"):
            QOSConfig.from_yaml(str(path))


class TestQOSConfigFromEnv:
    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("LAGGUARD_MIN_LAG", "55")
        monkeypatch.setenv("LAGGUARD_HISTORY_SIZE", "1000")
        monkeypatch.setenv("LAGGUARD_EXEMPT_LOCAL_ADDRESS", "false")

        config = QOSConfig.from_env()

        assert config.min_lag == 55.0
        assert config.history_size == 1000
        assert config.exempt_local_address is False
        assert config.max_lag == 300

    def test_explicit_environ_and_prefix(self):
        config = QOSConfig.from_env(prefix="QOS_", environ={"QOS_USER_LAG": "900"})
        assert config.user_lag == 900.0

    def test_invalid_value_names_variable(self):
        with pytest.raises(ValueError, match="LAGGUARD_HISTORY_SIZE"):
            QOSConfig.from_env(environ={"LAGGUARD_HISTORY_SIZE": "lots"})

    def test_invalid_bool(self):
        with pytest.raises(ValueError, match="LAGGUARD_EXEMPT_LOCAL_ADDRESS"):
            QOSConfig.from_env(environ={"LAGGUARD_EXEMPT_LOCAL_ADDRESS": "maybe"})
