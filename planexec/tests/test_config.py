"""
Tests for configuration loading
"""

import os
import tempfile
from unittest.mock import patch

import pytest

from planexec.config import (
    DEFAULT_DB_PATH,
    DEFAULT_TOOLS_URL,
    get_database_path,
    get_execution_defaults,
    get_tools_settings,
    load_config,
)


CONFIG_YAML = """
database:
  path: "${PLANEXEC_TEST_DB}"

tools:
  base_url: "${PLANEXEC_TEST_TOOLS_URL}"
  timeout_seconds: 5

execution:
  max_retries: 1
  retry_delay_ms: 10
  unknown_option: true
"""


@pytest.fixture
def config_file():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "config.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write(CONFIG_YAML)
        yield path


class TestLoadConfig:

    def test_environment_variables_are_expanded(self, config_file):
        with patch.dict(os.environ, {"PLANEXEC_TEST_DB": "/tmp/x.db", "PLANEXEC_TEST_TOOLS_URL": "http://tools:9000"}):
            config = load_config(config_file)

        assert config["database"]["path"] == "/tmp/x.db"
        assert config["tools"]["base_url"] == "http://tools:9000"

    def test_unset_variables_fall_back_to_defaults(self, config_file):
        with patch.dict(os.environ, {}, clear=True):
            config = load_config(config_file)

        assert "path" not in config["database"]
        assert get_database_path(config) == DEFAULT_DB_PATH
        assert get_tools_settings(config) == {"base_url": DEFAULT_TOOLS_URL, "timeout_seconds": 5.0}

    def test_missing_file_is_empty(self):
        assert load_config("/nonexistent/planexec.yaml") == {}

    def test_path_from_environment(self, config_file):
        with patch.dict(os.environ, {"PLANEXEC_CONFIG": config_file}):
            config = load_config()

        assert config["execution"]["max_retries"] == 1

    def test_bundled_config_loads(self):
        config = load_config()

        assert config["execution"]["parallel_execution_limit"] == 5
        assert config["server"]["port"] == 8000


class TestExecutionDefaults:

    def test_overrides_and_unknown_keys(self, config_file):
        defaults = get_execution_defaults(load_config(config_file))

        assert defaults.max_retries == 1
        assert defaults.retry_delay_ms == 10
        assert defaults.enable_rollback is True
        assert not hasattr(defaults, "unknown_option")

    def test_empty_config(self):
        defaults = get_execution_defaults({})

        assert defaults.max_retries == 3
        assert defaults.parallel_execution_limit == 5
