"""
Service configuration loading
"""

import os
import re
from typing import Any, Dict, Optional

import yaml

from .logging.config import get_logger
from .models.execution import ExecutionConfig


DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")
DEFAULT_DB_PATH = "planexec.db"
DEFAULT_TOOLS_URL = "http://localhost:8001"

# left in place by os.path.expandvars when the variable is not set
_UNSET_VARIABLE = re.compile(r"^\$\{?\w+\}?$")

logger = get_logger(__name__)


def _drop_unset(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_unset(v) for k, v in value.items() if not _is_unset(v)}
    return value


def _is_unset(value: Any) -> bool:
    return isinstance(value, str) and bool(_UNSET_VARIABLE.match(value))


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file

    Environment variables are substituted before parsing; entries whose
    variable is not set are dropped so built-in defaults apply. A missing
    file yields an empty configuration.
    """
    path = config_path or os.environ.get("PLANEXEC_CONFIG") or DEFAULT_CONFIG_PATH

    try:
        with open(path, 'r', encoding='utf-8') as f:
            content = os.path.expandvars(f.read())
    except FileNotFoundError:
        logger.warning("Config file not found", path=path)
        return {}

    config = yaml.safe_load(content) or {}
    return _drop_unset(config)


def get_execution_defaults(config: Dict[str, Any]) -> ExecutionConfig:
    """Built-in execution defaults overlaid with the ``execution`` section"""
    overrides = config.get("execution") or {}
    return ExecutionConfig(**{
        key: value for key, value in overrides.items()
        if key in ExecutionConfig.model_fields and value is not None
    })


def get_database_path(config: Dict[str, Any]) -> str:
    return (config.get("database") or {}).get("path") or DEFAULT_DB_PATH


def get_tools_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    tools = config.get("tools") or {}
    return {
        "base_url": tools.get("base_url") or DEFAULT_TOOLS_URL,
        "timeout_seconds": float(tools.get("timeout_seconds") or 30.0),
    }
