"""Configuration helpers for the webmail admin utilities."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import os

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[1]
PACKAGE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"
DEFAULT_CONFIG_PATH = PACKAGE_DIR / "default_config.yml"
USER_CONFIG_PATH = BASE_DIR / "user_config.yml"

# Load environment variables if a .env file exists.
if ENV_PATH.exists():
    load_dotenv(ENV_PATH)


def _convert_scalar(value: str) -> Any:
    value = value.strip()
    if value in {"", "~", "null", "Null", "NULL"}:
        return None
    if value.startswith("[") and value.endswith("]"):
        inner = value[1:-1].strip()
        if not inner:
            return []
        return [_convert_scalar(item) for item in inner.split(",")]
    if value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    if value.startswith("'") and value.endswith("'"):
        return value[1:-1]
    lowered = value.lower()
    if lowered in {"true", "yes", "y", "on"}:
        return True
    if lowered in {"false", "no", "n", "off"}:
        return False
    try:
        return int(value)
    except ValueError:
        return value


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}

    root: Dict[str, Any] = {}
    stack: list[tuple[int, Dict[str, Any]]] = [(0, root)]
    with path.open(encoding="utf-8") as fh:
        for raw_line in fh:
            line = raw_line.rstrip()
            if not line:
                continue
            stripped = line.lstrip()
            if not stripped or stripped.startswith("#"):
                continue

            indent = len(line) - len(stripped)
            if indent % 2 != 0:
                raise ValueError(f"Invalid indentation in {path}: '{line}'")

            while stack and indent < stack[-1][0]:
                stack.pop()
            current = stack[-1][1] if stack else root

            key, sep, value = stripped.partition(":")
            key = key.strip()
            if not sep:
                raise ValueError(f"Missing ':' in config line: '{line}'")

            value = value.strip()
            if not value:
                new_section: Dict[str, Any] = {}
                current[key] = new_section
                stack.append((indent + 2, new_section))
            else:
                current[key] = _convert_scalar(value)

    return root


def _merge_config(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge_config(dict(base[key]), value)
        else:
            base[key] = value
    return base


CONFIG: Dict[str, Any] = {}
CONFIG = _merge_config(CONFIG, _load_yaml(DEFAULT_CONFIG_PATH))
CONFIG = _merge_config(CONFIG, _load_yaml(USER_CONFIG_PATH))


def _str_to_bool(value: Optional[str], *, default: bool = False) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _config_get(path: str, default: Any = None) -> Any:
    current: Any = CONFIG
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def _config_path(config_path: str, env_var: str, fallback: Path) -> Path:
    value = _config_get(config_path)
    if value:
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = BASE_DIR / path
        return path.resolve()
    env_value = os.getenv(env_var)
    if env_value:
        return Path(env_value).expanduser().resolve()
    return fallback.resolve()


def _config_int(config_path: str, env_var: str, default: int) -> int:
    value = _config_get(config_path)
    if value is not None:
        return int(value)
    env_value = os.getenv(env_var)
    if env_value is not None:
        return int(env_value)
    return default


def _config_bool(config_path: str, env_var: str, default: bool) -> bool:
    value = _config_get(config_path)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _str_to_bool(value, default=default)
    env_value = os.getenv(env_var)
    return _str_to_bool(env_value, default=default)


def _config_optional_str(
    config_path: str, env_var: str, default: Optional[str] = None
) -> Optional[str]:
    value = _config_get(config_path)
    if value is not None:
        return str(value)
    env_value = os.getenv(env_var)
    if env_value is not None:
        return env_value
    return default


def _config_str(config_path: str, env_var: str, default: str) -> str:
    value = _config_optional_str(config_path, env_var, default)
    if value is None:
        raise ValueError(f"Missing configuration for {config_path}")
    return value


def _config_hosts(config_path: str, env_var: str) -> Union[str, List[str], None]:
    """Return a host string or list; the env var accepts comma separated hosts."""
    value = _config_get(config_path)
    if isinstance(value, list):
        return [str(item) for item in value if item not in (None, "")]
    if value is not None:
        return str(value)
    env_value = os.getenv(env_var)
    if not env_value:
        return None
    hosts = [item.strip() for item in env_value.split(",") if item.strip()]
    if len(hosts) == 1 and "," not in env_value:
        return hosts[0]
    return hosts


@dataclass
class Settings:
    """Application settings loaded from config files and environment variables."""

    db_dsnw: str = _config_str(
        "database.dsnw",
        "DB_DSNW",
        f"sqlite:///{BASE_DIR / 'db' / 'webmail.sqlite'}",
    )
    sql_debug: bool = _config_bool("database.sql_debug", "SQL_DEBUG", False)
    schema_dir: Path = _config_path(
        "paths.schema_dir", "SCHEMA_DIR", PACKAGE_DIR / "SQL"
    )
    package: str = _config_str("general.package", "MAILADMIN_PACKAGE", "webmail")
    upgrade_errors_fatal: bool = _config_bool(
        "general.upgrade_errors_fatal", "UPGRADE_ERRORS_FATAL", True
    )
    retention_days: int = _config_int("general.retention_days", "RETENTION_DAYS", 7)
    imap_host: Union[str, List[str], None] = field(
        default_factory=lambda: _config_hosts("imap.host", "IMAP_HOST")
    )

    def ensure_sqlite_parent(self) -> None:
        """Create the parent directory of a file-backed SQLite DSN if missing."""
        prefix = "sqlite:///"
        if not self.db_dsnw.startswith(prefix):
            return
        location = self.db_dsnw[len(prefix):].split("?", 1)[0]
        if not location or location == ":memory:":
            return
        Path(location).expanduser().parent.mkdir(parents=True, exist_ok=True)

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy of the settings with specified attributes replaced."""
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        """Expose a dict representation for debugging."""
        return {
            "db_dsnw": _mask_dsn_password(self.db_dsnw),
            "sql_debug": self.sql_debug,
            "schema_dir": str(self.schema_dir),
            "package": self.package,
            "upgrade_errors_fatal": self.upgrade_errors_fatal,
            "retention_days": self.retention_days,
            "imap_host": deepcopy(self.imap_host),
        }


def _mask_dsn_password(dsn: str) -> str:
    scheme, sep, rest = dsn.partition("://")
    if not sep or "@" not in rest:
        return dsn
    credentials, _, location = rest.rpartition("@")
    user, has_password, _ = credentials.partition(":")
    if not has_password:
        return dsn
    return f"{scheme}://{user}:***@{location}"
