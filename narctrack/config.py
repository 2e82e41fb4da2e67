"""Loading, merging, validating and persisting configuration."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml

DEFAULT_PORT = "53300"
CONFIG_FILE_NAME = "config.yaml"


class ConfigError(ValueError):
    """Raised when configuration cannot be read, validated or written."""


class StorageType(str, Enum):
    """Supported activity storage backends."""

    CSV = "CSV"


_FIELDS = {
    "serverBaseUrl": "server_base_url",
    "storageType": "storage_type",
    "csvPath": "csv_path",
    "logPath": "log_path",
    "idleTimeout": "idle_timeout",
}

_NS = {"ns": 1, "us": 10**3, "µs": 10**3, "μs": 10**3, "ms": 10**6,
       "s": 10**9, "m": 60 * 10**9, "h": 3600 * 10**9}
_PART = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"([-+]?)((?:{_PART})+)")


def parse_duration(text: str) -> float:
    """Parse a duration such as ``"1h30m"`` or ``"500ms"`` into seconds."""
    if re.fullmatch(r"[-+]?0", text):
        return 0.0
    match = _DURATION_RE.fullmatch(text)
    if match is None:
        raise ValueError(f'invalid duration "{text}"')
    ns = sum(float(num) * _NS[unit] for num, unit in re.findall(_PART, match.group(2)))
    return (-1 if match.group(1) == "-" else 1) * round(ns) / 1e9


def _fraction(value: int, digits: int) -> str:
    whole, frac = divmod(value, 10**digits)
    return f"{whole}.{frac:0{digits}d}".rstrip("0") if frac else str(whole)


def format_duration(seconds: float) -> str:
    """Render seconds in the compact form accepted by :func:`parse_duration`."""
    total = round(seconds * 1e9)
    if total == 0:
        return "0s"
    sign, ns = ("-" if total < 0 else ""), abs(total)
    if ns < 10**3:
        return f"{sign}{ns}ns"
    if ns < 10**6:
        return f"{sign}{_fraction(ns, 3)}µs"
    if ns < 10**9:
        return f"{sign}{_fraction(ns, 6)}ms"
    hours, rest = divmod(ns, _NS["h"])
    minutes, rest = divmod(rest, _NS["m"])
    text = f"{_fraction(rest, 9)}s"
    if hours or minutes:
        text = f"{minutes}m{text}"
    if hours:
        text = f"{hours}h{text}"
    return sign + text


def _convert(key: str, raw: Any) -> Any:
    if key == "idleTimeout":
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return raw / 1e9  # bare numbers are nanoseconds
        if isinstance(raw, str):
            try:
                return parse_duration(raw)
            except ValueError as exc:
                raise ConfigError(str(exc)) from None
        raise ConfigError("idleTimeout must be a duration")
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (str, int, float)):
        return str(raw)
    raise ConfigError(f"cannot use a {type(raw).__name__} as the value of {key}")


def _is_url(value: str) -> bool:
    text = value.lower()
    if text.startswith("file:"):
        return True
    try:
        parsed = urlparse(text)
    except ValueError:
        return False
    opaque = not parsed.netloc and parsed.path and not parsed.path.startswith("/")
    return bool(parsed.scheme and (parsed.netloc or parsed.fragment or opaque))


def _is_file_path(value: str) -> bool:
    return "\x00" not in value and not value.endswith(("/", os.sep)) and not Path(value).is_dir()


@dataclass
class Config:
    """Settings for the server address, storage and idle detection."""

    server_base_url: str = ""
    storage_type: str = ""
    csv_path: str = ""
    log_path: str = ""
    idle_timeout: float = 0.0

    def merge_in_other(self, other: "Config") -> None:
        """Overwrite fields with those of ``other`` that are set."""
        for attr in _FIELDS.values():
            value = getattr(other, attr)
            if value:
                setattr(self, attr, value)

    def to_dict(self) -> dict[str, str]:
        """Return the set fields under their file keys."""
        result: dict[str, str] = {}
        for key, attr in _FIELDS.items():
            value = getattr(self, attr)
            if value:
                if key == "idleTimeout":
                    result[key] = format_duration(value)
                else:
                    result[key] = value.value if isinstance(value, Enum) else str(value)
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, strict: bool = False) -> "Config":
        """Build a config from file keys; ``strict`` rejects unknown keys and invalid values."""
        data = {} if data is None else data
        if not isinstance(data, Mapping):
            raise ConfigError("configuration must be a mapping")
        values: dict[str, Any] = {}
        for key, raw in data.items():
            if key not in _FIELDS:
                if strict:
                    raise ConfigError(f'unknown field "{key}"')
            elif raw is not None:
                values[_FIELDS[key]] = _convert(key, raw)
        config = cls(**values)
        if strict:
            config._validate()
        return config

    def _validate(self) -> None:
        if self.server_base_url and not _is_url(self.server_base_url):
            raise ConfigError(f"serverBaseUrl is not a valid URL: {self.server_base_url}")
        allowed = [t.value for t in StorageType]
        if self.storage_type and self.storage_type not in allowed:
            raise ConfigError(f"storageType must be one of {', '.join(allowed)}")
        for key, value in (("csvPath", self.csv_path), ("logPath", self.log_path)):
            if value and not _is_file_path(value):
                raise ConfigError(f"{key} is not a valid file path: {value}")
        if self.idle_timeout and self.idle_timeout < 1:
            raise ConfigError("idleTimeout must be at least 1s")

    def __str__(self) -> str:
        return yaml.safe_dump(self.to_dict(), indent=2, sort_keys=False, allow_unicode=True)

    def property_by_name(self, name: str) -> str:
        """Return one setting as text, or a message saying it does not exist."""
        mapping = yaml.safe_load(yaml.safe_dump(self.to_dict())) or {}
        if name not in mapping:
            return f"no property named '{name}' exists"
        value = mapping[name]
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)


def ensure_data_dir() -> Path:
    """Create the data directory in the user's home if needed and return it."""
    root = Path.home() / ".narc"
    root.mkdir(mode=0o750, parents=True, exist_ok=True)
    return root


def get_data_path(subpath: str) -> Path:
    """Return a path inside the data directory, creating the directory."""
    return ensure_data_dir() / subpath


def load_or_create_config(data_dir: str | os.PathLike) -> Config:
    """Return the defaults overridden by the config file in ``data_dir``."""
    data_dir = Path(data_dir)
    config = Config(
        server_base_url=f"http://localhost:{DEFAULT_PORT}",
        storage_type=StorageType.CSV.value,
        csv_path=str(data_dir / "narc.csv"),
        log_path=str(data_dir / "narc.log"),
        idle_timeout=300.0,
    )
    config.merge_in_other(load_disk_config(data_dir / CONFIG_FILE_NAME))
    return config


def load_disk_config_to_map(path: str | os.PathLike) -> dict[str, Any]:
    """Read the config file as a plain mapping, creating an empty file if missing."""
    path = Path(path)
    path.touch(mode=0o644, exist_ok=True)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid configuration file {path}: {exc}") from None
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"configuration file {path} does not hold a mapping")
    return data


def load_disk_config(path: str | os.PathLike) -> Config:
    """Read the config file leniently, creating an empty file if missing."""
    return Config.from_dict(load_disk_config_to_map(path), strict=False)


def update_disk_config(
    mapping: dict[str, Any] | None, name: str, value: str, op: str, path: str | os.PathLike
) -> None:
    """Apply a set or delete to ``mapping``, validate it and write it to ``path``."""
    mapping = {} if mapping is None else mapping
    if op == "set":
        mapping[name] = value
    elif op == "del":
        mapping.pop(name, None)
    content = ""
    if mapping:
        new_config = Config.from_dict(mapping, strict=True)
        content = yaml.safe_dump(new_config.to_dict(), sort_keys=False, allow_unicode=True)
    Path(path).write_text(content, encoding="utf-8")


def set_config_option(name: str, value: str) -> None:
    """Set an option in the config file; the value ``"default"`` removes it."""
    if value == "":
        raise ConfigError("option value was empty")
    op = "del" if value == "default" else "set"
    path = ensure_data_dir() / CONFIG_FILE_NAME
    update_disk_config(load_disk_config_to_map(path), name, value, op, path)


def get_config() -> Config:
    """Load the effective configuration from the user's data directory."""
    return load_or_create_config(ensure_data_dir())