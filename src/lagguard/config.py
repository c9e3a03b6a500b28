"""Configuration for the lagguard decision engine.

Uses stdlib dataclasses only. Lags are in milliseconds, thresholds are
ratios of overload-time traffic in ``[0, 1]``.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


@dataclass(frozen=True)
class QOSConfig:
    """Immutable engine configuration.

    ``min_*_threshold`` is the lax bound (applies at ``min_lag``) and
    ``max_*_threshold`` the strict bound (applies at ``max_lag``), so the
    lax value is normally the larger number.
    """

    min_lag: float = 70.0
    max_lag: float = 300.0
    user_lag: float = 500.0
    min_bad_host_threshold: float = 0.50
    max_bad_host_threshold: float = 0.01
    min_bad_ip_threshold: float = 0.50
    max_bad_ip_threshold: float = 0.01
    min_host_requests: int = 30
    min_ip_requests: int = 100
    history_size: int = 500
    error_status_code: int = 503
    exempt_local_address: bool = True

    def __post_init__(self) -> None:
        if self.min_lag < 0 or self.max_lag < 0 or self.user_lag < 0:
            raise ValueError(
                f"lags must be non-negative, got min_lag={self.min_lag}, "
                f"max_lag={self.max_lag}, user_lag={self.user_lag}"
            )
        if self.max_lag < self.min_lag:
            raise ValueError(
                f"max_lag ({self.max_lag}) must be >= min_lag ({self.min_lag})"
            )
        for name in (
            "min_bad_host_threshold",
            "max_bad_host_threshold",
            "min_bad_ip_threshold",
            "max_bad_ip_threshold",
        ):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {self.history_size}")
        if self.min_host_requests < 0 or self.min_ip_requests < 0:
            raise ValueError(
                "min_host_requests and min_ip_requests must be non-negative"
            )
        if not (100 <= self.error_status_code <= 599):
            raise ValueError(
                f"error_status_code must be an HTTP status, got {self.error_status_code}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary (JSON-safe)."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QOSConfig:
        """Build a config from a mapping.

        Keys may be snake_case or camelCase (``minLag``). Unknown keys are
        ignored so files written for a newer version still load. String
        values are coerced like environment variables (``minLag: "70"``).

        Raises:
            ValueError: If a value cannot be read as the field's type.
        """
        kinds = {f.name: type(f.default) for f in dataclasses.fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = _snake(key)
            if name in kinds:
                kwargs[name] = _convert(key, value, kinds[name])
            else:
                logger.debug("[LAGGUARD_CONFIG] Ignoring unknown key %r", key)
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str | os.PathLike[str]) -> QOSConfig:
        """Load configuration from a YAML or JSON file.

        ``.json`` files are read natively. ``.yaml`` / ``.yml`` files need
        PyYAML (optional dependency).
        """
        file_path = Path(path)

        if file_path.suffix == ".json":
            with open(file_path) as fh:
                data = json.load(fh)
            return cls.from_dict(data)

        try:
            import yaml  # type: ignore[import-untyped]
        except ImportError:
            raise RuntimeError(
                f"PyYAML is required to load '{file_path.name}'. "
                "Install with: pip install lagguard[yaml]"
            ) from None

        with open(file_path) as fh:
            data = yaml.safe_load(fh) or {}
        return cls.from_dict(data)

    @classmethod
    def from_env(
        cls,
        prefix: str = "LAGGUARD_",
        environ: Mapping[str, str] | None = None,
    ) -> QOSConfig:
        """Build a config from environment variables.

        Each field maps to ``<prefix><FIELD_NAME>``, e.g.
        ``LAGGUARD_MIN_LAG=50`` or ``LAGGUARD_EXEMPT_LOCAL_ADDRESS=0``.
        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            var = f"{prefix}{f.name.upper()}"
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            kwargs[f.name] = _coerce(var, raw, type(f.default))
        return cls(**kwargs)


_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def _coerce(var: str, raw: str, kind: type) -> Any:
    value = raw.strip()
    if kind is bool:
        lowered = value.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"{var} must be a boolean, got {raw!r}")
    try:
        return kind(value)
    except ValueError:
        raise ValueError(f"{var} must be {kind.__name__}, got {raw!r}") from None


def _convert(key: str, value: Any, kind: type) -> Any:
    """Coerce a loaded mapping value to ``kind``."""
    if isinstance(value, str):
        return _coerce(key, value, kind)
    if kind is bool:
        if isinstance(value, bool):
            return value
        raise ValueError(f"{key} must be a boolean, got {value!r}")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be {kind.__name__}, got {value!r}")
    if kind is int and value != int(value):
        raise ValueError(f"{key} must be int, got {value!r}")
    return kind(value)
