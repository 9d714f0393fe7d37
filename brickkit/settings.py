from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from brickkit.config_io import load_config
from brickkit.config_namespace import ConfigNamespace
from brickkit.engine.options import API_VERSIONS, ReduceOptions
from brickkit.pipeline_types import TEMPLATE_ENGINES

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class RuntimeSettings:
    api_version: str = "v3"
    validate_input: bool = True
    log_values: bool = False
    autoescape: bool | None = None
    default_template_engine: str = "mustache"
    log_level: str = "INFO"
    log_dir: str | None = None

    @classmethod
    def from_dict(cls, cfg: Mapping[str, Any]) -> "RuntimeSettings":
        root = ConfigNamespace(dict(cfg or {}), path="")
        runtime = root.namespace("runtime")
        logging_cfg = root.namespace("logging")

        api_version = runtime.get_str("api_version", default="v3", choices=API_VERSIONS)
        validate_input = runtime.get_bool("validate_input", default=True)
        log_values = runtime.get_bool("log_values", default=False)
        autoescape = runtime.get_optional_bool("autoescape")
        default_template_engine = runtime.get_str(
            "default_template_engine", default="mustache", choices=TEMPLATE_ENGINES
        )

        log_level = (logging_cfg.get_str("level", default="INFO") or "INFO").upper()
        if log_level not in _LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {', '.join(_LOG_LEVELS)} (got {log_level!r})")
        log_dir = logging_cfg.get_str("log_dir", default=None)

        root.assert_consumed()

        return cls(
            api_version=api_version or "v3",
            validate_input=validate_input,
            log_values=log_values,
            autoescape=autoescape,
            default_template_engine=default_template_engine or "mustache",
            log_level=log_level,
            log_dir=log_dir,
        )

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level)

    def to_reduce_options(self, **overrides: Any) -> ReduceOptions:
        values: dict[str, Any] = {
            "validate_input": self.validate_input,
            "log_values": self.log_values,
            "default_template_engine": self.default_template_engine,
        }
        if self.autoescape is not None:
            values["autoescape"] = self.autoescape
        values.update(overrides)
        api_version = values.pop("api_version", None) or self.api_version
        return ReduceOptions.for_api_version(api_version, **values)


def load_settings(config_path: str | None = None, **kwargs: Any) -> tuple[RuntimeSettings, dict[str, Any]]:
    cfg, meta = load_config(config_path, **kwargs)
    return RuntimeSettings.from_dict(cfg), meta
