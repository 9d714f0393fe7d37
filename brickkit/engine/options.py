from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Literal, get_args

from brickkit.engine.abort import AbortSignal
from brickkit.logging_utils import ContextLogger
from brickkit.pipeline_types import UNSET_MOD_COMPONENT, Branch, ModComponentRef, RunMetadata, TemplateEngine

ApiVersion = Literal["v1", "v2", "v3"]
API_VERSIONS: tuple[str, ...] = get_args(ApiVersion)

DEFAULT_IMPLICIT_TEMPLATE_ENGINE: TemplateEngine = "mustache"


@dataclass(frozen=True)
class ApiVersionOptions:
    # v1: pass args through unrendered when the previous output is not an object
    explicit_arg: bool = False
    # v2+: data only flows between steps via output keys
    explicit_data_flow: bool = False
    # v3+: only explicit expressions are rendered
    explicit_render: bool = False
    autoescape: bool = True


def api_version_options(version: str | None) -> ApiVersionOptions:
    normalized = (version or "v1").strip().lower()
    if normalized == "v3":
        return ApiVersionOptions(
            explicit_arg=True, explicit_data_flow=True, explicit_render=True, autoescape=False
        )
    if normalized == "v2":
        return ApiVersionOptions(explicit_arg=True, explicit_data_flow=True, explicit_render=False)
    if normalized == "v1":
        return ApiVersionOptions()
    raise ValueError(f"Unknown apiVersion: {version!r} (expected one of: {', '.join(API_VERSIONS)})")


@dataclass(frozen=True)
class ReduceOptions(ApiVersionOptions):
    validate_input: bool = True
    # Raise HeadlessModeError instead of running renderers
    headless: bool = False
    log_values: bool = False
    run_id: str | None = None
    mod_component_ref: ModComponentRef = UNSET_MOD_COMPONENT
    branches: tuple[Branch, ...] = ()
    logger: ContextLogger | None = None
    abort_signal: AbortSignal | None = None
    default_template_engine: TemplateEngine = DEFAULT_IMPLICIT_TEMPLATE_ENGINE

    @classmethod
    def for_api_version(cls, version: str | None, **overrides: Any) -> "ReduceOptions":
        base = dataclasses.asdict(api_version_options(version))
        base.update(overrides)
        return cls(**base)

    @property
    def run_metadata(self) -> RunMetadata:
        return RunMetadata(
            run_id=self.run_id, mod_component_ref=self.mod_component_ref, branches=self.branches
        )

    def replace(self, **changes: Any) -> "ReduceOptions":
        return dataclasses.replace(self, **changes)
