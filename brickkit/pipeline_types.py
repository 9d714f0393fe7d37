from __future__ import annotations

import copy
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias, get_args

WindowTarget = Literal["self", "opener", "target", "top", "broadcast", "all_frames"]
RootMode = Literal["inherit", "document", "element"]
TemplateEngine = Literal["mustache", "nunjucks", "handlebars", "var"]
ExpressionType = Literal["mustache", "nunjucks", "handlebars", "var", "pipeline", "defer"]

ALLOWED_WINDOWS: tuple[str, ...] = get_args(WindowTarget)
ALLOWED_ROOT_MODES: tuple[str, ...] = get_args(RootMode)
TEMPLATE_ENGINES: tuple[str, ...] = get_args(TemplateEngine)
EXPRESSION_TYPES: tuple[str, ...] = get_args(ExpressionType)

_OUTPUT_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_output_key(key: str) -> str:
    if not isinstance(key, str) or not _OUTPUT_KEY_RE.match(key):
        raise ValueError(f"Invalid output key: {key!r}")
    return key


def to_expression(expression_type: ExpressionType, value: Any) -> dict[str, Any]:
    if expression_type not in EXPRESSION_TYPES:
        raise ValueError(f"Invalid expression type: {expression_type}")
    return {"__type__": expression_type, "__value__": value}


def is_expression(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and value.get("__type__") in EXPRESSION_TYPES
        and "__value__" in value
    )


def is_template_expression(value: Any) -> bool:
    return is_expression(value) and value["__type__"] in TEMPLATE_ENGINES


def is_pipeline_expression(value: Any) -> bool:
    return isinstance(value, PipelineExpression) or (
        is_expression(value) and value["__type__"] == "pipeline"
    )


def is_deferred_expression(value: Any) -> bool:
    return is_expression(value) and value["__type__"] == "defer"


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


_CONFIG_KEYS = {
    "id",
    "config",
    "outputKey",
    "output_key",
    "instanceId",
    "instance_id",
    "window",
    "if",
    "condition",
    "onError",
    "on_error",
    "onSuccess",
    "on_success",
    "onCancel",
    "on_cancel",
    "notifyProgress",
    "notify_progress",
    "label",
    "templateEngine",
    "template_engine",
    "rootMode",
    "root_mode",
    "root",
}


@dataclass(frozen=True)
class BrickConfig:
    """One step of a pipeline."""

    id: str
    config: Mapping[str, Any] = field(default_factory=dict)
    output_key: str | None = None
    instance_id: str | None = None
    window: WindowTarget = "self"
    if_: Any = None
    on_error: Mapping[str, Any] | None = None
    on_success: Mapping[str, Any] | None = None
    on_cancel: Mapping[str, Any] | None = None
    notify_progress: bool = False
    label: str | None = None
    template_engine: TemplateEngine | None = None
    root_mode: RootMode = "inherit"
    root: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise TypeError("BrickConfig.id must be a non-empty string")
        object.__setattr__(self, "id", self.id.strip())

        if self.config is None:
            object.__setattr__(self, "config", {})
        elif not isinstance(self.config, Mapping):
            raise TypeError(
                f"BrickConfig.config must be a mapping (brick={self.id}, type={type(self.config).__name__})"
            )

        if self.output_key is not None:
            validate_output_key(self.output_key)

        if self.window not in ALLOWED_WINDOWS:
            raise ValueError(f"Invalid window for brick {self.id}: {self.window}")
        if self.root_mode not in ALLOWED_ROOT_MODES:
            raise ValueError(f"Invalid root mode for brick {self.id}: {self.root_mode}")
        if self.template_engine is not None and self.template_engine not in TEMPLATE_ENGINES:
            raise ValueError(f"Invalid template engine for brick {self.id}: {self.template_engine}")

        for name in ("on_error", "on_success", "on_cancel"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Mapping):
                raise TypeError(f"BrickConfig.{name} must be a mapping or None (brick={self.id})")

    @property
    def has_condition(self) -> bool:
        return self.if_ is not None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BrickConfig":
        if isinstance(data, BrickConfig):
            return data
        if not isinstance(data, Mapping):
            raise TypeError(f"Brick config must be a mapping (type={type(data).__name__})")

        unknown = sorted(str(key) for key in data.keys() if key not in _CONFIG_KEYS)
        if unknown:
            raise ValueError(f"Unknown brick config keys for {data.get('id')}: {', '.join(unknown)}")

        return cls(
            id=data.get("id"),  # type: ignore[arg-type]
            config=copy.deepcopy(dict(data.get("config") or {})),
            output_key=_pick(data, "outputKey", "output_key"),
            instance_id=_pick(data, "instanceId", "instance_id"),
            window=data.get("window") or "self",
            if_=_pick(data, "if", "condition"),
            on_error=_pick(data, "onError", "on_error"),
            on_success=_pick(data, "onSuccess", "on_success"),
            on_cancel=_pick(data, "onCancel", "on_cancel"),
            notify_progress=bool(_pick(data, "notifyProgress", "notify_progress", default=False)),
            label=data.get("label"),
            template_engine=_pick(data, "templateEngine", "template_engine"),
            root_mode=_pick(data, "rootMode", "root_mode") or "inherit",
            root=data.get("root"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "config": copy.deepcopy(dict(self.config))}
        if self.output_key is not None:
            out["outputKey"] = self.output_key
        if self.instance_id is not None:
            out["instanceId"] = self.instance_id
        if self.window != "self":
            out["window"] = self.window
        if self.if_ is not None:
            out["if"] = self.if_
        if self.on_error is not None:
            out["onError"] = dict(self.on_error)
        if self.on_success is not None:
            out["onSuccess"] = dict(self.on_success)
        if self.on_cancel is not None:
            out["onCancel"] = dict(self.on_cancel)
        if self.notify_progress:
            out["notifyProgress"] = True
        if self.label is not None:
            out["label"] = self.label
        if self.template_engine is not None:
            out["templateEngine"] = self.template_engine
        if self.root_mode != "inherit":
            out["rootMode"] = self.root_mode
        if self.root is not None:
            out["root"] = self.root
        return out


BrickPipeline: TypeAlias = tuple[BrickConfig, ...]


def as_pipeline(value: BrickConfig | Mapping[str, Any] | Sequence[Any]) -> BrickPipeline:
    """Cast a single step or a sequence of steps to a BrickPipeline."""

    if isinstance(value, (BrickConfig, Mapping)):
        return (BrickConfig.from_dict(value),)
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise TypeError(f"Pipeline must be a step or a sequence of steps (type={type(value).__name__})")
    return tuple(BrickConfig.from_dict(step) for step in value)


@dataclass(frozen=True)
class PipelineExpression:
    """A deferred sub-pipeline, optionally closing over the scope it was defined in."""

    steps: BrickPipeline
    captured_environment: Mapping[str, Any] | None = None

    @classmethod
    def from_value(
        cls, value: Any, *, captured_environment: Mapping[str, Any] | None = None
    ) -> "PipelineExpression":
        if isinstance(value, PipelineExpression):
            if captured_environment is None or value.captured_environment is not None:
                return value
            return cls(steps=value.steps, captured_environment=captured_environment)
        if is_expression(value):
            if value["__type__"] != "pipeline":
                raise ValueError(f"Expected pipeline expression, got {value['__type__']}")
            value = value["__value__"]
        steps = as_pipeline(value or [])
        env = dict(captured_environment) if captured_environment is not None else None
        return cls(steps=steps, captured_environment=env)

    def resolve_environment(self, caller_context: Mapping[str, Any]) -> dict[str, Any]:
        if self.captured_environment is not None:
            return dict(self.captured_environment)
        return dict(caller_context)


@dataclass(frozen=True)
class Branch:
    key: str
    counter: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key.strip():
            raise TypeError("Branch.key must be a non-empty string")
        if not isinstance(self.counter, int) or self.counter < 0:
            raise ValueError(f"Branch.counter must be a non-negative int (got {self.counter!r})")

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "counter": self.counter}


@dataclass(frozen=True)
class ModComponentRef:
    mod_component_id: str
    starter_brick_id: str | None = None
    mod_id: str | None = None
    deployment_id: str | None = None

    def to_message_context(self) -> dict[str, Any]:
        context: dict[str, Any] = {"mod_component_id": self.mod_component_id}
        if self.starter_brick_id:
            context["starter_brick_id"] = self.starter_brick_id
        if self.mod_id:
            context["mod_id"] = self.mod_id
        if self.deployment_id:
            context["deployment_id"] = self.deployment_id
        return context


UNSET_MOD_COMPONENT = ModComponentRef(mod_component_id="00000000-0000-4000-8000-000000000000")


@dataclass(frozen=True)
class RunMetadata:
    run_id: str | None
    mod_component_ref: ModComponentRef = UNSET_MOD_COMPONENT
    branches: tuple[Branch, ...] = ()

    def with_branch(self, branch: Branch) -> "RunMetadata":
        return RunMetadata(
            run_id=self.run_id,
            mod_component_ref=self.mod_component_ref,
            branches=(*self.branches, branch),
        )


@dataclass(frozen=True)
class InitialValues:
    input: Any = field(default_factory=dict)
    options_args: Mapping[str, Any] = field(default_factory=dict)
    integration_context: Mapping[str, Any] = field(default_factory=dict)
    root: Any = None
