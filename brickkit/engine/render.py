"""Argument rendering for brick configs.

Renders a step's templated ``config`` against the execution context. Two modes:

- implicit (apiVersion v1/v2): every string is a template (or a variable path when
  it names a context entry);
- explicit (apiVersion v3): only ``{"__type__": ..., "__value__": ...}`` expressions
  are rendered, everything else is literal.

``pipeline`` expressions are never rendered; they become `PipelineExpression`
values that capture the rendering context.
"""

from __future__ import annotations

import copy
import functools
import logging
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import jinja2
import pystache
from pystache.parser import ParsingError

from brickkit.brick_types import ResolvedBrick
from brickkit.engine.options import ReduceOptions
from brickkit.errors import InvalidPathError, InvalidTemplateError, PipelineConfigurationError
from brickkit.pipeline_types import (
    BrickConfig,
    PipelineExpression,
    is_deferred_expression,
    is_expression,
    is_pipeline_expression,
)

logger = logging.getLogger(__name__)

ImplicitRender = Callable[[str, Mapping[str, Any]], Any]

_PATH_RE = re.compile(r"^[\w@-]+\??(\.[\w@-]+\??)*$")
_JINJA_TAG_RE = re.compile(r"({{.*?}}|{%.*?%})", re.DOTALL)
_AT_VAR_RE = re.compile(r"@([A-Za-z_]\w*)")
_JINJA_VAR_PREFIX = "__at_"

_TRUTHY = frozenset({"true", "t", "yes", "y", "on", "1"})
_MISSING = object()


def is_plain_mapping(value: Any) -> bool:
    return isinstance(value, Mapping) and not is_expression(value)


def boolean(value: Any) -> bool:
    """Coerce a rendered condition to a bool (``"f"`` and ``"false"`` are False)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    if isinstance(value, (int, float)):
        return value != 0
    return False


def _child(value: Any, part: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(part, _MISSING)
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)) and part.isdigit():
        index = int(part)
        return value[index] if index < len(value) else _MISSING
    return _MISSING


def get_prop_by_path(obj: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted variable path, e.g. ``@input.user?.name``.

    A missing final part resolves to None. A missing intermediate part raises
    `InvalidPathError` unless the part is marked optional with ``?``.
    """
    parts = path.strip().split(".")
    value: Any = obj
    for index, raw_part in enumerate(parts):
        if raw_part.count("?") > 1 or ("?" in raw_part and not raw_part.endswith("?")):
            raise InvalidPathError(f"Invalid variable path: {path}", path)
        optional = raw_part.endswith("?")
        part = raw_part.rstrip("?")

        value = _child(value, part)
        if value is _MISSING or value is None:
            if optional or index == len(parts) - 1:
                return None
            raise InvalidPathError(f"{path} undefined (missing {part})", path)
    return value


def is_simple_path(value: str, ctxt: Mapping[str, Any]) -> bool:
    if not _PATH_RE.match(value):
        return False
    head = value.split(".", 1)[0].rstrip("?")
    return head in ctxt


def template_context(ctxt: Mapping[str, Any]) -> dict[str, Any]:
    """Expose ``@name`` entries under ``name`` too, unless ``name`` is already taken."""
    view = dict(ctxt)
    for key, value in ctxt.items():
        if isinstance(key, str) and key.startswith("@") and len(key) > 1:
            view.setdefault(key[1:], value)
    return view


@functools.lru_cache(maxsize=2)
def _jinja_environment(autoescape: bool) -> jinja2.Environment:
    return jinja2.Environment(autoescape=autoescape, undefined=jinja2.Undefined)


def _render_nunjucks(template: str, ctxt: Mapping[str, Any], *, autoescape: bool) -> str:
    rewritten = _JINJA_TAG_RE.sub(
        lambda match: _AT_VAR_RE.sub(rf"{_JINJA_VAR_PREFIX}\1", match.group(0)), template
    )
    view = template_context(ctxt)
    for key, value in ctxt.items():
        if isinstance(key, str) and key.startswith("@") and len(key) > 1:
            view[f"{_JINJA_VAR_PREFIX}{key[1:]}"] = value
    try:
        return _jinja_environment(autoescape).from_string(rewritten).render(view)
    except jinja2.TemplateSyntaxError as exc:
        raise InvalidTemplateError(f"Invalid template: {exc.message}", template) from exc


def _render_mustache(template: str, ctxt: Mapping[str, Any], *, autoescape: bool) -> str:
    renderer = pystache.Renderer(missing_tags="ignore") if autoescape else pystache.Renderer(
        escape=lambda text: text, missing_tags="ignore"
    )
    try:
        return renderer.render(template, template_context(ctxt))
    except ParsingError as exc:
        raise InvalidTemplateError(f"Invalid template: {exc}", template) from exc


def render_template(engine: str, template: Any, ctxt: Mapping[str, Any], *, autoescape: bool = True) -> Any:
    if engine == "var":
        if not isinstance(template, str):
            raise InvalidPathError(f"Variable path must be a string (type={type(template).__name__})", str(template))
        return get_prop_by_path(ctxt, template)
    if not isinstance(template, str):
        raise InvalidTemplateError(
            f"Template must be a string (engine={engine}, type={type(template).__name__})", str(template)
        )
    if engine in ("mustache", "handlebars"):
        return _render_mustache(template, ctxt, autoescape=autoescape)
    if engine == "nunjucks":
        return _render_nunjucks(template, ctxt, autoescape=autoescape)
    raise InvalidTemplateError(f"Unsupported template engine: {engine}", template)


def engine_renderer(engine: str, *, autoescape: bool) -> ImplicitRender:
    return functools.partial(render_template, engine, autoescape=autoescape)


def _render_expression(value: Mapping[str, Any], ctxt: Mapping[str, Any], *, autoescape: bool) -> Any:
    if is_pipeline_expression(value):
        return PipelineExpression.from_value(value, captured_environment=ctxt)
    if is_deferred_expression(value):
        return copy.deepcopy(dict(value))
    return render_template(value["__type__"], value["__value__"], ctxt, autoescape=autoescape)


def render_explicit(value: Any, ctxt: Mapping[str, Any], *, autoescape: bool) -> Any:
    if isinstance(value, PipelineExpression):
        return PipelineExpression.from_value(value, captured_environment=ctxt)
    if is_expression(value):
        return _render_expression(value, ctxt, autoescape=autoescape)
    if isinstance(value, Mapping):
        return {key: render_explicit(item, ctxt, autoescape=autoescape) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [render_explicit(item, ctxt, autoescape=autoescape) for item in value]
    return value


def render_implicit(value: Any, ctxt: Mapping[str, Any], render: ImplicitRender, *, autoescape: bool) -> Any:
    if isinstance(value, PipelineExpression):
        return PipelineExpression.from_value(value, captured_environment=ctxt)
    if is_expression(value):
        return _render_expression(value, ctxt, autoescape=autoescape)
    if isinstance(value, Mapping):
        return {
            key: render_implicit(item, ctxt, render, autoescape=autoescape) for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [render_implicit(item, ctxt, render, autoescape=autoescape) for item in value]
    if isinstance(value, str):
        if is_simple_path(value, ctxt):
            return get_prop_by_path(ctxt, value)
        return render(value, ctxt)
    return value


def map_args(
    config: Any,
    ctxt: Mapping[str, Any],
    *,
    implicit_render: ImplicitRender | None,
    autoescape: bool,
) -> Any:
    if implicit_render is None:
        return render_explicit(config, ctxt, autoescape=autoescape)
    return render_implicit(config, ctxt, implicit_render, autoescape=autoescape)


class LazyArgs:
    """Computes rendered args at most once; a raised error is memoized too."""

    def __init__(self, factory: Callable[[], dict[str, Any]]):
        self._factory = factory
        self._evaluated = False
        self._value: dict[str, Any] | None = None
        self._error: Exception | None = None

    @property
    def evaluated(self) -> bool:
        return self._evaluated

    def _evaluate(self) -> None:
        if self._evaluated:
            return
        try:
            self._value = self._factory()
        except Exception as exc:  # noqa: BLE001
            self._error = exc
        self._evaluated = True

    def peek(self) -> tuple[dict[str, Any] | None, Exception | None]:
        self._evaluate()
        return self._value, self._error

    def get(self) -> dict[str, Any]:
        self._evaluate()
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]


@dataclass(frozen=True)
class RenderState:
    context: Mapping[str, Any]
    previous_output: Any
    root: Any


def render_context(state: RenderState, options: ReduceOptions) -> dict[str, Any]:
    """Context templates see: the previous output is merged in under implicit data flow."""
    if options.explicit_data_flow or not is_plain_mapping(state.previous_output):
        return dict(state.context)
    return {**state.context, **state.previous_output}


class ArgumentRenderer:
    def implicit_render(self, config: BrickConfig, options: ReduceOptions) -> ImplicitRender | None:
        if options.explicit_render:
            return None
        return engine_renderer(
            config.template_engine or options.default_template_engine, autoescape=options.autoescape
        )

    def render_args(
        self,
        resolved: ResolvedBrick,
        state: RenderState,
        options: ReduceOptions,
        *,
        step_logger: logging.LoggerAdapter | logging.Logger = logger,
    ) -> dict[str, Any]:
        config = resolved.config

        if resolved.kind == "reader":
            if config.window == "self":
                step_logger.debug("Passed root to reader %s (window=%s)", config.id, config.window)
                return {"root": state.root}
            # The other context reads its own document
            step_logger.debug("Passed blank root to reader %s (window=%s)", config.id, config.window)
            return {}

        if not options.explicit_arg and not is_plain_mapping(state.previous_output):
            # v1: a non-object previous output skips rendering entirely
            return copy.deepcopy(dict(config.config))

        ctxt = render_context(state, options)
        rendered = map_args(
            config.config,
            ctxt,
            implicit_render=self.implicit_render(config, options),
            autoescape=options.autoescape,
        )

        if options.log_values:
            step_logger.debug(
                "Input for brick %s (window=%s): template=%r context=%r rendered=%r",
                config.id,
                config.window,
                config.config,
                state.context,
                rendered,
            )
        return rendered

    async def should_run(
        self,
        config: BrickConfig,
        context: Mapping[str, Any],
        options: ReduceOptions,
        *,
        run_condition: Callable[[PipelineExpression], Awaitable[Any]],
    ) -> bool:
        if not config.has_condition:
            return True

        condition = config.if_
        if is_pipeline_expression(condition):
            if config.window != "self":
                raise PipelineConfigurationError(
                    f"Pipeline conditions require window=self (brick={config.id}, window={config.window})",
                    config.to_dict(),
                )
            expression = PipelineExpression.from_value(condition, captured_environment=context)
            return boolean(await run_condition(expression))

        rendered = map_args(
            {"if": condition},
            context,
            implicit_render=self.implicit_render(config, options),
            autoescape=options.autoescape,
        )
        return boolean(rendered["if"])
