"""Control-flow bricks. They never interpret steps themselves: each branch is a
nested pipeline handed back to the engine with a branch marker."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from brickkit.brick_types import BrickOptions, Transformer
from brickkit.engine.headless import HeadlessModeError
from brickkit.engine.render import boolean
from brickkit.engine.trace import serialize_error
from brickkit.errors import CancelError, get_root_cause, has_specific_error_cause
from brickkit.pipeline_types import Branch


class _PipelineArgs(BaseModel):
    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)


class IfElseInput(_PipelineArgs):
    condition: Any = Field(..., description="Value coerced to a boolean")
    if_: Any = Field(default=None, alias="if")
    else_: Any = Field(default=None, alias="else")


class IfElse(Transformer):
    id = "brickkit/if-else"
    name = "If-Else"
    input_schema = IfElseInput

    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> Any:
        if boolean(args.get("condition")):
            if args.get("if") is None:
                return None
            return await options.run_pipeline(args["if"], branch=Branch("if"))
        if args.get("else") is None:
            return None
        return await options.run_pipeline(args["else"], branch=Branch("else"))


class ForEachInput(_PipelineArgs):
    elements: list[Any]
    body: Any
    element_key: str = Field(default="element", alias="elementKey")


class ForEach(Transformer):
    id = "brickkit/for-each"
    name = "For-Each Loop"
    description = "Runs the body once per element; returns the last iteration's output"
    input_schema = ForEachInput

    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> Any:
        element_key = args.get("elementKey", "element")
        last: Any = None
        for index, element in enumerate(args["elements"]):
            if options.abort_signal is not None:
                options.abort_signal.throw_if_aborted()
            last = await options.run_pipeline(
                args["body"],
                branch=Branch("body", index),
                extra_context={f"@{element_key}": element},
            )
        return last


class TryExceptInput(_PipelineArgs):
    try_: Any = Field(..., alias="try")
    except_: Any = Field(default=None, alias="except")
    error_key: str = Field(default="error", alias="errorKey")


class TryExcept(Transformer):
    id = "brickkit/try-except"
    name = "Try-Except"
    input_schema = TryExceptInput

    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> Any:
        try:
            return await options.run_pipeline(args["try"], branch=Branch("try"))
        except HeadlessModeError:
            raise
        except Exception as exc:
            if has_specific_error_cause(exc, CancelError):
                raise
            options.logger.warning("Caught error in try branch: %s", get_root_cause(exc))
            if args.get("except") is None:
                return None
            error_key = args.get("errorKey", "error")
            return await options.run_pipeline(
                args["except"],
                branch=Branch("except"),
                extra_context={f"@{error_key}": serialize_error(get_root_cause(exc))},
            )


class DisplayPanelInput(_PipelineArgs):
    title: str = "Panel"
    body: Any


class DisplayPanel(Transformer):
    id = "brickkit/display-panel"
    name = "Display Temporary Information"
    description = "Runs a renderer pipeline headless and returns the payload to display"
    input_schema = DisplayPanelInput

    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> dict[str, Any]:
        payload = await options.run_renderer_pipeline(args["body"], branch=Branch("body"))
        return {"title": args.get("title", "Panel"), "payload": payload.to_dict()}
