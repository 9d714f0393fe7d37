from brickkit.engine.abort import AbortController, AbortSignal
from brickkit.engine.headless import HeadlessModeError, RendererPayload
from brickkit.engine.options import ApiVersionOptions, ReduceOptions, api_version_options
from brickkit.engine.pipeline import PipelineReducer
from brickkit.engine.render import ArgumentRenderer, LazyArgs, boolean, get_prop_by_path, map_args
from brickkit.engine.runner import StepExecutor, StepProps
from brickkit.engine.trace import TraceRecorder, serialize_error

__all__ = [
    "AbortController",
    "AbortSignal",
    "ApiVersionOptions",
    "ArgumentRenderer",
    "HeadlessModeError",
    "LazyArgs",
    "PipelineReducer",
    "ReduceOptions",
    "RendererPayload",
    "StepExecutor",
    "StepProps",
    "TraceRecorder",
    "api_version_options",
    "boolean",
    "get_prop_by_path",
    "map_args",
    "serialize_error",
]
