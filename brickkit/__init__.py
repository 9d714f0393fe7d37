"""brickkit: a declarative brick pipeline execution engine."""

from brickkit._version import __version__
from brickkit.brick_registry import BrickRegistry, BrickResolver
from brickkit.brick_types import Brick, BrickOptions, Effect, Reader, Renderer, Transformer
from brickkit.engine import AbortController, HeadlessModeError, PipelineReducer, ReduceOptions, RendererPayload
from brickkit.pipeline_types import BrickConfig, Branch, InitialValues, ModComponentRef, PipelineExpression
from brickkit.runtime import Runtime, init_runtime

__all__ = [
    "AbortController",
    "Branch",
    "Brick",
    "BrickConfig",
    "BrickOptions",
    "BrickRegistry",
    "BrickResolver",
    "Effect",
    "HeadlessModeError",
    "InitialValues",
    "ModComponentRef",
    "PipelineExpression",
    "PipelineReducer",
    "Reader",
    "ReduceOptions",
    "Renderer",
    "RendererPayload",
    "Runtime",
    "Transformer",
    "__version__",
    "init_runtime",
]
