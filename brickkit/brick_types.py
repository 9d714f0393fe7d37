from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Literal, get_args

from pydantic import BaseModel

from brickkit.pipeline_types import BrickConfig

if TYPE_CHECKING:
    from brickkit.engine.abort import AbortSignal
    from brickkit.logging_utils import ContextLogger
    from brickkit.platform import Platform

BrickKind = Literal["reader", "transform", "effect", "renderer"]
BRICK_KINDS: tuple[str, ...] = get_args(BrickKind)

RunPipeline = Callable[..., Awaitable[Any]]


@dataclass
class BrickOptions:
    """Everything a brick receives besides its rendered args."""

    ctxt: Any
    logger: "ContextLogger"
    root: Any
    platform: "Platform"
    run_pipeline: RunPipeline
    run_renderer_pipeline: RunPipeline
    headless: bool = False
    abort_signal: "AbortSignal | None" = None
    message_context: dict[str, Any] = field(default_factory=dict)


class Brick(ABC):
    """Base class for bricks.

    Subclasses set ``id`` and ``name``. The ``kind`` discriminant comes from the
    kind-specific base class and is read once, when the brick is resolved.
    """

    kind: ClassVar[BrickKind]
    id: ClassVar[str]
    name: ClassVar[str]
    version: ClassVar[str | None] = None
    description: ClassVar[str | None] = None
    input_schema: ClassVar[type[BaseModel] | None] = None
    output_schema: ClassVar[type[BaseModel] | None] = None
    feature_flag: ClassVar[str | None] = None

    @abstractmethod
    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> Any:
        ...


class Reader(Brick):
    kind: ClassVar[BrickKind] = "reader"

    @abstractmethod
    async def read(self, root: Any) -> Any:
        ...

    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> Any:
        return await self.read(args.get("root", options.root))


class Transformer(Brick):
    kind: ClassVar[BrickKind] = "transform"


class Effect(Brick):
    kind: ClassVar[BrickKind] = "effect"


class Renderer(Brick):
    kind: ClassVar[BrickKind] = "renderer"

    @abstractmethod
    async def render(self, args: Mapping[str, Any], options: BrickOptions) -> Any:
        ...

    async def run(self, args: Mapping[str, Any], options: BrickOptions) -> Any:
        return await self.render(args, options)


@dataclass(frozen=True)
class ResolvedBrick:
    config: BrickConfig
    brick: Brick
    kind: BrickKind

    def __post_init__(self) -> None:
        if self.kind not in BRICK_KINDS:
            raise ValueError(f"Invalid brick kind for {self.config.id}: {self.kind!r}")
