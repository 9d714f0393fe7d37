from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from brickkit.brick_registry import BrickRegistry, BrickResolver
from brickkit.brick_types import Brick
from brickkit.bricks import builtin_bricks
from brickkit.engine.headless import HeadlessModeError, RendererPayload
from brickkit.engine.options import ReduceOptions
from brickkit.engine.pipeline import PipelineReducer
from brickkit.pipeline_types import BrickPipeline, InitialValues
from brickkit.platform import LocalPlatform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Runtime:
    registry: BrickRegistry
    platform: Any
    reducer: PipelineReducer

    async def run(
        self,
        pipeline: BrickPipeline,
        options: ReduceOptions,
        *,
        input: Any = None,
        options_args: Mapping[str, Any] | None = None,
        integration_context: Mapping[str, Any] | None = None,
        root: Any = None,
    ) -> Any:
        """Run a top-level pipeline; in headless mode a reached renderer yields its payload."""
        initial_values = InitialValues(
            input={} if input is None else input,
            options_args=dict(options_args or {}),
            integration_context=dict(integration_context or {}),
            root=self.platform.document if root is None else root,
        )
        try:
            return await self.reducer.reduce_mod_component_pipeline(pipeline, initial_values, options)
        except HeadlessModeError as exc:
            if not options.headless:
                raise
            logger.info("Pipeline reached renderer %s in headless mode", exc.brick_id)
            return RendererPayload.from_error(exc, run_id=options.run_id)


def init_runtime(
    bricks: Iterable[Brick] | None = None,
    *,
    platform: Any = None,
    include_builtins: bool = True,
) -> Runtime:
    all_bricks: list[Brick] = list(builtin_bricks()) if include_builtins else []
    all_bricks.extend(bricks or ())
    registry = BrickRegistry.from_bricks(all_bricks)
    platform = platform if platform is not None else LocalPlatform()
    return Runtime(
        registry=registry,
        platform=platform,
        reducer=PipelineReducer(BrickResolver(registry), platform),
    )
