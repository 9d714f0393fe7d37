"""Pipeline reducer: threads context and outputs through a sequence of bricks."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from brickkit._version import __version__
from brickkit.brick_registry import BrickResolver
from brickkit.brick_types import ResolvedBrick
from brickkit.engine.headless import HeadlessModeError, RendererPayload
from brickkit.engine.options import ReduceOptions
from brickkit.engine.render import ArgumentRenderer, LazyArgs, RenderState, render_context
from brickkit.engine.roots import select_brick_root
from brickkit.engine.runner import StepExecutor, StepProps
from brickkit.engine.trace import TraceEntry, TraceExit, TraceRecorder, TraceRecordMeta
from brickkit.errors import (
    BusinessError,
    CancelError,
    ContextError,
    NoRendererError,
    PipelineConfigurationError,
)
from brickkit.logging_utils import ContextLogger, get_context_logger
from brickkit.pipeline_types import (
    BrickConfig,
    BrickPipeline,
    Branch,
    InitialValues,
    PipelineExpression,
    as_pipeline,
)
from brickkit.platform import ALERTS_CAPABILITY, STATE_CAPABILITY, has_capability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepState:
    context: Mapping[str, Any]
    previous_output: Any
    root: Any


@dataclass(frozen=True)
class StepOutput:
    """Result of one step: the state for the next step plus the step's own output."""

    state: StepState
    brick_output: Any = None
    ran: bool = False
    is_effect: bool = False


class PipelineReducer:
    def __init__(
        self,
        resolver: BrickResolver,
        platform: Any,
        *,
        renderer: ArgumentRenderer | None = None,
        tracer: TraceRecorder | None = None,
        executor: StepExecutor | None = None,
    ):
        self._resolver = resolver
        self._platform = platform
        self._renderer = renderer or ArgumentRenderer()
        self._tracer = tracer or TraceRecorder(platform)
        self._executor = executor or StepExecutor(platform, self._tracer)

    @property
    def tracer(self) -> TraceRecorder:
        return self._tracer

    async def reduce_pipeline(
        self,
        pipeline: BrickPipeline | Sequence[Any] | Mapping[str, Any],
        initial_values: InitialValues,
        options: ReduceOptions,
    ) -> Any:
        # Fails fast, outside any step
        self._resolver.registry

        steps = as_pipeline(pipeline)
        # Integration entries first: they must not shadow @input or @options
        context: dict[str, Any] = {
            **dict(initial_values.integration_context),
            "@input": initial_values.input,
            "@options": dict(initial_values.options_args),
        }
        previous_output = {} if options.explicit_data_flow else initial_values.input
        last, state = await self._reduce_steps(
            steps,
            StepState(context=context, previous_output=previous_output, root=initial_values.root),
            options,
        )
        if last is not None and last.ran and not last.is_effect:
            return last.brick_output
        return state.previous_output

    async def reduce_mod_component_pipeline(
        self,
        pipeline: BrickPipeline | Sequence[Any] | Mapping[str, Any],
        initial_values: InitialValues,
        options: ReduceOptions,
    ) -> Any:
        self._tracer.clear(options.mod_component_ref.mod_component_id)
        return await self.reduce_pipeline(pipeline, initial_values, options)

    async def reduce_pipeline_expression(
        self,
        expression: PipelineExpression | Mapping[str, Any] | Sequence[Any],
        context: Mapping[str, Any],
        root: Any,
        options: ReduceOptions,
    ) -> Any:
        """Run a nested pipeline in explicit data flow and return its last step's output."""
        if not options.explicit_data_flow:
            raise PipelineConfigurationError(
                "Nested pipelines require explicit data flow (apiVersion v2 or later)"
            )
        expression = PipelineExpression.from_value(expression)
        last, _state = await self._reduce_steps(
            expression.steps,
            StepState(context=dict(context), previous_output={}, root=root),
            options,
        )
        # Skipped, effect or empty: no output
        if last is None or not last.ran or last.is_effect:
            return None
        return last.brick_output

    async def _reduce_steps(
        self, steps: BrickPipeline, state: StepState, options: ReduceOptions
    ) -> tuple[StepOutput | None, StepState]:
        base_logger = self._base_logger(options)
        last: StepOutput | None = None
        for index, config in enumerate(steps):
            last = await self._run_step(
                config,
                state,
                options,
                index=index,
                is_last=index == len(steps) - 1,
                base_logger=base_logger,
            )
            state = last.state
        return last, state

    def _base_logger(self, options: ReduceOptions) -> ContextLogger:
        if options.logger is not None:
            return options.logger
        return get_context_logger("brickkit", options.mod_component_ref.to_message_context())

    def _refresh_mod_variables(self, context: Mapping[str, Any], options: ReduceOptions) -> Mapping[str, Any]:
        mod_id = options.mod_component_ref.mod_id
        if not mod_id or not has_capability(self._platform, STATE_CAPABILITY):
            return context
        return {**context, "@mod": self._platform.mod_variables.get(mod_id)}

    async def _run_step(
        self,
        config: BrickConfig,
        state: StepState,
        options: ReduceOptions,
        *,
        index: int,
        is_last: bool,
        base_logger: ContextLogger,
    ) -> StepOutput:
        metadata = options.run_metadata
        trace_meta = (
            TraceRecordMeta.from_step(metadata, config) if self._tracer.is_enabled(metadata, config) else None
        )
        step_logger = base_logger.child_logger(brick_id=config.id, label=config.label)
        entered = False

        try:
            state = StepState(
                context=self._refresh_mod_variables(state.context, options),
                previous_output=state.previous_output,
                root=state.root,
            )

            if options.abort_signal is not None and options.abort_signal.aborted:
                options.abort_signal.throw_if_aborted()

            resolved = self._resolver.resolve(config)
            step_logger = step_logger.child_logger(brick_version=resolved.brick.version or __version__)

            ctxt = render_context(RenderState(state.context, state.previous_output, state.root), options)
            root = select_brick_root(config, state.root, ctxt, options, self._platform)
            render_state = RenderState(context=state.context, previous_output=state.previous_output, root=root)
            args = LazyArgs(
                lambda: self._renderer.render_args(resolved, render_state, options, step_logger=step_logger)
            )

            if trace_meta is not None:
                rendered_args, render_error = args.peek()
                self._tracer.enter(
                    TraceEntry(
                        trace_meta,
                        brick_config=config.to_dict(),
                        template_context=ctxt,
                        rendered_args=rendered_args,
                        render_error=render_error,
                    )
                )
                entered = True

            should_run = await self._renderer.should_run(
                config,
                ctxt,
                options,
                run_condition=lambda expression: self._run_nested(
                    expression, state.context, state.root, options, branch=Branch("if", 0)
                ),
            )
            if not should_run:
                step_logger.debug("Skipping brick %s: condition not met", config.id)
                if trace_meta is not None:
                    self._tracer.exit(
                        TraceExit(
                            trace_meta,
                            output=None,
                            output_key=config.output_key,
                            skipped_run=True,
                        )
                    )
                return StepOutput(state=state)

            output = await self._executor.run(
                resolved,
                StepProps(
                    args=args.get(),
                    context=state.context,
                    previous_output=state.previous_output,
                    root=root,
                    index=index,
                ),
                options,
                step_logger=step_logger,
                trace_meta=trace_meta,
                run_pipeline=self._nested_runner(state, options),
                run_renderer_pipeline=self._renderer_runner(state, options),
            )

            if trace_meta is not None:
                self._tracer.exit(TraceExit(trace_meta, output=output, output_key=config.output_key))

            return self._bind_output(resolved, output, state, options, is_last=is_last, step_logger=step_logger)
        except HeadlessModeError:
            raise
        except Exception as exc:
            raise self._step_error(
                exc,
                config,
                index=index,
                step_logger=step_logger,
                trace_meta=trace_meta,
                entered=entered,
                context=state.context,
            )

    def _bind_output(
        self,
        resolved: ResolvedBrick,
        output: Any,
        state: StepState,
        options: ReduceOptions,
        *,
        is_last: bool,
        step_logger: ContextLogger,
    ) -> StepOutput:
        config = resolved.config

        if resolved.kind == "effect":
            if output is not None:
                step_logger.warning("Ignoring output of effect %s", config.id)
            if config.output_key:
                step_logger.warning("Ignoring output key %s for effect %s", config.output_key, config.id)
            return StepOutput(state=state, brick_output=output, ran=True, is_effect=True)

        context = state.context
        if config.output_key:
            context = {**context, f"@{config.output_key}": output}

        if options.explicit_data_flow:
            if not config.output_key and not is_last:
                step_logger.debug("Output of %s is not bound to an output key; discarding it", config.id)
            previous_output = state.previous_output
        else:
            previous_output = output

        return StepOutput(
            state=StepState(context=context, previous_output=previous_output, root=state.root),
            brick_output=output,
            ran=True,
        )

    def _step_error(
        self,
        error: Exception,
        config: BrickConfig,
        *,
        index: int,
        step_logger: ContextLogger,
        trace_meta: TraceRecordMeta | None,
        entered: bool,
        context: Mapping[str, Any],
    ) -> Exception:
        if trace_meta is not None:
            if not entered:
                self._tracer.enter(
                    TraceEntry(trace_meta, brick_config=config.to_dict(), template_context=context)
                )
            self._tracer.exit(TraceExit(trace_meta, error=error, output_key=config.output_key))

        if config.on_error and config.on_error.get("alert"):
            self._send_alert(error, config, step_logger)

        if isinstance(error, CancelError):
            step_logger.info("Run cancelled at brick %s", config.id)
        elif isinstance(error, BusinessError):
            step_logger.warning("Brick %s failed: %s", config.id, error)
        elif not isinstance(error, ContextError):
            step_logger.error("Brick %s failed: %s", config.id, error, exc_info=error)

        if isinstance(error, ContextError):
            return error

        return ContextError(
            f"An error occurred running pipeline stage #{index + 1}: {config.id}",
            cause=error,
            context=step_logger.context,
            index=index,
            brick_id=config.id,
        )

    def _send_alert(self, error: Exception, config: BrickConfig, step_logger: ContextLogger) -> None:
        deployment_id = step_logger.context.get("deployment_id")
        if not deployment_id or not has_capability(self._platform, ALERTS_CAPABILITY):
            step_logger.warning("Cannot send alert for brick %s: not running in a deployment", config.id)
            return
        try:
            self._platform.alerts.send_deployment_alert(
                deployment_id=deployment_id,
                data={"id": config.id, "label": config.label, "error": str(error)},
            )
        except Exception:
            step_logger.exception("Failed to send deployment alert for brick %s", config.id)

    async def _run_nested(
        self,
        pipeline: Any,
        caller_context: Mapping[str, Any],
        root: Any,
        options: ReduceOptions,
        *,
        branch: Branch,
        extra_context: Mapping[str, Any] | None = None,
    ) -> Any:
        if not options.explicit_data_flow:
            raise PipelineConfigurationError(
                "Nested pipelines require explicit data flow (apiVersion v2 or later)"
            )
        expression = PipelineExpression.from_value(pipeline)
        environment = {**expression.resolve_environment(caller_context), **dict(extra_context or {})}
        return await self.reduce_pipeline_expression(
            expression,
            environment,
            root,
            options.replace(branches=(*options.branches, branch)),
        )

    def _nested_runner(self, state: StepState, options: ReduceOptions):
        async def run_pipeline(
            pipeline: Any,
            *,
            branch: Branch,
            extra_context: Mapping[str, Any] | None = None,
            root: Any = None,
        ) -> Any:
            return await self._run_nested(
                pipeline,
                state.context,
                state.root if root is None else root,
                options,
                branch=branch,
                extra_context=extra_context,
            )

        return run_pipeline

    def _renderer_runner(self, state: StepState, options: ReduceOptions):
        async def run_renderer_pipeline(
            pipeline: Any,
            *,
            branch: Branch,
            extra_context: Mapping[str, Any] | None = None,
            root: Any = None,
        ) -> RendererPayload:
            try:
                await self._run_nested(
                    pipeline,
                    state.context,
                    state.root if root is None else root,
                    options.replace(headless=True),
                    branch=branch,
                    extra_context=extra_context,
                )
            except HeadlessModeError as exc:
                return RendererPayload.from_error(exc, run_id=options.run_id)
            raise NoRendererError()

        return run_renderer_pipeline


