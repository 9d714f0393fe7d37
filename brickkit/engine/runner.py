"""Runs a single resolved brick: gating, validation, notification and dispatch."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from brickkit.brick_types import BrickOptions, ResolvedBrick, RunPipeline
from brickkit.engine.headless import HeadlessModeError
from brickkit.engine.options import ReduceOptions
from brickkit.engine.render import is_plain_mapping
from brickkit.engine.trace import TraceExit, TraceRecorder, TraceRecordMeta
from brickkit.errors import BrickNotAvailableError, BusinessError, InputValidationError
from brickkit.logging_utils import ContextLogger
from brickkit.platform import TOASTS_CAPABILITY, has_capability

logger = logging.getLogger(__name__)

_REMOTE_METHODS = {
    "opener": "in_opener",
    "target": "in_target",
    "top": "in_top",
    "broadcast": "in_other_tabs",
    "all_frames": "in_all_frames",
}


@dataclass(frozen=True)
class StepProps:
    args: dict[str, Any]
    context: Mapping[str, Any]
    previous_output: Any
    root: Any
    index: int = 0


def brick_context(props: StepProps, options: ReduceOptions) -> Any:
    """The ``ctxt`` a brick receives."""
    if options.explicit_data_flow:
        return dict(props.context)
    if is_plain_mapping(props.previous_output):
        return {**props.context, **props.previous_output}
    if options.explicit_arg:
        return dict(props.context)
    return props.previous_output


def throw_if_invalid_input(resolved: ResolvedBrick, args: Mapping[str, Any]) -> None:
    schema = resolved.brick.input_schema
    if schema is None:
        return
    try:
        schema.model_validate(dict(args))
    except ValidationError as exc:
        raise InputValidationError(
            f"Invalid inputs for brick {resolved.config.id}",
            schema=schema.model_json_schema(),
            input=dict(args),
            errors=exc.errors(include_url=False),
        ) from exc


def log_if_invalid_output(resolved: ResolvedBrick, output: Any, step_logger: logging.LoggerAdapter) -> None:
    schema = resolved.brick.output_schema
    if schema is None or resolved.kind == "effect":
        return
    try:
        schema.model_validate(output)
    except ValidationError as exc:
        step_logger.warning(
            "Invalid output for brick %s: %s", resolved.config.id, exc.errors(include_url=False)
        )


class StepExecutor:
    def __init__(self, platform: Any, tracer: TraceRecorder):
        self._platform = platform
        self._tracer = tracer

    async def _check_feature_flag(self, resolved: ResolvedBrick, step_logger: ContextLogger) -> None:
        flag = resolved.brick.feature_flag
        if not flag:
            return
        try:
            enabled = await self._platform.flag_on(flag)
        except Exception:
            step_logger.warning(
                "Feature flag lookup failed for %s (flag=%s); allowing brick", resolved.config.id, flag,
                exc_info=True,
            )
            return
        if not enabled:
            raise BrickNotAvailableError(resolved.config.id, flag)

    def _show_progress(self, resolved: ResolvedBrick) -> str | None:
        config = resolved.config
        if not config.notify_progress or not has_capability(self._platform, TOASTS_CAPABILITY):
            return None
        label = config.label or getattr(resolved.brick, "name", None) or config.id
        return self._platform.toasts.show_notification(message=f"Running {label}", type="loading")

    async def run(
        self,
        resolved: ResolvedBrick,
        props: StepProps,
        options: ReduceOptions,
        *,
        step_logger: ContextLogger,
        trace_meta: TraceRecordMeta | None,
        run_pipeline: RunPipeline,
        run_renderer_pipeline: RunPipeline,
    ) -> Any:
        config = resolved.config

        await self._check_feature_flag(resolved, step_logger)

        if options.validate_input:
            throw_if_invalid_input(resolved, props.args)

        ctxt = brick_context(props, options)
        notification_id = self._show_progress(resolved)
        try:
            if resolved.kind == "renderer" and options.headless:
                if trace_meta is not None:
                    self._tracer.exit(
                        TraceExit(
                            trace_meta,
                            output=None,
                            output_key=config.output_key,
                            is_renderer=True,
                            is_final=True,
                        )
                    )
                raise HeadlessModeError(config.id, props.args, ctxt, step_logger.context)

            if config.window == "self":
                output = await resolved.brick.run(
                    props.args,
                    BrickOptions(
                        ctxt=ctxt,
                        logger=step_logger,
                        root=props.root,
                        platform=self._platform,
                        run_pipeline=run_pipeline,
                        run_renderer_pipeline=run_renderer_pipeline,
                        headless=options.headless,
                        abort_signal=options.abort_signal,
                        message_context=step_logger.context,
                    ),
                )
            else:
                output = await self._run_remote(resolved, props, ctxt, options, step_logger)
        finally:
            if notification_id is not None:
                self._platform.toasts.hide_notification(notification_id)

        log_if_invalid_output(resolved, output, step_logger)
        return output

    async def _run_remote(
        self,
        resolved: ResolvedBrick,
        props: StepProps,
        ctxt: Any,
        options: ReduceOptions,
        step_logger: ContextLogger,
    ) -> Any:
        config = resolved.config
        method_name = _REMOTE_METHODS.get(config.window)
        if method_name is None:
            raise BusinessError(f"Unexpected window: {config.window}")

        request = {
            "brick_id": config.id,
            "args": props.args,
            "options": {
                "ctxt": ctxt,
                "message_context": step_logger.context,
                "run_id": options.run_id,
                "branches": [branch.to_dict() for branch in options.branches],
                "headless": options.headless,
            },
        }
        try:
            json.dumps(request)
        except (TypeError, ValueError) as exc:
            raise BusinessError(
                f"Cannot run brick {config.id} in window {config.window}: arguments are not serializable"
            ) from exc

        step_logger.debug("Running brick %s in %s", config.id, config.window)
        return await getattr(self._platform.request_run, method_name)(request)
