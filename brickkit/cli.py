from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from collections.abc import Sequence
from typing import Any

from brickkit.engine.headless import RendererPayload
from brickkit.engine.trace import json_safe
from brickkit.errors import BusinessError, ContextError, get_root_cause
from brickkit.logging_utils import get_context_logger, setup_operational_logger
from brickkit.pipeline_io import load_pipeline_document
from brickkit.pipeline_types import ModComponentRef
from brickkit.runtime import init_runtime
from brickkit.settings import load_settings


def _json_arg(raw: str | None, *, name: str) -> Any:
    if raw is None:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"--{name} must be valid JSON: {exc}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="brickkit", add_help=True)
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a pipeline YAML file")
    run.add_argument("pipeline", help="Path to the pipeline YAML")
    run.add_argument("--input", default=None, help="JSON value bound to @input")
    run.add_argument("--options", default=None, help="JSON object bound to @options")
    run.add_argument("--api-version", default=None, choices=("v1", "v2", "v3"))
    run.add_argument("--headless", action="store_true", help="Return renderer payloads instead of rendering")
    run.add_argument("--run-id", default=None, help="Run id; enables tracing for steps with an instance id")
    run.add_argument("--trace-out", default=None, help="Write recorded traces to this JSON file")
    run.add_argument("--config", default=None, help="Config YAML (default: $BRICKKIT_CONFIG or config/config.yaml)")

    sub.add_parser("list-bricks", help="List built-in bricks")
    return parser


def _run(args: argparse.Namespace) -> int:
    settings, config_meta = load_settings(args.config)
    operational_logger, log_file = setup_operational_logger(
        "brickkit", level=settings.log_level_value, log_dir=settings.log_dir, run_id=args.run_id
    )
    operational_logger.debug("Loaded config (%s): %s", config_meta["mode"], config_meta["paths"])

    try:
        document = load_pipeline_document(args.pipeline)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    mod_component_ref = ModComponentRef(mod_component_id=str(uuid.uuid4()))
    options = settings.to_reduce_options(
        api_version=args.api_version or document.api_version or settings.api_version,
        headless=args.headless,
        run_id=args.run_id,
        mod_component_ref=mod_component_ref,
        logger=get_context_logger("brickkit", mod_component_ref.to_message_context()),
    )

    runtime = init_runtime()
    try:
        result = asyncio.run(
            runtime.run(
                document.pipeline,
                options,
                input=_json_arg(args.input, name="input"),
                options_args=_json_arg(args.options, name="options"),
            )
        )
    except (ContextError, BusinessError) as exc:
        print(f"Error: {exc} ({get_root_cause(exc)})", file=sys.stderr)
        return 1
    finally:
        if args.trace_out:
            traces = runtime.platform.traces
            with open(args.trace_out, "w", encoding="utf-8") as handle:
                json.dump({"entries": traces.entries, "exits": traces.exits}, handle, indent=2)

    if isinstance(result, RendererPayload):
        result = result.to_dict()
    print(json.dumps(json_safe(result), indent=2))
    if log_file:
        operational_logger.info("Operational log: %s", log_file)
    return 0


def _list_bricks() -> int:
    runtime = init_runtime()
    for row in runtime.registry.describe():
        description = f" - {row['description']}" if row["description"] else ""
        print(f"{row['id']} [{row['kind']}] {row['name']}{description}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    if args.command == "run":
        return _run(args)

    if args.command == "list-bricks":
        return _list_bricks()

    raise AssertionError(f"Unhandled command: {args.command}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
