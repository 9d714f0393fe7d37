"""Load pipelines from YAML.

Expressions can be written with tags::

    - id: brickkit/identity
      config:
        greeting: !nunjucks "Hello {{ @input.name }}"
        user: !var "@input.user?.id"
        body: !pipeline
          - id: brickkit/log
            config: {message: !mustache "{{@element}}"}

A document is either a list of steps or a mapping with ``pipeline`` and an
optional ``apiVersion``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import yaml

from brickkit.pipeline_types import BrickPipeline, as_pipeline, to_expression

_DOCUMENT_KEYS = {"apiVersion", "api_version", "pipeline"}


class PipelineLoader(yaml.SafeLoader):
    pass


def _scalar_expression(expression_type: str):
    def construct(loader: yaml.SafeLoader, node: yaml.Node) -> dict[str, Any]:
        if not isinstance(node, yaml.ScalarNode):
            raise yaml.constructor.ConstructorError(
                None, None, f"!{expression_type} expects a string", node.start_mark
            )
        return to_expression(expression_type, loader.construct_scalar(node))  # type: ignore[arg-type]

    return construct


def _construct_pipeline(loader: yaml.SafeLoader, node: yaml.Node) -> dict[str, Any]:
    if isinstance(node, yaml.SequenceNode):
        steps = loader.construct_sequence(node, deep=True)
    elif isinstance(node, yaml.MappingNode):
        steps = [loader.construct_mapping(node, deep=True)]
    else:
        raise yaml.constructor.ConstructorError(
            None, None, "!pipeline expects a step or a list of steps", node.start_mark
        )
    return to_expression("pipeline", steps)


def _construct_defer(loader: yaml.SafeLoader, node: yaml.Node) -> dict[str, Any]:
    if isinstance(node, yaml.MappingNode):
        value: Any = loader.construct_mapping(node, deep=True)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return to_expression("defer", value)


for _engine in ("var", "mustache", "nunjucks", "handlebars"):
    PipelineLoader.add_constructor(f"!{_engine}", _scalar_expression(_engine))
PipelineLoader.add_constructor("!pipeline", _construct_pipeline)
PipelineLoader.add_constructor("!defer", _construct_defer)


@dataclass(frozen=True)
class PipelineDocument:
    pipeline: BrickPipeline
    api_version: str | None = None


def parse_pipeline_document(text: str, *, source: str = "<string>") -> PipelineDocument:
    try:
        payload = yaml.load(text, Loader=PipelineLoader)  # noqa: S506
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid pipeline YAML in {source}: {exc}") from exc

    if payload is None:
        return PipelineDocument(pipeline=())

    api_version: str | None = None
    if isinstance(payload, Mapping) and "pipeline" in payload:
        unknown = sorted(str(key) for key in payload.keys() if key not in _DOCUMENT_KEYS)
        if unknown:
            raise ValueError(f"Unknown pipeline document keys in {source}: {', '.join(unknown)}")
        api_version = payload.get("apiVersion") or payload.get("api_version")
        payload = payload.get("pipeline") or []

    try:
        pipeline = as_pipeline(payload)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid pipeline in {source}: {exc}") from exc
    return PipelineDocument(pipeline=pipeline, api_version=api_version)


def load_pipeline_document(path: str | os.PathLike[str]) -> PipelineDocument:
    with open(path, "r", encoding="utf-8") as handle:
        return parse_pipeline_document(handle.read(), source=str(path))


def load_pipeline_yaml(path: str | os.PathLike[str]) -> BrickPipeline:
    return load_pipeline_document(path).pipeline
