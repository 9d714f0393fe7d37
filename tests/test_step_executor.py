import logging

import pytest
from pydantic import BaseModel

from brickkit.brick_registry import BrickRegistry, BrickResolver
from brickkit.brick_types import Transformer
from brickkit.bricks import builtin_bricks
from brickkit.engine.options import ReduceOptions
from brickkit.engine.pipeline import PipelineReducer
from brickkit.errors import (
    BrickNotAvailableError,
    BusinessError,
    ContextError,
    MultipleElementsFoundError,
    NoElementsFoundError,
    has_specific_error_cause,
)
from brickkit.logging_utils import ContextLogger
from brickkit.pipeline_types import InitialValues, ModComponentRef, to_expression
from brickkit.platform import LocalPlatform


class CountInput(BaseModel):
    n: int


class CountOutput(BaseModel):
    n: int


class BetaTransformer(Transformer):
    id = "test/beta"
    name = "Beta"
    feature_flag = "beta-bricks"

    async def run(self, args, options):
        return {"ran": True}


class EchoCountTransformer(Transformer):
    id = "test/count"
    name = "Count"
    input_schema = CountInput
    output_schema = CountOutput

    async def run(self, args, options):
        return dict(args)


class FailingTransformer(Transformer):
    id = "test/fail"
    name = "Fail"

    async def run(self, args, options):
        raise RuntimeError("boom")


class FakeRequestRun:
    def __init__(self):
        self.calls = []

    async def _record(self, method, request):
        self.calls.append((method, request))
        return {"window": method}

    async def in_opener(self, request):
        return await self._record("in_opener", request)

    async def in_target(self, request):
        return await self._record("in_target", request)

    async def in_top(self, request):
        return await self._record("in_top", request)

    async def in_other_tabs(self, request):
        return await self._record("in_other_tabs", request)

    async def in_all_frames(self, request):
        return await self._record("in_all_frames", request)


class FakeElement:
    def __init__(self, name, text="", children=None):
        self.name = name
        self.text = text
        self.title = None
        self._children = children or {}

    def select(self, selector):
        return list(self._children.get(selector, []))


def _reducer(platform):
    registry = BrickRegistry.from_bricks(
        [*builtin_bricks(), BetaTransformer(), EchoCountTransformer(), FailingTransformer()]
    )
    return PipelineReducer(BrickResolver(registry), platform)


@pytest.mark.asyncio
async def test_feature_flag_off_blocks_brick():
    platform = LocalPlatform(flags={"beta-bricks": False})

    with pytest.raises(ContextError) as excinfo:
        await _reducer(platform).reduce_pipeline(
            [{"id": "test/beta"}], InitialValues(), ReduceOptions.for_api_version("v3")
        )

    assert has_specific_error_cause(excinfo.value, BrickNotAvailableError)


@pytest.mark.asyncio
async def test_feature_flag_lookup_failure_allows_brick():
    async def broken_lookup(flag):
        raise ConnectionError("flags service down")

    platform = LocalPlatform(flag_lookup=broken_lookup)

    result = await _reducer(platform).reduce_pipeline(
        [{"id": "test/beta"}], InitialValues(), ReduceOptions.for_api_version("v3")
    )

    assert result == {"ran": True}


@pytest.mark.asyncio
async def test_validate_input_can_be_disabled():
    platform = LocalPlatform()
    pipeline = [{"id": "test/count", "config": {"n": "not a number"}}]

    with pytest.raises(ContextError):
        await _reducer(platform).reduce_pipeline(pipeline, InitialValues(), ReduceOptions.for_api_version("v3"))

    result = await _reducer(platform).reduce_pipeline(
        pipeline, InitialValues(), ReduceOptions.for_api_version("v3", validate_input=False)
    )
    assert result == {"n": "not a number"}


@pytest.mark.asyncio
async def test_invalid_output_is_logged_not_raised(caplog):
    step_logger = ContextLogger(logging.getLogger("test.output_schema"))
    options = ReduceOptions.for_api_version("v3", validate_input=False, logger=step_logger)

    with caplog.at_level(logging.WARNING, logger="test.output_schema"):
        result = await _reducer(LocalPlatform()).reduce_pipeline(
            [{"id": "test/count", "config": {"n": "x"}}], InitialValues(), options
        )

    assert result == {"n": "x"}
    assert "Invalid output for brick test/count" in caplog.text


@pytest.mark.asyncio
async def test_progress_notification_is_shown_and_hidden():
    platform = LocalPlatform()

    await _reducer(platform).reduce_pipeline(
        [{"id": "brickkit/identity", "config": {}, "notifyProgress": True, "label": "Copy data"}],
        InitialValues(),
        ReduceOptions.for_api_version("v3"),
    )

    assert platform.toasts.shown[0]["message"] == "Running Copy data"
    assert platform.toasts.shown[0]["type"] == "loading"
    assert platform.toasts.hidden == [platform.toasts.shown[0]["id"]]


@pytest.mark.asyncio
async def test_progress_notification_is_hidden_when_brick_fails():
    platform = LocalPlatform()

    with pytest.raises(ContextError):
        await _reducer(platform).reduce_pipeline(
            [{"id": "test/fail", "notifyProgress": True}], InitialValues(), ReduceOptions.for_api_version("v3")
        )

    assert len(platform.toasts.hidden) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("window", "method"),
    [
        ("opener", "in_opener"),
        ("target", "in_target"),
        ("top", "in_top"),
        ("broadcast", "in_other_tabs"),
        ("all_frames", "in_all_frames"),
    ],
)
async def test_remote_windows_dispatch_through_request_run(window, method):
    request_run = FakeRequestRun()
    platform = LocalPlatform(request_run=request_run)

    result = await _reducer(platform).reduce_pipeline(
        [{"id": "brickkit/identity", "config": {"a": to_expression("var", "@input.a")}, "window": window}],
        InitialValues(input={"a": 1}),
        ReduceOptions.for_api_version("v3", run_id="run-1"),
    )

    assert result == {"window": method}
    called, request = request_run.calls[0]
    assert called == method
    assert request["brick_id"] == "brickkit/identity"
    assert request["args"] == {"a": 1}
    assert request["options"]["run_id"] == "run-1"
    assert request["options"]["ctxt"]["@input"] == {"a": 1}


@pytest.mark.asyncio
async def test_remote_dispatch_requires_serializable_args():
    platform = LocalPlatform(request_run=FakeRequestRun())
    body = to_expression("pipeline", [{"id": "brickkit/identity"}])

    with pytest.raises(ContextError) as excinfo:
        await _reducer(platform).reduce_pipeline(
            [{"id": "brickkit/identity", "config": {"body": body}, "window": "top"}],
            InitialValues(),
            ReduceOptions.for_api_version("v3"),
        )

    assert isinstance(excinfo.value.cause, BusinessError)
    assert "not serializable" in str(excinfo.value.cause)


@pytest.mark.asyncio
async def test_unsupported_remote_window_on_local_platform():
    with pytest.raises(ContextError) as excinfo:
        await _reducer(LocalPlatform()).reduce_pipeline(
            [{"id": "brickkit/identity", "config": {}, "window": "opener"}],
            InitialValues(),
            ReduceOptions.for_api_version("v3"),
        )

    assert isinstance(excinfo.value.cause, BusinessError)


@pytest.mark.asyncio
async def test_error_alert_is_sent_for_deployments():
    platform = LocalPlatform()
    options = ReduceOptions.for_api_version(
        "v3",
        mod_component_ref=ModComponentRef(mod_component_id="component-1", deployment_id="deployment-1"),
    )

    with pytest.raises(ContextError):
        await _reducer(platform).reduce_pipeline(
            [{"id": "test/fail", "onError": {"alert": True}}], InitialValues(), options
        )

    assert platform.alerts.sent == [
        {"deployment_id": "deployment-1", "data": {"id": "test/fail", "label": None, "error": "boom"}}
    ]


@pytest.mark.asyncio
async def test_error_alert_is_skipped_outside_deployments():
    platform = LocalPlatform()

    with pytest.raises(ContextError):
        await _reducer(platform).reduce_pipeline(
            [{"id": "test/fail", "onError": {"alert": True}}], InitialValues(), ReduceOptions.for_api_version("v3")
        )

    assert platform.alerts.sent == []


@pytest.mark.asyncio
async def test_reader_receives_selected_root():
    paragraph = FakeElement("p", "Hello")
    root = FakeElement("body", "Hello world", children={"p": [paragraph]})

    result = await _reducer(LocalPlatform()).reduce_pipeline(
        [{"id": "brickkit/document", "root": "p"}], InitialValues(root=root), ReduceOptions.for_api_version("v3")
    )

    assert result == {"tag": "p", "title": None, "text": "Hello"}


@pytest.mark.asyncio
async def test_document_root_mode_reads_platform_document():
    platform = LocalPlatform(document=FakeElement("html", "Whole page"))
    current = FakeElement("div", "Just a div")

    result = await _reducer(platform).reduce_pipeline(
        [{"id": "brickkit/document", "rootMode": "document"}],
        InitialValues(root=current),
        ReduceOptions.for_api_version("v3"),
    )

    assert result["tag"] == "html"


@pytest.mark.asyncio
async def test_element_root_mode_resolves_reference():
    button = FakeElement("button", "Click")
    platform = LocalPlatform(references={"ref-1": button})

    result = await _reducer(platform).reduce_pipeline(
        [{"id": "brickkit/document", "rootMode": "element", "root": to_expression("var", "@input.ref")}],
        InitialValues(input={"ref": "ref-1"}),
        ReduceOptions.for_api_version("v3"),
    )

    assert result["text"] == "Click"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("matches", "error_type"),
    [([], NoElementsFoundError), ([FakeElement("p"), FakeElement("p")], MultipleElementsFoundError)],
)
async def test_root_selector_must_match_exactly_one_element(matches, error_type):
    root = FakeElement("body", children={"p": matches})

    with pytest.raises(ContextError) as excinfo:
        await _reducer(LocalPlatform()).reduce_pipeline(
            [{"id": "brickkit/document", "root": "p"}], InitialValues(root=root), ReduceOptions.for_api_version("v3")
        )

    assert has_specific_error_cause(excinfo.value, error_type)
