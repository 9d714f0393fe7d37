import pytest

from brickkit.engine.headless import HeadlessModeError, RendererPayload
from brickkit.engine.options import ReduceOptions
from brickkit.errors import ContextError, NoRendererError, has_specific_error_cause
from brickkit.pipeline_types import InitialValues, ModComponentRef, as_pipeline, to_expression
from brickkit.runtime import init_runtime


def _html_step(**extra):
    step = {
        "id": "brickkit/html",
        "config": {"html": to_expression("nunjucks", "<p>{{ @x.a }}</p>")},
    }
    step.update(extra)
    return step


def _pipeline(**html_extra):
    return [
        {"id": "brickkit/identity", "config": {"a": 1}, "outputKey": "x"},
        _html_step(**html_extra),
    ]


@pytest.mark.asyncio
async def test_renderer_raises_headless_mode_error():
    runtime = init_runtime()

    with pytest.raises(HeadlessModeError) as excinfo:
        await runtime.reducer.reduce_pipeline(
            _pipeline(), InitialValues(), ReduceOptions.for_api_version("v3", headless=True)
        )

    error = excinfo.value
    assert str(error) == "brickkit/html is a renderer"
    assert error.brick_args == {"html": "<p>1</p>"}
    assert error.ctxt["@x"] == {"a": 1}


@pytest.mark.asyncio
async def test_renderer_runs_when_not_headless():
    runtime = init_runtime()

    result = await runtime.reducer.reduce_pipeline(
        _pipeline(), InitialValues(), ReduceOptions.for_api_version("v3")
    )

    assert result == {"html": "<p>1</p>", "title": None}


@pytest.mark.asyncio
async def test_headless_renderer_records_a_single_renderer_exit():
    runtime = init_runtime()
    options = ReduceOptions.for_api_version(
        "v3",
        headless=True,
        run_id="run-1",
        mod_component_ref=ModComponentRef(mod_component_id="component-1"),
    )

    with pytest.raises(HeadlessModeError):
        await runtime.reducer.reduce_pipeline(_pipeline(instanceId="render-1"), InitialValues(), options)

    exits = runtime.platform.traces.exits
    assert len(exits) == 1
    assert exits[0]["is_renderer"] is True
    assert exits[0]["is_final"] is True
    assert "error" not in exits[0]


@pytest.mark.asyncio
async def test_notification_is_hidden_on_headless_path():
    runtime = init_runtime()

    with pytest.raises(HeadlessModeError):
        await runtime.reducer.reduce_pipeline(
            _pipeline(notifyProgress=True), InitialValues(), ReduceOptions.for_api_version("v3", headless=True)
        )

    toasts = runtime.platform.toasts
    assert len(toasts.shown) == 1
    assert toasts.hidden == [toasts.shown[0]["id"]]


@pytest.mark.asyncio
async def test_runtime_run_returns_payload_in_headless_mode():
    runtime = init_runtime()
    options = ReduceOptions.for_api_version(
        "v3",
        headless=True,
        run_id="run-1",
        mod_component_ref=ModComponentRef(mod_component_id="component-1"),
    )

    payload = await runtime.run(as_pipeline(_pipeline()), options)

    assert isinstance(payload, RendererPayload)
    assert payload.brick_id == "brickkit/html"
    assert payload.run_id == "run-1"
    assert payload.mod_component_id == "component-1"
    assert payload.to_dict()["args"] == {"html": "<p>1</p>"}


@pytest.mark.asyncio
async def test_display_panel_runs_body_as_renderer_pipeline():
    runtime = init_runtime()
    body = to_expression("pipeline", [_html_step()])
    pipeline = [
        {"id": "brickkit/identity", "config": {"a": 2}, "outputKey": "x"},
        {"id": "brickkit/display-panel", "config": {"title": "Details", "body": body}},
    ]

    result = await runtime.reducer.reduce_pipeline(pipeline, InitialValues(), ReduceOptions.for_api_version("v3"))

    assert result["title"] == "Details"
    assert result["payload"]["brick_id"] == "brickkit/html"
    assert result["payload"]["args"] == {"html": "<p>2</p>"}


@pytest.mark.asyncio
async def test_renderer_pipeline_without_renderer_raises():
    runtime = init_runtime()
    body = to_expression("pipeline", [{"id": "brickkit/identity", "config": {}}])
    pipeline = [{"id": "brickkit/display-panel", "config": {"body": body}}]

    with pytest.raises(ContextError) as excinfo:
        await runtime.reducer.reduce_pipeline(pipeline, InitialValues(), ReduceOptions.for_api_version("v3"))

    assert has_specific_error_cause(excinfo.value, NoRendererError)
    assert str(excinfo.value.cause) == "No renderer found in pipeline"
