import pytest

from brickkit.engine.render import (
    LazyArgs,
    boolean,
    engine_renderer,
    get_prop_by_path,
    map_args,
    render_template,
    template_context,
)
from brickkit.errors import InvalidPathError, InvalidTemplateError
from brickkit.pipeline_types import PipelineExpression, to_expression


def test_get_prop_by_path_resolves_nested_values_and_missing_leaf():
    ctxt = {"@input": {"user": {"name": "Ada"}, "items": ["a", "b"]}}

    assert get_prop_by_path(ctxt, "@input.user.name") == "Ada"
    assert get_prop_by_path(ctxt, "@input.items.1") == "b"
    assert get_prop_by_path(ctxt, "@input.user.email") is None


def test_get_prop_by_path_missing_intermediate_part_raises():
    with pytest.raises(InvalidPathError) as excinfo:
        get_prop_by_path({"@input": {}}, "@doesNotExist.bar")

    assert str(excinfo.value) == "@doesNotExist.bar undefined (missing @doesNotExist)"


def test_get_prop_by_path_optional_chaining():
    assert get_prop_by_path({"@input": {}}, "@doesNotExist?.bar") is None
    assert get_prop_by_path({"@input": {"user": None}}, "@input.user?.name") is None


def test_mustache_uses_bare_aliases_for_at_variables():
    assert render_template("mustache", "{{a}}", {"@a": 1}) == "1"


def test_template_context_does_not_shadow_existing_keys():
    view = template_context({"@a": 1, "a": 2})
    assert view["a"] == 2
    assert view["@a"] == 1


def test_autoescape_controls_html_escaping():
    ctxt = {"value": "<b>"}
    assert render_template("mustache", "{{value}}", ctxt, autoescape=True) == "&lt;b&gt;"
    assert render_template("mustache", "{{value}}", ctxt, autoescape=False) == "<b>"
    assert render_template("nunjucks", "{{ value }}", ctxt, autoescape=False) == "<b>"


def test_nunjucks_supports_at_variables():
    ctxt = {"@input": {"name": "Ada"}}
    assert render_template("nunjucks", "Hello {{ @input.name }}!", ctxt) == "Hello Ada!"


def test_invalid_template_raises_invalid_template_error():
    with pytest.raises(InvalidTemplateError):
        render_template("nunjucks", "{{ unclosed ", {})


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (True, True),
        (False, False),
        ("true", True),
        (" Yes ", True),
        ("on", True),
        ("1", True),
        ("f", False),
        ("false", False),
        ("", False),
        (1, True),
        (0, False),
        (None, False),
        ({"a": 1}, False),
    ],
)
def test_boolean(value, expected):
    assert boolean(value) is expected


def test_implicit_render_resolves_simple_paths_and_renders_templates():
    ctxt = {"@options": {"message": "hi"}, "name": "Ada"}
    rendered = map_args(
        {"message": "@options.message", "greeting": "Hello {{name}}", "count": 3},
        ctxt,
        implicit_render=engine_renderer("mustache", autoescape=True),
        autoescape=True,
    )

    assert rendered == {"message": "hi", "greeting": "Hello Ada", "count": 3}


def test_explicit_render_only_renders_expressions():
    ctxt = {"@input": {"x": 1}}
    deferred = to_expression("defer", {"value": to_expression("var", "@element")})
    rendered = map_args(
        {
            "literal": "{{ @input.x }}",
            "value": to_expression("var", "@input.x"),
            "body": to_expression("pipeline", [{"id": "brickkit/identity"}]),
            "later": deferred,
        },
        ctxt,
        implicit_render=None,
        autoescape=False,
    )

    assert rendered["literal"] == "{{ @input.x }}"
    assert rendered["value"] == 1
    assert rendered["later"] == deferred
    assert isinstance(rendered["body"], PipelineExpression)
    assert rendered["body"].captured_environment == ctxt
    assert rendered["body"].steps[0].id == "brickkit/identity"


def test_lazy_args_computes_once():
    calls = []

    def factory():
        calls.append(1)
        return {"a": 1}

    args = LazyArgs(factory)
    assert not args.evaluated
    assert args.peek() == ({"a": 1}, None)
    assert args.get() == {"a": 1}
    assert args.get() is args.get()
    assert len(calls) == 1


def test_lazy_args_memoizes_errors():
    calls = []

    def factory():
        calls.append(1)
        raise InvalidPathError("boom", "@x")

    args = LazyArgs(factory)
    value, error = args.peek()
    assert value is None
    assert isinstance(error, InvalidPathError)

    with pytest.raises(InvalidPathError):
        args.get()
    with pytest.raises(InvalidPathError):
        args.get()
    assert len(calls) == 1
