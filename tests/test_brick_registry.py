import pytest

from brickkit.brick_registry import BrickRegistry, BrickResolver
from brickkit.bricks import IdentityTransformer, builtin_bricks
from brickkit.errors import RuntimeNotInitializedError, UnknownBrickError
from brickkit.pipeline_types import BrickConfig


def test_resolve_reads_kind_from_brick_class():
    resolver = BrickResolver(BrickRegistry.from_bricks(builtin_bricks()))

    assert resolver.resolve(BrickConfig(id="brickkit/identity")).kind == "transform"
    assert resolver.resolve(BrickConfig(id="brickkit/log")).kind == "effect"
    assert resolver.resolve(BrickConfig(id="brickkit/html")).kind == "renderer"
    assert resolver.resolve(BrickConfig(id="brickkit/document")).kind == "reader"


def test_unknown_brick_error_suggests_close_matches():
    registry = BrickRegistry.from_bricks(builtin_bricks())

    with pytest.raises(UnknownBrickError) as excinfo:
        registry.get("brickkit/identiy")

    assert "brickkit/identity" in excinfo.value.suggestions
    assert "did you mean" in str(excinfo.value)


def test_resolver_without_registry_is_not_initialized():
    resolver = BrickResolver(None)

    with pytest.raises(RuntimeNotInitializedError):
        resolver.resolve(BrickConfig(id="brickkit/identity"))
    assert resolver.try_resolve(BrickConfig(id="brickkit/identity")) is None


def test_registry_rejects_duplicate_ids():
    with pytest.raises(ValueError, match=r"Duplicate brick id: brickkit/identity"):
        BrickRegistry.from_bricks([IdentityTransformer(), IdentityTransformer()])


def test_describe_lists_bricks_sorted_by_id():
    rows = BrickRegistry.from_bricks(builtin_bricks()).describe()
    ids = [row["id"] for row in rows]

    assert ids == sorted(ids)
    assert {"id", "name", "kind", "version", "description", "feature_flag"} <= set(rows[0])


def test_brick_config_from_dict_accepts_camel_case_and_rejects_unknown_keys():
    config = BrickConfig.from_dict(
        {"id": "brickkit/identity", "outputKey": "result", "instanceId": "abc", "if": True}
    )
    assert config.output_key == "result"
    assert config.instance_id == "abc"
    assert config.has_condition

    with pytest.raises(ValueError, match=r"Unknown brick config keys"):
        BrickConfig.from_dict({"id": "brickkit/identity", "outptuKey": "result"})

    with pytest.raises(ValueError, match=r"Invalid output key"):
        BrickConfig.from_dict({"id": "brickkit/identity", "outputKey": "not valid"})
