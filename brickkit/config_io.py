from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

CONFIG_ENV_VAR = "BRICKKIT_CONFIG"

_BASE_CONFIG = Path("config") / "config.yaml"
_LOCAL_OVERLAY = Path("config") / "config.local.yaml"


def find_repo_root(start: str | os.PathLike[str] | None = None) -> Path | None:
    """Nearest directory at or above `start` holding a pyproject.toml or .git."""
    here = Path(start or os.getcwd()).resolve()
    if here.is_file():
        here = here.parent
    for candidate in (here, *here.parents):
        if (candidate / "pyproject.toml").is_file() or (candidate / ".git").exists():
            return candidate
    return None


def load_yaml_mapping(path: str | os.PathLike[str]) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return dict(payload)


def deep_merge(base: Any, overlay: Any, *, path: str = "") -> Any:
    """Overlay wins for scalars and lists; mappings merge key by key.

    Replacing a mapping with a non-mapping (or the reverse) is almost always a
    mistake in the local overlay, so it is rejected.
    """
    base_is_mapping = isinstance(base, Mapping)
    overlay_is_mapping = isinstance(overlay, Mapping)

    if base is None or overlay is None:
        return overlay
    if base_is_mapping != overlay_is_mapping:
        raise ValueError(
            f"Invalid config overlay merge at {path or '<root>'}: "
            f"cannot replace {type(base).__name__} with {type(overlay).__name__}"
        )
    if not base_is_mapping:
        return overlay

    merged = dict(base)
    for key, value in overlay.items():
        child_path = f"{path}.{key}" if path else str(key)
        merged[key] = deep_merge(merged[key], value, path=child_path) if key in merged else value
    return merged


def _meta(mode: str, paths: list[Path], *, env_var: str, repo_root: Path | None) -> dict[str, Any]:
    return {
        "mode": mode,
        "paths": [str(p) for p in paths],
        "env_var": env_var,
        "repo_root": str(repo_root) if repo_root is not None else None,
    }


def load_config(
    config_path: str | None = None,
    *,
    env_var: str = CONFIG_ENV_VAR,
    start_dir: str | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load the runtime config and describe where it came from.

    An explicit path (or the env var) loads a single file. Otherwise
    ``<repo>/config/config.yaml`` is loaded, with ``config.local.yaml`` deep-merged
    over it when present. No repo or no base config yields an empty mapping.
    """
    chosen = (config_path or "").strip() or os.environ.get(env_var, "").strip()
    if chosen:
        path = Path(os.path.abspath(os.path.expanduser(os.path.expandvars(chosen))))
        mode = "explicit" if config_path else "env"
        return load_yaml_mapping(path), _meta(mode, [path], env_var=env_var, repo_root=None)

    repo_root = find_repo_root(start_dir)
    base_path = repo_root / _BASE_CONFIG if repo_root is not None else None
    if base_path is None or not base_path.is_file():
        return {}, _meta("defaults", [], env_var=env_var, repo_root=repo_root)

    cfg = load_yaml_mapping(base_path)
    loaded = [base_path]
    overlay_path = repo_root / _LOCAL_OVERLAY
    if overlay_path.is_file():
        cfg = deep_merge(cfg, load_yaml_mapping(overlay_path))
        loaded.append(overlay_path)

    mode = "base+local" if len(loaded) > 1 else "base"
    return cfg, _meta(mode, loaded, env_var=env_var, repo_root=repo_root)
