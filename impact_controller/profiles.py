from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_PROFILES = os.path.join(os.path.dirname(__file__), "profiles.default.yaml")


@dataclass
class Toolchain:
    """Argument templates for the fetch, test and patch stages."""

    name: str
    fetch: list[str]
    test: list[str]
    patch: list[str]
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> Toolchain:
        missing = [key for key in ("fetch", "test", "patch") if not data.get(key)]
        if missing:
            raise ConfigError(f"Toolchain '{name}' is missing: {', '.join(missing)}")
        for key in ("fetch", "test", "patch"):
            value = data[key]
            if not isinstance(value, list) or not all(isinstance(a, str) for a in value):
                raise ConfigError(f"Toolchain '{name}': '{key}' must be a list of strings")
        env = data.get("env", {}) or {}
        if not isinstance(env, dict):
            raise ConfigError(f"Toolchain '{name}': 'env' must be a mapping")
        return cls(
            name=name,
            fetch=list(data["fetch"]),
            test=list(data["test"]),
            patch=list(data["patch"]),
            env={str(k): str(v) for k, v in env.items()},
        )

    def render(self, template: list[str], **values: str) -> list[str]:
        """Expand one argv template.

        Raises:
            ConfigError: If the template names an unknown field.
        """
        try:
            return [arg.format(**values) for arg in template]
        except (KeyError, IndexError) as e:
            raise ConfigError(f"Toolchain '{self.name}': unknown template field {e}") from e

    def render_env(self, base: dict[str, str] | None = None, **values: str) -> dict[str, str]:
        """Parent environment with the toolchain's entries rendered on top."""
        env = dict(os.environ if base is None else base)
        for key, value in self.env.items():
            try:
                env[key] = value.format(**values)
            except (KeyError, IndexError) as e:
                raise ConfigError(f"Toolchain '{self.name}': unknown template field {e}") from e
        return env


def load_toolchains(path: str) -> dict[str, Toolchain]:
    with open(path, encoding="utf-8") as f:
        try:
            obj = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse profile file {path}: {e}") from e
    if not isinstance(obj, dict):
        raise ConfigError(f"Profile file {path} must contain a mapping")
    toolchains = obj.get("toolchains", {}) or {}
    return {k: Toolchain.from_dict(k, v or {}) for k, v in toolchains.items()}


def resolve_toolchain(name: str, explicit_path: str | None = None) -> Toolchain:
    candidates = []
    if explicit_path:
        candidates.append(explicit_path)
    candidates.append(os.environ.get("IMPACT_PROFILES"))
    candidates.append(DEFAULT_PROFILES)
    candidates.append("toolchains.yaml")

    for p in candidates:
        if not p:
            continue
        if os.path.exists(p):
            toolchains = load_toolchains(p)
            if name in toolchains:
                return toolchains[name]

    raise FileNotFoundError(
        f"Toolchain '{name}' not found. Looked in: {', '.join([c for c in candidates if c])}"
    )
