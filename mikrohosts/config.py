"""Application configuration loaded from YAML."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


class ConfigError(ValueError):
    """The configuration content is malformed."""


@dataclass
class Source:
    """A hosts file source offered to users."""

    uri: str = ""
    name: str = ""
    description: str = ""
    enabled_by_default: bool = False
    records_count: int = 0


@dataclass
class RouterScript:
    """Settings of the generated router script."""

    redirect_address: str = ""
    exclude_hosts: list[str] = field(default_factory=list)
    comment: str = ""
    max_sources_count: int = 0
    max_source_size_bytes: int = 0


@dataclass
class Config:
    """Main application configuration."""

    sources: list[Source] = field(default_factory=list)
    router_script: RouterScript = field(default_factory=RouterScript)

    def add_source(
        self,
        uri: str,
        name: str,
        description: str,
        enabled_by_default: bool,
        records_count: int,
    ) -> None:
        """Append a source to the sources list."""
        self.sources.append(
            Source(
                uri=uri,
                name=name,
                description=description,
                enabled_by_default=enabled_by_default,
                records_count=records_count,
            )
        )


_REFERENCE = re.compile(r"\$(?:(\$)|\{([^}]*)(\})?|([A-Za-z_][A-Za-z0-9_]*))")
_EXPRESSION = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-=+])(.*))?", re.DOTALL)


def expand_env(text: str) -> str:
    """Substitute ``$VAR`` and ``${VAR}`` references with environment values.

    Supports ``${VAR:-default}``, ``${VAR-default}``, ``${VAR:=default}``,
    ``${VAR=default}``, ``${VAR:+alt}``, ``${VAR+alt}`` and ``$$`` for a dollar.
    """

    def substitute(match: re.Match[str]) -> str:
        if match.group(1):
            return "$"
        if match.group(4):
            return os.environ.get(match.group(4), "")
        if match.group(3) is None:
            raise ConfigError(f"bad substitution: {match.group(0)!r}")
        expression = _EXPRESSION.fullmatch(match.group(2))
        if expression is None:
            raise ConfigError(f"bad substitution: {match.group(0)!r}")
        name, operator, operand = expression.groups()
        value = os.environ.get(name)
        if operator is None:
            return value or ""
        empty_counts_as_unset = operator.startswith(":")
        is_set = value is not None and (value != "" or not empty_counts_as_unset)
        if operator.endswith("+"):
            return expand_env(operand) if is_set else ""
        return value if is_set else expand_env(operand)

    return _REFERENCE.sub(substitute, text)


class _StrictLoader(yaml.SafeLoader):
    """Safe loader that rejects duplicate mapping keys."""


def _construct_unique_mapping(loader: _StrictLoader, node: yaml.MappingNode, deep: bool = False) -> dict:
    loader.flatten_mapping(node)
    seen: set[Any] = set()
    for key_node, _ in node.value:
        key = loader.construct_object(key_node, deep=deep)
        try:
            duplicate = key in seen
        except TypeError:
            continue
        if duplicate:
            raise ConfigError(f"line {key_node.start_mark.line + 1}: key {key!r} already set in map")
        seen.add(key)
    return loader.construct_mapping(node, deep=deep)


_StrictLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_unique_mapping
)


def _mapping(value: Any, path: str, allowed: set[str]) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{path}: expected a mapping, got {type(value).__name__}")
    for key in value:
        if key not in allowed:
            raise ConfigError(f"{path}: field {key} not found")
    return value


def _string(value: Any, path: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        raise ConfigError(f"{path}: expected a string")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _uint(value: Any, path: str, bits: int) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < 2**bits:
        raise ConfigError(f"{path}: expected an unsigned {bits}-bit integer, got {value!r}")
    return value


def _bool(value: Any, path: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigError(f"{path}: expected a boolean, got {value!r}")
    return value


def _string_list(value: Any, path: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{path}: expected a list")
    return [_string(item, f"{path}[{index}]") for index, item in enumerate(value)]


def _source(value: Any, path: str) -> Source:
    data = _mapping(value, path, {"uri", "name", "description", "enabled", "count"})
    return Source(
        uri=_string(data.get("uri"), f"{path}.uri"),
        name=_string(data.get("name"), f"{path}.name"),
        description=_string(data.get("description"), f"{path}.description"),
        enabled_by_default=_bool(data.get("enabled"), f"{path}.enabled"),
        records_count=_uint(data.get("count"), f"{path}.count", 64),
    )


def _router_script(value: Any) -> RouterScript:
    path = "router_script"
    data = _mapping(
        value, path, {"redirect", "exclude", "comment", "max_sources", "max_source_size"}
    )
    redirect = _mapping(data.get("redirect"), f"{path}.redirect", {"address"})
    exclude = _mapping(data.get("exclude"), f"{path}.exclude", {"hosts"})
    return RouterScript(
        redirect_address=_string(redirect.get("address"), f"{path}.redirect.address"),
        exclude_hosts=_string_list(exclude.get("hosts"), f"{path}.exclude.hosts"),
        comment=_string(data.get("comment"), f"{path}.comment"),
        max_sources_count=_uint(data.get("max_sources"), f"{path}.max_sources", 16),
        max_source_size_bytes=_uint(data.get("max_source_size"), f"{path}.max_source_size", 32),
    )


def from_yaml(data: str | bytes, expand: bool = False) -> Config:
    """Build a configuration from YAML content, optionally expanding env variables.

    Unknown fields, duplicate keys and wrongly typed values raise ConfigError.
    """
    text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    if expand:
        text = expand_env(text)
    try:
        document = yaml.load(text, Loader=_StrictLoader)  # noqa: S506 - safe loader subclass
    except yaml.YAMLError as exc:
        raise ConfigError(str(exc)) from exc

    root = _mapping(document, "config", {"sources", "router_script"})
    sources = root.get("sources")
    if sources is not None and not isinstance(sources, list):
        raise ConfigError("sources: expected a list")
    return Config(
        sources=[_source(item, f"sources[{index}]") for index, item in enumerate(sources or [])],
        router_script=_router_script(root.get("router_script")),
    )


def from_yaml_file(filename: str | os.PathLike[str], expand: bool = False) -> Config:
    """Build a configuration from a YAML file."""
    return from_yaml(Path(filename).read_bytes(), expand)