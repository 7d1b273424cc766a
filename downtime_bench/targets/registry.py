"""Target registry — loads targets.yaml and validates it into typed Targets.

Everything that reaches the monitoring engine goes through here, so a
malformed entry is rejected before a single check is made.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import httpx
import yaml

logger = logging.getLogger(__name__)

_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9_-]{1,63}(?<!-)$")


class ConfigurationError(ValueError):
    """Raised when the target list or engine settings are invalid."""


# ── Data models ──────────────────────────────────────────────────────────────


class TargetKind(str, Enum):
    HTTP = "http"
    TCP = "tcp"


# Allowed args per kind, in the order they are reported back to the user
ALLOWED_ARGS: dict[TargetKind, tuple[str, ...]] = {
    TargetKind.HTTP: ("url",),
    TargetKind.TCP: ("host", "port"),
}

SUPPORTED_TYPES = tuple(k.value for k in TargetKind)


@dataclass(frozen=True)
class Target:
    """One monitored endpoint. Immutable once constructed."""

    name: str
    kind: TargetKind
    url: str = ""  # http
    host: str = ""  # tcp
    port: int = 0  # tcp

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigurationError("'name' must be a non-empty string")
        if not isinstance(self.kind, TargetKind):
            raise ConfigurationError(f"unsupported type '{self.kind}'")

        if self.kind is TargetKind.HTTP:
            _validate_url(self.url)
            if self.host or self.port:
                raise ConfigurationError("http targets take only 'url'")
        else:
            _validate_host(self.host)
            _validate_port(self.port)
            if self.url:
                raise ConfigurationError("tcp targets take only 'host' and 'port'")

    @property
    def icon(self) -> str:
        return "🌐" if self.kind is TargetKind.HTTP else "🔌"

    @property
    def address(self) -> str:
        """Human-readable endpoint (URL or host:port)."""
        if self.kind is TargetKind.HTTP:
            return self.url
        host = self.host
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        return f"{host}:{self.port}"

    def __str__(self) -> str:
        return self.name


# ── Value validators ─────────────────────────────────────────────────────────


def _validate_url(url: Any) -> None:
    if not isinstance(url, str) or not url:
        raise ConfigurationError("'url' must be a non-empty string")
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise ConfigurationError(f"'url' is not a valid URL: {e}") from e
    if parsed.scheme not in ("http", "https"):
        raise ConfigurationError(f"'url' must use http or https, got '{parsed.scheme or url}'")
    if not parsed.host:
        raise ConfigurationError("'url' must include a host")


def _validate_host(host: Any) -> None:
    if not isinstance(host, str) or not host:
        raise ConfigurationError("'host' must be a non-empty string")

    if host.startswith("[") or host.endswith("]"):
        # Bracketed notation is only meaningful for IPv6 literals
        inner = host[1:-1] if host.startswith("[") and host.endswith("]") else ""
        try:
            ipaddress.IPv6Address(inner)
        except ValueError as e:
            raise ConfigurationError(f"'host' {host!r} is not a valid bracketed IPv6 address") from e
        return

    try:
        ipaddress.ip_address(host)
        return
    except ValueError:
        pass

    name = host[:-1] if host.endswith(".") else host
    if len(name) > 253 or not all(_HOSTNAME_LABEL.match(label) for label in name.split(".")):
        raise ConfigurationError(f"'host' {host!r} is not a valid hostname or IP address")


def _validate_port(port: Any) -> None:
    # bool is an int subclass: `port: true` in YAML is not port 1
    if isinstance(port, bool) or not isinstance(port, int):
        raise ConfigurationError("'port' must be a number")
    if not 1 <= port <= 65535:
        raise ConfigurationError("'port' must be a valid port number (1-65535)")


# ── Raw entry parsing ────────────────────────────────────────────────────────


def validate_targets(raw_targets: list[Any]) -> list[Target]:
    """Turn raw ``targets`` entries into Targets.

    Raises ``ConfigurationError`` naming the offending entry (1-based) and
    field. Names must be unique across the list.
    """
    if not raw_targets:
        raise ConfigurationError("No targets defined in the targets file")

    targets: list[Target] = []
    seen: dict[str, int] = {}

    for idx, raw in enumerate(raw_targets, start=1):
        target = _parse_target(raw, idx)
        if target.name in seen:
            raise ConfigurationError(
                f"Target #{idx}: duplicate name '{target.name}' "
                f"(already used by target #{seen[target.name]})"
            )
        seen[target.name] = idx
        targets.append(target)

    return targets


def _parse_target(raw: Any, idx: int) -> Target:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Target #{idx}: entry must be a mapping")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(f"Target #{idx}: 'name' must be a non-empty string")

    type_name = raw.get("type")
    try:
        kind = TargetKind(type_name)
    except ValueError:
        raise ConfigurationError(
            f"Target #{idx}: unsupported type '{type_name}'. "
            f"Supported types: {', '.join(SUPPORTED_TYPES)}"
        ) from None

    args = raw.get("args") or {}
    if not isinstance(args, dict):
        raise ConfigurationError(f"Target #{idx} ({kind.value}): 'args' must be a mapping")

    allowed = ALLOWED_ARGS[kind]
    for key in args:
        if key not in allowed:
            raise ConfigurationError(
                f"Target #{idx} ({kind.value}): unknown arg '{key}'. "
                f"Allowed args: {', '.join(allowed)}"
            )
    for key in allowed:
        if key not in args:
            raise ConfigurationError(f"Target #{idx} ({kind.value}): missing required arg '{key}'")

    try:
        if kind is TargetKind.HTTP:
            _require_string(args, "url")
            return Target(name=name, kind=kind, url=args["url"])
        _require_string(args, "host")
        return Target(name=name, kind=kind, host=args["host"], port=args["port"])
    except ConfigurationError as e:
        raise ConfigurationError(f"Target #{idx} ({kind.value}): {e}") from None


def _require_string(args: dict[str, Any], key: str) -> None:
    if not isinstance(args[key], str):
        raise ConfigurationError(f"'{key}' must be a string")


# ── File loading ─────────────────────────────────────────────────────────────


def load_targets(path: Path | str) -> list[Target]:
    """Read and validate a targets YAML file."""
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to read targets file '{path}': {e}") from e

    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse targets file: {e}") from e

    if not isinstance(raw, dict) or "targets" not in raw:
        raise ConfigurationError("Failed to parse targets file: missing top-level 'targets' list")
    if not isinstance(raw["targets"], list):
        raise ConfigurationError("Failed to parse targets file: 'targets' must be a list")

    targets = validate_targets(raw["targets"])
    logger.info("Loaded %d targets from %s", len(targets), path)
    return targets

