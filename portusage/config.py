"""Configuration loading for port-usage.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/port-usage/config.toml → defaults only.
"""

from __future__ import annotations

import sys
import tomllib
from pathlib import Path
from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "interval": 1.0,
    "warmup": 0.5,
    "poll_slice": 0.1,
    "history_size": 60,
    "thresholds": {
        "cpu_percent": {"warning": 50.0, "critical": 80.0},
        "memory_mb": {"warning": 500.0, "critical": 1000.0},
    },
    "insight": {
        "enabled": True,
        "model": "gemini-2.0-flash",
        "api_key_env": "GEMINI_API_KEY",
        "timeout": 15.0,
    },
}

MIN_INTERVAL = 0.1

_DEFAULT_PATH = Path.home() / ".config" / "port-usage" / "config.toml"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _merge_user(user_config: dict[str, Any]) -> dict[str, Any]:
    """Merge a user config over defaults; threshold levels merge per metric."""
    merged = _deep_merge(DEFAULT_CONFIG, user_config)
    thresholds = user_config.get("thresholds")
    if isinstance(thresholds, dict):
        merged["thresholds"] = _deep_merge(DEFAULT_CONFIG["thresholds"], thresholds)
    return merged


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/port-usage/config.toml.

    Returns:
        Merged configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed.
    """
    if path is not None:
        if not path.is_file():
            print(f"port-usage: config file not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        try:
            user_config = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            print(f"port-usage: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        return _merge_user(user_config)

    if _DEFAULT_PATH.is_file():
        try:
            user_config = tomllib.loads(_DEFAULT_PATH.read_text(encoding="utf-8"))
            return _merge_user(user_config)
        except tomllib.TOMLDecodeError:
            print(
                f"port-usage: warning: ignoring invalid TOML in {_DEFAULT_PATH}",
                file=sys.stderr,
            )

    return dict(DEFAULT_CONFIG)


def effective_interval(config: dict[str, Any], override: float | None = None) -> float:
    """Pick the watch interval (CLI override wins) and clamp it to MIN_INTERVAL."""
    value = override if override is not None else float(config["interval"])
    return max(MIN_INTERVAL, value)


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# port-usage configuration",
        "# Place this file at ~/.config/port-usage/config.toml",
        "",
        f"interval = {DEFAULT_CONFIG['interval']}",
        f"warmup = {DEFAULT_CONFIG['warmup']}",
        f"poll_slice = {DEFAULT_CONFIG['poll_slice']}",
        f"history_size = {DEFAULT_CONFIG['history_size']}",
        "",
    ]

    for metric, levels in DEFAULT_CONFIG["thresholds"].items():
        lines.append(f"[thresholds.{metric}]")
        lines.append(f"warning = {levels['warning']}")
        lines.append(f"critical = {levels['critical']}")
        lines.append("")

    insight = DEFAULT_CONFIG["insight"]
    lines.append("[insight]")
    lines.append(f"enabled = {'true' if insight['enabled'] else 'false'}")
    lines.append(f'model = "{insight["model"]}"')
    lines.append(f'api_key_env = "{insight["api_key_env"]}"')
    lines.append(f"timeout = {insight['timeout']}")
    lines.append("")

    return "\n".join(lines) + "\n"
