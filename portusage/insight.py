"""Optional free-text commentary on a sample from the Gemini API.

Purely decorative: every failure is raised as ``InsightError`` and callers
fall back to the plain summary from ``fallback_summary``.
"""

from __future__ import annotations

import functools
import os
import sys
from collections.abc import Callable
from typing import Any

import requests

from portusage.sampler import ProcessSample, SystemSnapshot

API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class InsightError(Exception):
    """The insight service could not produce an annotation."""


def format_system_info(system: SystemSnapshot) -> str:
    return (
        f"Global CPU Usage: {system.global_cpu_percent:.2f}%\n"
        f"Load Average: 1min={system.load_avg_1:.2f}, 5min={system.load_avg_5:.2f}, "
        f"15min={system.load_avg_15:.2f}\n"
        f"Total Memory: {system.total_memory_gb:.2f} GB\n"
        f"Free Memory: {system.free_memory_gb:.2f} GB ({system.free_memory_percent:.1f}% free)\n"
        f"Total Swap: {system.total_swap_gb:.2f} GB\n"
        f"Free Swap: {system.free_swap_gb:.2f} GB ({system.free_swap_percent:.1f}% free)\n"
        f"CPU Cores: {system.cpu_count}\n"
        f"Active Processes: {system.process_count}"
    )


def format_process_info(sample: ProcessSample) -> str:
    return (
        f"Process Name: {sample.name}\n"
        f"PID: {sample.pid}\n"
        f"CPU Usage: {sample.cpu_cores:.2f} cores ({sample.cpu_percent:.1f}%)\n"
        f"Memory Usage: {sample.memory_mb:.1f} MB ({sample.memory_mb / 1024:.2f} GB)"
    )


def build_prompt(sample: ProcessSample, system: SystemSnapshot | None, port: int) -> str:
    parts = [
        f"The process '{sample.name}' is listening on TCP port {port}.",
        "In two or three short sentences, say whether its resource usage looks "
        "healthy for this host and what, if anything, deserves attention.",
        "",
        format_process_info(sample),
    ]
    if system is not None:
        parts += ["", format_system_info(system)]
    return "\n".join(parts)


def fallback_summary(sample: ProcessSample, port: int) -> str:
    return (
        f"Port: {port} | PID: {sample.pid} | {sample.name}\n"
        f"CPU: {sample.cpu_cores:.2f} cores | Memory: {sample.memory_mb:.1f} MB"
    )


def fetch_insight(
    sample: ProcessSample,
    system: SystemSnapshot | None,
    port: int,
    settings: dict[str, Any],
) -> str:
    """Ask the model for a short annotation of ``sample``.

    Raises:
        InsightError: No API key, a bad timeout setting, a network/HTTP failure,
            or an unusable response.
    """
    key_env = str(settings.get("api_key_env", "GEMINI_API_KEY"))
    api_key = os.environ.get(key_env)
    if not api_key:
        raise InsightError(f"{key_env} is not set")

    url = API_URL.format(model=settings.get("model", "gemini-2.0-flash"))
    try:
        timeout = float(settings.get("timeout", 15.0))
    except (TypeError, ValueError) as e:
        raise InsightError(f"invalid timeout: {settings.get('timeout')!r}") from e
    body = {"contents": [{"parts": [{"text": build_prompt(sample, system, port)}]}]}
    try:
        r = requests.post(
            url,
            json=body,
            headers={"x-goog-api-key": api_key},
            timeout=timeout,
        )
        r.raise_for_status()
        payload = r.json()
    except requests.RequestException as e:
        raise InsightError(str(e)) from e
    except ValueError as e:
        raise InsightError(f"malformed response: {e}") from e

    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as e:
        raise InsightError("response contained no text") from e
    if not isinstance(text, str) or not text.strip():
        raise InsightError("response contained no text")
    return text.strip()


def describe(
    sample: ProcessSample,
    system: SystemSnapshot | None,
    port: int,
    settings: dict[str, Any],
) -> str:
    """Insight text if the service answers, otherwise the plain summary."""
    if not settings.get("enabled", True):
        return fallback_summary(sample, port)
    try:
        return fetch_insight(sample, system, port, settings)
    except InsightError as e:
        print(f"port-usage: warning: insight unavailable: {e}", file=sys.stderr)
        return fallback_summary(sample, port)


def make_insight_fn(
    settings: dict[str, Any],
) -> Callable[[ProcessSample, SystemSnapshot | None, int], str] | None:
    """Bind ``settings`` for the watch loop; None when insight is disabled or has no key."""
    if not settings.get("enabled", True):
        return None
    if not os.environ.get(str(settings.get("api_key_env", "GEMINI_API_KEY"))):
        return None
    return functools.partial(fetch_insight, settings=settings)
