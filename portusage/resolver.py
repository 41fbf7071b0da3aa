"""Map a listening TCP port to the PID that owns it.

Each strategy shells out to one OS tool and parses its text output. They
are tried in ``STRATEGIES`` order; a strategy that is not built for this
platform, whose tool is missing, or which exits non-zero is skipped. The
first PID found wins. New platforms are supported by appending a strategy.
"""

from __future__ import annotations

import re
import subprocess
import sys

_TOOL_TIMEOUT = 5
_SS_PID = re.compile(r"pid=(\d+)")


# ── Errors ──────────────────────────────────────────────────────────────────


class ResolutionError(Exception):
    """Base class for every port → PID failure."""


class PortNotFoundError(ResolutionError):
    def __init__(self, port: int) -> None:
        super().__init__(f"no process is listening on TCP port {port}")
        self.port = port


class UnsupportedPlatformError(ResolutionError):
    def __init__(self, platform: str) -> None:
        super().__init__(f"no port lookup strategy available on {platform}")
        self.platform = platform


class ResolutionParseError(ResolutionError):
    def __init__(self, tool: str, text: str) -> None:
        super().__init__(f"could not parse PID from {tool} output: {text!r}")
        self.tool = tool
        self.text = text


# ── Strategies ──────────────────────────────────────────────────────────────


class Strategy:
    """One way of asking the OS which process listens on a port."""

    name = ""
    # sys.platform prefixes this strategy works on
    platforms: tuple[str, ...] = ()

    def supports(self, platform: str) -> bool:
        return platform.startswith(self.platforms)

    def command(self, port: int) -> list[str]:
        raise NotImplementedError

    def parse(self, output: str, port: int) -> int | None:
        """Return the PID found in ``output``, or None when nothing matches."""
        raise NotImplementedError

    def run(self, port: int) -> str | None:
        """Run the tool. Returns stdout, or None when the tool is unavailable."""
        try:
            result = subprocess.run(
                self.command(port),
                capture_output=True,
                text=True,
                timeout=_TOOL_TIMEOUT,
            )
        except (FileNotFoundError, PermissionError, subprocess.TimeoutExpired):
            return None
        if result.returncode != 0:
            return None
        return result.stdout


class LsofStrategy(Strategy):
    """``lsof -t`` prints bare PIDs, one per line."""

    name = "lsof"
    platforms = ("linux", "darwin", "freebsd", "openbsd", "netbsd", "sunos")

    def command(self, port: int) -> list[str]:
        return ["lsof", "-nP", f"-iTCP:{port}", "-sTCP:LISTEN", "-t"]

    def parse(self, output: str, port: int) -> int | None:
        for line in output.splitlines():
            text = line.strip()
            if not text:
                continue
            if not text.isdigit():
                raise ResolutionParseError(self.name, text)
            # SO_REUSEPORT listeners: the first one wins
            return int(text)
        return None


class SsStrategy(Strategy):
    """``ss -ltnp`` lines look like ``LISTEN 0 128 0.0.0.0:8080 ... users:(("x",pid=42,fd=3))``."""

    name = "ss"
    platforms = ("linux",)

    def command(self, port: int) -> list[str]:
        return ["ss", "-ltnp"]

    def parse(self, output: str, port: int) -> int | None:
        suffix = f":{port}"
        for line in output.splitlines():
            fields = line.split()
            if len(fields) < 4 or not fields[3].endswith(suffix):
                continue
            match = _SS_PID.search(line)
            if match:
                return int(match.group(1))
        return None


class NetstatStrategy(Strategy):
    """``netstat -tlnp`` has a ``PID/Program name`` column; the name may contain spaces."""

    name = "netstat"
    platforms = ("linux",)

    def command(self, port: int) -> list[str]:
        return ["netstat", "-tlnp"]

    def parse(self, output: str, port: int) -> int | None:
        suffix = f":{port}"
        for line in output.splitlines():
            fields = line.split()
            if len(fields) < 7 or not fields[3].endswith(suffix):
                continue
            token = fields[6]
            # "-" means the owner is hidden from us (not root)
            if token == "-":
                continue
            pid_text = token.split("/", 1)[0]
            if not pid_text.isdigit():
                raise ResolutionParseError(self.name, token)
            return int(pid_text)
        return None


STRATEGIES: list[Strategy] = [LsofStrategy(), SsStrategy(), NetstatStrategy()]


def resolve(
    port: int,
    strategies: list[Strategy] | None = None,
    platform: str | None = None,
) -> int:
    """Return the PID listening on ``port``.

    Raises:
        PortNotFoundError: Every applicable strategy ran and found nothing.
        UnsupportedPlatformError: No strategy applies to this platform.
        ResolutionParseError: A tool produced output that isn't a PID.
    """
    platform = platform or sys.platform
    if strategies is None:
        strategies = STRATEGIES
    chain = [s for s in strategies if s.supports(platform)]
    if not chain:
        raise UnsupportedPlatformError(platform)

    for strategy in chain:
        output = strategy.run(port)
        if output is None:
            continue
        pid = strategy.parse(output, port)
        if pid is not None:
            return pid

    raise PortNotFoundError(port)
