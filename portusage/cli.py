"""Command-line entry point: ``port-usage --port 8080 [--watch]``."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, NoReturn

from portusage.config import dump_default_config, effective_interval, load_config
from portusage.dashboard import RenderError
from portusage.insight import describe, make_insight_fn
from portusage.resolver import ResolutionError, resolve
from portusage.sampler import SampleError, Sampler
from portusage.watch import WatchLoop, run_watch


def _port(text: str) -> int:
    try:
        port = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a port number: {text!r}") from None
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


def _fail(message: str) -> NoReturn:
    print(f"port-usage: error: {message}", file=sys.stderr)
    raise SystemExit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="port-usage",
        description="Show CPU & memory usage of the process listening on a TCP port.",
    )
    parser.add_argument("-p", "--port", type=_port, help="TCP port to look up")
    parser.add_argument(
        "--watch", action="store_true", help="Watch CPU & memory usage live"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Seconds between samples in watch mode (default: from config, 1.0)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to TOML config file",
    )
    parser.add_argument(
        "--no-insight", action="store_true", help="Skip the AI insight call"
    )
    parser.add_argument(
        "--dump-config",
        action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    return parser


def single_run(
    port: int, pid: int, sampler: Sampler, insight_settings: dict[str, Any]
) -> None:
    try:
        sample = sampler.sample(pid)
    except SampleError as e:
        _fail(str(e))
    system = sampler.system()
    print(describe(sample, system, port, insight_settings))


def watch_mode(
    port: int,
    pid: int,
    sampler: Sampler,
    config: dict[str, Any],
    interval: float,
    insight_settings: dict[str, Any],
) -> None:
    loop = WatchLoop(
        pid,
        port,
        sampler,
        interval=interval,
        poll_slice=float(config["poll_slice"]),
        history_size=int(config["history_size"]),
        thresholds=config["thresholds"],
        insight=make_insight_fn(insight_settings),
    )
    try:
        run_watch(loop)
    except KeyboardInterrupt:
        pass
    except RenderError as e:
        _fail(str(e))

    if loop.error is not None:
        if loop.iteration == 0:
            _fail(str(loop.error))
        print(f"port-usage: watch ended: {loop.error}", file=sys.stderr)


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.dump_config:
        print(dump_default_config(), end="")
        return
    if args.port is None:
        parser.error("the following arguments are required: -p/--port")

    config = load_config(args.config)
    insight_settings = dict(config["insight"])
    if args.no_insight:
        insight_settings["enabled"] = False

    try:
        pid = resolve(args.port)
    except ResolutionError as e:
        _fail(str(e))

    sampler = Sampler(warmup=float(config["warmup"]))
    if args.watch:
        interval = effective_interval(config, args.interval)
        watch_mode(args.port, pid, sampler, config, interval, insight_settings)
    else:
        single_run(args.port, pid, sampler, insight_settings)


if __name__ == "__main__":
    main()
