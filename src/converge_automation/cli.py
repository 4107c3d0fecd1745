from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import ConvergeConfig, load_config
from .inventory import InventoryLoader
from .playbook import PlaybookLoader
from .report import HostStats, RunReport
from .runner import PlaybookRunner
from .types import ActionResult


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str], stream=None) -> str:
    stream = stream or sys.stdout
    if not color:
        return text
    if not stream.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Converge hosts to the state described by a playbook")
    parser.add_argument(
        "playbook",
        nargs="?",
        default=None,
        type=Path,
        help="Path to a playbook file (default from config or /etc/converge/site.toml)",
    )
    parser.add_argument(
        "-i",
        "--inventory",
        type=Path,
        help="Path to the inventory file (default from config or /etc/converge/inventory.toml)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("/etc/converge/main.conf"),
        help="Path to converge config file (default: /etc/converge/main.conf)",
    )
    parser.add_argument("--check", action="store_true", help="Report changes without making them")
    parser.add_argument("-f", "--forks", type=int, help="Number of hosts converged concurrently")
    parser.add_argument("--report", type=Path, help="Write a JSON run report to this path")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)
        inventory_path = args.inventory or cfg.inventory
        playbook_path = args.playbook or cfg.playbook
        inventory = InventoryLoader().load(inventory_path)
        playbook = PlaybookLoader(roles_path=cfg.roles_path).load(playbook_path)
    except ValueError as exc:
        print(colorize(f"Validation failed: {exc}", Ansi.RED, sys.stderr), file=sys.stderr)
        return 1

    runner = build_runner(cfg, args, inventory, playbook)
    previous = _install_signal_handlers(runner)
    try:
        report = runner.run()
    except (ValueError, KeyError) as exc:
        message = exc.args[0] if isinstance(exc, KeyError) and exc.args else exc
        print(colorize(f"Playbook failed: {message}", Ansi.RED, sys.stderr), file=sys.stderr)
        return 1
    finally:
        _restore_signal_handlers(previous)

    print_report(report, logging.getLogger().getEffectiveLevel())

    report_path = args.report or cfg.report
    if report_path:
        report.write_json(report_path)

    return 0 if report.succeeded else 2


def build_runner(cfg: ConvergeConfig, args: argparse.Namespace, inventory, playbook) -> PlaybookRunner:
    return PlaybookRunner(
        inventory,
        playbook,
        forks=args.forks or cfg.forks,
        dry_run=args.check,
        force_handlers=cfg.force_handlers,
        become_method=cfg.become_method,
        command_timeout=cfg.command_timeout,
    )


def print_report(report: RunReport, log_level: int) -> None:
    for play, results in report.plays:
        print(colorize(f"PLAY [{play}]", Ansi.CYAN))
        for result in results:
            if not should_display_result(result, log_level):
                continue
            print(format_result(result))
            if result.failed:
                print(format_result(result, stream=sys.stderr), file=sys.stderr)

    print(colorize("RECAP", Ansi.CYAN))
    for host, stats in report.stats.items():
        print(format_stats(host, stats))
    if report.cancelled:
        print(colorize("Run cancelled before completion", Ansi.YELLOW))
    print(Summary.from_report(report).render())


def format_result(result: ActionResult, stream=None) -> str:
    status = result.status.value
    if result.failed:
        color: Optional[str] = Ansi.RED
    elif result.skipped:
        color = Ansi.YELLOW
    elif result.changed:
        color = Ansi.GREEN
    else:
        color = Ansi.BLUE
    resource = f"[{result.resource}]" if result.resource else ""
    kind = "handler" if result.handler else "task"
    label = f" ({kind}: {result.task})" if result.task else ""
    line = f"{result.host}::{result.action}{resource} {status} - {result.details}{label}"
    return colorize(line, color, stream)


def format_stats(host: str, stats: HostStats) -> str:
    line = f"{host} : ok={stats.ok} changed={stats.changed} failed={stats.failed} skipped={stats.skipped}"
    return colorize(line, Ansi.RED if stats.failed else Ansi.GREEN)


def should_display_result(result: ActionResult, log_level: int) -> bool:
    if result.failed or result.changed:
        return True
    return log_level <= logging.DEBUG


class Summary:
    def __init__(self) -> None:
        self.hosts = 0
        self.changes = 0
        self.skipped = 0
        self.failures = 0

    @classmethod
    def from_report(cls, report: RunReport) -> "Summary":
        summary = cls()
        for stats in report.stats.values():
            summary.hosts += 1
            summary.changes += stats.changed
            summary.skipped += stats.skipped
            summary.failures += stats.failed
        return summary

    def render(self) -> str:
        parts = [
            f"Hosts: {self.hosts}",
            f"Changes: {self.changes}",
            f"Skipped: {self.skipped}",
            f"Failures: {self.failures}",
        ]
        text = " | ".join(parts)
        color = Ansi.GREEN if self.failures == 0 else Ansi.RED
        return colorize(text, color)


def _install_signal_handlers(runner: PlaybookRunner) -> dict[int, object]:
    previous: dict[int, object] = {}

    def _handler(signum, frame):  # noqa: ARG001
        logging.getLogger(__name__).warning("Received signal %s", signum)
        runner.cancel()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[signum] = signal.signal(signum, _handler)
        except ValueError:
            # signal handlers can only be installed from the main thread
            logging.getLogger(__name__).debug("Unable to install handler for %s", signum)
    return previous


def _restore_signal_handlers(previous: dict[int, object]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)  # type: ignore[arg-type]


if __name__ == "__main__":
    raise SystemExit(main())
