from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, GroundworkConfig, load_config
from .errors import ValidationError
from .executors import LocalExecutor, RetryPolicy
from .operations import Action
from .profiles import available_profiles, get_profile
from .report import Report, summarize, write_report
from .resolver import RichPrompter, resolve
from .runner import StepGraph
from .secrets import RedactingFilter
from .types import StepResult

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


_last_progress_len = 0


def _assignment(value: str) -> tuple[str, str]:
    name, sep, raw = value.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got '{value}'")
    return name.strip(), raw


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Groundwork provisioning runner")
    parser.add_argument(
        "profile",
        nargs="?",
        default=None,
        help="Profile to apply (default from config; see --list-profiles)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to groundwork config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="NAME=VALUE",
        type=_assignment,
        action="append",
        default=[],
        help="Set a profile parameter; may be repeated",
    )
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt; missing required parameters are an error",
    )
    parser.add_argument("--dry-run", action="store_true", help="Probe and report changes without executing them")
    parser.add_argument("--report-file", type=Path, help="Write a JSON report of the run (mode 0600)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    parser.add_argument("--list-profiles", action="store_true", help="List the available profiles and exit")
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    if args.list_profiles:
        for profile in available_profiles():
            print(f"{profile.name:<12} {profile.description}")
        return EXIT_OK

    try:
        cfg = load_config(args.config)
        retry = RetryPolicy(max_retries=cfg.fetch_retries, backoff=cfg.fetch_backoff)
    except (OSError, ValueError) as exc:
        print(colorize(f"Configuration error: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_INVALID
    _apply_aws_env(cfg)

    profile_name = args.profile or cfg.profile
    if not profile_name:
        print(colorize("No profile given; pass one of: " + ", ".join(p.name for p in available_profiles()), Ansi.RED), file=sys.stderr)
        return EXIT_INVALID

    interactive = not (args.non_interactive or cfg.non_interactive) and sys.stdin.isatty()
    try:
        profile = get_profile(profile_name)
        profile.check()
        config = resolve(
            profile.schema,
            overrides=dict(args.overrides),
            config_values=cfg.parameters,
            prompter=RichPrompter() if interactive else None,
            interactive=interactive,
            retry=retry,
        )
        graph = StepGraph(profile.build(config), progress_callback=print_progress)
    except ValidationError as exc:
        print(colorize(f"Validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_INVALID
    except ValueError as exc:
        print(colorize(f"Invalid profile: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_INVALID
    except (KeyboardInterrupt, EOFError):
        print(colorize("\nAborted before any change was made.", Ansi.YELLOW), file=sys.stderr)
        return EXIT_FAILED

    executor = LocalExecutor(dry_run=args.dry_run, timeout=cfg.command_timeout)
    with graph.deferred_signals():
        results = graph.run(config, executor)

    report = summarize(
        results,
        config=config,
        instructions=profile.instructions,
        profile=profile.name,
        interrupted=graph.interrupted,
        dry_run=args.dry_run,
    )
    print_report(report)

    report_path = args.report_file or cfg.report_file
    if report_path:
        try:
            write_report(report, report_path)
        except OSError as exc:
            print(colorize(f"Could not write report {report_path}: {exc}", Ansi.ORANGE), file=sys.stderr)
        else:
            logging.getLogger(__name__).info("Report written to %s", report_path)

    return report.exit_code


def print_report(report: Report) -> None:
    effective_level = logging.getLogger().getEffectiveLevel()
    for result in report.results:
        _clear_progress()
        if not should_display_result(result, effective_level):
            continue
        print(format_result(result))

    _clear_progress()
    color = Ansi.GREEN if report.failed == 0 else Ansi.RED
    print(colorize(report.summary_line(), color))
    if report.interrupted:
        print(colorize(f"Run interrupted: {report.interrupted}", Ansi.ORANGE))
    for failure in report.failures:
        kind = "fatal" if failure.fatal else "soft"
        print(colorize(f"  {failure.action} ({kind}): {failure.details}", Ansi.RED))
    if report.instructions:
        print("\nNext steps:")
        for index, text in enumerate(report.instructions, start=1):
            print(f"  {index}. {text}")


def format_result(result: StepResult) -> str:
    color: Optional[str] = None
    if result.failed:
        status = "failed" if result.fatal else "failed (soft)"
        color = Ansi.RED if result.fatal else Ansi.ORANGE
    elif result.applied:
        status = "applied"
        color = Ansi.GREEN
    elif not result.attempted:
        status = "skipped"
        color = Ansi.YELLOW
    else:
        status = "ok"
        color = Ansi.BLUE
    resource = f"[{result.resource}]" if result.resource else ""
    line = f"{result.action}{resource} {status} - {result.details}"
    return colorize(line, color)


def should_display_result(result: StepResult, log_level: int) -> bool:
    if result.failed or result.applied or not result.attempted:
        return True
    return log_level <= logging.DEBUG


def print_progress(action: Action) -> None:
    global _last_progress_len
    suffix = f"[{action.resource}]" if action.resource else ""
    line = f"{action.name}{suffix} pending..."
    _clear_progress()
    _last_progress_len = len(line)
    print(colorize(line, Ansi.YELLOW), end="\r", flush=True)


def _clear_progress() -> None:
    global _last_progress_len
    if _last_progress_len:
        print(" " * _last_progress_len, end="\r", flush=True)
        _last_progress_len = 0


def _apply_aws_env(cfg: GroundworkConfig) -> None:
    if cfg.aws_profile and "AWS_PROFILE" not in os.environ:
        os.environ["AWS_PROFILE"] = cfg.aws_profile
    if cfg.aws_region:
        if "AWS_REGION" not in os.environ:
            os.environ["AWS_REGION"] = cfg.aws_region
        if "AWS_DEFAULT_REGION" not in os.environ:
            os.environ["AWS_DEFAULT_REGION"] = cfg.aws_region


if __name__ == "__main__":
    raise SystemExit(main())
