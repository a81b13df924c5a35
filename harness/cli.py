"""
Command-line entry point.

Usage examples::

    # Run every spec under the configured spec root:
    harness run

    # Run only smoke specs on Firefox with four parallel browsers:
    harness run --tag smoke --browser firefox --parallel 4

    # Run one file in a visible browser:
    harness run --spec "checkout/*.spec.yaml" --headed

    # Open the last report:
    harness report open

Exit codes follow a three-state convention so that CI can distinguish
"tests failed" from "the run could not start":

- ``0`` -- no spec failed
- ``1`` -- at least one spec failed
- ``2`` -- setup failure (bad config, unreachable base URL, browser launch)
"""

from __future__ import annotations

import argparse
import logging
import sys
import webbrowser
from pathlib import Path

from harness.config import SUPPORTED_BROWSERS, get_config
from harness.discovery import discover_specs
from harness.errors import SetupFailure
from harness.fixtures import FixtureStore
from harness.pages import PageRegistry
from harness.reporting import format_summary, write_report
from harness.runner import EXIT_FAILED, EXIT_PASS, EXIT_SETUP_FAILURE, SpecRunner, exit_code, load_plugins

logger = logging.getLogger("harness")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="harness",
        description="Run browser end-to-end specs against a web application.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Discover and run specs")
    run.add_argument("--spec", help="Glob (relative to the spec root) selecting spec files")
    run.add_argument("--browser", choices=SUPPORTED_BROWSERS, help="Browser to drive")
    headless = run.add_mutually_exclusive_group()
    headless.add_argument("--headless", dest="headless", action="store_true", default=None)
    headless.add_argument("--headed", dest="headless", action="store_false")
    run.add_argument("--parallel", type=int, help="Number of parallel browser sessions")
    run.add_argument("--base-url", help="Application root URL")
    run.add_argument("--tag", action="append", dest="tags", help="Only run specs with this tag (repeatable)")
    run.add_argument("--config", type=Path, help="Path to a harness YAML config file")
    run.add_argument("--profile", help="Config profile to apply")
    run.add_argument("--report", type=Path, help="Where to write the JSON report")

    report = commands.add_parser("report", help="Work with generated reports")
    report_commands = report.add_subparsers(dest="report_command", required=True)
    open_cmd = report_commands.add_parser("open", help="Open the last generated report")
    open_cmd.add_argument("--report", type=Path, help="Report path (default: configured path)")
    open_cmd.add_argument("--config", type=Path, help="Path to a harness YAML config file")
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def run_command(args: argparse.Namespace) -> int:
    """Load config, discover specs, run them, write and print the report."""
    try:
        config = get_config(
            args.config,
            {
                "spec_pattern": args.spec,
                "browser": args.browser,
                "headless": args.headless,
                "parallelism": args.parallel,
                "base_url": args.base_url,
                "tags": args.tags,
                "report_output_path": args.report,
            },
            profile=args.profile,
        )
        pages = PageRegistry()
        hooks = load_plugins(config.plugins, pages)
        specs = discover_specs(config.spec_root, config.spec_pattern, config.tags)
        runner = SpecRunner(
            config,
            pages=pages,
            fixtures=FixtureStore.from_directory(config.fixture_root),
            hooks=hooks,
        )
        report = runner.run(specs)
    except SetupFailure as exc:
        logger.error("Setup failure: %s", exc)
        print(f"Setup failure: {exc}", file=sys.stderr)
        return EXIT_SETUP_FAILURE

    write_report(report, config.report_output_path)
    print(format_summary(report))
    return exit_code(report)


def open_report_command(args: argparse.Namespace) -> int:
    """Open the last report in the default browser/viewer."""
    path = args.report
    if path is None:
        try:
            path = get_config(args.config).report_output_path
        except SetupFailure as exc:
            print(f"Cannot resolve report path: {exc}", file=sys.stderr)
            return EXIT_FAILED
    path = Path(path)
    if not path.is_file():
        print(f"No report found at {path}", file=sys.stderr)
        return EXIT_FAILED
    if not webbrowser.open(path.resolve().as_uri()):
        print(f"Could not open {path}", file=sys.stderr)
        return EXIT_FAILED
    print(f"Opened {path}")
    return EXIT_PASS


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    if args.command == "run":
        return run_command(args)
    return open_report_command(args)


if __name__ == "__main__":
    raise SystemExit(main())
