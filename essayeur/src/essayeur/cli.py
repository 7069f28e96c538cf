"""
Essayeur CLI - Command-line interface for contract test runs.

Provides commands for:
- One-shot runs (exit status = failed test count)
- Watch mode (rerun on change, exit 130 on interrupt)
- Dry run
- Listing test files and watched files

All output via SystemReporter with EssayeurEmoji.
"""

import argparse
import asyncio
import sys
import traceback
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from shared.reporter.emojis import EssayeurEmoji, SystemEmoji
from shared.reporter.system_reporter import SystemReporter

from essayeur.config.settings import EssayeurConfig, NodeConfig, load_config
from essayeur.core.reporter import EssayeurReporter
from essayeur.core.sequencer import EXIT_FATAL, EXIT_INTERRUPTED, Sequencer
from essayeur.domain.exceptions import EssayeurException


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="essayeur",
        description="Test runner for smart contract projects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  essayeur test                     # Compile, migrate and run test/
  essayeur test test/token_test.py  # Run a single test file
  essayeur test --watch             # Rerun on every change
  essayeur test --attach --port 7545
  essayeur test --dry-run           # Show what would run
  essayeur list                     # List test files and watched files
        """,
    )

    subparsers = parser.add_subparsers(
        dest="command", help="Command to run", required=True
    )

    test_parser = subparsers.add_parser("test", help="Run tests")
    test_parser.add_argument(
        "path", nargs="?", help="Test file or directory (default: test/)"
    )
    test_parser.add_argument(
        "--watch", action="store_true", help="Rerun tests when sources change"
    )
    test_parser.add_argument("--config", help="Config file (default: essayeur.yaml)")
    test_parser.add_argument(
        "--compile-all", action="store_true", help="Compile every contract"
    )
    test_parser.add_argument("--port", type=int, help="Node JSON-RPC port")
    test_parser.add_argument(
        "--attach",
        action="store_true",
        help="Use a running node instead of starting one",
    )
    test_parser.add_argument(
        "--workers", type=int, help="Suites allowed to run concurrently"
    )
    test_parser.add_argument(
        "--dry-run", action="store_true", help="Show what would run without executing"
    )

    list_parser = subparsers.add_parser("list", help="List test files and watched files")
    list_parser.add_argument(
        "path", nargs="?", help="Test file or directory (default: test/)"
    )
    list_parser.add_argument("--config", help="Config file (default: essayeur.yaml)")

    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Quiet mode (minimal output)"
    )
    return parser


def apply_arguments(config: EssayeurConfig, args: argparse.Namespace) -> EssayeurConfig:
    """Apply command line overrides to the loaded config."""
    overrides = {}

    if getattr(args, "compile_all", False):
        overrides["compile_all"] = True
    if getattr(args, "workers", None):
        overrides["max_workers"] = args.workers
    if getattr(args, "attach", False):
        overrides["node"] = NodeConfig(
            command=[], startup_timeout=config.node.startup_timeout
        )
    if getattr(args, "port", None):
        networks = dict(config.networks)
        networks[config.network] = config.network_config.model_copy(
            update={"port": args.port}
        )
        overrides["networks"] = networks

    return config.with_overrides(**overrides) if overrides else config


def create_reporter(args: argparse.Namespace, config: Optional[EssayeurConfig] = None):
    if args.verbose:
        level, verbose = 10, 3
    elif args.quiet:
        level, verbose = 30, 0
    else:
        level = 20
        if config is not None:
            level = {"debug": 10, "info": 20, "warning": 30, "error": 40, "critical": 50}[
                config.log_level
            ]
        verbose = 1

    return SystemReporter(
        name="essayeur",
        log_dir=config.log_dir if config is not None else None,
        level=level,
        verbose=verbose,
    )


def resolve_test_path(config: EssayeurConfig, path: Optional[str]) -> Path:
    if not path:
        return config.test_path
    test_path = Path(path)
    if not test_path.is_absolute():
        test_path = Path.cwd() / test_path
    return test_path


def list_files(sequencer: Sequencer, reporter: SystemReporter) -> int:
    """
    List test files and the watch set.

    Returns:
        Exit code (0)
    """
    sequencer.discover()

    reporter.info("", context="CLI")
    reporter.info(f"{EssayeurEmoji.DISCOVER} Test files:", context="CLI")
    if not sequencer.test_files:
        reporter.info(f"{EssayeurEmoji.INFO} No test files found.", context="CLI")
    for path in sequencer.test_files:
        reporter.info(f"  {EssayeurEmoji.FILE} {path}", context="CLI")

    reporter.info("", context="CLI")
    reporter.info(f"{EssayeurEmoji.WATCH} Watched files:", context="CLI")
    for path in sequencer.watch_files:
        reporter.info(f"  {EssayeurEmoji.FILE} {path}", context="CLI")

    reporter.info("", context="CLI")
    reporter.info(
        f"{EssayeurEmoji.SUMMARY} Total: {len(sequencer.test_files)} test file(s), "
        f"{len(sequencer.watch_files)} watched",
        context="CLI",
    )
    return 0


def dry_run(sequencer: Sequencer, console: Console, reporter: SystemReporter) -> int:
    """
    Dry run - show what would be executed.

    Returns:
        Exit code (0)
    """
    reporter.info(
        f"{EssayeurEmoji.DRY_RUN} Essayeur (Dry run - no execution)", context="CLI"
    )

    test_files, watch_files, stale = asyncio.run(sequencer.plan())
    console.print(EssayeurReporter().create_dry_run_listing(test_files, watch_files))

    if stale:
        reporter.info(
            f"{EssayeurEmoji.BUILD} {len(stale)} stale source(s) would be compiled:",
            context="CLI",
        )
        for path in stale:
            reporter.info(f"  {EssayeurEmoji.CONTRACT} {path}", context="CLI")
    else:
        reporter.info(f"{EssayeurEmoji.INFO} Build output is up to date", context="CLI")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    cli_reporter = create_reporter(args)
    watch = args.command == "test" and args.watch

    try:
        config = load_config(config_file=args.config)
        config = apply_arguments(config, args)
        reporter = create_reporter(args, config)
        reporter.info(
            f"{SystemEmoji.CONFIG_LOAD} Project: {config.working_directory}",
            context="CLI",
            verbose_level=2,
        )

        console = Console(quiet=args.quiet)
        sequencer = Sequencer(
            config,
            test_path=resolve_test_path(config, args.path),
            reporter=reporter,
            console=console,
        )

        if args.command == "list":
            return list_files(sequencer, reporter)

        if args.dry_run:
            return dry_run(sequencer, console, reporter)

        if watch:
            return asyncio.run(sequencer.watch())
        return asyncio.run(sequencer.run_once())

    except KeyboardInterrupt:
        cli_reporter.warning(
            f"\n{EssayeurEmoji.ABORT} Test run interrupted by user", context="CLI"
        )
        return EXIT_INTERRUPTED

    except EssayeurException as e:
        cli_reporter.error(f"{EssayeurEmoji.TEST_ERROR} {e.message}", context="CLI")
        if args.verbose:
            cli_reporter.error(traceback.format_exc(), context="CLI")
        return EXIT_FATAL

    except Exception as e:
        cli_reporter.error(
            f"{EssayeurEmoji.TEST_ERROR} Fatal error: {e}", context="CLI"
        )
        if args.verbose:
            cli_reporter.error(traceback.format_exc(), context="CLI")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
