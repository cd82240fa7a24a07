"""Command line entry point."""

import argparse
import logging
import sys
import textwrap
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from larashield.analyzers import ALL_ANALYZERS
from larashield.config import FAIL_ON_LEVELS, load_config
from larashield.errors import ConfigError
from larashield.report import output_json, output_rich, output_text_plain, reported, summary_exit_code
from larashield.runner import AnalyzerRunner

logger = logging.getLogger(__name__)

console = Console()


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="larashield",
        description="Larashield - security analyzers for Laravel applications",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent('''
            Examples:
              larashield /path/to/laravel-app
              larashield . --format json -o report.json
              larashield . --analyzer authentication-authorization --analyzer password-security
              larashield . --fail-on high
        '''),
    )
    analyzer_ids = sorted(cls().id for cls in ALL_ANALYZERS)
    parser.add_argument("target", nargs="?", default=".", help="Laravel project root (default: .)")
    parser.add_argument("--format", choices=["console", "json"], default="console",
                        help="Output format (default: console)")
    parser.add_argument("-o", "--output-file", help="Save report to file")
    parser.add_argument("--config", help="Path to .larashield.yml config file")
    parser.add_argument("--analyzer", action="append", choices=analyzer_ids, dest="analyzers",
                        help="Run only this analyzer (repeatable)")
    parser.add_argument("--fail-on", choices=FAIL_ON_LEVELS,
                        help="Lowest issue severity that makes the exit code non-zero")
    parser.add_argument("--no-banner", action="store_true", help="Do not print the banner")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    target = Path(args.target)
    if not target.is_dir():
        console.print(f"[bold red]Error:[/bold red] {args.target} is not a directory")
        return 2

    try:
        config = load_config(str(target), args.config)
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return 2
    if config.source:
        logger.debug("Using config %s", config.source)

    runner = AnalyzerRunner(config, target)
    results = runner.run_all(only=args.analyzers)
    shown = reported(results, config.dont_report)

    if args.format == "json":
        output = output_json(shown, str(target), runner.elapsed)
        if args.output_file:
            with open(args.output_file, "w", encoding="utf-8") as fh:
                fh.write(output)
            console.print(f"\n[bold green]Report saved to {args.output_file}[/bold green]")
        else:
            print(output)
    else:
        output_rich(shown, str(target), runner.elapsed, console=console, show_banner=not args.no_banner)
        if args.output_file:
            with open(args.output_file, "w", encoding="utf-8") as fh:
                fh.write(output_text_plain(shown, str(target)))
            console.print(f"\n[bold green]Report saved to {args.output_file}[/bold green]")

    fail_on = args.fail_on or config.fail_on
    return summary_exit_code(results, fail_on, config.dont_report)


if __name__ == "__main__":
    sys.exit(main())
