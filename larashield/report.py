"""
Report rendering: Rich console dashboard, JSON and plain text.
"""

import json
import logging
import os
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from rich import box
from rich.align import Align
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from larashield import __version__
from larashield.models import SEVERITY_ORDER, Issue, Result, Severity, Status

logger = logging.getLogger(__name__)

SEVERITY_NAMES = ["CRITICAL", "HIGH", "MEDIUM", "LOW", "INFO"]

SEVERITY_STYLES = {
    "CRITICAL": "bold red", "HIGH": "red",
    "MEDIUM": "yellow", "LOW": "green", "INFO": "dim",
}

STATUS_STYLES = {
    Status.PASSED: "bold green",
    Status.WARNING: "bold yellow",
    Status.FAILED: "bold red",
    Status.ERROR: "bold magenta",
    Status.SKIPPED: "dim",
}

# fail_on level -> lowest severity that fails the run
FAIL_ON_THRESHOLDS = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "low": Severity.LOW,
}


def reported(results: Sequence[Result], dont_report: Sequence[str] = ()) -> List[Result]:
    hidden = set(dont_report)
    return [r for r in results if r.analyzer_id not in hidden]


def summary_exit_code(results: Sequence[Result], fail_on: str = "critical",
                      dont_report: Sequence[str] = ()) -> int:
    """1 when a reported issue reaches the ``fail_on`` severity, else 0."""
    threshold = FAIL_ON_THRESHOLDS.get(fail_on)
    if threshold is None:
        return 0
    for result in reported(results, dont_report):
        for issue in result.issues:
            if SEVERITY_ORDER[issue.severity] >= SEVERITY_ORDER[threshold]:
                return 1
    return 0


def _severity_counts(results: Sequence[Result]) -> Dict[str, int]:
    counts: Dict[str, int] = defaultdict(int)
    for result in results:
        for issue in result.issues:
            counts[issue.severity.value] += 1
    return counts


def _status_counts(results: Sequence[Result]) -> Dict[str, int]:
    counts: Dict[str, int] = defaultdict(int)
    for result in results:
        counts[result.status.value] += 1
    return counts


# ============================================================================
# JSON
# ============================================================================

def build_json_report(results: Sequence[Result], target: str, elapsed: float = 0.0) -> dict:
    return {
        "tool": "larashield",
        "version": __version__,
        "scan_date": datetime.now().isoformat(),
        "target": target,
        "elapsed": round(elapsed, 4),
        "summary": {
            "analyzers": len(results),
            "total_issues": sum(len(r.issues) for r in results),
            "by_status": dict(_status_counts(results)),
            "by_severity": dict(_severity_counts(results)),
        },
        "results": [r.to_dict() for r in results],
    }


def output_json(results: Sequence[Result], target: str, elapsed: float = 0.0) -> str:
    return json.dumps(build_json_report(results, target, elapsed), indent=2)


# ============================================================================
# Plain text
# ============================================================================

def output_text_plain(results: Sequence[Result], target: str) -> str:
    """Format results as a plain text report (used for -o with console output)."""
    lines = []
    lines.append("=" * 80)
    lines.append("LARASHIELD SECURITY REPORT")
    lines.append("=" * 80)
    lines.append(f"Scan Date: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append(f"Target: {target}")
    lines.append(f"Total Issues: {sum(len(r.issues) for r in results)}")
    lines.append("")

    counts = _severity_counts(results)
    lines.append("Summary by Severity:")
    for sev in SEVERITY_NAMES:
        if counts.get(sev):
            lines.append(f"  {sev:10}: {counts[sev]}")
    lines.append("")
    lines.append("=" * 80)
    lines.append("")

    for result in results:
        lines.append(f"[{result.status.value.upper()}] {result.analyzer_id}: {result.message}")
        lines.append("-" * 80)
        for issue in sorted(result.issues, key=lambda i: (i.location.file, i.location.line)):
            lines.append(f"  [{issue.severity.value}] {issue.message}")
            lines.append(f"    {issue.location.file}:{issue.location.line}")
            if issue.code:
                lines.append(f"    {issue.code[:100]}")
            if issue.recommendation:
                lines.append(f"    -> {issue.recommendation}")
        lines.append("")

    return "\n".join(lines)


# ============================================================================
# Rich console
# ============================================================================

def _print_banner(console: Console):
    title_content = Text()
    title_content.append("LARASHIELD", style="bold red")
    title_content.append("\n\n")
    title_content.append(f"Laravel Security Analyzers v{__version__}\n", style="bold white")
    title_content.append("Routes | Passwords | Mass Assignment | Dependencies", style="dim")

    console.print()
    console.print(Panel(
        Align.center(title_content),
        border_style="red",
        box=box.DOUBLE,
        padding=(1, 2),
    ))
    console.print()


def _build_stats_sidebar(results: Sequence[Result], elapsed: float) -> Panel:
    """Build the panel with run statistics."""
    stats = Table(show_header=False, box=None, padding=(0, 1), expand=True)
    stats.add_column("key", style="bold cyan", no_wrap=True, ratio=3)
    stats.add_column("value", style="white", ratio=1)

    stats.add_row("Analyzers Run", str(len(results)))
    stats.add_row("Total Issues", str(sum(len(r.issues) for r in results)))
    stats.add_row("Scan Time", f"{elapsed:.2f}s")
    stats.add_row("", "")

    counts = _severity_counts(results)
    for sev in SEVERITY_NAMES:
        if counts.get(sev):
            stats.add_row(Text(sev, style=SEVERITY_STYLES[sev]), str(counts[sev]))

    stats.add_row("", "")
    statuses = _status_counts(results)
    for status in Status:
        if statuses.get(status.value):
            stats.add_row(Text(status.value.capitalize(), style=STATUS_STYLES[status]),
                          str(statuses[status.value]))

    return Panel(
        stats,
        title="[bold white]Scan Statistics[/bold white]",
        border_style="cyan",
        box=box.ROUNDED,
        padding=(1, 1),
    )


def _read_source(base_path: Path, rel: str, cache: Dict[str, Optional[str]]) -> Optional[str]:
    if rel not in cache:
        try:
            cache[rel] = (base_path / rel).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Cannot read %s for preview: %s", rel, e)
            cache[rel] = None
    return cache[rel]


def _build_issue_panel(issue: Issue, source_code: Optional[str] = None) -> Panel:
    """Build a Rich Panel for a single issue."""
    sev = issue.severity.value
    border_map = {
        "CRITICAL": "bold red", "HIGH": "red",
        "MEDIUM": "yellow", "LOW": "green", "INFO": "dim white",
    }
    sev_style_map = {
        "CRITICAL": "bold white on red", "HIGH": "bold red",
        "MEDIUM": "bold yellow", "LOW": "bold green", "INFO": "dim",
    }

    title = Text()
    title.append(f" {sev} ", style=sev_style_map.get(sev, "white"))
    title.append(f" {issue.message} ", style="bold white")

    location = Text()
    location.append("Location: ", style="bold cyan")
    location.append(f"{issue.location.file}:{issue.location.line}", style="white")
    kind = Text()
    kind.append("Type: ", style="bold magenta")
    kind.append(str(issue.metadata.get("issue_type", "-")), style="white")
    content_parts = [Columns([location, kind], padding=(0, 4))]

    if issue.recommendation:
        content_parts.append(Text(f"\n{issue.recommendation}", style="italic white"))

    ext = os.path.splitext(issue.location.file)[1].lower()
    lang = {".php": "php", ".json": "json"}.get(ext, "text")
    line = issue.location.line
    if source_code:
        src_lines = source_code.split("\n")
        start = max(0, line - 3)
        end = min(len(src_lines), line + 2)
        content_parts.append(Text(""))
        content_parts.append(Syntax(
            "\n".join(src_lines[start:end]), lang, theme="monokai",
            line_numbers=True, start_line=start + 1, highlight_lines={line},
        ))
    elif issue.code:
        content_parts.append(Text(""))
        content_parts.append(Syntax(issue.code, lang, theme="monokai",
                                    line_numbers=True, start_line=line))

    return Panel(
        Group(*content_parts),
        title=title,
        border_style=border_map.get(sev, "white"),
        box=box.ROUNDED,
        padding=(1, 2),
    )


def output_rich(results: Sequence[Result], target: str, elapsed: float = 0.0,
                console: Optional[Console] = None, show_banner: bool = True):
    """Render the dashboard: banner, scan info, statistics, then one section per analyzer."""
    console = console or Console()
    base_path = Path(target)
    if show_banner:
        _print_banner(console)

    header_text = Text()
    header_text.append("Target: ", style="bold cyan")
    header_text.append(f"{target}  ", style="white")
    header_text.append("Date: ", style="bold cyan")
    header_text.append(datetime.now().strftime("%Y-%m-%d %H:%M:%S"), style="white")
    console.print(Panel(
        Align.center(header_text),
        title="[bold white]Scan Info[/bold white]",
        border_style="blue",
        box=box.ROUNDED,
    ))
    console.print()
    console.print(_build_stats_sidebar(results, elapsed))
    console.print()

    source_cache: Dict[str, Optional[str]] = {}
    for result in results:
        heading = Text()
        heading.append(f"{result.status.value.upper()} ", style=STATUS_STYLES[result.status])
        heading.append(result.analyzer_id, style="bold white")
        console.print(Rule(heading, style=STATUS_STYLES[result.status]))
        console.print(Text(result.message, style="white"))
        console.print()
        for issue in sorted(result.issues, key=lambda i: (i.location.file, i.location.line)):
            src = _read_source(base_path, issue.location.file, source_cache)
            console.print(_build_issue_panel(issue, source_code=src))
            console.print()

    if not any(r.issues for r in results):
        console.print(Panel(
            Align.center(Text("No security issues found.", style="bold green")),
            border_style="green",
            box=box.ROUNDED,
            padding=(1, 4),
        ))
