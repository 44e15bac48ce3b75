"""Rich-based dashboard renderer: cards, table and compact views, plus JSON export."""

from __future__ import annotations

import io
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable

from rich.columns import Columns
from rich.console import Console, Group, RenderableType
from rich.markup import escape
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text

from .models import (
    BreakdownRun,
    JobBreakdown,
    PendingRelease,
    ReleaseInfo,
    RenderMode,
    RepoView,
    RunSummary,
    ViewGroup,
    ViewQuery,
)
from .query import is_package_repo

NO_MATCHES = "No repositories match the current filters."
NO_REPOS = "No repositories found."
LOADING = "Loading repositories..."

# (header, sort key)
TABLE_COLUMNS = [
    ("Repository", "name"),
    ("CI", "status"),
    ("Docs", "docs"),
    ("Release", "release"),
    ("Issues", "issues"),
    ("PRs", "prs"),
    ("Last Pushed", "pushed"),
]

STATUS_STYLES = {
    "success": "green",
    "failure": "red",
    "cancelled": "bright_black",
    "in_progress": "yellow",
    "queued": "yellow",
    "unknown": "yellow",
}
SEGMENT_STYLES = {"fail": "red", "other": "yellow", "pass": "green"}

_INTERVALS = [
    (31536000, "year"),
    (2592000, "month"),
    (86400, "day"),
    (3600, "hour"),
    (60, "minute"),
]

BAR_WIDTH = 3
MARKER = "▮"
LATEST_MARKER = "█"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def time_ago(when: datetime | None, now: datetime | None = None) -> str:
    """Relative time using the largest whole unit, e.g. "3 days ago"."""
    if when is None:
        return "-"
    seconds = int(((now or _now()) - when).total_seconds())
    for secs, label in _INTERVALS:
        count = seconds // secs
        if count >= 1:
            return f"{count} {label}{'s' if count > 1 else ''} ago"
    return "just now"


def last_updated_label(generated_at: datetime | None, now: datetime | None = None) -> str:
    if generated_at is None:
        return "Last updated: unknown"
    mins = round(((now or _now()) - generated_at).total_seconds() / 60)
    if mins <= 0:
        return "Last updated: just now"
    return f"Last updated: {mins} minute{'' if mins == 1 else 's'} ago"


def status_class(conclusion: str | None) -> str:
    return conclusion or "unknown"


def _status_style(conclusion: str | None) -> str:
    return STATUS_STYLES.get(status_class(conclusion), "yellow")


def job_segments(jobs: JobBreakdown) -> list[tuple[str, float]]:
    """Fail/other/pass shares of a run's jobs in percent, zero shares omitted."""
    if jobs.total <= 0:
        return []
    pass_pct = jobs.passed / jobs.total * 100
    fail_pct = jobs.failed / jobs.total * 100
    other_pct = max(0.0, 100 - pass_pct - fail_pct)
    segments = [("fail", fail_pct), ("other", other_pct), ("pass", pass_pct)]
    return [(kind, pct) for kind, pct in segments if pct > 0]


def _segment_widths(segments: list[tuple[str, float]], width: int) -> list[int]:
    widths = [max(1, round(pct / 100 * width)) for _, pct in segments]
    while sum(widths) > width:
        widths[widths.index(max(widths))] -= 1
    while sum(widths) < width:
        widest = max(range(len(segments)), key=lambda i: segments[i][1])
        widths[widest] += 1
    return widths


def _link(style: str, url: str | None) -> Style:
    return Style.parse(style) + Style(link=url) if url else Style.parse(style)


def timeline(runs: tuple[RunSummary, ...] | None) -> Text:
    """One marker (or stacked job bar) per run, newest last and emphasized."""
    text = Text()
    if not runs:
        return text
    last = len(runs) - 1
    for i, run in enumerate(runs):
        emphasis = " bold underline" if i == last else ""
        if isinstance(run, BreakdownRun) and run.jobs.total > 0:
            segments = job_segments(run.jobs)
            if i:
                text.append(" ")
            for (kind, _), width in zip(segments, _segment_widths(segments, BAR_WIDTH)):
                text.append(
                    LATEST_MARKER * width,
                    style=_link(SEGMENT_STYLES[kind] + emphasis, run.html_url),
                )
        else:
            glyph = LATEST_MARKER if i == last else MARKER
            text.append(glyph, style=_link(_status_style(run.conclusion) + emphasis, run.html_url))
    return text


def status_dot(conclusion: str | None) -> Text:
    return Text("●", style=_status_style(conclusion))


def _muted() -> Text:
    return Text("-", style="dim")


def release_text(
    release: ReleaseInfo | None,
    pending: PendingRelease | None,
    now: datetime | None = None,
    with_age: bool = False,
) -> Text:
    parts: list[Text] = []
    if release:
        badge = Text(release.tag, style=_link("bold cyan", release.html_url))
        if with_age and release.published_at:
            badge.append(f" {time_ago(release.published_at, now)}", style="dim")
        parts.append(badge)
    if pending:
        parts.append(Text(f"{pending.version} pending", style=_link("magenta", pending.html_url)))
    return Text(" ").join(parts)


def coverage_text(view: RepoView) -> Text | None:
    if not is_package_repo(view.name) or not view.pages_url:
        return None
    url = f"{view.pages_url}dev/coverage.html"
    label = f"{view.coverage:g}%" if view.coverage is not None else "Coverage"
    return Text(label, style=_link("blue", url))


def _issues_url(view: RepoView, state: str) -> str:
    return f"{view.repo.html_url}/issues?q=is%3Aissue+is%3A{state}"


def issues_text(view: RepoView, hide_empty: bool = True) -> Text:
    open_count = view.issues.open if view.issues else 0
    closed_count = view.issues.closed if view.issues else 0
    if hide_empty and open_count == 0 and closed_count == 0:
        return Text()
    suffix_open, suffix_closed = (" open", " closed") if hide_empty else ("", "")
    text = Text()
    text.append(f"{open_count}{suffix_open}", style=_link("yellow", _issues_url(view, "open")))
    text.append(" / ")
    text.append(f"{closed_count}{suffix_closed}", style=_link("dim", _issues_url(view, "closed")))
    return text


def _repo_links(view: RepoView) -> Text:
    parts: list[Text] = []
    if is_package_repo(view.name):
        if view.pages_url:
            parts.append(Text("Docs", style=_link("blue", view.pages_url)))
        coverage = coverage_text(view)
        if coverage:
            parts.append(coverage)
    return Text(" · ").join(parts)


def _name_text(view: RepoView, style: str = "bold") -> Text:
    text = Text()
    if view.repo.archived:
        text.append("A ", style="dim")
    text.append(view.name, style=_link(style, view.repo.html_url or None))
    return text


def _join(parts: list[Text | None]) -> Text:
    return Text("  ").join(p for p in parts if p)


def _sort_arrow(query: ViewQuery, key: str) -> str:
    if query.sort_key != key:
        return ""
    if query.sort_dir == "asc" or key in ("status", "docs"):
        return " ▲"
    return " ▼"


def _render_table(views: list[RepoView], query: ViewQuery, now: datetime | None) -> RenderableType:
    table = Table(show_header=True, header_style="bold", expand=True)
    for header, key in TABLE_COLUMNS:
        table.add_column(
            header + _sort_arrow(query, key),
            no_wrap=header != "Repository",
            justify="right" if key in ("issues", "prs") else "left",
        )

    for view in views:
        package = is_package_repo(view.name)
        name_cell = _name_text(view)
        links = _repo_links(view)
        if links:
            name_cell.append("  ")
            name_cell.append_text(links)
        if view.repo.description:
            name_cell.append("\n")
            name_cell.append_text(Text.from_markup(f"[dim]{escape(view.repo.description)}[/dim]"))

        if package:
            docs_cell = timeline(view.docs_runs) if view.docs_runs else _muted()
        else:
            docs_cell = Text()
        release_cell = release_text(view.release, view.pending, now, with_age=True) or _muted()

        table.add_row(
            name_cell,
            timeline(view.ci_runs) if view.ci_runs else _muted(),
            docs_cell,
            release_cell,
            issues_text(view, hide_empty=False),
            str(view.prs.open) if view.prs else "0",
            Text(time_ago(view.repo.pushed_at, now), style="dim"),
        )
    return table


def _card(view: RepoView, now: datetime | None) -> Panel:
    ci_latest = view.ci_runs[-1] if view.ci_runs else None
    status_parts: list[Text | None] = []
    if view.ci_runs:
        status_parts.append(Text("CI ").append_text(timeline(view.ci_runs)))
    elif view.workflows:
        status_parts.append(status_dot(None).append(" CI"))
    if is_package_repo(view.name):
        if view.docs_runs:
            status_parts.append(Text("Docs ").append_text(timeline(view.docs_runs)))
        if view.pages_url:
            status_parts.append(Text("Docs Site", style=_link("blue", view.pages_url)))
        status_parts.append(coverage_text(view))

    footer_parts: list[Text | None] = [
        release_text(view.release, view.pending, now),
        Text(f"pushed {time_ago(view.repo.pushed_at, now)}", style="dim"),
        issues_text(view),
    ]
    activity_parts: list[Text | None] = []
    if view.prs and view.prs.open:
        activity_parts.append(Text(f"{view.prs.open} PRs", style="cyan"))
    if view.traffic:
        activity_parts.append(
            Text(f"{view.traffic.views} views ({view.traffic.uniques} unique)", style="dim")
        )

    body: list[RenderableType] = []
    if view.repo.description:
        body.append(Text.from_markup(escape(view.repo.description), style="dim"))
    for row in (_join(status_parts), _join(footer_parts), _join(activity_parts)):
        if row:
            body.append(row)

    return Panel(
        Group(*body),
        title=_name_text(view),
        title_align="left",
        border_style=_status_style(ci_latest.conclusion if ci_latest else None),
    )


def _render_cards(views: list[RepoView], query: ViewQuery, now: datetime | None) -> RenderableType:
    return Columns([_card(v, now) for v in views], width=56)


def _render_compact(views: list[RepoView], query: ViewQuery, now: datetime | None) -> RenderableType:
    lines: list[Text] = []
    for view in views:
        package = is_package_repo(view.name)
        parts: list[Text | None] = [
            timeline(view.ci_runs) if view.ci_runs else status_dot(None),
            _name_text(view, style="bold"),
        ]
        if package and view.docs_runs:
            parts.append(timeline(view.docs_runs).append(" Docs"))
        if package and view.pages_url:
            parts.append(Text("Docs Site", style=_link("blue", view.pages_url)))
        parts.append(coverage_text(view))
        parts.append(release_text(view.release, view.pending, now))
        parts.append(issues_text(view))
        parts.append(Text(time_ago(view.repo.pushed_at, now), style="dim"))
        line = _join(parts)
        line.no_wrap = True
        line.overflow = "ellipsis"
        lines.append(line)
    return Group(*lines)


_RENDERERS: dict[RenderMode, Callable[[list[RepoView], ViewQuery, datetime | None], RenderableType]] = {
    RenderMode.CARDS: _render_cards,
    RenderMode.TABLE: _render_table,
    RenderMode.COMPACT: _render_compact,
}


@dataclass
class Section:
    label: str
    views: list[RepoView]
    body: RenderableType


@dataclass
class Document:
    """Structural result of a render, printable by any rich Console."""

    mode: RenderMode
    sections: list[Section] = field(default_factory=list)
    placeholder: str | None = None
    placeholder_style: str = "dim"
    columns: dict[str, str] = field(default_factory=dict)
    on_sort: Callable[[str], None] | None = None
    footer: str | None = None

    def click(self, header: str) -> None:
        """Dispatch the sort key behind a table header to the caller."""
        if header not in self.columns:
            raise KeyError(f"Not a sortable column: {header}")
        if self.on_sort is not None:
            self.on_sort(self.columns[header])

    def __rich__(self) -> RenderableType:
        parts: list[RenderableType] = []
        if self.placeholder is not None:
            parts.append(Text(self.placeholder, style=self.placeholder_style))
        for section in self.sections:
            parts.append(Text(section.label, style="bold"))
            parts.append(section.body)
            parts.append(Text())
        if self.footer:
            parts.append(Text(self.footer, style="dim"))
        return Group(*parts)


def render(
    groups: list[ViewGroup],
    mode: RenderMode,
    query: ViewQuery | None = None,
    on_sort: Callable[[str], None] | None = None,
    now: datetime | None = None,
) -> Document:
    """Project grouped views into a Document for the given render mode."""
    mode = RenderMode(mode)
    query = query or ViewQuery()
    columns = {header: key for header, key in TABLE_COLUMNS} if mode is RenderMode.TABLE else {}
    document = Document(mode=mode, columns=columns, on_sort=on_sort)

    if not any(group.views for group in groups):
        document.placeholder = NO_MATCHES
        return document

    render_views = _RENDERERS[mode]
    for group in groups:
        if not group.views:
            continue
        document.sections.append(
            Section(group.label, list(group.views), render_views(group.views, query, now))
        )
    return document


def message_document(message: str, mode: RenderMode = RenderMode.TABLE, error: bool = False) -> Document:
    """A document holding a single message instead of any repositories."""
    return Document(
        mode=RenderMode(mode),
        placeholder=message,
        placeholder_style="bold red" if error else "dim",
    )


def no_matches_message(languages: list[str], visibilities: list[str]) -> str:
    """The no-matches placeholder, listing the filter values that do occur."""
    lines = [NO_MATCHES]
    if languages:
        lines.append(f"Languages: {', '.join(languages)}")
    if visibilities:
        lines.append(f"Visibilities: {', '.join(visibilities)}")
    return "\n".join(lines)


def _write_to_file(content: str, output_file: str) -> None:
    """Write content to a file and print confirmation."""
    with open(output_file, "w", encoding="utf-8") as f:
        f.write(content)
    Console().print(f"Saved to {output_file}")


def print_document(
    document: Document,
    output_file: str | None = None,
    console: Console | None = None,
) -> None:
    """Print a Document to the terminal, or save it as plain text."""
    if output_file:
        string_io = io.StringIO()
        Console(file=string_io, force_terminal=False, width=120).print(document)
        _write_to_file(string_io.getvalue(), output_file)
        return
    (console or Console()).print(document)


def render_json(groups: list[ViewGroup], output_file: str | None = None) -> None:
    """Render grouped views as JSON."""
    payload = [
        {"label": group.label, "repos": [asdict(view) for view in group.views]}
        for group in groups
    ]
    content = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    if output_file:
        _write_to_file(content, output_file)
    else:
        print(content)
