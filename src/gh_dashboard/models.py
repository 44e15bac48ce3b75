"""Data models for gh-dashboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union


@dataclass(frozen=True)
class Repo:
    name: str
    owner: str = ""
    html_url: str = ""
    description: str | None = None
    language: str | None = None
    visibility: str | None = None
    default_branch: str = "main"
    pushed_at: datetime | None = None
    has_pages: bool = False
    archived: bool = False


@dataclass(frozen=True)
class JobBreakdown:
    total: int
    passed: int
    failed: int


@dataclass(frozen=True)
class PlainRun:
    """A workflow run without per-job results."""

    status: str
    conclusion: str | None
    html_url: str
    created_at: datetime | None


@dataclass(frozen=True)
class BreakdownRun:
    """A workflow run carrying pass/fail counts for its jobs."""

    status: str
    conclusion: str | None
    html_url: str
    created_at: datetime | None
    jobs: JobBreakdown


RunSummary = Union[PlainRun, BreakdownRun]


@dataclass(frozen=True)
class ReleaseInfo:
    tag: str
    html_url: str
    published_at: datetime | None = None


@dataclass(frozen=True)
class PendingRelease:
    version: str
    html_url: str
    title: str | None = None


@dataclass(frozen=True)
class IssueCounts:
    open: int = 0
    closed: int = 0


@dataclass(frozen=True)
class PRCounts:
    open: int = 0
    closed: int | None = None


@dataclass(frozen=True)
class Traffic:
    views: int = 0
    uniques: int = 0


@dataclass(frozen=True)
class RepoView:
    """Everything the dashboard knows about one repository after a refresh."""

    repo: Repo
    workflows: dict[str, tuple[RunSummary, ...]] = field(default_factory=dict)
    latest_by_workflow: dict[str, RunSummary | None] = field(default_factory=dict)
    ci_runs: tuple[RunSummary, ...] | None = None
    docs_runs: tuple[RunSummary, ...] | None = None
    release: ReleaseInfo | None = None
    pending: PendingRelease | None = None
    issues: IssueCounts | None = None
    prs: PRCounts | None = None
    coverage: float | None = None
    traffic: Traffic | None = None
    pages_url: str | None = None

    @property
    def name(self) -> str:
        return self.repo.name


@dataclass(frozen=True)
class DashboardSnapshot:
    """One complete, internally consistent refresh result."""

    views: tuple[RepoView, ...] = ()
    generated_at: datetime | None = None

    @property
    def languages(self) -> list[str]:
        return sorted({v.repo.language for v in self.views if v.repo.language})

    @property
    def visibilities(self) -> list[str]:
        return sorted({v.repo.visibility for v in self.views if v.repo.visibility})


class RenderMode(str, Enum):
    CARDS = "cards"
    TABLE = "table"
    COMPACT = "compact"


@dataclass(frozen=True)
class Filters:
    language: str = ""
    visibility: str = ""
    released: str = ""  # "yes" | "no" | ""


@dataclass(frozen=True)
class ViewQuery:
    filters: Filters = field(default_factory=Filters)
    sort_key: str = "pushed"
    sort_dir: str = "desc"


@dataclass
class ViewGroup:
    label: str
    views: list[RepoView] = field(default_factory=list)
