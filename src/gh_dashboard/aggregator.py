"""Data aggregation: reconcile per-source facet maps into one RepoView per repo."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from .models import (
    BreakdownRun,
    DashboardSnapshot,
    IssueCounts,
    JobBreakdown,
    PendingRelease,
    PlainRun,
    PRCounts,
    ReleaseInfo,
    Repo,
    RepoView,
    RunSummary,
    Traffic,
)
from .query import is_package_repo

if TYPE_CHECKING:
    from .provider import ProviderBatch

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRIMARY_WORKFLOW = "CI"
MAX_RUNS = 10

_DOCS_PATTERN = re.compile(r"docs|documentation", re.IGNORECASE)


def is_docs_workflow(name: str) -> bool:
    """Case-insensitive substring match against "docs" or "documentation"."""
    return bool(_DOCS_PATTERN.search(name))


def find_docs_workflow(workflows: Mapping[str, Any]) -> str | None:
    """Return the first docs workflow name in the mapping's insertion order."""
    for name in workflows:
        if is_docs_workflow(name):
            return name
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp as returned by the GitHub API."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable timestamp: %r", value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_repo(raw: Mapping[str, Any]) -> Repo:
    """Build a Repo; raises TypeError or KeyError for an unusable record."""
    if not isinstance(raw, Mapping):
        raise TypeError(f"repo record is not an object: {raw!r}")
    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise KeyError("name")
    owner = raw.get("owner")
    if isinstance(owner, Mapping):
        owner = owner.get("login", "")
    if not owner:
        full_name = raw.get("full_name") or ""
        owner = full_name.split("/", 1)[0] if "/" in full_name else ""
    return Repo(
        name=name,
        owner=owner if isinstance(owner, str) else "",
        html_url=raw.get("html_url") or "",
        description=raw.get("description"),
        language=raw.get("language"),
        visibility=raw.get("visibility"),
        default_branch=raw.get("default_branch") or "main",
        pushed_at=parse_timestamp(raw.get("pushed_at")),
        has_pages=bool(raw.get("has_pages")),
        archived=bool(raw.get("archived")),
    )


def parse_run(raw: Mapping[str, Any]) -> RunSummary:
    """Build a PlainRun or, when job counts are present, a BreakdownRun."""
    status = raw.get("status") or "completed"
    conclusion = raw.get("conclusion")
    html_url = raw.get("html_url") or ""
    created_at = parse_timestamp(raw.get("created_at"))
    jobs = raw.get("jobs")
    if isinstance(jobs, Mapping) and jobs.get("total"):
        return BreakdownRun(
            status=status,
            conclusion=conclusion,
            html_url=html_url,
            created_at=created_at,
            jobs=JobBreakdown(
                total=int(jobs["total"]),
                passed=int(jobs.get("passed", 0)),
                failed=int(jobs.get("failed", 0)),
            ),
        )
    return PlainRun(
        status=status, conclusion=conclusion, html_url=html_url, created_at=created_at
    )


def _parse_timeline(raw: Any) -> tuple[RunSummary, ...]:
    # Older snapshots stored a single run per workflow instead of a list
    if isinstance(raw, Mapping):
        raw = [raw]
    runs = tuple(parse_run(r) for r in raw or [] if isinstance(r, Mapping))
    return runs[-MAX_RUNS:]


def latest_run(runs: tuple[RunSummary, ...] | None) -> RunSummary | None:
    """The chronologically last run; ordering is trusted as supplied."""
    if not runs:
        return None
    return runs[-1]


def registry_tag(version: str) -> str:
    return version if version.startswith("v") else f"v{version}"


def resolve_release(
    release: Mapping[str, Any] | None, registry: Mapping[str, Any] | None
) -> ReleaseInfo | None:
    """Prefer the platform release; fall back to the registry entry."""
    if release:
        return ReleaseInfo(
            tag=release.get("tag_name") or "",
            html_url=release.get("html_url") or "",
            published_at=parse_timestamp(release.get("published_at")),
        )
    if registry and registry.get("version"):
        return ReleaseInfo(
            tag=registry_tag(str(registry["version"])),
            html_url=registry.get("registry_url") or "",
            published_at=parse_timestamp(registry.get("published_at")),
        )
    return None


def _pages_url(repo: Repo) -> str | None:
    if not repo.has_pages or not repo.owner:
        return None
    return f"https://{repo.owner.lower()}.github.io/{repo.name}/"


def _parse_workflows(raw: Mapping[str, Any]) -> dict[str, tuple[RunSummary, ...]]:
    return {wf_name: _parse_timeline(runs) for wf_name, runs in raw.items()}


def _parse_issues(raw: Mapping[str, Any]) -> IssueCounts:
    return IssueCounts(open=int(raw.get("open") or 0), closed=int(raw.get("closed") or 0))


def _parse_prs(raw: Mapping[str, Any]) -> PRCounts:
    closed = raw.get("closed")
    return PRCounts(
        open=int(raw.get("open") or 0),
        closed=int(closed) if closed is not None else None,
    )


def _parse_pending(raw: Mapping[str, Any]) -> PendingRelease | None:
    if not raw.get("version"):
        return None
    return PendingRelease(
        version=raw["version"], html_url=raw.get("html_url") or "", title=raw.get("title")
    )


def _parse_traffic(raw: Mapping[str, Any]) -> Traffic:
    return Traffic(views=int(raw.get("views") or 0), uniques=int(raw.get("uniques") or 0))


def _facet(repo_name: str, facet: str, parse: Callable[..., T], *raw: Any) -> T | None:
    """Parse one facet of one repo; missing or malformed data yields None."""
    if all(r is None for r in raw):
        return None
    try:
        return parse(*raw)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Malformed %s data for %s: %s", facet, repo_name, exc)
        return None


def _build_view(repo: Repo, facets: Mapping[str, Any]) -> RepoView:
    name = repo.name
    timelines = _facet(name, "workflows", _parse_workflows, facets["workflows"]) or {}
    docs_name = find_docs_workflow(timelines)

    coverage = None
    if is_package_repo(name) and repo.has_pages:
        coverage = _facet(name, "coverage", float, facets["coverage"])

    return RepoView(
        repo=repo,
        workflows=timelines,
        latest_by_workflow={wf: latest_run(runs) for wf, runs in timelines.items()},
        ci_runs=timelines.get(PRIMARY_WORKFLOW),
        docs_runs=timelines[docs_name] if docs_name is not None else None,
        release=_facet(name, "release", resolve_release, facets["release"], facets["registry"]),
        pending=_facet(name, "pending release", _parse_pending, facets["pending"]),
        issues=_facet(name, "issue counts", _parse_issues, facets["issues"]),
        prs=_facet(name, "PR counts", _parse_prs, facets["prs"]),
        coverage=coverage,
        traffic=_facet(name, "traffic", _parse_traffic, facets["traffic"]),
        pages_url=_pages_url(repo),
    )


def aggregate(
    repos: Iterable[Mapping[str, Any] | Repo],
    workflows: Mapping[str, Any],
    issue_counts: Mapping[str, Any],
    releases: Mapping[str, Any],
    registry: Mapping[str, Any],
    pending_releases: Mapping[str, Any],
    coverage: Mapping[str, Any],
    pr_counts: Mapping[str, Any],
    traffic: Mapping[str, Any] | None = None,
) -> list[RepoView]:
    """Build one RepoView per repository from raw facet maps keyed by repo name."""
    traffic = traffic or {}
    views: list[RepoView] = []
    for raw in repos:
        try:
            repo = raw if isinstance(raw, Repo) else parse_repo(raw)
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed repo record: %r", raw)
            continue
        name = repo.name
        views.append(
            _build_view(
                repo,
                {
                    "workflows": workflows.get(name),
                    "issues": issue_counts.get(name),
                    "release": releases.get(name),
                    "registry": registry.get(name),
                    "pending": pending_releases.get(name),
                    "coverage": coverage.get(name),
                    "prs": pr_counts.get(name),
                    "traffic": traffic.get(name),
                },
            )
        )
    return views


def aggregate_batch(batch: ProviderBatch) -> DashboardSnapshot:
    """Aggregate a settled provider batch into an immutable snapshot."""
    views = aggregate(
        batch.repos,
        batch.workflows,
        batch.issue_counts,
        batch.releases,
        batch.registry,
        batch.pending_releases,
        batch.coverage,
        batch.pr_counts,
        batch.traffic,
    )
    return DashboardSnapshot(
        views=tuple(views), generated_at=parse_timestamp(batch.generated_at)
    )
