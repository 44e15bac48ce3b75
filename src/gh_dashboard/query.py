"""Filtering, sorting and grouping of RepoViews."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from .models import RepoView, RunSummary, ViewGroup, ViewQuery

PACKAGE_SUFFIX = ".jl"
PACKAGE_GROUP = "Julia Packages"
OTHER_GROUP = "Other"

SORT_KEYS = ("name", "pushed", "status", "docs", "release", "issues", "prs")

STATUS_ORDER = {
    "failure": 0,
    "in_progress": 1,
    "queued": 2,
    "unknown": 3,
    "cancelled": 4,
    "success": 5,
}
NO_DOCS_RANK = 6

# Keys whose ordering is fixed regardless of the requested direction
_ASCENDING_ONLY = frozenset({"status", "docs"})

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def is_package_repo(name: str) -> bool:
    return name.endswith(PACKAGE_SUFFIX)


def default_direction(sort_key: str) -> str:
    return "asc" if sort_key == "name" else "desc"


def toggle_sort(query: ViewQuery, sort_key: str) -> ViewQuery:
    """Flip direction on the active key, otherwise switch to the key's default."""
    if sort_key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {sort_key}")
    if sort_key == query.sort_key:
        flipped = "asc" if query.sort_dir == "desc" else "desc"
        return replace(query, sort_dir=flipped)
    return replace(query, sort_key=sort_key, sort_dir=default_direction(sort_key))


def run_state(run: RunSummary | None) -> str:
    """Conclusion of a finished run, or the status of one still running."""
    if run is None:
        return "unknown"
    if run.conclusion:
        return run.conclusion
    if run.status in ("in_progress", "queued"):
        return run.status
    return "unknown"


def status_rank(run: RunSummary | None) -> int:
    return STATUS_ORDER.get(run_state(run), STATUS_ORDER["unknown"])


def _latest(runs: tuple[RunSummary, ...] | None) -> RunSummary | None:
    return runs[-1] if runs else None


def _docs_rank(view: RepoView) -> int:
    if view.docs_runs is None:
        return NO_DOCS_RANK
    return status_rank(_latest(view.docs_runs))


_SORT_FUNCS: dict[str, Callable[[RepoView], object]] = {
    "name": lambda v: v.repo.name.casefold(),
    "pushed": lambda v: v.repo.pushed_at or _EPOCH,
    "status": lambda v: status_rank(_latest(v.ci_runs)),
    "docs": _docs_rank,
    "release": lambda v: v.release.tag if v.release else "",
    "issues": lambda v: v.issues.open if v.issues else 0,
    "prs": lambda v: v.prs.open if v.prs else 0,
}


def filter_views(views: list[RepoView], query: ViewQuery) -> list[RepoView]:
    filters = query.filters
    result = list(views)
    if filters.language:
        result = [v for v in result if v.repo.language == filters.language]
    if filters.visibility:
        result = [v for v in result if v.repo.visibility == filters.visibility]
    if filters.released == "yes":
        result = [v for v in result if v.release is not None]
    elif filters.released == "no":
        result = [v for v in result if v.release is None]
    return result


def sort_views(views: list[RepoView], query: ViewQuery) -> list[RepoView]:
    key_func = _SORT_FUNCS.get(query.sort_key, _SORT_FUNCS["pushed"])
    reverse = query.sort_dir == "desc" and query.sort_key not in _ASCENDING_ONLY
    return sorted(views, key=key_func, reverse=reverse)


def apply_query(views: list[RepoView], query: ViewQuery) -> list[RepoView]:
    """Filter then stably sort the views."""
    return sort_views(filter_views(views, query), query)


def group_views(views: list[RepoView]) -> list[ViewGroup]:
    """Split into package repos and everything else, keeping order."""
    packages = ViewGroup(PACKAGE_GROUP)
    other = ViewGroup(OTHER_GROUP)
    for view in views:
        if is_package_repo(view.repo.name):
            packages.views.append(view)
        else:
            other.views.append(view)
    return [packages, other]


def build_groups(views: list[RepoView], query: ViewQuery) -> list[ViewGroup]:
    return group_views(apply_query(views, query))
