"""Data providers: a live GitHub fetcher and a pre-built snapshot reader.

Both return a settled ``ProviderBatch`` whose facet maps are keyed by repo
name and use the JSON shapes of the ``data.json`` snapshot file.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

import httpx
from rich.progress import Progress, SpinnerColumn, TextColumn

from .github.client import GitHubClient
from .query import PACKAGE_SUFFIX, is_package_repo

logger = logging.getLogger(__name__)

FACETS = (
    "workflows",
    "issue_counts",
    "pr_counts",
    "releases",
    "registry",
    "pending_releases",
    "coverage",
    "traffic",
)


class ProviderError(Exception):
    """The provider could not produce a batch at all."""


@dataclass
class ProviderBatch:
    repos: list[dict[str, Any]] = field(default_factory=list)
    workflows: dict[str, dict[str, list[dict[str, Any]]]] = field(default_factory=dict)
    issue_counts: dict[str, dict[str, int]] = field(default_factory=dict)
    pr_counts: dict[str, dict[str, int]] = field(default_factory=dict)
    releases: dict[str, dict[str, Any]] = field(default_factory=dict)
    registry: dict[str, dict[str, Any]] = field(default_factory=dict)
    pending_releases: dict[str, dict[str, Any]] = field(default_factory=dict)
    coverage: dict[str, float] = field(default_factory=dict)
    traffic: dict[str, dict[str, int]] = field(default_factory=dict)
    generated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderBatch:
        repos = data.get("repos")
        if not isinstance(repos, list):
            raise ProviderError("snapshot has no 'repos' list")
        facets = {}
        for name in FACETS:
            value = data.get(name) or {}
            if not isinstance(value, dict):
                logger.warning("Ignoring malformed '%s' facet in snapshot", name)
                value = {}
            facets[name] = value
        return cls(repos=repos, generated_at=data.get("generated_at"), **facets)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {"generated_at": data.pop("generated_at"), **data}


class DataProvider(Protocol):
    async def fetch(self, invalidate: bool = False) -> ProviderBatch: ...


class SnapshotProvider:
    """Reads a batch from a JSON snapshot file written by ``write_snapshot``."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    async def fetch(self, invalidate: bool = False) -> ProviderBatch:
        try:
            text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        except OSError as exc:
            raise ProviderError(f"Failed to load {self._path}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProviderError(f"Failed to parse {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ProviderError(f"Failed to parse {self._path}: not a JSON object")
        return ProviderBatch.from_dict(data)


async def _settle(
    repos: list[dict[str, Any]],
    facet: str,
    fetch_one: Callable[[dict[str, Any]], Awaitable[Any]],
) -> dict[str, Any]:
    """Fetch one facet for every repo concurrently; failures become absences."""
    results = await asyncio.gather(
        *(fetch_one(repo) for repo in repos), return_exceptions=True
    )
    settled: dict[str, Any] = {}
    for repo, result in zip(repos, results):
        if isinstance(result, Exception):
            logger.warning("Error fetching %s for %s: %s", facet, repo["name"], result)
            continue
        if result is not None:
            settled[repo["name"]] = result
    return settled


class GitHubProvider:
    """Fetches every facet for every repository of an organization."""

    def __init__(
        self,
        client: GitHubClient,
        org: str,
        include_jobs: bool = False,
        include_traffic: bool = False,
        show_progress: bool = True,
    ) -> None:
        self._client = client
        self._org = org
        self._include_jobs = include_jobs
        self._include_traffic = include_traffic
        self._show_progress = show_progress

    async def fetch(self, invalidate: bool = False) -> ProviderBatch:
        if invalidate:
            self._client.clear_cache()

        # A failure here is a whole-batch failure; httpx errors propagate as is
        try:
            repos = await self._client.list_repos(self._org)
        except ValueError as exc:
            raise ProviderError(f"Unreadable repository list for {self._org}: {exc}") from exc
        if not isinstance(repos, list):
            raise ProviderError(f"Unreadable repository list for {self._org}")
        usable = [r for r in repos if isinstance(r, dict) and isinstance(r.get("name"), str)]
        if len(usable) < len(repos):
            logger.warning("Skipping %d malformed repo records", len(repos) - len(usable))
        repos = usable
        if not repos:
            return ProviderBatch(generated_at=_now_iso())

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=not self._show_progress,
        ) as progress:
            progress.add_task(
                f"Collecting status for {len(repos)} repos...", total=None
            )
            batch = await self._collect(repos)

        logger.info(
            "Fetched %d repos (%d pending registrations, %s API requests left)",
            len(repos),
            len(batch.pending_releases),
            self._client.remaining_requests,
        )
        return batch

    async def _collect(self, repos: list[dict[str, Any]]) -> ProviderBatch:
        client = self._client
        owner = self._org
        packages = [r for r in repos if is_package_repo(r["name"])]

        async def traffic(repo: dict[str, Any]) -> Any:
            if not self._include_traffic:
                return None
            return await client.get_traffic(owner, repo["name"])

        async def pending() -> dict[str, Any]:
            try:
                return await client.search_pending_registrations(owner)
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Could not fetch pending registrations: %s", exc)
                return {}

        (
            workflows,
            releases,
            issue_counts,
            pr_counts,
            registry,
            traffic_views,
            pending_releases,
        ) = await asyncio.gather(
            _settle(
                repos,
                "workflows",
                lambda r: client.list_workflow_runs(
                    owner,
                    r["name"],
                    r.get("default_branch") or "main",
                    include_jobs=self._include_jobs,
                ),
            ),
            _settle(repos, "release", lambda r: client.get_latest_release(owner, r["name"])),
            _settle(repos, "issue counts", lambda r: client.get_issue_counts(owner, r["name"])),
            _settle(repos, "PR counts", lambda r: client.get_pr_counts(owner, r["name"])),
            _settle(
                packages,
                "registry entry",
                lambda r: client.get_registry_entry(r["name"].removesuffix(PACKAGE_SUFFIX)),
            ),
            _settle(repos, "traffic", traffic),
            pending(),
        )

        return ProviderBatch(
            repos=repos,
            workflows=workflows,
            issue_counts=issue_counts,
            pr_counts=pr_counts,
            releases=releases,
            registry=registry,
            pending_releases=pending_releases,
            traffic=traffic_views,
            generated_at=_now_iso(),
        )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def write_snapshot(batch: ProviderBatch, path: Path) -> None:
    """Write a batch as a snapshot file readable by SnapshotProvider."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(batch.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
