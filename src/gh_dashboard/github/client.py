"""GitHub REST API client."""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import tomllib
from typing import Any

import httpx

from ..cache import FileCache
from ..query import PACKAGE_SUFFIX, is_package_repo
from .rate_limit import RateLimitMonitor

logger = logging.getLogger(__name__)

BASE_URL = "https://api.github.com"
REGISTRY_REPO = "JuliaRegistries/General"
REGISTRY_UI_URL = "https://juliahub.com/ui/Packages/General"
RUNS_PER_WORKFLOW = 10

_REGISTRATION_TITLE = re.compile(r"^New (?:package|version): (\S+) (v\S+)$")


def describe_http_error(exc: httpx.HTTPError, target: str | None = None) -> str:
    """User-facing message for a failed GitHub API call."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 404:
            subject = f"'{target}'" if target else "Organization"
            return f"{subject} not found. Check the organization name."
        if status in (401, 403):
            return "Authentication failed. Check your --token or $GITHUB_TOKEN."
        return f"GitHub API returned {status}."
    return f"Could not connect to GitHub API. {exc}".rstrip()


def _version_key(version: str) -> tuple[int, ...]:
    parts = re.split(r"[.+-]", version.lstrip("v"))
    key = []
    for part in parts:
        if not part.isdigit():
            break
        key.append(int(part))
    return tuple(key)


class GitHubClient:
    """Async GitHub REST API client with pagination and rate limit support."""

    def __init__(
        self,
        token: str | None = None,
        concurrency: int = 5,
        no_cache: bool = False,
        base_url: str | None = None,
        verify_ssl: bool = True,
        cache: FileCache | None = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url or BASE_URL,
            headers=headers,
            timeout=30.0,
            verify=verify_ssl,
        )
        self._rate_limit = RateLimitMonitor()
        self._semaphore = asyncio.Semaphore(concurrency)
        if no_cache:
            self._cache: FileCache | None = None
        else:
            self._cache = cache if cache is not None else FileCache()

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def remaining_requests(self) -> int | None:
        """Request budget left as of the last response, if known."""
        return self._rate_limit.remaining

    def clear_cache(self) -> None:
        """Forget cached responses so the next fetch hits the API."""
        if self._cache is not None:
            removed = self._cache.clear()
            logger.debug("Cleared %d cached responses", removed)

    async def _get(
        self, url: str, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        async with self._semaphore:
            await self._rate_limit.wait_if_needed()
            response = await self._client.get(url, params=params)
            self._rate_limit.update(response)
            response.raise_for_status()
            return response

    async def _cached_get_json(
        self, url: str, params: dict[str, Any] | None = None
    ) -> Any:
        """GET with file cache support. Returns parsed JSON."""
        if self._cache is not None:
            cached = self._cache.get(url, params)
            if cached is not None:
                return cached
        response = await self._get(url, params)
        data = response.json()
        if self._cache is not None:
            self._cache.set(url, params, data)
        return data

    async def _get_json_or_none(
        self, url: str, params: dict[str, Any] | None = None
    ) -> Any | None:
        """Like _cached_get_json, but a 404 yields None."""
        try:
            return await self._cached_get_json(url, params)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return None
            raise

    async def _cached_paginate(
        self, url: str, params: dict[str, Any] | None = None
    ) -> list[Any]:
        """Paginate with file cache support."""
        cache_params = dict(params or {})
        if self._cache is not None:
            cached = self._cache.get(url, cache_params)
            if cached is not None:
                return cached

        results = await self._paginate(url, params)
        if self._cache is not None:
            self._cache.set(url, cache_params, results)
        return results

    async def _paginate(
        self, url: str, params: dict[str, Any] | None = None
    ) -> list[Any]:
        results: list[Any] = []
        params = dict(params or {})
        params.setdefault("per_page", 100)
        next_url: str | None = url

        while next_url is not None:
            response = await self._get(next_url, params)
            data = response.json()
            if isinstance(data, list):
                results.extend(data)
            else:
                results.append(data)

            # Follow Link header for next page
            next_url = None
            link_header = response.headers.get("Link", "")
            for part in link_header.split(","):
                if 'rel="next"' in part:
                    next_url = part.split(";")[0].strip().strip("<>")
                    params = {}  # URL already contains params
                    break

        return results

    async def list_repos(self, org: str) -> list[dict[str, Any]]:
        """List all repositories for an organization or user, newest push first."""
        params = {"type": "all", "sort": "pushed"}
        try:
            return await self._cached_paginate(f"/orgs/{org}/repos", params=params)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return await self._cached_paginate(
                    f"/users/{org}/repos", params=params
                )
            raise

    async def list_workflow_runs(
        self,
        owner: str,
        repo: str,
        branch: str,
        include_jobs: bool = False,
        per_workflow: int = RUNS_PER_WORKFLOW,
    ) -> dict[str, list[dict[str, Any]]] | None:
        """Recent runs on a branch grouped by workflow name, oldest first.

        Returns None when the repository has no Actions runs at all.
        """
        data = await self._get_json_or_none(
            f"/repos/{owner}/{repo}/actions/runs",
            params={"per_page": 100, "branch": branch},
        )
        if not data or not data.get("workflow_runs"):
            return None

        grouped: dict[str, list[dict[str, Any]]] = {}
        for run in data["workflow_runs"]:  # newest first
            runs = grouped.setdefault(run.get("name") or "unnamed", [])
            if len(runs) >= per_workflow:
                continue
            runs.append(
                {
                    "id": run.get("id"),
                    "status": run.get("status"),
                    "conclusion": run.get("conclusion"),
                    "html_url": run.get("html_url"),
                    "created_at": run.get("created_at"),
                }
            )

        if include_jobs:
            pending = [
                run
                for runs in grouped.values()
                for run in runs
                if run["status"] == "completed" and run["id"] is not None
            ]
            breakdowns = await asyncio.gather(
                *(self.get_job_breakdown(owner, repo, run["id"]) for run in pending),
                return_exceptions=True,
            )
            for run, jobs in zip(pending, breakdowns):
                if isinstance(jobs, Exception):
                    logger.debug("%s/%s run %s: no job breakdown: %s", owner, repo, run["id"], jobs)
                    continue
                if jobs is not None:
                    run["jobs"] = jobs

        return {name: list(reversed(runs)) for name, runs in grouped.items()}

    async def get_job_breakdown(
        self, owner: str, repo: str, run_id: int
    ) -> dict[str, int] | None:
        """Pass/fail counts over the jobs of one workflow run."""
        jobs = await self._cached_paginate(
            f"/repos/{owner}/{repo}/actions/runs/{run_id}/jobs"
        )
        entries: list[dict[str, Any]] = []
        for page in jobs:
            if isinstance(page, dict):
                entries.extend(page.get("jobs", []))
        if not entries:
            return None
        return {
            "total": len(entries),
            "passed": sum(1 for j in entries if j.get("conclusion") == "success"),
            "failed": sum(1 for j in entries if j.get("conclusion") == "failure"),
        }

    async def get_latest_release(
        self, owner: str, repo: str
    ) -> dict[str, Any] | None:
        """Latest published release, or None when the repo has none."""
        data = await self._get_json_or_none(f"/repos/{owner}/{repo}/releases/latest")
        if not data:
            return None
        return {
            "tag_name": data.get("tag_name"),
            "html_url": data.get("html_url"),
            "published_at": data.get("published_at"),
        }

    async def _search_count(self, query: str) -> int:
        data = await self._cached_get_json(
            "/search/issues", params={"q": query, "per_page": 1}
        )
        return int(data.get("total_count", 0)) if isinstance(data, dict) else 0

    async def get_issue_counts(self, owner: str, repo: str) -> dict[str, int]:
        """Open and closed issue counts (pull requests excluded)."""
        base = f"repo:{owner}/{repo} type:issue"
        open_count, closed_count = await asyncio.gather(
            self._search_count(f"{base} state:open"),
            self._search_count(f"{base} state:closed"),
        )
        return {"open": open_count, "closed": closed_count}

    async def get_pr_counts(self, owner: str, repo: str) -> dict[str, int]:
        return {"open": await self._search_count(f"repo:{owner}/{repo} type:pr state:open")}

    async def get_traffic(self, owner: str, repo: str) -> dict[str, int]:
        """14-day page views. Requires push access to the repository."""
        data = await self._cached_get_json(f"/repos/{owner}/{repo}/traffic/views")
        return {"views": int(data.get("count", 0)), "uniques": int(data.get("uniques", 0))}

    async def get_registry_entry(self, package: str) -> dict[str, Any] | None:
        """Newest registered version of a package in the General registry."""
        path = f"{package[0].upper()}/{package}/Versions.toml"
        data = await self._get_json_or_none(f"/repos/{REGISTRY_REPO}/contents/{path}")
        if not data or "content" not in data:
            return None
        text = base64.b64decode(data["content"]).decode("utf-8")
        versions = list(tomllib.loads(text))
        if not versions:
            return None
        return {
            "version": max(versions, key=_version_key),
            "registry_url": f"{REGISTRY_UI_URL}/{package}",
            "published_at": None,
        }

    async def search_pending_registrations(
        self, org: str
    ) -> dict[str, dict[str, Any]]:
        """Open registration PRs mentioning the org, keyed by repo name."""
        data = await self._cached_get_json(
            "/search/issues",
            params={
                "q": f"repo:{REGISTRY_REPO} type:pr state:open {org}",
                "per_page": 100,
            },
        )
        pending: dict[str, dict[str, Any]] = {}
        for pr in data.get("items", []) if isinstance(data, dict) else []:
            match = _REGISTRATION_TITLE.match(pr.get("title", ""))
            if not match:
                continue
            package, version = match.groups()
            repo_name = package if is_package_repo(package) else f"{package}{PACKAGE_SUFFIX}"
            pending[repo_name] = {
                "version": version,
                "html_url": pr.get("html_url"),
                "title": pr.get("title"),
            }
        return pending
