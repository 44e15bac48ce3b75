"""Orchestrator: wires together provider, dashboard, store and renderer."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from rich.console import Console
from rich.live import Live

from .dashboard import Dashboard
from .github.client import GitHubClient
from .provider import DataProvider, GitHubProvider, SnapshotProvider, write_snapshot
from .renderer import LOADING, message_document, print_document, render_json
from .store import DEFAULT_STATE_PATH, JsonFileStore, ViewStateStore


@asynccontextmanager
async def open_provider(
    org: str | None,
    token: str | None = None,
    snapshot: Path | None = None,
    include_jobs: bool = False,
    include_traffic: bool = False,
    no_cache: bool = False,
    api_url: str | None = None,
    verify_ssl: bool = True,
    show_progress: bool = True,
) -> AsyncIterator[DataProvider]:
    """Yield a snapshot reader when a file is given, otherwise a live provider."""
    if snapshot is not None:
        yield SnapshotProvider(snapshot)
        return
    if not org:
        raise ValueError("an organization is required without --snapshot")
    async with GitHubClient(
        token=token, no_cache=no_cache, base_url=api_url, verify_ssl=verify_ssl
    ) as client:
        yield GitHubProvider(
            client,
            org,
            include_jobs=include_jobs,
            include_traffic=include_traffic,
            show_progress=show_progress,
        )


async def run_show(
    org: str | None,
    token: str | None = None,
    snapshot: Path | None = None,
    state_file: Path = DEFAULT_STATE_PATH,
    mode: str | None = None,
    language: str | None = None,
    visibility: str | None = None,
    released: str | None = None,
    sort: str | None = None,
    clear_filters: bool = False,
    refresh: bool = False,
    watch: int = 0,
    output_format: str = "rich",
    output_file: str | None = None,
    include_jobs: bool = False,
    include_traffic: bool = False,
    no_cache: bool = False,
    api_url: str | None = None,
    verify_ssl: bool = True,
) -> bool:
    """Apply view controls, fetch, render. Returns False on a failed refresh."""
    store = ViewStateStore(JsonFileStore(state_file))

    async with open_provider(
        org,
        token=token,
        snapshot=snapshot,
        include_jobs=include_jobs,
        include_traffic=include_traffic,
        no_cache=no_cache,
        api_url=api_url,
        verify_ssl=verify_ssl,
        show_progress=not watch,
    ) as provider:
        dashboard = Dashboard(provider, store, target=org)

        if clear_filters:
            dashboard.clear_filters()
        if released == "any":
            released = ""
        dashboard.set_filters(language=language, visibility=visibility, released=released)
        if sort:
            dashboard.select_sort(sort)
        if mode:
            dashboard.set_mode(mode)

        if watch:
            console = Console()
            placeholder = message_document(LOADING, dashboard.state.mode)
            with Live(placeholder, console=console, auto_refresh=False) as live:
                await dashboard.watch(
                    lambda document: live.update(document, refresh=True),
                    interval=watch,
                    manual=refresh,
                )
            return dashboard.error is None

        await dashboard.refresh(manual=refresh)

    if output_format == "json" and dashboard.error is None:
        render_json(dashboard.groups(), output_file=output_file)
    else:
        print_document(dashboard.render(), output_file=output_file)
    return dashboard.error is None


async def run_build(
    org: str,
    output: Path,
    token: str | None = None,
    include_jobs: bool = False,
    include_traffic: bool = False,
    no_cache: bool = False,
    api_url: str | None = None,
    verify_ssl: bool = True,
) -> int:
    """Fetch every facet once and write a snapshot file. Returns the repo count."""
    async with open_provider(
        org,
        token=token,
        include_jobs=include_jobs,
        include_traffic=include_traffic,
        no_cache=no_cache,
        api_url=api_url,
        verify_ssl=verify_ssl,
    ) as provider:
        batch = await provider.fetch(invalidate=True)
    write_snapshot(batch, output)
    return len(batch.repos)
