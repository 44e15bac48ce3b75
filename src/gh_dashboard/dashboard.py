"""Dashboard controller: wires provider, aggregator, query engine, store and renderer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable

import httpx

from .aggregator import aggregate_batch
from .models import DashboardSnapshot, Filters, RenderMode, ViewGroup
from .github.client import describe_http_error
from .provider import DataProvider, ProviderError
from .query import build_groups, toggle_sort
from .renderer import (
    NO_MATCHES,
    NO_REPOS,
    Document,
    last_updated_label,
    message_document,
    no_matches_message,
    render,
)
from .store import ViewState, ViewStateStore

logger = logging.getLogger(__name__)

REFRESH_INTERVAL = 300  # seconds


class Dashboard:
    """Holds the current snapshot and view state, and renders on demand.

    Filter, sort and mode changes re-render from the last snapshot; only
    ``refresh`` talks to the provider. Each refresh replaces the snapshot
    as a whole once every facet has settled.
    """

    def __init__(
        self,
        provider: DataProvider,
        store: ViewStateStore | None = None,
        target: str | None = None,
    ) -> None:
        self._provider = provider
        self._target = target
        self._store = store if store is not None else ViewStateStore()
        self._snapshot: DashboardSnapshot | None = None
        self._error: str | None = None

    @property
    def snapshot(self) -> DashboardSnapshot | None:
        return self._snapshot

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def state(self) -> ViewState:
        return self._store.load()

    async def refresh(self, manual: bool = False) -> DashboardSnapshot | None:
        """Fetch a new batch and swap in the resulting snapshot.

        A manual refresh also invalidates the provider's response cache.
        """
        try:
            batch = await self._provider.fetch(invalidate=manual)
        except httpx.HTTPError as exc:
            self._fail(describe_http_error(exc, self._target))
            return None
        except ProviderError as exc:
            self._fail(str(exc) or exc.__class__.__name__)
            return None

        snapshot = aggregate_batch(batch)
        self._snapshot = snapshot
        self._error = None
        logger.debug("Snapshot replaced: %d repositories", len(snapshot.views))
        return snapshot

    def _fail(self, message: str) -> None:
        logger.warning("Refresh failed: %s", message)
        self._error = message

    async def watch(
        self,
        on_update: Callable[[Document], None],
        interval: float = REFRESH_INTERVAL,
        iterations: int | None = None,
        manual: bool = False,
    ) -> None:
        """Refresh periodically, calling ``on_update`` with each new document.

        ``manual`` makes the first refresh bypass the response cache.
        """
        count = 0
        while iterations is None or count < iterations:
            await self.refresh(manual=manual and count == 0)
            on_update(self.render())
            count += 1
            if iterations is not None and count >= iterations:
                break
            await asyncio.sleep(interval)

    def set_mode(self, mode: RenderMode | str) -> None:
        self._store.save(mode=RenderMode(mode))

    def set_filters(
        self,
        language: str | None = None,
        visibility: str | None = None,
        released: str | None = None,
    ) -> None:
        """Update the given filter dimensions; ``None`` leaves one unchanged."""
        current = self._store.load().filters
        changes = {
            k: v
            for k, v in (("language", language), ("visibility", visibility), ("released", released))
            if v is not None
        }
        if changes.get("released") not in (None, "", "yes", "no"):
            raise ValueError(f"released filter must be 'yes', 'no' or empty, not {released!r}")
        self._store.save(filters=replace(current, **changes))

    def clear_filters(self) -> None:
        self._store.save(filters=Filters())

    def select_sort(self, sort_key: str) -> None:
        """Sort by ``sort_key``; selecting the active key flips direction."""
        query = toggle_sort(self._store.load().query, sort_key)
        self._store.save(sort_key=query.sort_key, sort_dir=query.sort_dir)

    def groups(self) -> list[ViewGroup]:
        if self._snapshot is None:
            return []
        return build_groups(list(self._snapshot.views), self._store.load().query)

    def render(self, now: datetime | None = None) -> Document:
        state = self._store.load()
        if self._error is not None:
            return message_document(f"Error: {self._error}", state.mode, error=True)
        if self._snapshot is None or not self._snapshot.views:
            return message_document(NO_REPOS, state.mode)
        document = render(
            build_groups(list(self._snapshot.views), state.query),
            state.mode,
            query=state.query,
            on_sort=self.select_sort,
            now=now,
        )
        if document.placeholder == NO_MATCHES:
            document.placeholder = no_matches_message(
                self._snapshot.languages, self._snapshot.visibilities
            )
        document.footer = last_updated_label(self._snapshot.generated_at, now)
        return document
