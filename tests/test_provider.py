"""Tests for the data providers."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest

from gh_dashboard.github.client import GitHubClient
from gh_dashboard.provider import (
    GitHubProvider,
    ProviderBatch,
    ProviderError,
    SnapshotProvider,
    write_snapshot,
)

RUN = {
    "status": "completed",
    "conclusion": "success",
    "html_url": "https://run",
    "created_at": "2024-06-01T00:00:00Z",
}


def _repo(name, **extra):
    return {"name": name, "owner": {"login": "Org"}, "default_branch": "main", **extra}


def _mock_client(repos):
    client = MagicMock(spec=GitHubClient)
    client.list_repos.return_value = repos
    client.list_workflow_runs.return_value = {"CI": [RUN]}
    client.get_latest_release.return_value = None
    client.get_issue_counts.return_value = {"open": 1, "closed": 2}
    client.get_pr_counts.return_value = {"open": 3}
    client.get_registry_entry.return_value = {
        "version": "1.0.0",
        "registry_url": "https://reg/Foo",
        "published_at": None,
    }
    client.search_pending_registrations.return_value = {}
    client.get_traffic.return_value = {"views": 10, "uniques": 4}
    return client


@pytest.mark.asyncio
async def test_snapshot_provider_reads_file(tmp_path):
    path = tmp_path / "data.json"
    path.write_text(
        json.dumps(
            {
                "generated_at": "2024-06-01T12:00:00Z",
                "repos": [_repo("Foo.jl")],
                "releases": {"Foo.jl": {"tag_name": "v1.0.0", "html_url": "u"}},
            }
        )
    )
    batch = await SnapshotProvider(path).fetch()
    assert [r["name"] for r in batch.repos] == ["Foo.jl"]
    assert batch.releases["Foo.jl"]["tag_name"] == "v1.0.0"
    assert batch.workflows == {}
    assert batch.generated_at == "2024-06-01T12:00:00Z"


@pytest.mark.asyncio
async def test_snapshot_provider_missing_file(tmp_path):
    with pytest.raises(ProviderError, match="Failed to load"):
        await SnapshotProvider(tmp_path / "missing.json").fetch()


@pytest.mark.asyncio
async def test_snapshot_provider_bad_json(tmp_path):
    path = tmp_path / "data.json"
    path.write_text("{oops")
    with pytest.raises(ProviderError, match="Failed to parse"):
        await SnapshotProvider(path).fetch()


def test_from_dict_requires_repos():
    with pytest.raises(ProviderError):
        ProviderBatch.from_dict({"workflows": {}})


def test_from_dict_ignores_malformed_facet():
    batch = ProviderBatch.from_dict({"repos": [], "coverage": [1, 2]})
    assert batch.coverage == {}


@pytest.mark.asyncio
async def test_write_snapshot_is_readable(tmp_path):
    batch = ProviderBatch(
        repos=[_repo("Foo.jl")],
        coverage={"Foo.jl": 87.5},
        pending_releases={"Foo.jl": {"version": "v1.1.0", "html_url": "p"}},
        generated_at="2024-06-01T12:00:00Z",
    )
    path = tmp_path / "out" / "data.json"
    write_snapshot(batch, path)
    assert json.loads(path.read_text())["generated_at"] == "2024-06-01T12:00:00Z"
    assert await SnapshotProvider(path).fetch() == batch


@pytest.mark.asyncio
async def test_github_provider_collects_facets():
    client = _mock_client([_repo("Foo.jl"), _repo("Bar")])
    batch = await GitHubProvider(client, "Org", show_progress=False).fetch()

    assert set(batch.workflows) == {"Foo.jl", "Bar"}
    assert batch.issue_counts["Bar"] == {"open": 1, "closed": 2}
    assert batch.pr_counts["Foo.jl"] == {"open": 3}
    assert batch.releases == {}
    # Registry lookups only for package repos, without the suffix
    assert set(batch.registry) == {"Foo.jl"}
    client.get_registry_entry.assert_awaited_once_with("Foo")
    # Traffic is opt-in
    assert batch.traffic == {}
    client.get_traffic.assert_not_called()
    assert batch.generated_at is not None
    client.clear_cache.assert_not_called()


@pytest.mark.asyncio
async def test_github_provider_traffic_and_jobs():
    client = _mock_client([_repo("Bar")])
    provider = GitHubProvider(
        client, "Org", include_jobs=True, include_traffic=True, show_progress=False
    )
    batch = await provider.fetch()
    assert batch.traffic == {"Bar": {"views": 10, "uniques": 4}}
    assert client.list_workflow_runs.call_args.kwargs["include_jobs"] is True


@pytest.mark.asyncio
async def test_github_provider_facet_failure_is_absence():
    client = _mock_client([_repo("Foo.jl"), _repo("Bar")])

    async def issues(owner, name):
        if name == "Bar":
            raise httpx.ConnectError("boom")
        return {"open": 5, "closed": 0}

    client.get_issue_counts.side_effect = issues
    client.search_pending_registrations.side_effect = httpx.ConnectError("down")

    batch = await GitHubProvider(client, "Org", show_progress=False).fetch()
    assert batch.issue_counts == {"Foo.jl": {"open": 5, "closed": 0}}
    assert batch.pending_releases == {}
    assert set(batch.workflows) == {"Foo.jl", "Bar"}


@pytest.mark.asyncio
async def test_github_provider_repo_listing_failure_propagates():
    client = _mock_client([])
    client.list_repos.side_effect = httpx.ConnectError("unreachable")
    with pytest.raises(httpx.ConnectError):
        await GitHubProvider(client, "Org", show_progress=False).fetch()


@pytest.mark.asyncio
async def test_github_provider_empty_org():
    client = _mock_client([])
    batch = await GitHubProvider(client, "Org", show_progress=False).fetch()
    assert batch.repos == []
    client.list_workflow_runs.assert_not_called()


@pytest.mark.asyncio
async def test_github_provider_invalidate_clears_cache():
    client = _mock_client([_repo("Bar")])
    await GitHubProvider(client, "Org", show_progress=False).fetch(invalidate=True)
    client.clear_cache.assert_called_once()


@pytest.mark.asyncio
async def test_github_provider_unreadable_listing():
    client = _mock_client([])
    client.list_repos.side_effect = ValueError("not JSON")
    with pytest.raises(ProviderError, match="Unreadable repository list"):
        await GitHubProvider(client, "Org", show_progress=False).fetch()

    client = _mock_client({"message": "unexpected"})
    with pytest.raises(ProviderError):
        await GitHubProvider(client, "Org", show_progress=False).fetch()


@pytest.mark.asyncio
async def test_github_provider_skips_malformed_listing_entries():
    client = _mock_client([_repo("Bar"), "junk", {"name": None}])
    batch = await GitHubProvider(client, "Org", show_progress=False).fetch()
    assert [r["name"] for r in batch.repos] == ["Bar"]
