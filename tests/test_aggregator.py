"""Tests for the aggregator module."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from gh_dashboard.aggregator import (
    MAX_RUNS,
    aggregate,
    aggregate_batch,
    find_docs_workflow,
    is_docs_workflow,
    latest_run,
    parse_repo,
    parse_run,
    parse_timestamp,
    registry_tag,
    resolve_release,
)
from gh_dashboard.models import BreakdownRun, PlainRun, ReleaseInfo
from gh_dashboard.provider import ProviderBatch


def _run(conclusion="success", created_at="2024-06-01T00:00:00Z", **extra):
    return {
        "status": "completed",
        "conclusion": conclusion,
        "html_url": f"https://github.com/org/repo/actions/runs/{created_at}",
        "created_at": created_at,
        **extra,
    }


def _repo(name, **extra):
    return {
        "name": name,
        "full_name": f"Org/{name}",
        "html_url": f"https://github.com/Org/{name}",
        "pushed_at": "2024-06-01T00:00:00Z",
        **extra,
    }


def _aggregate(repos, **facets):
    args = {
        "workflows": {},
        "issue_counts": {},
        "releases": {},
        "registry": {},
        "pending_releases": {},
        "coverage": {},
        "pr_counts": {},
    }
    args.update(facets)
    return aggregate(repos, **args)


def test_is_docs_workflow():
    assert is_docs_workflow("Docs")
    assert is_docs_workflow("Build DOCUMENTATION")
    assert is_docs_workflow("deploy-docs")
    assert not is_docs_workflow("CI")
    assert not is_docs_workflow("TagBot")


def test_find_docs_workflow_first_match_wins():
    workflows = {"CI": [], "Documentation": [], "Docs preview": []}
    assert find_docs_workflow(workflows) == "Documentation"
    assert find_docs_workflow({"CI": []}) is None


def test_parse_timestamp():
    assert parse_timestamp("2024-06-01T12:00:00Z") == datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp("not a date") is None
    # Naive timestamps are taken as UTC
    assert parse_timestamp("2024-06-01T12:00:00").tzinfo is not None


def test_parse_repo_owner_from_full_name():
    repo = parse_repo(_repo("Foo.jl", has_pages=True, language="Julia"))
    assert repo.owner == "Org"
    assert repo.has_pages is True
    assert repo.language == "Julia"
    assert repo.pushed_at == datetime(2024, 6, 1, tzinfo=timezone.utc)


def test_parse_repo_owner_object():
    repo = parse_repo({"name": "x", "owner": {"login": "someone"}})
    assert repo.owner == "someone"
    assert repo.default_branch == "main"


def test_parse_run_plain_and_breakdown():
    assert isinstance(parse_run(_run()), PlainRun)
    run = parse_run(_run(jobs={"total": 5, "passed": 4, "failed": 1}))
    assert isinstance(run, BreakdownRun)
    assert run.jobs.total == 5
    assert run.jobs.failed == 1
    # Zero jobs carries no breakdown
    assert isinstance(parse_run(_run(jobs={"total": 0})), PlainRun)


def test_latest_run_is_last_entry():
    runs = (parse_run(_run("failure", "2024-06-02T00:00:00Z")), parse_run(_run("success", "2024-06-01T00:00:00Z")))
    # Ordering is trusted as supplied, not re-sorted by date
    assert latest_run(runs).conclusion == "success"
    assert latest_run(()) is None
    assert latest_run(None) is None


def test_registry_tag_is_idempotent():
    assert registry_tag("1.2.3") == "v1.2.3"
    assert registry_tag("v1.2.3") == "v1.2.3"
    assert registry_tag(registry_tag("0.1.0")) == "v0.1.0"


def test_resolve_release_prefers_platform():
    release = {"tag_name": "v1.0.0", "html_url": "https://gh/rel", "published_at": "2024-05-01T00:00:00Z"}
    registry = {"version": "2.0.0", "registry_url": "https://registry/pkg", "published_at": "2024-06-01T00:00:00Z"}
    resolved = resolve_release(release, registry)
    assert resolved == ReleaseInfo(
        tag="v1.0.0",
        html_url="https://gh/rel",
        published_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


def test_resolve_release_registry_fallback():
    resolved = resolve_release(None, {"version": "0.3.1", "registry_url": "https://registry/pkg"})
    assert resolved == ReleaseInfo(tag="v0.3.1", html_url="https://registry/pkg", published_at=None)


def test_resolve_release_absent():
    assert resolve_release(None, None) is None
    assert resolve_release({}, {}) is None


def test_aggregate_release_resolution():
    views = _aggregate(
        [_repo("Both.jl"), _repo("RegOnly.jl"), _repo("Neither")],
        releases={"Both.jl": {"tag_name": "v1.0.0", "html_url": "https://gh/both"}},
        registry={
            "Both.jl": {"version": "9.9.9", "registry_url": "https://registry/both"},
            "RegOnly.jl": {"version": "v0.2.0", "registry_url": "https://registry/regonly"},
        },
    )
    by_name = {v.name: v for v in views}
    assert by_name["Both.jl"].release.tag == "v1.0.0"
    assert by_name["Both.jl"].release.html_url == "https://gh/both"
    assert by_name["RegOnly.jl"].release.tag == "v0.2.0"
    assert by_name["Neither"].release is None


def test_aggregate_workflows():
    ci = [_run("failure", "2024-06-01T00:00:00Z"), _run("success", "2024-06-02T00:00:00Z")]
    docs = [_run("failure", "2024-06-02T00:00:00Z")]
    views = _aggregate(
        [_repo("Foo.jl")],
        workflows={"Foo.jl": {"CI": ci, "Documentation": docs, "TagBot": [_run("success")]}},
    )
    view = views[0]
    assert len(view.ci_runs) == 2
    assert view.latest_by_workflow["CI"].conclusion == "success"
    assert view.docs_runs[-1].conclusion == "failure"
    assert set(view.workflows) == {"CI", "Documentation", "TagBot"}


def test_aggregate_single_run_shape():
    views = _aggregate([_repo("Bar")], workflows={"Bar": {"CI": _run("cancelled")}})
    assert len(views[0].ci_runs) == 1
    assert views[0].ci_runs[0].conclusion == "cancelled"


def test_aggregate_truncates_long_timelines():
    runs = [_run(created_at=f"2024-06-{day:02d}T00:00:00Z") for day in range(1, 16)]
    views = _aggregate([_repo("Bar")], workflows={"Bar": {"CI": runs}})
    assert len(views[0].ci_runs) == MAX_RUNS
    assert views[0].ci_runs[-1].created_at.day == 15


def test_aggregate_absent_facets_are_none():
    view = _aggregate([_repo("Bar")])[0]
    assert view.workflows == {}
    assert view.ci_runs is None
    assert view.docs_runs is None
    assert view.issues is None
    assert view.prs is None
    assert view.pending is None
    assert view.traffic is None


def test_aggregate_counts_and_pending():
    view = _aggregate(
        [_repo("Baz.jl")],
        issue_counts={"Baz.jl": {"open": 3, "closed": 7}},
        pr_counts={"Baz.jl": {"open": 2}},
        pending_releases={"Baz.jl": {"version": "v2.0.0", "html_url": "https://gh/pr/1", "title": "New version: Baz v2.0.0"}},
        traffic={"Baz.jl": {"views": 120, "uniques": 14}},
    )[0]
    assert (view.issues.open, view.issues.closed) == (3, 7)
    assert view.prs.open == 2
    assert view.prs.closed is None
    assert view.pending.version == "v2.0.0"
    assert view.release is None
    assert view.traffic.views == 120


def test_aggregate_coverage_only_for_package_with_pages():
    views = _aggregate(
        [_repo("Foo.jl", has_pages=True), _repo("NoPages.jl"), _repo("Other", has_pages=True)],
        coverage={"Foo.jl": 87.5, "NoPages.jl": 50.0, "Other": 10.0},
    )
    by_name = {v.name: v for v in views}
    assert by_name["Foo.jl"].coverage == 87.5
    assert by_name["NoPages.jl"].coverage is None
    assert by_name["Other"].coverage is None


def test_aggregate_pages_url():
    views = _aggregate([_repo("Foo.jl", has_pages=True), _repo("Bar")])
    assert views[0].pages_url == "https://org.github.io/Foo.jl/"
    assert views[1].pages_url is None


def test_aggregate_skips_malformed_repo():
    views = _aggregate([{"description": "no name"}, _repo("Bar")])
    assert [v.name for v in views] == ["Bar"]


@pytest.mark.parametrize(
    "bad", ["just-a-string", None, {"name": None}, {"name": 5}, {"name": ""}, {"name": "X", "full_name": 7}]
)
def test_aggregate_skips_unusable_repo_records(bad):
    views = _aggregate([bad, _repo("Bar")])
    assert [v.name for v in views] == ["Bar"]


def test_parse_repo_ignores_non_string_owner():
    repo = parse_repo({"name": "Bar", "owner": {"login": 42}, "has_pages": True})
    assert repo.owner == ""


def test_aggregate_malformed_facet_degrades_to_absence():
    views = _aggregate(
        [_repo("Bar")],
        issue_counts={"Bar": {"open": "lots"}},
        pr_counts={"Bar": {"open": 4}},
    )
    assert views[0].issues is None
    # Other facets of the same repo are unaffected
    assert views[0].prs.open == 4


def test_aggregate_preserves_repo_order():
    names = ["c", "a", "b"]
    assert [v.name for v in _aggregate([_repo(n) for n in names])] == names


def test_aggregate_batch():
    batch = ProviderBatch(
        repos=[_repo("Foo.jl"), _repo("Bar")],
        releases={"Foo.jl": {"tag_name": "v1.0.0", "html_url": "u"}},
        generated_at="2024-06-01T12:00:00Z",
    )
    snapshot = aggregate_batch(batch)
    assert len(snapshot.views) == 2
    assert isinstance(snapshot.views, tuple)
    assert snapshot.generated_at == datetime(2024, 6, 1, 12, tzinfo=timezone.utc)


@pytest.mark.parametrize("version", ["1.0.0", "v1.0.0"])
def test_registry_only_tag(version):
    view = _aggregate(
        [_repo("Pkg.jl")],
        registry={"Pkg.jl": {"version": version, "registry_url": "https://registry/pkg"}},
    )[0]
    assert view.release.tag == "v1.0.0"
