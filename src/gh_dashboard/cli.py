"""CLI entrypoint for gh-dashboard."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .github.client import describe_http_error
from .models import RenderMode
from .query import SORT_KEYS
from .store import DEFAULT_STATE_PATH, JsonFileStore, ViewStateStore


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _report_http_error(exc: httpx.HTTPError, target: str) -> None:
    click.echo(f"Error: {describe_http_error(exc, target)}", err=True)


_state_option = click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_STATE_PATH,
    envvar="GH_DASHBOARD_STATE",
    show_envvar=True,
    help="Where the chosen view, filters and sort are remembered",
)


def _fetch_options(func):
    for option in reversed(
        [
            click.option(
                "--token",
                envvar="GITHUB_TOKEN",
                default=None,
                show_envvar=True,
                help="GitHub personal access token",
            ),
            click.option(
                "--jobs", "include_jobs", is_flag=True, default=False,
                help="Fetch per-job pass/fail counts for each run",
            ),
            click.option(
                "--traffic", "include_traffic", is_flag=True, default=False,
                help="Fetch page views (needs push access)",
            ),
            click.option("--no-cache", is_flag=True, default=False, help="Disable HTTP response caching"),
            click.option("--api-url", default=None, help="GitHub Enterprise API base URL"),
            click.option(
                "--no-ssl-verify", is_flag=True, default=False,
                help="Disable SSL verification (self-signed certs)",
            ),
        ]
    ):
        func = option(func)
    return func


@click.group()
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable debug logging")
@click.version_option(version=__version__)
def main(verbose: bool) -> None:
    """Status dashboard for the repositories of a GitHub organization."""
    _configure_logging(verbose)


@main.command()
@click.argument("org", envvar="GH_DASHBOARD_ORG", required=False)
@click.option(
    "--snapshot",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Read a snapshot file written by 'gh-dashboard build' instead of the API",
)
@click.option(
    "--mode",
    type=click.Choice([m.value for m in RenderMode], case_sensitive=False),
    default=None,
    help="Render mode (remembered)",
)
@click.option("--language", default=None, help="Only show repos in this primary language ('' clears)")
@click.option("--visibility", default=None, help="Only show public/private/internal repos ('' clears)")
@click.option(
    "--released",
    type=click.Choice(["yes", "no", "any"], case_sensitive=False),
    default=None,
    help="Only show repos with (yes) or without (no) a release",
)
@click.option(
    "--sort",
    type=click.Choice(list(SORT_KEYS), case_sensitive=False),
    default=None,
    help="Sort column; choosing the current one again reverses it",
)
@click.option("--clear-filters", is_flag=True, default=False, help="Drop all remembered filters")
@click.option("--refresh", is_flag=True, default=False, help="Bypass cached API responses")
@click.option(
    "--watch",
    type=click.IntRange(min=0),
    default=0,
    metavar="SECONDS",
    help="Keep running and refresh every SECONDS (e.g. 300)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["rich", "json"], case_sensitive=False),
    default="rich",
    show_default=True,
    help="Output format",
)
@click.option(
    "--output",
    "output_file",
    default=None,
    type=click.Path(),
    help="Save output to file instead of stdout",
)
@_state_option
@_fetch_options
def show(
    org: str | None,
    snapshot: Path | None,
    mode: str | None,
    language: str | None,
    visibility: str | None,
    released: str | None,
    sort: str | None,
    clear_filters: bool,
    refresh: bool,
    watch: int,
    output_format: str,
    output_file: str | None,
    state_file: Path,
    token: str | None,
    include_jobs: bool,
    include_traffic: bool,
    no_cache: bool,
    api_url: str | None,
    no_ssl_verify: bool,
) -> None:
    """Show the dashboard for ORG, or for a --snapshot file.

    \b
    Examples:
      gh-dashboard show myorg
      gh-dashboard show myorg --mode cards --released yes
      gh-dashboard show --snapshot data.json --sort status
      gh-dashboard show myorg --watch 300
    """
    if snapshot is None and not org:
        raise click.UsageError("Provide an ORG (or $GH_DASHBOARD_ORG) or --snapshot.")

    from .orchestrator import run_show

    try:
        ok = asyncio.run(
            run_show(
                org=org,
                token=token,
                snapshot=snapshot,
                state_file=state_file,
                mode=mode,
                language=language,
                visibility=visibility,
                released=released,
                sort=sort,
                clear_filters=clear_filters,
                refresh=refresh,
                watch=watch,
                output_format=output_format,
                output_file=output_file,
                include_jobs=include_jobs,
                include_traffic=include_traffic,
                no_cache=no_cache,
                api_url=api_url,
                verify_ssl=not no_ssl_verify,
            )
        )
    except KeyboardInterrupt:
        return
    except Exception as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    if not ok:
        sys.exit(1)


@main.command()
@click.argument("org", envvar="GH_DASHBOARD_ORG")
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("data.json"),
    show_default=True,
    help="Snapshot file to write",
)
@_fetch_options
def build(
    org: str,
    output: Path,
    token: str | None,
    include_jobs: bool,
    include_traffic: bool,
    no_cache: bool,
    api_url: str | None,
    no_ssl_verify: bool,
) -> None:
    """Fetch everything for ORG once and write a snapshot file."""
    from .orchestrator import run_build

    try:
        count = asyncio.run(
            run_build(
                org=org,
                output=output,
                token=token,
                include_jobs=include_jobs,
                include_traffic=include_traffic,
                no_cache=no_cache,
                api_url=api_url,
                verify_ssl=not no_ssl_verify,
            )
        )
    except httpx.HTTPError as exc:
        _report_http_error(exc, org)
        sys.exit(1)
    except Exception as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"Wrote {count} repositories to {output}")


@main.command()
@_state_option
def reset(state_file: Path) -> None:
    """Forget the remembered view mode, filters and sort."""
    ViewStateStore(JsonFileStore(state_file)).reset()
    click.echo("View state reset.")


if __name__ == "__main__":  # pragma: no cover
    main()
