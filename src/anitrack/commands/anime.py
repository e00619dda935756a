"""Anime commands -- query the MyAnimeList API with the stored token.

Both commands need a prior ``anitrack login``. Results go to stdout as a
table (Rich on a TTY, tab-separated when piped) or as JSON with ``--json``.
"""

from __future__ import annotations

import typer

from anitrack.exceptions import AnitrackError
from anitrack.models import AnimePage
from anitrack.output import OutputFormat, error, get_output, info, print_json, print_table


def _client():
    from anitrack.client import MalClient
    from anitrack.config import load_config

    return MalClient(load_config())


def _emit_page(page: AnimePage, headers: list[str], rows: list[list[str]], title: str) -> None:
    if get_output().format == OutputFormat.JSON:
        print_json(page.model_dump(mode="json", exclude_none=True))
        return
    if not rows:
        info("No results.")
        return
    print_table(headers, rows, title=title)


def search_command(
    query: str = typer.Argument(help="Title to search for."),
    limit: int = typer.Option(5, "--limit", "-l", min=1, max=100, help="Maximum results."),
) -> None:
    """Search MyAnimeList by title.

    Example::

        anitrack search "cowboy bebop" --limit 3
    """
    try:
        with _client() as client:
            page = client.search_anime(query, limit=limit)
    except AnitrackError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    rows = [[str(entry.node.id), entry.node.title] for entry in page.data]
    _emit_page(page, ["ID", "Title"], rows, title=f"Search: {query}")


def userlist_command(
    username: str = typer.Argument(help="MyAnimeList username (@me for yourself)."),
    limit: int = typer.Option(5, "--limit", "-l", min=1, max=1000, help="Maximum entries."),
) -> None:
    """Show a user's anime list with status, score and progress."""
    try:
        with _client() as client:
            page = client.get_user_anime_list(username, limit=limit)
    except AnitrackError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    rows = []
    for entry in page.data:
        status = entry.list_status
        rows.append(
            [
                str(entry.node.id),
                entry.node.title,
                (status.status or "") if status else "",
                str(status.score) if status and status.score is not None else "",
                str(status.num_episodes_watched)
                if status and status.num_episodes_watched is not None
                else "",
            ]
        )
    _emit_page(
        page,
        ["ID", "Title", "Status", "Score", "Episodes"],
        rows,
        title=f"{username}'s anime list",
    )
