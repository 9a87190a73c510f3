"""Command-line interface for webannotations.

Highlights text in saved HTML pages, re-renders stored highlights, and
manages the annotation store (summary, per-URL removal, export, import).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from webannotations import _setup_logging
from webannotations.anchoring.selection import select_text
from webannotations.config import get_settings
from webannotations.models import COLORS, load_annotations, sort_for_listing
from webannotations.page import PageDocument
from webannotations.session import PageSession
from webannotations.store import open_store, url_key
from webannotations.transfer import (
    IMPORT_MODES,
    ImportPayloadError,
    count_annotations,
    export_filename,
    export_store,
    import_into_store,
    load_import_text,
    remove_url,
    summarize_store,
)

if TYPE_CHECKING:
    from webannotations.config import Settings
    from webannotations.store import AnnotationStore

console = Console()

_BLANK_PAGE = "<html><head></head><body></body></html>"


class CommandError(Exception):
    """A command failed in a way the user can fix."""


def _build_parser() -> argparse.ArgumentParser:
    """Build argparse parser for webannotations subcommands."""
    parser = argparse.ArgumentParser(
        prog="webannotations",
        description="Persistent text highlights for HTML pages.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # highlight
    hl_p = sub.add_parser("highlight", help="Highlight text in a saved page")
    hl_p.add_argument("page", type=Path, help="HTML file")
    hl_p.add_argument("--url", required=True, help="Page URL (storage key)")
    hl_p.add_argument("--text", required=True, help="Text to select")
    hl_p.add_argument(
        "--occurrence", type=int, default=0, help="Which match to select (0-based)"
    )
    hl_p.add_argument("--color", choices=COLORS, default=COLORS[0])
    hl_p.add_argument("--comment", default="", help="Attach a comment")
    hl_p.add_argument("-o", "--output", type=Path, help="Write painted HTML here")

    # render
    render_p = sub.add_parser("render", help="Repaint stored highlights on a page")
    render_p.add_argument("page", type=Path, help="HTML file")
    render_p.add_argument("--url", required=True, help="Page URL (storage key)")
    render_p.add_argument("-o", "--output", type=Path, help="Write painted HTML here")

    # list
    list_p = sub.add_parser("list", help="List annotations for a URL")
    list_p.add_argument("--url", required=True)

    # comment
    comment_p = sub.add_parser("comment", help="Set or clear an annotation comment")
    comment_p.add_argument("--url", required=True)
    comment_p.add_argument("annotation_id")
    comment_p.add_argument("comment", help="New comment; empty string clears it")

    # erase
    erase_p = sub.add_parser("erase", help="Remove one annotation")
    erase_p.add_argument("--url", required=True)
    erase_p.add_argument("annotation_id")

    # erase-all
    erase_all_p = sub.add_parser("erase-all", help="Remove all annotations for a URL")
    erase_all_p.add_argument("--url", required=True)

    # summary
    sub.add_parser("summary", help="Annotation counts per URL")

    # remove-url
    remove_p = sub.add_parser("remove-url", help="Delete a URL's stored entry")
    remove_p.add_argument("url_key", help="Storage key as shown by 'summary'")

    # export
    export_p = sub.add_parser("export", help="Export all annotations as JSON")
    export_p.add_argument("-o", "--output", type=Path, help="Output file")

    # import
    import_p = sub.add_parser("import", help="Import annotations from JSON")
    import_p.add_argument("file", type=Path, help="JSON file, or '-' for stdin")
    import_p.add_argument("--mode", choices=IMPORT_MODES, default="merge")

    return parser


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_page(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"cannot read {path}: {exc.strerror}"
        raise CommandError(msg) from exc


def _write_page(document: PageDocument, output: Path | None, con: Console) -> None:
    html = document.serialize()
    if output is None:
        sys.stdout.write(html + "\n")
        return
    output.write_text(html, encoding="utf-8")
    con.print(f"[dim]Wrote {output}[/]")


async def _open_session(
    store: AnnotationStore, settings: Settings, url: str, page: Path | None = None
) -> PageSession:
    html = _read_page(page) if page is not None else _BLANK_PAGE
    session = PageSession(PageDocument.from_html(html, url), store, settings=settings)
    await session.activate()
    return session


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _cmd_highlight(
    store: AnnotationStore,
    settings: Settings,
    args: argparse.Namespace,
    *,
    console: Console | None = None,
) -> None:
    """Select text in a page and store it as a highlight."""
    con = console or globals()["console"]
    session = await _open_session(store, settings, args.url, args.page)
    try:
        session.toggle_toolbar()
        session.set_color(args.color)
        session.selection = select_text(
            session.document.content_root, args.text, args.occurrence
        )
        if session.selection is None:
            msg = f"text not found on page: {args.text!r}"
            raise CommandError(msg)

        annotation = await session.highlight_selection()
        if annotation is None:
            msg = "selection could not be highlighted"
            raise CommandError(msg)
        if args.comment:
            await session.update_comment(annotation.id, args.comment)

        con.print(
            f"[green]Highlighted[/] {escape(repr(annotation.text))}"
            f" (id={annotation.id})"
        )
        _write_page(session.document, args.output, con)
    finally:
        await session.teardown()


async def _cmd_render(
    store: AnnotationStore,
    settings: Settings,
    args: argparse.Namespace,
    *,
    console: Console | None = None,
) -> None:
    """Repaint stored highlights and report orphans."""
    con = console or globals()["console"]
    html = _read_page(args.page)
    document = PageDocument.from_html(html, args.url)
    session = PageSession(document, store, settings=settings)
    try:
        report = await session.activate()
        con.print(
            f"Painted [green]{len(report.painted)}[/],"
            f" orphaned [yellow]{len(report.orphaned)}[/]"
        )
        for annotation_id in report.orphaned:
            con.print(f"  [yellow]orphaned:[/] {annotation_id}")
        _write_page(session.document, args.output, con)
    finally:
        await session.teardown()


async def _cmd_list(
    store: AnnotationStore, url: str, *, console: Console | None = None
) -> None:
    """List a page's annotations as a Rich table, newest first."""
    con = console or globals()["console"]
    key = url_key(url)
    annotations = sort_for_listing(load_annotations(await store.get(key) or []))

    if not annotations:
        con.print(f"[yellow]No annotations for[/] {escape(key)}")
        return

    table = Table(title=escape(key))
    table.add_column("ID", style="cyan")
    table.add_column("Text")
    table.add_column("Colour")
    table.add_column("Comment")
    table.add_column("Created")
    for annotation in annotations:
        table.add_row(
            annotation.id,
            escape(annotation.text),
            annotation.color,
            escape(annotation.comment),
            annotation.created_at or "",
        )
    con.print(table)


async def _cmd_comment(
    store: AnnotationStore,
    settings: Settings,
    args: argparse.Namespace,
    *,
    console: Console | None = None,
) -> None:
    con = console or globals()["console"]
    session = await _open_session(store, settings, args.url)
    try:
        if not await session.update_comment(args.annotation_id, args.comment):
            msg = f"no annotation {args.annotation_id!r} for {session.url_key}"
            raise CommandError(msg)
        con.print(f"[green]Updated[/] comment on {args.annotation_id}")
    finally:
        await session.teardown()


async def _cmd_erase(
    store: AnnotationStore,
    settings: Settings,
    args: argparse.Namespace,
    *,
    console: Console | None = None,
) -> None:
    con = console or globals()["console"]
    session = await _open_session(store, settings, args.url)
    try:
        if not await session.erase(args.annotation_id):
            msg = f"no annotation {args.annotation_id!r} for {session.url_key}"
            raise CommandError(msg)
        con.print(f"[green]Erased[/] {args.annotation_id}")
    finally:
        await session.teardown()


async def _cmd_erase_all(
    store: AnnotationStore,
    settings: Settings,
    args: argparse.Namespace,
    *,
    console: Console | None = None,
) -> None:
    con = console or globals()["console"]
    session = await _open_session(store, settings, args.url)
    try:
        count = await session.erase_all()
        con.print(f"[green]Erased[/] {count} annotation(s) from {session.url_key}")
    finally:
        await session.teardown()


async def _cmd_summary(
    store: AnnotationStore, *, console: Console | None = None
) -> None:
    """Show annotation counts per URL, most-annotated first."""
    con = console or globals()["console"]
    rows = await summarize_store(store)
    if not rows:
        con.print("[yellow]No saved annotations yet.[/]")
        return

    table = Table(title="Saved annotations")
    table.add_column("URL", style="cyan")
    table.add_column("Annotations", justify="right")
    for key, count in rows:
        table.add_row(escape(key), str(count))
    con.print(table)
    total = sum(count for _, count in rows)
    con.print(f"{len(rows)} URL(s), {total} annotation(s)")


async def _cmd_remove_url(
    store: AnnotationStore, key: str, *, console: Console | None = None
) -> None:
    con = console or globals()["console"]
    await remove_url(store, key)
    con.print(f"[green]Entry removed:[/] {escape(key)}")


async def _cmd_export(
    store: AnnotationStore, output: Path | None, *, console: Console | None = None
) -> None:
    """Export the store to a JSON file."""
    con = console or globals()["console"]
    payload = await export_store(store)
    path = output or Path(export_filename())
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    by_url = payload["annotationsByUrl"]
    total = sum(len(records) for records in by_url.values())
    con.print(
        f"[green]Exported[/] {total} annotation(s) across {len(by_url)} URL(s)"
        f" to {path}"
    )


async def _cmd_import(
    store: AnnotationStore, source: Path, mode: str, *, console: Console | None = None
) -> None:
    """Validate and import a JSON export."""
    con = console or globals()["console"]
    if str(source) == "-":
        text = sys.stdin.read()
    else:
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as exc:
            msg = f"cannot read {source}: {exc.strerror}"
            raise CommandError(msg) from exc

    incoming = load_import_text(text)
    await import_into_store(store, incoming, mode)
    con.print(
        f"[green]Imported[/] {count_annotations(incoming)} annotation(s)"
        f" across {len(incoming)} URL(s) ({mode})"
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def run(
    args: argparse.Namespace,
    *,
    settings: Settings | None = None,
    store: AnnotationStore | None = None,
) -> None:
    """Execute a parsed command against a store."""
    settings = settings or get_settings()
    owned = store is None
    store = store if store is not None else open_store(settings)
    try:
        match args.command:
            case "highlight":
                await _cmd_highlight(store, settings, args)
            case "render":
                await _cmd_render(store, settings, args)
            case "list":
                await _cmd_list(store, args.url)
            case "comment":
                await _cmd_comment(store, settings, args)
            case "erase":
                await _cmd_erase(store, settings, args)
            case "erase-all":
                await _cmd_erase_all(store, settings, args)
            case "summary":
                await _cmd_summary(store)
            case "remove-url":
                await _cmd_remove_url(store, args.url_key)
            case "export":
                await _cmd_export(store, args.output)
            case "import":
                await _cmd_import(store, args.file, args.mode)
    finally:
        if owned:
            await store.close()


def main(argv: list[str] | None = None) -> None:
    """Entry point for the ``webannotations`` command.

    Usage:
        webannotations <command> [options]

    Commands:
        highlight PAGE --url URL --text TEXT   Highlight text and store it
        render PAGE --url URL                  Repaint stored highlights
        list --url URL                         List a page's annotations
        comment --url URL ID TEXT              Set or clear a comment
        erase --url URL ID                     Remove one annotation
        erase-all --url URL                    Remove a page's annotations
        summary                                Counts per URL
        remove-url KEY                         Delete a URL entry
        export [-o FILE]                       Export everything as JSON
        import FILE [--mode merge|replace]     Import a JSON export
    """
    parser = _build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    settings = get_settings()
    _setup_logging(settings.app.log_dir)

    try:
        asyncio.run(run(args, settings=settings))
    except (CommandError, ImportPayloadError) as exc:
        console.print(f"[red]Error:[/] {escape(str(exc))}")
        sys.exit(1)
