"""Tests for the per-page annotation session."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest

from tests.helpers.pages import PAGE_URL, make_page
from webannotations.anchoring.painter import (
    ANNOTATION_ID_ATTR,
    COMMENT_ATTR,
    find_wrappers,
)
from webannotations.anchoring.selection import DomPoint, SelectionRange, select_text
from webannotations.config import Settings
from webannotations.messages import OpenOptions, OpenRepository, UnknownMessageError
from webannotations.session import Mode, PageSession
from webannotations.store import MemoryStore

if TYPE_CHECKING:
    from webannotations.models import Annotation
    from webannotations.page import PageDocument

BODY = "<p>The quick brown fox jumps over the lazy dog</p>"
OTHER_URL = "https://example.com/articles/dogs"


def _record(
    annotation_id: str, text: str, start: int, **extra: object
) -> dict[str, object]:
    return {
        "id": annotation_id,
        "text": text,
        "position": {"start": start, "end": start + len(text)},
        **extra,
    }


async def _active_session(
    settings: Settings,
    store: MemoryStore,
    body: str = BODY,
    url: str = PAGE_URL,
) -> tuple[PageSession, PageDocument]:
    page = make_page(body, url)
    session = PageSession(page, store, settings=settings)
    await session.activate()
    return session, page


async def _highlight(
    session: PageSession, page: PageDocument, text: str
) -> Annotation | None:
    if not session.toolbar_visible:
        session.toggle_toolbar()
    selection = select_text(page.content_root, text)
    assert selection is not None
    return await session.highlight_selection(selection)


class TestToolbarState:
    """Toolbar visibility, modes and colours."""

    @pytest.mark.asyncio
    async def test_toggle_message(self, settings: Settings, store: MemoryStore) -> None:
        """WA_TOGGLE_PANEL shows the toolbar in highlight mode, then hides it."""
        session, _ = await _active_session(settings, store)
        session.handle_message({"type": "WA_TOGGLE_PANEL"})
        assert session.toolbar_visible
        assert session.mode == Mode.HIGHLIGHT
        session.handle_message({"type": "WA_TOGGLE_PANEL"})
        assert not session.toolbar_visible
        assert session.mode == Mode.IDLE

    @pytest.mark.asyncio
    async def test_unknown_message(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, _ = await _active_session(settings, store)
        with pytest.raises(UnknownMessageError):
            session.handle_message({"type": "WA_NOPE"})

    @pytest.mark.asyncio
    async def test_toggle_mode_twice_returns_to_idle(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, _ = await _active_session(settings, store)
        session.toggle_mode(Mode.ERASE)
        assert session.mode == Mode.ERASE
        session.toggle_mode("erase")
        assert session.mode == Mode.IDLE

    @pytest.mark.asyncio
    async def test_set_color_arms_highlight(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, _ = await _active_session(settings, store)
        session.set_color("cyan")
        assert session.color == "cyan"
        assert session.mode == Mode.HIGHLIGHT
        with pytest.raises(ValueError, match="unknown highlight colour"):
            session.set_color("plaid")

    @pytest.mark.asyncio
    async def test_escape(self, settings: Settings, store: MemoryStore) -> None:
        session, page = await _active_session(settings, store)
        session.toggle_toolbar()
        session.selection = select_text(page.content_root, "quick")
        session.escape()
        assert session.selection is None
        assert session.mode == Mode.IDLE

    @pytest.mark.asyncio
    async def test_host_requests(self, settings: Settings, store: MemoryStore) -> None:
        sent: list[object] = []
        session = PageSession(
            make_page(BODY), store, settings=settings, emit=sent.append
        )
        session.request_options()
        session.request_repository()
        assert [type(m) for m in sent] == [OpenOptions, OpenRepository]
        assert sent[1] == OpenRepository()

    @pytest.mark.asyncio
    async def test_repository_request_carries_configured_url(
        self, store: MemoryStore
    ) -> None:
        settings = Settings(  # type: ignore[call-arg]
            _env_file=None,
            store={"backend": "memory"},
            app={"repository_url": "https://example.com/webannotations"},
        )
        sent: list[object] = []
        session = PageSession(
            make_page(BODY), store, settings=settings, emit=sent.append
        )
        session.request_repository()
        assert sent == [OpenRepository(url="https://example.com/webannotations")]


class TestHighlight:
    """Creating highlights from selections."""

    @pytest.mark.asyncio
    async def test_creates_paints_and_persists(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, page = await _active_session(settings, store)
        session.set_color("greenyellow")
        annotation = await _highlight(session, page, "quick brown")
        assert annotation is not None
        assert annotation.color == "greenyellow"
        assert [a.id for a in session.annotations] == [annotation.id]
        wrappers = find_wrappers(page.content_root, annotation.id)
        assert [w.text() for w in wrappers] == ["quick brown"]
        stored = await store.get(PAGE_URL)
        assert stored is not None
        assert stored[0]["id"] == annotation.id
        assert stored[0]["position"] == {"start": 4, "end": 15}

    @pytest.mark.asyncio
    async def test_requires_visible_toolbar(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, page = await _active_session(settings, store)
        selection = select_text(page.content_root, "quick")
        assert await session.highlight_selection(selection) is None
        assert await store.get(PAGE_URL) is None

    @pytest.mark.asyncio
    async def test_requires_highlight_mode(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, page = await _active_session(settings, store)
        session.toggle_toolbar()
        session.set_mode(Mode.ERASE)
        assert await _highlight(session, page, "quick") is None

    @pytest.mark.asyncio
    async def test_uses_live_selection_and_clears_it(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, page = await _active_session(settings, store)
        session.toggle_toolbar()
        session.selection = select_text(page.content_root, "lazy")
        annotation = await session.highlight_selection()
        assert annotation is not None
        assert annotation.text == "lazy"
        assert session.selection is None

    @pytest.mark.asyncio
    async def test_selection_in_toolbar_ignored(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        body = '<div id="annotation-toolbar"><button>Erase</button></div>' + BODY
        session, page = await _active_session(settings, store, body)
        session.toggle_toolbar()
        button_text = page.tree.css_first("button").first_child
        selection = SelectionRange(DomPoint(button_text, 0), DomPoint(button_text, 5))
        assert await session.highlight_selection(selection) is None
        assert session.annotations == []


class TestEraseAndComment:
    """Erasing highlights and editing comments."""

    @pytest.mark.asyncio
    async def test_erase_at_clicked_highlight(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, page = await _active_session(settings, store)
        first = await _highlight(session, page, "quick")
        second = await _highlight(session, page, "lazy")
        assert first is not None
        assert second is not None

        session.toggle_mode(Mode.ERASE)
        wrapper = find_wrappers(page.content_root, first.id)[0]
        assert await session.erase_at(wrapper.first_child) == first.id
        assert find_wrappers(page.content_root, first.id) == []
        assert [a.id for a in session.annotations] == [second.id]
        stored = await store.get(PAGE_URL)
        assert [r["id"] for r in stored or []] == [second.id]

    @pytest.mark.asyncio
    async def test_erase_at_outside_highlight(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, page = await _active_session(settings, store)
        await _highlight(session, page, "quick")
        session.toggle_mode(Mode.ERASE)
        plain = page.tree.css_first("p")
        assert await session.erase_at(plain) is None
        assert len(session.annotations) == 1

    @pytest.mark.asyncio
    async def test_erase_at_requires_erase_mode(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, page = await _active_session(settings, store)
        annotation = await _highlight(session, page, "quick")
        assert annotation is not None
        wrapper = find_wrappers(page.content_root, annotation.id)[0]
        assert await session.erase_at(wrapper.first_child) is None

    @pytest.mark.asyncio
    async def test_erase_unknown(self, settings: Settings, store: MemoryStore) -> None:
        session, _ = await _active_session(settings, store)
        assert not await session.erase("missing")

    @pytest.mark.asyncio
    async def test_erase_all_removes_stored_key(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, page = await _active_session(settings, store)
        original = page.serialize()
        await _highlight(session, page, "quick")
        await _highlight(session, page, "lazy")
        assert await session.erase_all() == 2
        assert await store.get(PAGE_URL) is None
        assert page.serialize() == original

    @pytest.mark.asyncio
    async def test_update_comment(self, settings: Settings, store: MemoryStore) -> None:
        session, page = await _active_session(settings, store)
        annotation = await _highlight(session, page, "quick")
        assert annotation is not None
        assert await session.update_comment(annotation.id, "  fast  ")
        assert session.annotations[0].comment == "fast"
        wrapper = find_wrappers(page.content_root, annotation.id)[0]
        assert wrapper.attributes[COMMENT_ATTR] == "fast"
        stored = await store.get(PAGE_URL)
        assert stored is not None
        assert stored[0]["comment"] == "fast"

        assert await session.update_comment(annotation.id, "   ")
        wrapper = find_wrappers(page.content_root, annotation.id)[0]
        assert COMMENT_ATTR not in wrapper.attributes

    @pytest.mark.asyncio
    async def test_update_comment_unknown(
        self, settings: Settings, store: MemoryStore
    ) -> None:
        session, _ = await _active_session(settings, store)
        assert not await session.update_comment("missing", "x")


class TestLoadAndList:
    """Activation, rendering and listing."""

    @pytest.mark.asyncio
    async def test_activate_paints_stored(self, settings: Settings) -> None:
        store = MemoryStore(
            {
                PAGE_URL: [
                    _record("a1", "quick", 4, createdAt="2024-01-01T00:00:00.000Z"),
                    _record("a2", "missing text", 0),
                    _record("a3", "lazy", 35, createdAt="2024-05-01T00:00:00.000Z"),
                ]
            }
        )
        session, page = await _active_session(settings, store)
        report = session.render()
        assert set(report.painted) == {"a1", "a3"}
        assert report.orphaned == ("a2",)
        assert len(find_wrappers(page.content_root)) == 2
        assert [a.id for a in session.listing()] == ["a3", "a1", "a2"]

    @pytest.mark.asyncio
    async def test_fragment_shares_key(self, settings: Settings) -> None:
        store = MemoryStore({PAGE_URL: [_record("a1", "quick", 4)]})
        session, _ = await _active_session(settings, store, url=PAGE_URL + "#part-2")
        assert session.url_key == PAGE_URL
        assert [a.id for a in session.annotations] == ["a1"]


class TestStorageFailures:
    """Storage errors are logged and the page keeps working."""

    @pytest.mark.asyncio
    async def test_persist_failure_logged(
        self, settings: Settings, caplog: pytest.LogCaptureFixture
    ) -> None:
        store = AsyncMock()
        store.get.return_value = None
        store.set.side_effect = RuntimeError("disk full")
        page = make_page(BODY)
        session = PageSession(page, store, settings=settings)
        await session.activate()
        with caplog.at_level(logging.ERROR, logger="webannotations.session"):
            annotation = await _highlight(session, page, "quick")
        assert annotation is not None
        assert [a.id for a in session.annotations] == [annotation.id]
        assert "Failed to persist annotations" in caplog.text

    @pytest.mark.asyncio
    async def test_load_failure_logged(
        self, settings: Settings, caplog: pytest.LogCaptureFixture
    ) -> None:
        store = AsyncMock()
        store.get.side_effect = RuntimeError("locked")
        session = PageSession(make_page(BODY), store, settings=settings)
        with caplog.at_level(logging.ERROR, logger="webannotations.session"):
            report = await session.activate()
        assert report.painted == ()
        assert session.annotations == []
        assert "Failed to read annotations" in caplog.text


class TestNavigation:
    """Debounced URL change detection."""

    @pytest.mark.asyncio
    async def test_navigation_reloads_for_new_key(self, settings: Settings) -> None:
        store = MemoryStore(
            {
                PAGE_URL: [_record("a1", "quick", 4)],
                OTHER_URL: [_record("b1", "lazy", 35)],
            }
        )
        session, page = await _active_session(settings, store)
        session.notify_navigation(OTHER_URL)
        await asyncio.sleep(0.1)
        assert session.url_key == OTHER_URL
        assert [a.id for a in session.annotations] == ["b1"]
        wrappers = find_wrappers(page.content_root)
        assert [w.attributes[ANNOTATION_ID_ATTR] for w in wrappers] == ["b1"]
        await session.teardown()

    @pytest.mark.asyncio
    async def test_signals_are_debounced(self, settings: Settings) -> None:
        store = AsyncMock()
        store.get.return_value = None
        session = PageSession(make_page(BODY), store, settings=settings)
        await session.activate()
        store.get.reset_mock()
        session.notify_navigation(OTHER_URL)
        session.notify_navigation(OTHER_URL + "?page=2")
        session.notify_navigation(OTHER_URL + "?page=3")
        await asyncio.sleep(0.1)
        store.get.assert_awaited_once_with(OTHER_URL + "?page=3")
        await session.teardown()

    @pytest.mark.asyncio
    async def test_signal_during_reload_does_not_abort_it(
        self, settings: Settings
    ) -> None:
        """A hash change while the new page loads leaves its annotations intact."""
        records = {OTHER_URL: [_record("b1", "lazy", 35)]}
        backing = MemoryStore(records)

        async def slow_get(key: str) -> list[dict[str, object]] | None:
            await asyncio.sleep(0.05)
            return await backing.get(key)

        store = AsyncMock(wraps=backing)
        store.get.side_effect = slow_get
        session = PageSession(make_page(BODY), store, settings=settings)
        await session.activate()

        session.notify_navigation(OTHER_URL)
        await asyncio.sleep(0.03)
        session.notify_navigation(OTHER_URL + "#frag")
        await asyncio.sleep(0.2)

        assert session.url_key == OTHER_URL
        assert [a.id for a in session.annotations] == ["b1"]
        wrappers = find_wrappers(session.document.content_root)
        assert [w.attributes[ANNOTATION_ID_ATTR] for w in wrappers] == ["b1"]
        assert await backing.get(OTHER_URL) == records[OTHER_URL]
        await session.teardown()

    @pytest.mark.asyncio
    async def test_hash_change_keeps_annotations(self, settings: Settings) -> None:
        store = MemoryStore({PAGE_URL: [_record("a1", "quick", 4)]})
        session, _ = await _active_session(settings, store)
        assert not await session.check_url()
        session.document.url = PAGE_URL + "#section"
        assert not await session.check_url()
        assert [a.id for a in session.annotations] == ["a1"]

    @pytest.mark.asyncio
    async def test_teardown_cancels_pending_check(self, settings: Settings) -> None:
        store = MemoryStore({OTHER_URL: [_record("b1", "lazy", 35)]})
        session, _ = await _active_session(settings, store)
        session.notify_navigation(OTHER_URL)
        await session.teardown()
        await asyncio.sleep(0.05)
        assert session.url_key == PAGE_URL
