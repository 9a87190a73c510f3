"""Per-page annotation session.

A ``PageSession`` owns everything that used to be page-global state: the
current URL key, the loaded annotations, toolbar visibility, the active
mode and colour. Its lifecycle is explicit::

    session = PageSession(document, store)
    await session.activate()
    ...                       # highlight, erase, comment, navigate
    await session.teardown()

Every mutation follows the same order: update the in-memory list, persist
it, then bring the tree in line. Storage failures are logged and
otherwise ignored so that the page keeps working with in-memory state.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from webannotations.anchoring.codec import build_annotation
from webannotations.anchoring.linearizer import linearize
from webannotations.anchoring.painter import (
    RepaintReport,
    owning_annotation_id,
    paint_segments,
    repaint_all,
    set_comment,
    unpaint,
    unpaint_all,
)
from webannotations.anchoring.segments import segments_for_range
from webannotations.anchoring.selection import is_range_highlightable
from webannotations.config import get_settings
from webannotations.messages import (
    OpenOptions,
    OpenRepository,
    TogglePanel,
    parse_inbound,
)
from webannotations.models import (
    COLORS,
    DEFAULT_COLOR,
    Annotation,
    load_annotations,
    sort_for_listing,
)
from webannotations.store import url_key

if TYPE_CHECKING:
    from collections.abc import Callable

    from selectolax.lexbor import LexborNode

    from webannotations.anchoring.selection import SelectionRange
    from webannotations.config import Settings
    from webannotations.page import PageDocument
    from webannotations.store import AnnotationStore

logger = logging.getLogger(__name__)


class Mode(StrEnum):
    """What a pointer gesture on the page does."""

    IDLE = "idle"
    HIGHLIGHT = "highlight"
    ERASE = "erase"


class PageSession:
    """Controller for one page's annotations.

    Attributes:
        document: The live page.
        store: Persistence backend.
        url_key: Storage key of the page currently loaded.
        annotations: Annotations for ``url_key``, in creation order.
        toolbar_visible: Whether the annotation toolbar is shown.
        mode: Active pointer mode.
        color: Colour for new highlights.
        selection: The live selection, if any.
    """

    def __init__(
        self,
        document: PageDocument,
        store: AnnotationStore,
        *,
        settings: Settings | None = None,
        emit: Callable[[OpenOptions | OpenRepository], None] | None = None,
    ) -> None:
        self.document = document
        self.store = store
        self.settings = settings or get_settings()
        self._emit = emit
        self.url_key: str | None = None
        self.annotations: list[Annotation] = []
        self.toolbar_visible = False
        self.mode = Mode.IDLE
        self.color = DEFAULT_COLOR
        self.selection: SelectionRange | None = None
        self._url_timer: asyncio.TimerHandle | None = None
        self._url_checks: set[asyncio.Task[bool]] = set()
        self._check_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def activate(self) -> RepaintReport:
        """Load this page's annotations and paint them."""
        self.url_key = url_key(self.document.url)
        self.annotations = await self._load()
        return self.render()

    async def teardown(self) -> None:
        """Cancel pending work. The session must not be used afterwards."""
        if self._url_timer is not None:
            self._url_timer.cancel()
            self._url_timer = None
        for task in list(self._url_checks):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def render(self) -> RepaintReport:
        """Strip and repaint every loaded annotation."""
        return repaint_all(
            self.document.tree,
            self.annotations,
            root=self.document.content_root,
            alpha=self.settings.anchoring.highlight_alpha,
        )

    # ------------------------------------------------------------------
    # Messages and toolbar state
    # ------------------------------------------------------------------

    def handle_message(self, raw: Any) -> None:
        """Dispatch an inbound message.

        Raises:
            UnknownMessageError: If the message is not part of the protocol.
        """
        message = parse_inbound(raw)
        match message:
            case TogglePanel():
                self.toggle_toolbar()

    def toggle_toolbar(self) -> None:
        """Show the toolbar in highlight mode, or hide it and reset."""
        self.toolbar_visible = not self.toolbar_visible
        if self.toolbar_visible:
            self.mode = Mode.HIGHLIGHT
        else:
            self.mode = Mode.IDLE
            self.selection = None

    def set_mode(self, mode: Mode | str) -> None:
        """Switch to ``mode`` unconditionally."""
        self.mode = Mode(mode)

    def toggle_mode(self, mode: Mode | str) -> None:
        """Toolbar button behaviour: pressing the active mode returns to idle."""
        mode = Mode(mode)
        self.mode = Mode.IDLE if self.mode == mode else mode

    def set_color(self, color: str) -> None:
        """Pick a palette colour, which also arms highlight mode.

        Raises:
            ValueError: If ``color`` is not in the palette.
        """
        if color not in COLORS:
            msg = f"unknown highlight colour {color!r}; expected one of {COLORS}"
            raise ValueError(msg)
        self.color = color
        self.mode = Mode.HIGHLIGHT

    def escape(self) -> None:
        """Drop the selection and, with the toolbar shown, return to idle."""
        self.selection = None
        if self.toolbar_visible:
            self.mode = Mode.IDLE

    def request_options(self) -> None:
        """Ask the host to open the import/export surface."""
        self._send(OpenOptions())

    def request_repository(self) -> None:
        """Ask the host to open the repository page, when one is configured."""
        self._send(OpenRepository(url=self.settings.app.repository_url or None))

    def _send(self, message: OpenOptions | OpenRepository) -> None:
        if self._emit is None:
            logger.debug("No host attached; dropping %s", message.type)
            return
        self._emit(message)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def highlight_selection(
        self, selection: SelectionRange | None = None
    ) -> Annotation | None:
        """Turn the selection into a persisted highlight.

        Only acts with the toolbar visible and highlight mode active. The
        selection is cleared whatever the outcome.

        Returns:
            The new annotation, or None when nothing was highlighted.
        """
        selection = selection if selection is not None else self.selection
        self.selection = None
        if selection is None or not self.toolbar_visible:
            return None
        if self.mode != Mode.HIGHLIGHT:
            return None

        root = self.document.content_root
        if not is_range_highlightable(selection, root):
            return None
        segments = segments_for_range(selection, linearize(root).runs)
        if not segments:
            return None
        annotation = build_annotation(
            selection,
            root,
            color=self.color,
            context_chars=self.settings.anchoring.context_chars,
        )
        if annotation is None:
            return None

        result = paint_segments(
            annotation,
            segments,
            self.document.tree,
            alpha=self.settings.anchoring.highlight_alpha,
        )
        if not result.applied:
            return None

        self.annotations.append(annotation)
        await self._persist()
        logger.debug("Created annotation %s", annotation.id)
        return annotation

    async def erase_at(self, node: LexborNode) -> str | None:
        """Erase the highlight under ``node`` (a click in erase mode).

        Returns:
            The erased annotation id, or None when nothing was erased.
        """
        if not self.toolbar_visible or self.mode != Mode.ERASE:
            return None
        annotation_id = owning_annotation_id(node, self.document.content_root)
        if not annotation_id:
            return None
        await self.erase(annotation_id)
        return annotation_id

    async def erase(self, annotation_id: str) -> bool:
        """Remove one annotation and its highlight."""
        unpaint(self.document.content_root, annotation_id)
        remaining = [a for a in self.annotations if a.id != annotation_id]
        if len(remaining) == len(self.annotations):
            return False
        self.annotations = remaining
        await self._persist()
        return True

    async def erase_all(self) -> int:
        """Remove every annotation on the page. Returns how many there were."""
        count = len(self.annotations)
        unpaint_all(self.document.content_root)
        self.annotations = []
        await self._persist()
        return count

    async def update_comment(self, annotation_id: str, comment: str) -> bool:
        """Set an annotation's comment (trimmed); empty clears it."""
        for index, annotation in enumerate(self.annotations):
            if annotation.id == annotation_id:
                break
        else:
            return False

        updated_comment = comment.strip()
        self.annotations[index] = annotation.model_copy(
            update={"comment": updated_comment}
        )
        await self._persist()
        set_comment(self.document.content_root, annotation_id, updated_comment)
        return True

    def listing(self) -> list[Annotation]:
        """Annotations newest first; ones without a timestamp go last."""
        return sort_for_listing(self.annotations)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def notify_navigation(self, url: str | None = None) -> None:
        """Signal a history or hash change.

        The URL check runs after ``navigation.url_check_delay_ms``; a new
        signal before then restarts the delay. A check that has already
        started is never cancelled by a later signal.
        """
        if url is not None:
            self.document.url = url
        if self._url_timer is not None:
            self._url_timer.cancel()
        loop = asyncio.get_running_loop()
        self._url_timer = loop.call_later(
            self.settings.navigation.url_check_delay_ms / 1000, self._start_url_check
        )

    def _start_url_check(self) -> None:
        self._url_timer = None
        task = asyncio.create_task(self.check_url())
        self._url_checks.add(task)
        task.add_done_callback(self._url_checks.discard)

    async def check_url(self) -> bool:
        """Reload and repaint if the page's URL key has changed.

        Checks run one at a time, so a later check sees the key the
        previous one loaded.
        """
        async with self._check_lock:
            next_key = url_key(self.document.url)
            if next_key == self.url_key:
                return False
            logger.info("URL changed to %s; reloading annotations", next_key)
            self.url_key = next_key
            self.annotations = []
            self.annotations = await self._load()
            self.render()
            return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _load(self) -> list[Annotation]:
        if self.url_key is None:
            return []
        try:
            stored = await self.store.get(self.url_key)
        except Exception:
            logger.exception("Failed to read annotations for %s", self.url_key)
            return []
        if not isinstance(stored, list):
            return []
        return load_annotations(stored)

    async def _persist(self) -> None:
        if self.url_key is None:
            return
        try:
            if not self.annotations:
                await self.store.remove(self.url_key)
                return
            records = [annotation.to_record() for annotation in self.annotations]
            await self.store.set(self.url_key, records)
        except Exception:
            logger.exception("Failed to persist annotations for %s", self.url_key)
