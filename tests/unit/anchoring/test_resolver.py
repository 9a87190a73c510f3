"""Tests for anchor resolution."""

from __future__ import annotations

from tests.helpers.pages import make_page
from webannotations.anchoring.linearizer import linearize
from webannotations.anchoring.resolver import resolve_anchor
from webannotations.models import Annotation


def _annotation(
    text: str,
    position: tuple[int, int] | None,
    prefix: str = "",
    suffix: str = "",
) -> Annotation:
    return Annotation(
        id="a1",
        text=text,
        position={"start": position[0], "end": position[1]} if position else None,
        quote={"prefix": prefix, "suffix": suffix},
    )


class TestPositionStrategy:
    """The stored offsets are checked first."""

    def test_exact_position(self) -> None:
        snapshot = linearize(make_page("<p>The quick brown fox</p>").content_root)
        resolution = resolve_anchor(_annotation("quick", (4, 9)), snapshot)
        assert resolution is not None
        assert (resolution.start, resolution.end, resolution.method) == (
            4,
            9,
            "position",
        )

    def test_whitespace_differences_tolerated(self) -> None:
        """Stored text with a newline still matches the spaced page text."""
        snapshot = linearize(make_page("<p>quick  brown</p>").content_root)
        resolution = resolve_anchor(_annotation("quick\nbrown", (0, 12)), snapshot)
        assert resolution is not None
        assert resolution.method == "position"

    def test_end_past_trailing_whitespace(self) -> None:
        """A stored end beyond the text still verifies and is clamped."""
        snapshot = linearize(make_page("<p>The quick brown fox</p>").content_root)
        resolution = resolve_anchor(_annotation("fox\n", (16, 21)), snapshot)
        assert resolution is not None
        assert (resolution.start, resolution.end, resolution.method) == (
            16,
            19,
            "position",
        )

    def test_position_past_end_falls_through(self) -> None:
        snapshot = linearize(make_page("<p>quick</p>").content_root)
        resolution = resolve_anchor(_annotation("quick", (3, 50)), snapshot)
        assert resolution is not None
        assert (resolution.start, resolution.end, resolution.method) == (
            0,
            5,
            "quote",
        )


class TestQuoteStrategy:
    """Fallback search by text and context."""

    def test_shifted_content(self) -> None:
        """Prepending text moves the match; the quote finds it again."""
        snapshot = linearize(
            make_page("<p>Hello The quick brown fox jumps</p>").content_root
        )
        annotation = _annotation("quick brown", (4, 15), "The ", " fox jumps")
        resolution = resolve_anchor(annotation, snapshot)
        assert resolution is not None
        assert (resolution.start, resolution.end, resolution.method) == (
            10,
            21,
            "quote",
        )

    def test_context_disambiguates(self) -> None:
        page = make_page("<p>red fox, blue fox, green fox</p>")
        snapshot = linearize(page.content_root)
        annotation = _annotation("fox", None, "blue ", ",")
        resolution = resolve_anchor(annotation, snapshot)
        assert resolution is not None
        assert resolution.start == 14

    def test_first_matching_occurrence_wins(self) -> None:
        snapshot = linearize(make_page("<p>fox fox fox</p>").content_root)
        resolution = resolve_anchor(_annotation("fox", None), snapshot)
        assert resolution is not None
        assert resolution.start == 0

    def test_prefix_at_text_start(self) -> None:
        """A prefix longer than the available text cannot match."""
        snapshot = linearize(make_page("<p>fox</p>").content_root)
        assert resolve_anchor(_annotation("fox", None, "the "), snapshot) is None

    def test_orphaned_when_text_missing(self) -> None:
        snapshot = linearize(make_page("<p>nothing here</p>").content_root)
        assert resolve_anchor(_annotation("quick", (0, 5)), snapshot) is None

    def test_orphaned_when_context_changed(self) -> None:
        snapshot = linearize(make_page("<p>a quick b</p>").content_root)
        annotation = _annotation("quick", None, "The ", " brown")
        assert resolve_anchor(annotation, snapshot) is None
