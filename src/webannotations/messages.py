"""Messages exchanged between the page session and its host.

The host (browser chrome, a test harness, the CLI) sends inbound messages
to a page session; the session emits outbound requests for the host to act
on. Both directions are closed sets keyed on ``type``: anything else is
rejected rather than ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Inbound (host -> session)
# ---------------------------------------------------------------------------


class TogglePanel(_Message):
    """Show or hide the annotation toolbar."""

    type: Literal["WA_TOGGLE_PANEL"] = "WA_TOGGLE_PANEL"


InboundMessage = TogglePanel


# ---------------------------------------------------------------------------
# Outbound (session -> host)
# ---------------------------------------------------------------------------


class OpenOptions(_Message):
    """Ask the host to open the import/export management surface."""

    type: Literal["WA_OPEN_OPTIONS"] = "WA_OPEN_OPTIONS"


class OpenRepository(_Message):
    """Ask the host to open the project repository page."""

    type: Literal["WA_OPEN_REPO"] = "WA_OPEN_REPO"
    url: str | None = None


OutboundMessage = Annotated[OpenOptions | OpenRepository, Field(discriminator="type")]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)
_outbound_adapter: TypeAdapter[OpenOptions | OpenRepository] = TypeAdapter(
    OutboundMessage
)


class UnknownMessageError(ValueError):
    """Raised for a message that is not part of the protocol."""


def parse_inbound(raw: Any) -> InboundMessage:
    """Validate a raw inbound message.

    Raises:
        UnknownMessageError: If ``raw`` is not a known inbound message.
    """
    # The tag must be present on the wire even though models default it
    if not isinstance(raw, Mapping) or "type" not in raw:
        msg = f"Unknown inbound message: {raw!r}"
        raise UnknownMessageError(msg)
    try:
        return _inbound_adapter.validate_python(raw)
    except ValidationError as exc:
        msg = f"Unknown inbound message: {raw!r}"
        raise UnknownMessageError(msg) from exc


def parse_outbound(raw: Any) -> OpenOptions | OpenRepository:
    """Validate a raw outbound message, as a host receiving one would."""
    try:
        return _outbound_adapter.validate_python(raw)
    except ValidationError as exc:
        msg = f"Unknown outbound message: {raw!r}"
        raise UnknownMessageError(msg) from exc


def dump_message(message: _Message) -> dict[str, Any]:
    """Wire form of a message. Unset optional fields are left out."""
    return message.model_dump(exclude_none=True)
