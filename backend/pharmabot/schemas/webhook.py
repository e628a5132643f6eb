"""
Inbound webhook contracts.

The provider posts entry[].changes[].value.messages[]; every level is
optional in practice (status callbacks carry no messages), so parsing is
lenient and unknown fields are ignored.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TextBody(_Lenient):
    body: str = ""


class MediaRef(_Lenient):
    id: str
    mime_type: Optional[str] = None
    caption: Optional[str] = None


class ReplyRef(_Lenient):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None


class Interactive(_Lenient):
    type: Optional[str] = None
    button_reply: Optional[ReplyRef] = None
    list_reply: Optional[ReplyRef] = None


class Location(_Lenient):
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


class InboundMessage(_Lenient):
    from_: str = Field(alias="from")
    id: Optional[str] = None
    timestamp: Optional[str] = None
    type: str = "unknown"
    text: Optional[TextBody] = None
    image: Optional[MediaRef] = None
    interactive: Optional[Interactive] = None
    location: Optional[Location] = None


class ChangeValue(_Lenient):
    # Raw dicts: MessageHandler validates each message on its own
    messages: List[Dict[str, Any]] = Field(default_factory=list)


class Change(_Lenient):
    field: Optional[str] = None
    value: ChangeValue = Field(default_factory=ChangeValue)


class Entry(_Lenient):
    id: Optional[str] = None
    changes: List[Change] = Field(default_factory=list)


class WebhookPayload(_Lenient):
    object: Optional[str] = None
    entry: List[Entry] = Field(default_factory=list)

    def iter_messages(self) -> List[Dict[str, Any]]:
        """All raw messages of all `messages` changes, in delivery order."""
        return [
            message
            for entry in self.entry
            for change in entry.changes
            if change.field in (None, "messages")
            for message in change.value.messages
        ]


class EventKind(str, Enum):
    TEXT = "text"
    BUTTON = "button"
    LIST = "list"
    IMAGE = "image"
    LOCATION = "location"
    UNSUPPORTED = "unsupported"


class InboundEvent(BaseModel):
    """One user action, normalized from whatever message type carried it."""
    kind: EventKind
    text: str = ""
    reply_id: Optional[str] = None
    reply_title: Optional[str] = None
    media_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_message(cls, message: InboundMessage) -> "InboundEvent":
        if message.type == "text" and message.text is not None:
            return cls(kind=EventKind.TEXT, text=message.text.body)

        if message.type == "interactive" and message.interactive is not None:
            interactive = message.interactive
            if interactive.button_reply is not None:
                reply, kind = interactive.button_reply, EventKind.BUTTON
            elif interactive.list_reply is not None:
                reply, kind = interactive.list_reply, EventKind.LIST
            else:
                return cls(kind=EventKind.UNSUPPORTED)
            return cls(kind=kind, reply_id=reply.id, reply_title=reply.title, text=reply.title or "")

        if message.type == "image" and message.image is not None:
            return cls(kind=EventKind.IMAGE, media_id=message.image.id, text=message.image.caption or "")

        if message.type == "location" and message.location is not None:
            return cls(
                kind=EventKind.LOCATION,
                latitude=message.location.latitude,
                longitude=message.location.longitude,
                text=message.location.address or message.location.name or "",
            )

        return cls(kind=EventKind.UNSUPPORTED)

    @classmethod
    def synthetic_greeting(cls) -> "InboundEvent":
        return cls(kind=EventKind.TEXT, text="hi")

    @property
    def is_reply(self) -> bool:
        return self.kind in (EventKind.BUTTON, EventKind.LIST)
