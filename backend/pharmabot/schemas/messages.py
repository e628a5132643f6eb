"""
Outbound message shapes (text, reply buttons, list).

Provider limits are applied here so that no caller can build a payload the
provider would reject: titles and descriptions are truncated, counts are
validated.
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_BUTTONS = 3
MAX_LIST_ROWS = 10
BUTTON_TITLE_LIMIT = 20
ROW_TITLE_LIMIT = 24
ROW_DESCRIPTION_LIMIT = 72
HEADER_LIMIT = 60
BODY_LIMIT = 1024
TEXT_LIMIT = 4096
LIST_BUTTON_LABEL = "Select Option"


def truncate(value: Optional[str], limit: int) -> str:
    """Cut to `limit` characters, marking the cut with an ellipsis."""
    value = (value or "").strip()
    if len(value) <= limit:
        return value
    return value[: limit - 3].rstrip() + "..."


def _envelope(to: str, body: Dict[str, Any]) -> Dict[str, Any]:
    return {"messaging_product": "whatsapp", "recipient_type": "individual", "to": to, **body}


class TextMessage(BaseModel):
    body: str

    @field_validator("body")
    @classmethod
    def limit_body(cls, v: str) -> str:
        return truncate(v, TEXT_LIMIT)

    def to_payload(self, to: str) -> Dict[str, Any]:
        return _envelope(to, {"type": "text", "text": {"body": self.body}})


class Button(BaseModel):
    id: str
    title: str

    @field_validator("title")
    @classmethod
    def limit_title(cls, v: str) -> str:
        return truncate(v, BUTTON_TITLE_LIMIT)


class ButtonMessage(BaseModel):
    header: str
    body: str
    buttons: List[Button] = Field(min_length=1, max_length=MAX_BUTTONS)

    @field_validator("header")
    @classmethod
    def limit_header(cls, v: str) -> str:
        return truncate(v, HEADER_LIMIT)

    @field_validator("body")
    @classmethod
    def limit_body(cls, v: str) -> str:
        return truncate(v, BODY_LIMIT)

    def to_payload(self, to: str) -> Dict[str, Any]:
        return _envelope(to, {
            "type": "interactive",
            "interactive": {
                "type": "button",
                "header": {"type": "text", "text": self.header},
                "body": {"text": self.body},
                "action": {
                    "buttons": [
                        {"type": "reply", "reply": {"id": b.id, "title": b.title}}
                        for b in self.buttons
                    ]
                },
            },
        })


class ListRow(BaseModel):
    id: str
    title: str
    description: Optional[str] = None

    @field_validator("title")
    @classmethod
    def limit_title(cls, v: str) -> str:
        return truncate(v, ROW_TITLE_LIMIT)

    @field_validator("description")
    @classmethod
    def limit_description(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        return truncate(v, ROW_DESCRIPTION_LIMIT)

    def to_payload(self) -> Dict[str, Any]:
        row = {"id": self.id, "title": self.title}
        if self.description:
            row["description"] = self.description
        return row


class ListSection(BaseModel):
    title: str
    rows: List[ListRow] = Field(min_length=1)

    @field_validator("title")
    @classmethod
    def limit_title(cls, v: str) -> str:
        return truncate(v, ROW_TITLE_LIMIT)


class ListMessage(BaseModel):
    header: str
    body: str
    sections: List[ListSection] = Field(min_length=1)
    button: str = LIST_BUTTON_LABEL

    @field_validator("header")
    @classmethod
    def limit_header(cls, v: str) -> str:
        return truncate(v, HEADER_LIMIT)

    @field_validator("body")
    @classmethod
    def limit_body(cls, v: str) -> str:
        return truncate(v, BODY_LIMIT)

    @field_validator("button")
    @classmethod
    def limit_button(cls, v: str) -> str:
        return truncate(v, BUTTON_TITLE_LIMIT)

    @model_validator(mode="after")
    def check_row_count(self) -> "ListMessage":
        total = sum(len(section.rows) for section in self.sections)
        if total > MAX_LIST_ROWS:
            raise ValueError(f"list has {total} rows, at most {MAX_LIST_ROWS} allowed")
        return self

    @property
    def row_ids(self) -> List[str]:
        return [row.id for section in self.sections for row in section.rows]

    def to_payload(self, to: str) -> Dict[str, Any]:
        return _envelope(to, {
            "type": "interactive",
            "interactive": {
                "type": "list",
                "header": {"type": "text", "text": self.header},
                "body": {"text": self.body},
                "action": {
                    "button": self.button,
                    "sections": [
                        {"title": s.title, "rows": [r.to_payload() for r in s.rows]}
                        for s in self.sections
                    ],
                },
            },
        })


OutboundMessage = Union[TextMessage, ButtonMessage, ListMessage]
