"""Canonical reply shape returned to callers and persisted as the model's turn."""

import enum
import json
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ComponentKind(str, enum.Enum):
    """Reply component kinds the UI knows how to render."""
    PARAGRAPH = "paragraph"
    HEADER = "header"
    LIST = "list"
    QUOTE = "quote"


class ReplyComponent(BaseModel):
    """One unit of a reply: textual ``content`` or an ordered list of ``items``."""

    model_config = ConfigDict(frozen=True)

    kind: ComponentKind
    content: Optional[str] = None
    items: Optional[List[str]] = None

    @property
    def text(self) -> Optional[str]:
        """Textual content, if this component carries any."""
        if self.content and self.content.strip():
            return self.content
        return None


class CanonicalReply(BaseModel):
    """
    Ordered reply components.

    Serialized under the ``reply_components`` key, the same envelope the
    model is instructed to produce, so stored model turns parse back the
    same way fresh responses do.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    components: List[ReplyComponent] = Field(alias="reply_components", min_length=1)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw: str) -> "CanonicalReply":
        return cls.model_validate_json(raw)

    def first_text(self) -> Optional[str]:
        """
        Content of the leading component, or None.

        Only the first component is considered: a reply that opens with a
        list has no first text even if later components do.
        """
        return self.components[0].text

    @classmethod
    def of_paragraphs(cls, *paragraphs: str) -> "CanonicalReply":
        return cls(components=[ReplyComponent(kind=ComponentKind.PARAGRAPH, content=p) for p in paragraphs])
