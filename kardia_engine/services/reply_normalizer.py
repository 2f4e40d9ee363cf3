"""
Response Normalization

Turns the raw model text of a successful call into a CanonicalReply:

1. Trim and strip a surrounding code fence
2. Parse strictly as JSON (failure -> MalformedResponse, never retried)
3. Locate ``reply_components`` with an ordered table of extraction rules
   (top level first, then under each known wrapper key); first match wins
4. Validate every component

Performs no I/O. Recoverable contract violations are returned as
``Err`` values rather than raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

from kardia_engine.llm.base import (
    InvalidComponent,
    MalformedResponse,
    UnrecognizedResponseShape,
)
from kardia_engine.models.reply import CanonicalReply, ComponentKind, ReplyComponent
from kardia_engine.services.json_extraction import parse_json_document

logger = logging.getLogger(__name__)

REPLY_KEY = "reply_components"

NormalizationError = Union[MalformedResponse, UnrecognizedResponseShape, InvalidComponent]


@dataclass(frozen=True)
class Ok:
    value: CanonicalReply

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> CanonicalReply:
        return self.value


@dataclass(frozen=True)
class Err:
    error: NormalizationError

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> CanonicalReply:
        raise self.error


ReplyResult = Union[Ok, Err]


@dataclass(frozen=True)
class ExtractionRule:
    """A pure predicate/projector pair locating the component sequence."""
    name: str
    matches: Callable[[Any], bool]
    project: Callable[[Any], Any]


def _has_reply_key(value: Any) -> bool:
    return isinstance(value, Mapping) and REPLY_KEY in value


def _top_level_rule() -> ExtractionRule:
    return ExtractionRule(
        name="top-level",
        matches=_has_reply_key,
        project=lambda doc: doc[REPLY_KEY],
    )


def _wrapped_rule(wrapper: str) -> ExtractionRule:
    return ExtractionRule(
        name=wrapper,
        matches=lambda doc: isinstance(doc, Mapping) and _has_reply_key(doc.get(wrapper)),
        project=lambda doc: doc[wrapper][REPLY_KEY],
    )


WRAPPER_KEYS: Tuple[str, ...] = ("reply", "response", "data")

# Priority order matters: a top-level sequence wins over any wrapped one
EXTRACTION_RULES: Tuple[ExtractionRule, ...] = (_top_level_rule(),) + tuple(
    _wrapped_rule(key) for key in WRAPPER_KEYS
)


def locate_components(document: Any, rules: Tuple[ExtractionRule, ...] = EXTRACTION_RULES) -> Tuple[str, Any]:
    """
    Return ``(rule_name, raw_components)`` for the first matching rule.

    Raises:
        UnrecognizedResponseShape: no rule matched; carries the keys present
    """
    for rule in rules:
        if rule.matches(document):
            return rule.name, rule.project(document)
    keys = list(document.keys()) if isinstance(document, Mapping) else []
    raise UnrecognizedResponseShape([str(k) for k in keys])


def validate_components(raw: Any) -> List[ReplyComponent]:
    """
    Check the located value element by element.

    Raises:
        InvalidComponent: not a list, empty, or an element is unusable
    """
    if not isinstance(raw, list):
        raise InvalidComponent(f"'{REPLY_KEY}' must be a list, got {type(raw).__name__}")
    if not raw:
        raise InvalidComponent(f"'{REPLY_KEY}' is empty")

    components: List[ReplyComponent] = []
    for index, element in enumerate(raw):
        if not isinstance(element, Mapping):
            raise InvalidComponent(f"expected an object, got {type(element).__name__}", index=index)

        kind = element.get("kind")
        if kind is None:
            raise InvalidComponent("missing 'kind'", index=index)
        try:
            kind = ComponentKind(kind)
        except ValueError:
            raise InvalidComponent(f"unknown kind {kind!r}", index=index) from None

        content = element.get("content")
        items = element.get("items")
        if content is not None and not isinstance(content, str):
            raise InvalidComponent("'content' must be a string", index=index)
        if items is not None:
            if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
                raise InvalidComponent("'items' must be a list of strings", index=index)
        if content is None and items is None:
            raise InvalidComponent("component has neither 'content' nor 'items'", index=index)

        components.append(ReplyComponent(kind=kind, content=content, items=items))
    return components


def normalize_reply(raw_text: str) -> ReplyResult:
    """Normalize raw model text into ``Ok(CanonicalReply)`` or ``Err(error)``."""
    try:
        document = parse_json_document(raw_text)
        rule, raw_components = locate_components(document)
        components = validate_components(raw_components)
    except (MalformedResponse, UnrecognizedResponseShape, InvalidComponent) as e:
        logger.warning(f"[NORMALIZE] {type(e).__name__}: {e}")
        return Err(e)

    if rule != "top-level":
        logger.debug(f"[NORMALIZE] reply_components found under '{rule}'")
    return Ok(CanonicalReply(components=components))


def parse_stored_reply(content: str) -> Optional[CanonicalReply]:
    """
    Parse a persisted model turn, or None if it does not normalize.

    Stored turns are always canonical, but rows written by older code
    may be plain text.
    """
    try:
        _, raw_components = locate_components(parse_json_document(content))
        return CanonicalReply(components=validate_components(raw_components))
    except (MalformedResponse, UnrecognizedResponseShape, InvalidComponent):
        return None


__all__ = [
    "Ok",
    "Err",
    "ReplyResult",
    "ExtractionRule",
    "EXTRACTION_RULES",
    "WRAPPER_KEYS",
    "locate_components",
    "validate_components",
    "normalize_reply",
    "parse_stored_reply",
]
