"""Incremental decoding of structured (JSON) model output.

The LLM client yields a flat sequence of :class:`StreamChunk` values.
:func:`parse_streaming_json` folds the content deltas into a growing buffer and
re-parses it on every delta with pydantic-core's partial JSON mode, so callers
see usable partial values long before the stream finishes.
"""
import logging
import typing
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel
from pydantic_core import from_json


logger = logging.getLogger(__name__)

ParseState = Literal["undefined-input", "successful-parse", "repaired-parse", "failed-parse"]


@dataclass(frozen=True)
class StreamChunk:
    """One piece of a model stream: ``reasoning``, ``text``, ``error`` or ``end``."""

    type: Literal["reasoning", "text", "error", "end"]
    text: str = ""

    @classmethod
    def reasoning(cls, text: str) -> "StreamChunk":
        return cls("reasoning", text)

    @classmethod
    def content(cls, text: str) -> "StreamChunk":
        return cls("text", text)

    @classmethod
    def error(cls, message: str) -> "StreamChunk":
        return cls("error", message)

    @classmethod
    def end(cls) -> "StreamChunk":
        return cls("end")


@dataclass(frozen=True)
class ObjectEvent:
    value: Dict[str, Any]
    type: Literal["object"] = "object"


@dataclass(frozen=True)
class ReasoningEvent:
    delta: str
    type: Literal["reasoning"] = "reasoning"


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    type: Literal["error"] = "error"


@dataclass(frozen=True)
class BadEndEvent:
    """The stream finished without ever producing a usable value."""

    raw_text: str
    type: Literal["bad-end"] = "bad-end"


DecodeEvent = Union[ObjectEvent, ReasoningEvent, ErrorEvent, BadEndEvent]


def remove_json_markdown(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("json"):
        text = text[4:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_partial_json(text: Optional[str]) -> Tuple[Any, ParseState]:
    """Parse possibly-truncated JSON text. Pure function of ``text``.

    Unterminated strings are kept as they are; incomplete keys, numbers and
    literals at the end of the input are dropped.
    """
    if text is None or not text.strip():
        return None, "undefined-input"
    try:
        return from_json(text), "successful-parse"
    except ValueError:
        pass
    try:
        return from_json(text, allow_partial="trailing-strings"), "repaired-parse"
    except ValueError:
        return None, "failed-parse"


def _conforms(value: Any, annotation: Any) -> bool:
    if annotation is Any:
        return True
    origin = typing.get_origin(annotation)
    if origin is Union:
        return any(_conforms(value, arg) for arg in typing.get_args(annotation))
    if origin in (list, typing.List):
        if not isinstance(value, list):
            return False
        args = typing.get_args(annotation)
        item_type = args[0] if args else Any
        return all(_conforms(item, item_type) for item in value)
    if origin in (dict, typing.Dict):
        return isinstance(value, dict)
    if annotation is type(None):
        return value is None
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return conforms_to_schema(value, annotation)
    if annotation is str:
        return isinstance(value, str)
    if annotation is bool:
        return isinstance(value, bool)
    if annotation in (int, float):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return True


def conforms_to_schema(value: Any, schema: Type[BaseModel]) -> bool:
    """Check a partial value against ``schema`` treating every field as optional."""
    if not isinstance(value, dict):
        return False
    for name, field in schema.model_fields.items():
        key = field.alias or name
        if key in value:
            present = value[key]
        elif name in value:
            present = value[name]
        else:
            continue
        if not _conforms(present, field.annotation):
            return False
    return True


async def parse_streaming_json(
    stream: AsyncIterable[StreamChunk],
    schema: Type[BaseModel],
    is_valid: Callable[[Dict[str, Any]], bool],
) -> AsyncIterator[DecodeEvent]:
    """Decode a chunk stream into partial values of ``schema``.

    Reasoning and error chunks are forwarded as they arrive. Content is
    re-parsed after every delta and each parse that conforms to ``schema`` and
    passes ``is_valid`` is emitted as an :class:`ObjectEvent`. When the stream
    ends without any emitted object a single :class:`BadEndEvent` closes the
    sequence.
    """
    raw_text = ""
    parsed_once = False
    async for chunk in stream:
        if chunk.type == "reasoning":
            yield ReasoningEvent(chunk.text)
            continue
        if chunk.type == "error":
            yield ErrorEvent(chunk.text)
            continue
        if chunk.type == "end":
            break
        raw_text += chunk.text
        cleaned = remove_json_markdown(raw_text)
        value, state = parse_partial_json(cleaned)
        if (
            state in ("successful-parse", "repaired-parse")
            and conforms_to_schema(value, schema)
            and is_valid(value)
        ):
            parsed_once = True
            yield ObjectEvent(value)
        else:
            logger.debug("Failed to parse JSON: %s", cleaned)
    if not parsed_once:
        yield BadEndEvent(raw_text)
