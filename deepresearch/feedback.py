from contextlib import aclosing
from typing import AsyncIterator, Iterable, List, Tuple

from .json_stream import DecodeEvent, parse_streaming_json
from .prompts import feedback_prompt, system_prompt
from .schemas import Feedback, has_questions


async def generate_feedback(
    context,
    query: str,
    language: str,
    num_questions: int = 3,
) -> AsyncIterator[DecodeEvent]:
    """Ask the model for clarifying questions before a research run starts."""
    stream = context.llm.stream_chat(feedback_prompt(query, language, num_questions), system=system_prompt())
    async with aclosing(stream):
        async for event in parse_streaming_json(stream, Feedback, has_questions):
            yield event


def combine_query(query: str, feedback: Iterable[Tuple[str, str]]) -> str:
    lines: List[str] = [f"Q: {question}\nA: {answer}" for question, answer in feedback]
    return f"Initial Query: {query}\nFollow-up Questions and Answers:\n" + "\n".join(lines)
