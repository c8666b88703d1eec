from functools import lru_cache
from typing import Callable, Optional

import tiktoken

from .text_splitter import RecursiveCharacterTextSplitter


MIN_CHUNK_SIZE = 140
DEFAULT_CONTEXT_SIZE = 128_000
ENCODING_NAME = "o200k_base"

TokenCounter = Callable[[str], int]


@lru_cache(maxsize=1)
def _encoding() -> "tiktoken.Encoding":
    return tiktoken.get_encoding(ENCODING_NAME)


def count_tokens(text: str) -> int:
    return len(_encoding().encode(text, disallowed_special=()))


def trim_prompt(
    prompt: Optional[str],
    context_size: Optional[int] = None,
    count: Optional[TokenCounter] = None,
) -> str:
    """Shrink ``prompt`` until it fits in ``context_size`` tokens.

    Roughly three characters per token: the overflow is converted to a target
    character length and the text is cut on the coarsest separator that gets it
    below that length. Falls back to a hard cut when the splitter cannot make
    progress, and never returns less than ``MIN_CHUNK_SIZE`` characters of an
    oversized prompt.
    """
    if not prompt:
        return ""
    budget = context_size or DEFAULT_CONTEXT_SIZE
    counter = count or count_tokens
    length = counter(prompt)
    if length <= budget:
        return prompt

    overflow = length - budget
    chunk_size = len(prompt) - overflow * 3
    if chunk_size < MIN_CHUNK_SIZE:
        return prompt[:MIN_CHUNK_SIZE]

    splitter = RecursiveCharacterTextSplitter(chunk_size=chunk_size, chunk_overlap=0)
    chunks = splitter.split_text(prompt)
    trimmed = chunks[0] if chunks else ""

    if len(trimmed) == len(prompt):
        return trim_prompt(prompt[:chunk_size], budget, counter)
    return trim_prompt(trimmed, budget, counter)
