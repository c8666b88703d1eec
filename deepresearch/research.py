"""Recursive research tree: plan queries, search, synthesize learnings, descend.

Every node reports its progress through a synchronous ``on_progress`` callback
and always resolves to a :class:`ResearchResult`, so a failing branch never
takes its siblings or its parent down with it.
"""
import asyncio
import logging
import math
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence

from .config import AppSettings, language_name
from .json_stream import StreamChunk, parse_streaming_json
from .limiter import ConcurrencyBudget
from .llm import LLMClient
from .prompts import final_report_prompt, search_queries_prompt, search_result_prompt, system_prompt
from .schemas import (
    UNDEFINED_QUERY,
    CompleteEvent,
    GeneratedQueryEvent,
    GeneratingQueryEvent,
    GeneratingQueryReasoningEvent,
    NodeCompleteEvent,
    NodeErrorEvent,
    ProcessedSearchResult,
    ProcessingSearchResultEvent,
    ProcessingSearchResultReasoningEvent,
    ProgressEvent,
    ResearchResult,
    SearchCompleteEvent,
    SearchingEvent,
    SearchQueries,
    WebSearchResult,
    has_first_query,
    has_learnings,
)
from .tokens import TokenCounter, trim_prompt
from .web_search import WebSearch


logger = logging.getLogger(__name__)

ROOT_NODE_ID = "0"
SEARCH_MAX_RESULTS = 5
CONTENT_TOKEN_LIMIT = 25_000
REPORT_LEARNINGS_TOKEN_LIMIT = 150_000
INVALID_STRUCTURED_OUTPUT = "The model did not return valid structured output."

ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class ResearchContext:
    """Collaborators shared by every node of one research run."""

    llm: Any
    web_search: Any
    settings: AppSettings = field(default_factory=AppSettings)
    budget: Optional[ConcurrencyBudget] = None
    # Token counter used when truncating contents; tiktoken when unset.
    count_tokens: Optional[TokenCounter] = None

    def __post_init__(self) -> None:
        if self.budget is None:
            self.budget = ConcurrencyBudget(max(1, self.settings.web_search.concurrency_limit))

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "ResearchContext":
        return cls(
            llm=LLMClient.from_settings(settings.ai),
            web_search=WebSearch(settings.web_search),
            settings=settings,
        )

    def limiter(self) -> ConcurrencyBudget:
        # Settings may change mid-run; nominal capacity follows them.
        self.budget.set_nominal_capacity(max(1, self.settings.web_search.concurrency_limit))
        return self.budget

    def token_budget(self, limit: int) -> int:
        """Cap ``limit`` at the model's context size; 0 means no configured size."""
        context_size = self.settings.ai.context_size
        return min(limit, context_size) if context_size > 0 else limit

    async def close(self) -> None:
        for client in (self.llm, self.web_search):
            closer = getattr(client, "close", None)
            if closer is not None:
                await closer()


def child_node_id(parent_node_id: str, index: int) -> str:
    return f"{parent_node_id}-{index}"


def next_breadth(breadth: int) -> int:
    return math.ceil(breadth / 2)


def dedupe(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


def follow_up_query(research_goal: str, questions: Sequence[str]) -> str:
    directions = "".join(f"\n{q}" for q in questions)
    return f"Previous research goal: {research_goal}\nFollow-up research directions: {directions}".strip()


def _emit(on_progress: ProgressCallback, event: ProgressEvent) -> None:
    try:
        on_progress(event)
    except Exception:
        logger.exception("Progress callback failed for %s event", event.type)


def generate_search_queries(
    context: ResearchContext,
    query: str,
    language: str,
    num_queries: int = 3,
    learnings: Optional[Sequence[str]] = None,
    search_language: Optional[str] = None,
) -> AsyncIterator[StreamChunk]:
    prompt = search_queries_prompt(
        query,
        language,
        num_queries=num_queries,
        learnings=learnings,
        search_language=search_language,
    )
    return context.llm.stream_chat(prompt, system=system_prompt())


def process_search_result(
    context: ResearchContext,
    query: str,
    results: Sequence[WebSearchResult],
    language: str,
    num_learnings: int = 3,
    num_follow_up_questions: int = 3,
) -> AsyncIterator[StreamChunk]:
    contents = [
        trim_prompt(item.content, context.token_budget(CONTENT_TOKEN_LIMIT), context.count_tokens)
        for item in results
        if item.content
    ]
    prompt = search_result_prompt(
        query,
        contents,
        language,
        num_learnings=num_learnings,
        num_follow_up_questions=num_follow_up_questions,
    )
    return context.llm.stream_chat(prompt, system=system_prompt())


def write_final_report(
    context: ResearchContext,
    prompt: str,
    learnings: Sequence[str],
    language: str,
) -> AsyncIterator[StreamChunk]:
    """Stream a Markdown report built from every learning of a run."""
    block = "\n".join(f"<learning>\n{learning}\n</learning>" for learning in learnings)
    block = trim_prompt(block, context.token_budget(REPORT_LEARNINGS_TOKEN_LIMIT), context.count_tokens)
    return context.llm.stream_chat(final_report_prompt(prompt, block, language), system=system_prompt())


async def deep_research(
    context: ResearchContext,
    *,
    query: str,
    breadth: int,
    max_depth: int,
    language_code: str,
    on_progress: ProgressCallback,
    learnings: Optional[List[str]] = None,
    visited_urls: Optional[List[str]] = None,
    current_depth: int = 1,
    node_id: str = ROOT_NODE_ID,
    search_language: Optional[str] = None,
) -> ResearchResult:
    """Research ``query`` as node ``node_id`` and return the learnings of its subtree.

    Never raises: failures are reported as ``error`` progress events and the
    failing node contributes empty results. The root node (``"0"``) finishes
    with exactly one ``complete`` event.
    """
    try:
        result = await _run_node(
            context,
            query=query,
            breadth=breadth,
            max_depth=max_depth,
            language_code=language_code,
            on_progress=on_progress,
            learnings=list(learnings or []),
            visited_urls=list(visited_urls or []),
            current_depth=current_depth,
            node_id=node_id,
            search_language=search_language,
        )
    except Exception as exc:
        logger.exception("Research node %s failed", node_id)
        _emit(on_progress, NodeErrorEvent(node_id=node_id, message=str(exc) or "Something went wrong"))
        result = ResearchResult()
    if node_id == ROOT_NODE_ID:
        _emit(on_progress, CompleteEvent(learnings=result.learnings, visited_urls=result.visited_urls))
    return result


async def _plan_queries(
    context: ResearchContext,
    *,
    query: str,
    breadth: int,
    language: str,
    learnings: List[str],
    search_language: Optional[str],
    node_id: str,
    on_progress: ProgressCallback,
) -> Optional[List[Dict[str, Any]]]:
    """Decode the planned queries for a node. ``None`` means planning failed."""
    queries: List[Dict[str, Any]] = []
    stream = generate_search_queries(
        context,
        query,
        language,
        num_queries=breadth,
        learnings=learnings,
        search_language=search_language,
    )
    async with aclosing(stream), aclosing(parse_streaming_json(stream, SearchQueries, has_first_query)) as events:
        async for event in events:
            if event.type == "object":
                queries = [q for q in event.value.get("queries") or [] if q.get("query") != UNDEFINED_QUERY]
                for i, item in enumerate(queries):
                    _emit(
                        on_progress,
                        GeneratingQueryEvent(
                            node_id=child_node_id(node_id, i),
                            result=item,
                            parent_node_id=node_id,
                        ),
                    )
            elif event.type == "reasoning":
                _emit(on_progress, GeneratingQueryReasoningEvent(node_id=node_id, delta=event.delta))
            elif event.type == "error":
                _emit(on_progress, NodeErrorEvent(node_id=node_id, message=event.message))
                return None
            elif event.type == "bad-end":
                logger.debug("Query planning for node %s ended without output: %r", node_id, event.raw_text)
                _emit(on_progress, NodeErrorEvent(node_id=node_id, message=INVALID_STRUCTURED_OUTPUT))
                return None
    return queries


async def _run_node(
    context: ResearchContext,
    *,
    query: str,
    breadth: int,
    max_depth: int,
    language_code: str,
    on_progress: ProgressCallback,
    learnings: List[str],
    visited_urls: List[str],
    current_depth: int,
    node_id: str,
    search_language: Optional[str],
) -> ResearchResult:
    language = language_name(language_code)
    budget = context.limiter()

    _emit(on_progress, GeneratingQueryEvent(node_id=node_id, result={}))
    queries = await _plan_queries(
        context,
        query=query,
        breadth=breadth,
        language=language,
        learnings=learnings,
        search_language=language_name(search_language) if search_language else None,
        node_id=node_id,
        on_progress=on_progress,
    )
    if queries is None:
        return ResearchResult()

    _emit(on_progress, NodeCompleteEvent(node_id=node_id))
    for i, item in enumerate(queries):
        _emit(on_progress, GeneratedQueryEvent(node_id=child_node_id(node_id, i), query=query, result=item))

    results = await asyncio.gather(
        *(
            budget.run(
                _research_child,
                context,
                item=item,
                child_id=child_node_id(node_id, i),
                breadth=breadth,
                max_depth=max_depth,
                language=language,
                language_code=language_code,
                on_progress=on_progress,
                learnings=learnings,
                visited_urls=visited_urls,
                current_depth=current_depth,
                search_language=search_language,
            )
            for i, item in enumerate(queries)
        )
    )
    return ResearchResult(
        learnings=dedupe(learning for r in results for learning in r.learnings),
        visited_urls=dedupe(url for r in results for url in r.visited_urls),
    )


async def _synthesize(
    context: ResearchContext,
    *,
    search_query: str,
    results: List[WebSearchResult],
    language: str,
    num_follow_up_questions: int,
    child_id: str,
    on_progress: ProgressCallback,
) -> Optional[Dict[str, Any]]:
    synthesis: Dict[str, Any] = {}
    stream = process_search_result(
        context,
        search_query,
        results,
        language,
        num_follow_up_questions=num_follow_up_questions,
    )
    async with aclosing(stream), aclosing(parse_streaming_json(stream, ProcessedSearchResult, has_learnings)) as events:
        async for event in events:
            if event.type == "object":
                synthesis = event.value
                _emit(
                    on_progress,
                    ProcessingSearchResultEvent(node_id=child_id, query=search_query, result=event.value),
                )
            elif event.type == "reasoning":
                _emit(on_progress, ProcessingSearchResultReasoningEvent(node_id=child_id, delta=event.delta))
            elif event.type == "error":
                _emit(on_progress, NodeErrorEvent(node_id=child_id, message=event.message))
                return None
            elif event.type == "bad-end":
                _emit(on_progress, NodeErrorEvent(node_id=child_id, message=INVALID_STRUCTURED_OUTPUT))
                return None
    logger.debug("Processed search result for %s: %s", search_query, synthesis)
    return synthesis


async def _research_child(
    context: ResearchContext,
    *,
    item: Dict[str, Any],
    child_id: str,
    breadth: int,
    max_depth: int,
    language: str,
    language_code: str,
    on_progress: ProgressCallback,
    learnings: List[str],
    visited_urls: List[str],
    current_depth: int,
    search_language: Optional[str],
) -> ResearchResult:
    search_query = item.get("query")
    if not search_query:
        return ResearchResult()
    _emit(on_progress, SearchingEvent(node_id=child_id, query=search_query))
    try:
        results = await context.web_search.search(search_query, max_results=SEARCH_MAX_RESULTS, lang=language_code)
        logger.info('Searched "%s", found %d contents', search_query, len(results))
        new_urls = [r.url for r in results if r.url]
        _emit(on_progress, SearchCompleteEvent(node_id=child_id, results=results))

        breadth_next = next_breadth(breadth)
        synthesis = await _synthesize(
            context,
            search_query=search_query,
            results=results,
            language=language,
            num_follow_up_questions=breadth_next,
            child_id=child_id,
            on_progress=on_progress,
        )
        if synthesis is None:
            return ResearchResult()

        all_learnings = dedupe([*learnings, *(synthesis.get("learnings") or [])])
        all_urls = dedupe([*visited_urls, *new_urls])
        follow_ups = list(synthesis.get("followUpQuestions") or synthesis.get("follow_up_questions") or [])
        _emit(
            on_progress,
            NodeCompleteEvent(
                node_id=child_id,
                result=ProcessedSearchResult(learnings=all_learnings, follow_up_questions=follow_ups),
            ),
        )

        depth_next = current_depth + 1
        if depth_next <= max_depth and follow_ups:
            logger.warning("Researching deeper, breadth: %s, depth: %s", breadth_next, depth_next)
            async with context.budget.inflated():
                return await deep_research(
                    context,
                    query=follow_up_query(item.get("researchGoal") or "", follow_ups),
                    breadth=breadth_next,
                    max_depth=max_depth,
                    language_code=language_code,
                    on_progress=on_progress,
                    learnings=all_learnings,
                    visited_urls=all_urls,
                    current_depth=depth_next,
                    node_id=child_id,
                    search_language=search_language,
                )
        return ResearchResult(learnings=all_learnings, visited_urls=all_urls)
    except Exception as exc:
        logger.exception("Error in node %s for query %s", child_id, search_query)
        _emit(on_progress, NodeErrorEvent(node_id=child_id, message=str(exc) or exc.__class__.__name__))
        return ResearchResult()
