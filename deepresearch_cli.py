import argparse
import asyncio
import logging
import sys
from contextlib import aclosing
from pathlib import Path
from typing import List, Optional, Tuple

from deepresearch.config import CONFIG_PATH, AppSettings, language_name, load_settings, validate_settings
from deepresearch.feedback import combine_query, generate_feedback
from deepresearch.research import ResearchContext, deep_research, write_final_report


def _print_event(event) -> None:
    kind = event.type
    if kind == "generated_query":
        print(f"[{event.node_id}] query: {event.result.get('query', '')}")
    elif kind == "searching":
        print(f"[{event.node_id}] searching: {event.query}")
    elif kind == "search_complete":
        print(f"[{event.node_id}] found {len(event.results)} results")
    elif kind == "node_complete" and event.result is not None:
        print(f"[{event.node_id}] {len(event.result.learnings)} learnings")
    elif kind == "error":
        print(f"[{event.node_id}] error: {event.message}", file=sys.stderr)
    elif kind == "complete":
        print(f"Research complete: {len(event.learnings)} learnings, {len(event.visited_urls)} sources")


async def _write_report(context: ResearchContext, query: str, learnings: List[str], language: str, path: Path) -> None:
    parts: List[str] = []
    async with aclosing(write_final_report(context, query, learnings, language)) as stream:
        async for chunk in stream:
            if chunk.type == "text":
                parts.append(chunk.text)
            elif chunk.type == "error":
                print(f"Report error: {chunk.text}", file=sys.stderr)
    path.write_text("".join(parts), encoding="utf-8")
    print(f"Report written to {path}")


async def _ask_feedback(context: ResearchContext, query: str, language: str) -> List[str]:
    questions: List[str] = []
    async for event in generate_feedback(context, query, language):
        if event.type == "object":
            questions = [q for q in event.value.get("questions") or [] if q]
        elif event.type == "error":
            print(f"Feedback error: {event.message}", file=sys.stderr)
    return questions


async def _collect_answers(questions: List[str]) -> List[Tuple[str, str]]:
    # input() blocks; read it on a worker thread.
    answers: List[Tuple[str, str]] = []
    for question in questions:
        answers.append((question, await asyncio.to_thread(input, f"{question}\n> ")))
    return answers


def _settings(args: argparse.Namespace) -> Optional[AppSettings]:
    settings = load_settings(Path(args.config) if args.config else CONFIG_PATH)
    if not validate_settings(settings):
        print("Settings are incomplete: set an AI API key and a web search key.", file=sys.stderr)
        return None
    return settings


async def run_research(args: argparse.Namespace) -> int:
    settings = _settings(args)
    if settings is None:
        return 1
    language_code = args.language or settings.language
    search_language = args.search_language or settings.web_search.search_language
    context = ResearchContext.from_settings(settings)
    try:
        query = args.query
        if args.interactive:
            questions = await _ask_feedback(context, query, language_name(language_code))
            answers = await _collect_answers(questions)
            if answers:
                query = combine_query(query, answers)
        result = await deep_research(
            context,
            query=query,
            breadth=args.breadth or settings.breadth,
            max_depth=args.depth or settings.depth,
            language_code=language_code,
            search_language=search_language,
            on_progress=_print_event,
        )
        print("\nLearnings:")
        for learning in result.learnings:
            print(f"- {learning}")
        print("\nSources:")
        for url in result.visited_urls:
            print(f"- {url}")
        if args.report:
            await _write_report(context, query, result.learnings, language_name(language_code), Path(args.report))
    finally:
        await context.close()
    return 0


async def run_feedback(args: argparse.Namespace) -> int:
    settings = _settings(args)
    if settings is None:
        return 1
    context = ResearchContext.from_settings(settings)
    try:
        questions = await _ask_feedback(context, args.query, language_name(args.language or settings.language))
    finally:
        await context.close()
    if not questions:
        print("No follow-up questions.")
        return 1
    for question in questions:
        print(f"- {question}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deep Research CLI")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    research = subparsers.add_parser("research", help="Run a recursive research")
    research.add_argument("query", help="Research topic")
    research.add_argument("--breadth", type=int, default=None, help="Queries per level")
    research.add_argument("--depth", type=int, default=None, help="Maximum recursion depth")
    research.add_argument("--language", default=None, help="Response language code, e.g. en or zh")
    research.add_argument("--search-language", default=None, help="Language code for SERP queries")
    research.add_argument("--report", default=None, help="Write a Markdown report to this path")
    research.add_argument("--interactive", action="store_true", help="Answer clarifying questions first")

    feedback = subparsers.add_parser("feedback", help="Show clarifying questions for a query")
    feedback.add_argument("query", help="Research topic")
    feedback.add_argument("--language", default=None, help="Response language code")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "research":
        return asyncio.run(run_research(args))
    if args.command == "feedback":
        return asyncio.run(run_feedback(args))
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
