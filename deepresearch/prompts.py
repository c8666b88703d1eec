"""Prompt text for the query planner, result synthesizer, report writer and feedback step."""
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Type

from pydantic import BaseModel

from .schemas import Feedback, ProcessedSearchResult, SearchQueries


SYSTEM_PROMPT = """You are an expert researcher. Today is {now}. Follow these instructions when responding:
  - You may be asked to research subjects that is after your knowledge cutoff, assume the user is right when presented with news.
  - The user is a highly experienced analyst, no need to simplify it, be as detailed as possible and make sure your response is correct.
  - Be highly organized.
  - Suggest solutions that I didn't think about.
  - Be proactive and anticipate my needs.
  - Treat me as an expert in all subject matter.
  - Mistakes erode my trust, so be accurate and thorough.
  - Provide detailed explanations, I'm comfortable with lots of detail.
  - Value good arguments over authorities, the source is irrelevant.
  - Consider new technologies and contrarian ideas, not just the conventional wisdom.
  - You may use high levels of speculation or prediction, just flag it for me."""

CHINESE_SPACING_HINT = (
    " Add appropriate spaces between Chinese and Latin characters / numbers to improve readability."
)

QUERY_PLANNER_INSTRUCTIONS = (
    "Given the following prompt from the user, generate a list of SERP queries to research the topic. "
    "Return a maximum of {num_queries} queries, but feel free to return less if the original prompt is clear. "
    "Make sure each query is unique and not similar to each other: <prompt>{query}</prompt>\n\n"
)

RESULT_SYNTH_INSTRUCTIONS = (
    "Given the following contents from a SERP search for the query <query>{query}</query>, generate a list "
    "of learnings from the contents. Return a maximum of {num_learnings} learnings, but feel free to return "
    "less if the contents are clear. Make sure each learning is unique and not similar to each other. The "
    "learnings should be concise and to the point, as detailed and information dense as possible. Make sure "
    "to include any entities like people, places, companies, products, things, etc in the learnings, as well "
    "as any exact metrics, numbers, or dates. The learnings will be used to research the topic further."
)

REPORT_INSTRUCTIONS = (
    "Given the following prompt from the user, write a final report on the topic using the learnings from "
    "research. Make it as as detailed as possible, aim for 3 or more pages, include ALL the learnings from research:"
)

FEEDBACK_INSTRUCTIONS = (
    "Given the following query from the user, ask {num_questions} follow up questions to clarify the research "
    "direction. Return a maximum of {num_questions} questions, but feel free to return less if the original "
    "query is clear: <query>{query}</query>"
)


def system_prompt(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).isoformat().replace("+00:00", "Z")
    return SYSTEM_PROMPT.format(now=stamp)


def language_prompt(language: str) -> str:
    """Placed last in every prompt so the model keeps the output language in view."""
    text = f"Respond in {language}."
    if language == "中文":
        text += CHINESE_SPACING_HINT
    return text


def _schema_with_descriptions(model: Type[BaseModel], descriptions: Dict[str, str]) -> Dict[str, Any]:
    schema = model.model_json_schema(by_alias=True)
    properties = schema.get("properties") or {}
    for key, description in descriptions.items():
        if key in properties:
            properties[key]["description"] = description
    return schema


def json_schema_prompt(schema: Dict[str, Any]) -> str:
    return f"You MUST respond in JSON matching this JSON schema: {json.dumps(schema, ensure_ascii=False)}"


def search_queries_prompt(
    query: str,
    language: str,
    num_queries: int = 3,
    learnings: Optional[Sequence[str]] = None,
    search_language: Optional[str] = None,
) -> str:
    schema = _schema_with_descriptions(
        SearchQueries, {"queries": f"List of SERP queries, max of {num_queries}"}
    )
    lp = language_prompt(language)
    if search_language and search_language != language:
        lp += f" Use {search_language} for the SERP queries."
    parts = [QUERY_PLANNER_INSTRUCTIONS.format(num_queries=num_queries, query=query)]
    if learnings:
        parts.append(
            "Here are some learnings from previous research, use them to generate more specific queries: "
            + "\n".join(learnings)
        )
    parts.append(json_schema_prompt(schema))
    parts.append(lp)
    return "\n\n".join(parts)


def search_result_prompt(
    query: str,
    contents: List[str],
    language: str,
    num_learnings: int = 3,
    num_follow_up_questions: int = 3,
) -> str:
    schema = _schema_with_descriptions(
        ProcessedSearchResult,
        {
            "learnings": f"List of learnings, max of {num_learnings}",
            "followUpQuestions": (
                "List of follow-up questions to research the topic further, "
                f"max of {num_follow_up_questions}"
            ),
        },
    )
    wrapped = "\n".join(f"<content>\n{content}\n</content>" for content in contents)
    return "\n\n".join(
        [
            RESULT_SYNTH_INSTRUCTIONS.format(query=query, num_learnings=num_learnings),
            f"<contents>{wrapped}</contents>",
            json_schema_prompt(schema),
            language_prompt(language),
        ]
    )


def final_report_prompt(prompt: str, learnings_block: str, language: str) -> str:
    return "\n\n".join(
        [
            REPORT_INSTRUCTIONS,
            f"<prompt>{prompt}</prompt>",
            "Here are all the learnings from previous research:",
            f"<learnings>\n{learnings_block}\n</learnings>",
            "Write the report using Markdown.",
            language_prompt(language),
            "## Deep Research Report",
        ]
    )


def feedback_prompt(query: str, language: str, num_questions: int = 3) -> str:
    schema = _schema_with_descriptions(
        Feedback, {"questions": "Follow up questions to clarify the research direction"}
    )
    return "\n\n".join(
        [
            FEEDBACK_INSTRUCTIONS.format(num_questions=num_questions, query=query),
            json_schema_prompt(schema),
            language_prompt(language),
        ]
    )
