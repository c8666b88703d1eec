from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# Known provider artifact: some models emit the literal string "undefined" as a query.
UNDEFINED_QUERY = "undefined"


class SearchQuery(BaseModel):
    query: str = Field(description="The SERP query.")
    research_goal: str = Field(
        alias="researchGoal",
        description=(
            "First talk about the goal of the research that this query is meant to accomplish, "
            "then go deeper into how to advance the research once the results are found, mention "
            "additional research directions. Be as specific as possible, especially for additional "
            "research directions. JSON reserved words should be escaped."
        ),
    )

    model_config = {"populate_by_name": True}


class SearchQueries(BaseModel):
    queries: List[SearchQuery] = Field(description="List of SERP queries")


class ProcessedSearchResult(BaseModel):
    learnings: List[str] = Field(description="List of learnings")
    follow_up_questions: List[str] = Field(
        alias="followUpQuestions",
        description="List of follow-up questions to research the topic further",
    )

    model_config = {"populate_by_name": True}


class Feedback(BaseModel):
    questions: List[str] = Field(description="Follow up questions to clarify the research direction")


class WebSearchResult(BaseModel):
    content: str
    url: str
    title: Optional[str] = None


def collect_results(items: Any, content_key: str = "content") -> List[WebSearchResult]:
    """Keep the provider rows that carry both a body and a URL."""
    results = []
    for item in items or []:
        if not isinstance(item, dict) or not item.get(content_key) or not item.get("url"):
            continue
        results.append(WebSearchResult(content=item[content_key], url=item["url"], title=item.get("title")))
    return results


class ResearchResult(BaseModel):
    learnings: List[str] = Field(default_factory=list)
    visited_urls: List[str] = Field(default_factory=list)


def has_first_query(value: Dict[str, Any]) -> bool:
    queries = value.get("queries")
    if not isinstance(queries, list) or not queries:
        return False
    first = queries[0]
    return isinstance(first, dict) and bool(first.get("query"))


def has_learnings(value: Dict[str, Any]) -> bool:
    learnings = value.get("learnings")
    return isinstance(learnings, list) and len(learnings) > 0


def has_questions(value: Dict[str, Any]) -> bool:
    questions = value.get("questions")
    return isinstance(questions, list) and len(questions) > 0


class GeneratingQueryEvent(BaseModel):
    type: Literal["generating_query"] = "generating_query"
    node_id: str
    result: Dict[str, Any] = Field(default_factory=dict)
    parent_node_id: Optional[str] = None


class GeneratingQueryReasoningEvent(BaseModel):
    type: Literal["generating_query_reasoning"] = "generating_query_reasoning"
    node_id: str
    delta: str


class GeneratedQueryEvent(BaseModel):
    type: Literal["generated_query"] = "generated_query"
    node_id: str
    query: str
    result: Dict[str, Any] = Field(default_factory=dict)


class SearchingEvent(BaseModel):
    type: Literal["searching"] = "searching"
    node_id: str
    query: str


class SearchCompleteEvent(BaseModel):
    type: Literal["search_complete"] = "search_complete"
    node_id: str
    results: List[WebSearchResult] = Field(default_factory=list)


class ProcessingSearchResultEvent(BaseModel):
    type: Literal["processing_search_result"] = "processing_search_result"
    node_id: str
    query: str
    result: Dict[str, Any] = Field(default_factory=dict)


class ProcessingSearchResultReasoningEvent(BaseModel):
    type: Literal["processing_search_result_reasoning"] = "processing_search_result_reasoning"
    node_id: str
    delta: str


class NodeCompleteEvent(BaseModel):
    type: Literal["node_complete"] = "node_complete"
    node_id: str
    result: Optional[ProcessedSearchResult] = None


class NodeErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    node_id: str
    message: str


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    learnings: List[str] = Field(default_factory=list)
    visited_urls: List[str] = Field(default_factory=list)


ProgressEvent = Annotated[
    Union[
        GeneratingQueryEvent,
        GeneratingQueryReasoningEvent,
        GeneratedQueryEvent,
        SearchingEvent,
        SearchCompleteEvent,
        ProcessingSearchResultEvent,
        ProcessingSearchResultReasoningEvent,
        NodeCompleteEvent,
        NodeErrorEvent,
        CompleteEvent,
    ],
    Field(discriminator="type"),
]
