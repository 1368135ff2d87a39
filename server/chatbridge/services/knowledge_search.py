"""Knowledge base lookups against Azure AI Search for realtime tool calls."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..config import Settings
from .realtime_events import EventKind, EventLike, RealtimeEvent, function_output_event

logger = logging.getLogger(__name__)

KNOWLEDGE_TOOL_NAME = "search_knowledge_base"
SEARCH_ERROR_OUTPUT = {"error": "Failed to search knowledge base"}
MAX_RESULTS = 5

KNOWLEDGE_TOOL: Dict[str, Any] = {
    "type": "function",
    "name": KNOWLEDGE_TOOL_NAME,
    "description": "Search the Azure AI Search knowledge base for relevant information",
    "parameters": {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The search query to find relevant information",
            }
        },
        "required": ["query"],
    },
}


class SearchError(RuntimeError):
    """Raised when the search service cannot answer a query."""


@dataclass(frozen=True)
class SearchResultItem:
    identifier: Any
    title: Any
    content: Any

    def as_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "content": self.content, "id": self.identifier}


class KnowledgeSearchService:
    """Runs semantic (and optionally vector) queries against one search index."""

    def __init__(self, settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self._settings = settings
        self._client = client
        self._owns_client = client is None

    @property
    def search_url(self) -> str:
        endpoint = (self._settings.search_endpoint or "").rstrip("/")
        return (
            f"{endpoint}/indexes/{self._settings.search_index}/docs/search"
            f"?api-version={self._settings.search_api_version}"
        )

    def build_request_body(self, query: str) -> Dict[str, Any]:
        s = self._settings
        body: Dict[str, Any] = {
            "search": query,
            "select": f"{s.search_title_field},{s.search_content_field},{s.search_identifier_field}",
            "top": MAX_RESULTS,
            "searchMode": "any",
            "queryType": "semantic",
            "semanticConfiguration": s.search_semantic_configuration,
        }
        if s.search_use_vector_query:
            body["vectorQueries"] = [
                {
                    "kind": "text",
                    "text": query,
                    "fields": s.search_embedding_field,
                    "k": MAX_RESULTS,
                }
            ]
        return body

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.search_timeout)
        return self._client

    async def search(self, query: str) -> List[SearchResultItem]:
        """Return up to five results in the order the service ranked them."""

        if not self._settings.search_endpoint or not self._settings.search_index:
            raise SearchError("Azure Search endpoint or index is not configured")

        headers = {"Content-Type": "application/json", "api-key": self._settings.search_api_key or ""}
        try:
            resp = await self._get_client().post(
                self.search_url, headers=headers, json=self.build_request_body(query)
            )
        except httpx.HTTPError as exc:
            raise SearchError(f"Azure Search request failed: {exc}") from exc

        if not resp.is_success:
            raise SearchError(f"Azure Search error: {resp.status_code} {resp.reason_phrase}")

        try:
            documents = resp.json()["value"]
        except (ValueError, KeyError, TypeError) as exc:
            raise SearchError(f"Unexpected Azure Search response: {exc}") from exc
        if not isinstance(documents, list):
            raise SearchError("Unexpected Azure Search response: 'value' is not a list")

        s = self._settings
        results = [
            SearchResultItem(
                identifier=doc.get(s.search_identifier_field),
                title=doc.get(s.search_title_field),
                content=doc.get(s.search_content_field),
            )
            for doc in documents[:MAX_RESULTS]
            if isinstance(doc, dict)
        ]
        logger.info("Knowledge search for %r returned %d result(s)", query, len(results))
        return results

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class KnowledgeLookupInvoker:
    """Answers ``search_knowledge_base`` tool calls raised by the speech model.

    Every handled call produces exactly one ``function_call_output`` item for the
    original ``call_id``; failures are reported in the output instead of raised,
    since the model blocks until the call is answered.
    """

    def __init__(self, search: KnowledgeSearchService, emit: Callable[[EventLike], Awaitable[Any]]) -> None:
        self._search = search
        self._emit = emit

    @staticmethod
    def handles(event: RealtimeEvent) -> bool:
        return (
            event.kind is EventKind.RESPONSE_FUNCTION_CALL_ARGUMENTS_DONE
            and event.get("name") == KNOWLEDGE_TOOL_NAME
        )

    async def invoke(self, event: RealtimeEvent) -> str:
        call_id = event.get("call_id")
        try:
            arguments = json.loads(event.get("arguments") or "{}")
            query = arguments["query"]
            if not isinstance(query, str):
                raise TypeError("'query' must be a string")
            results = await self._search.search(query)
            output = json.dumps([item.as_dict() for item in results])
        except SearchError as exc:
            logger.warning("Knowledge search failed for call %s: %s", call_id, exc)
            output = json.dumps(SEARCH_ERROR_OUTPUT)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Invalid arguments for call %s: %s", call_id, exc)
            output = json.dumps(SEARCH_ERROR_OUTPUT)

        await self._emit(function_output_event(call_id, output))
        # The model does not resume speaking on its own after a function output.
        await self._emit({"type": EventKind.RESPONSE_CREATE.value})
        return output
