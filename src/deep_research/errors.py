"""Pipeline errors and the failure taxonomy that drives retry routing."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure classes recorded in the pipeline state."""

    LLM = "llm"
    SEARCH = "search"
    UNKNOWN = "unknown"


class DeepResearchError(Exception):
    """Base class for deep-research errors."""


class CompletionError(DeepResearchError):
    """The completion service failed or returned unusable output."""


class SearchError(DeepResearchError):
    """Web search / scrape failed for a query."""

    def __init__(self, query: str, message: str):
        super().__init__(f"Search failed for {query!r}: {message}")
        self.query = query


class VectorStoreError(DeepResearchError):
    """Vector-similarity or knowledge-base lookup failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"Vector store error ({operation}): {message}")
        self.operation = operation


def describe_error(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__
