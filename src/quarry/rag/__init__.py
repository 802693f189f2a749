"""Quarry retrieval and answering: embeddings, search, re-ranking, agent loop."""

from quarry.rag.assembler import AssembledContext, assemble, estimate_tokens
from quarry.rag.embeddings import EmbeddingProvider, LiteLLMEmbeddingProvider, detect_language
from quarry.rag.orchestrator import AgentAnswer, AgenticOrchestrator, StreamingAnswer
from quarry.rag.planner import NeedsMoreInfo, RuleBasedPlanner, Search, Synthesize
from quarry.rag.reranker import Reranker
from quarry.rag.retriever import Retriever, SearchResponse, SearchResult
from quarry.rag.synthesis import LLMSynthesizer

__all__ = [
    "AssembledContext",
    "assemble",
    "estimate_tokens",
    "EmbeddingProvider",
    "LiteLLMEmbeddingProvider",
    "detect_language",
    "AgentAnswer",
    "AgenticOrchestrator",
    "StreamingAnswer",
    "NeedsMoreInfo",
    "RuleBasedPlanner",
    "Search",
    "Synthesize",
    "Reranker",
    "Retriever",
    "SearchResponse",
    "SearchResult",
    "LLMSynthesizer",
]
