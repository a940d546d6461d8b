"""Memory hierarchy: working memory, episode summaries, and the narrative summary."""

from narrative_director.memory.compressor import EpisodeCompressor
from narrative_director.memory.retrieval import MemoryRetriever
from narrative_director.memory.store import DEFAULT_SUMMARY, InMemoryMemoryStore, MemoryStore

__all__ = ["DEFAULT_SUMMARY", "EpisodeCompressor", "InMemoryMemoryStore", "MemoryRetriever", "MemoryStore"]
