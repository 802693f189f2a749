"""Quarry ingest pipeline: text extraction, sentence chunking, incremental indexing."""

from quarry.ingest.chunker import TextChunk, chunk_text, split_sentences
from quarry.ingest.extract import CompositeExtractor, Extractor, PdfExtractor, TextExtractor
from quarry.ingest.indexer import IndexReport, Indexer, IndexingIssue

__all__ = [
    "TextChunk",
    "chunk_text",
    "split_sentences",
    "CompositeExtractor",
    "Extractor",
    "PdfExtractor",
    "TextExtractor",
    "IndexReport",
    "Indexer",
    "IndexingIssue",
]
