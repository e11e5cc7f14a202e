"""Document, ingestion and retrieval domain models."""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class ProcessingState(str, Enum):
    """Ingestion state of a document."""

    queued = "queued"
    downloading = "downloading"
    extracting = "extracting"
    embedding = "embedding"
    complete = "complete"
    error = "error"


class RetrievalScope(str, Enum):
    """How wide a retrieval query searches."""

    page = "page"
    book = "book"


class DocumentStatus(BaseModel):
    """Pollable processing status of a document."""

    document_id: UUID
    owner_id: UUID
    storage_path: str
    processing_state: ProcessingState
    processing_detail: str | None = None
    total_pages: int | None = None
    created_at: datetime
    updated_at: datetime


class PageRecord(BaseModel):
    """One extracted page."""

    page_id: UUID
    document_id: UUID
    page_number: int = Field(..., ge=1)
    content: str


class NewChunk(BaseModel):
    """Chunk ready to be persisted with its vector."""

    document_id: UUID
    page_id: UUID
    chunk_index: int = Field(..., ge=0)
    content: str
    embedding: list[float]


class ChunkMatch(BaseModel):
    """Chunk returned by a store query, before page numbers are attached."""

    chunk_id: UUID
    page_id: UUID
    chunk_index: int
    content: str
    similarity: float


class RetrievalResult(BaseModel):
    """Retrieved passage with citation data."""

    chunk_id: UUID | None = None  # None for the synthetic whole-page result
    content: str
    page_number: int
    similarity: float
    chunk_index: int = 0
    source: Literal["vector", "keyword", "page"] = "vector"


class IngestionReport(BaseModel):
    """Outcome of one ingestion run."""

    document_id: UUID
    state: ProcessingState
    total_pages: int = 0
    chunks_stored: int = 0
    chunks_skipped: int = 0
    detail: str | None = None


class IngestionAck(BaseModel):
    """Acknowledgement returned when ingestion is scheduled."""

    document_id: UUID
    processing_state: ProcessingState = ProcessingState.queued
