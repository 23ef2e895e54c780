"""
chunking.py — Fixed-size character windows over extracted text.

Certificates are short, flat documents with no reliable section
structure after OCR, so there is nothing to gain from section-aware
splitting here. A plain sliding window is predictable and keeps chunk
ids stable across re-ingestion, which is what lets us replace a source's
chunks wholesale when a file is re-synced.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Iterator, List, Optional

from tender_viability.config import config
from tender_viability.metadata import normalize_spaces
from tender_viability.schemas import EvidenceChunk, TenantId

logger = logging.getLogger(__name__)


def iter_windows(
    text: str,
    size: Optional[int] = None,
    overlap: Optional[int] = None,
) -> Iterator[str]:
    """Yield overlapping windows of `size` chars; the last one may be shorter."""
    size = size or config.chunking.chunk_chars
    overlap = config.chunking.overlap_chars if overlap is None else overlap
    if overlap >= size:
        raise ValueError(f"overlap ({overlap}) must be smaller than size ({size})")

    clean = normalize_spaces(text)
    if not clean:
        return
    step = size - overlap
    start = 0
    while True:
        yield clean[start:start + size]
        if start + size >= len(clean):
            break
        start += step


def chunk_text(
    text: str,
    size: Optional[int] = None,
    overlap: Optional[int] = None,
    max_chunks: Optional[int] = None,
) -> List[str]:
    limit = max_chunks or config.chunking.max_chunks_per_file
    windows: List[str] = []
    for window in iter_windows(text, size, overlap):
        if len(windows) >= limit:
            logger.warning("Chunk limit (%d) reached, remaining text dropped.", limit)
            break
        windows.append(window)
    return windows


def chunk_id_for(tenant_id: TenantId, source_id: str, index: int) -> str:
    h = hashlib.sha256(f"{tenant_id}|{source_id}".encode("utf-8")).hexdigest()[:16]
    return f"{h}_{index:04d}"


def build_chunks(tenant_id: TenantId, source_id: str, text: str) -> List[EvidenceChunk]:
    """Chunk one source's text into EvidenceChunk records owned by it."""
    chunks = [
        EvidenceChunk(
            chunk_id=chunk_id_for(tenant_id, source_id, i),
            tenant_id=tenant_id,
            source_id=source_id,
            chunk_index=i,
            text=window,
        )
        for i, window in enumerate(chunk_text(text))
    ]
    logger.debug("%s → %d chunks", source_id, len(chunks))
    return chunks
