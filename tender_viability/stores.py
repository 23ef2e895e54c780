"""
stores.py — Certificate and chunk store interfaces + in-memory backend.

Two logical collections:
  certificates  — one StoredCertificate per tenant + source (full text)
  chunks        — EvidenceChunk slices of those same sources

Queries are conjunctions of regex clauses (TextQuery). Each clause is a
list of (field, pattern) alternatives; a record passes a clause when any
alternative matches. That is the smallest query language that expresses
"looks like a CAT by name OR by text, AND mentions a base term, AND
belongs to this tenant" without tying callers to a particular database.

Tenant ids are matched through tenant_aliases(): persisted values may be
"42" or 42, or a UUID in canonical or hex form, depending on which
service wrote the record.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Protocol, Sequence, Tuple, Union

from tender_viability.embeddings import Embedder, cosine_similarity
from tender_viability.errors import InvalidTenantScope
from tender_viability.schemas import EvidenceChunk, StoredCertificate, TenantId

logger = logging.getLogger(__name__)

TenantLike = Union[str, int, uuid.UUID]


# ── Query model ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FieldMatch:
    field: str
    pattern: str


@dataclass
class TextQuery:
    clauses: List[List[FieldMatch]] = field(default_factory=list)
    tenant_id: Optional[TenantLike] = None
    limit: Optional[int] = None

    def compiled(self) -> List[List[Tuple[str, Pattern[str]]]]:
        return [
            [(fm.field, re.compile(fm.pattern, re.IGNORECASE)) for fm in clause]
            for clause in self.clauses
        ]


def matches_clauses(record, compiled: List[List[Tuple[str, Pattern[str]]]]) -> bool:
    for clause in compiled:
        if not any(rx.search(str(getattr(record, f, "") or "")) for f, rx in clause):
            return False
    return True


def tenant_aliases(tenant_id: Optional[TenantLike]) -> List[TenantId]:
    """
    Every persisted representation of the same tenant.

    None → [] (no tenant restriction). A blank string is rejected rather
    than scoping every query to an empty tenant. Order is stable and the
    given form comes first.
    """
    if tenant_id is None:
        return []
    if isinstance(tenant_id, str) and not tenant_id.strip():
        raise InvalidTenantScope("Tenant id cannot be blank.")
    out: List[TenantId] = []
    if isinstance(tenant_id, uuid.UUID):
        out += [str(tenant_id), tenant_id.hex]
    elif isinstance(tenant_id, bool):
        raise TypeError("tenant id cannot be a bool")
    elif isinstance(tenant_id, int):
        out += [tenant_id, str(tenant_id)]
    else:
        s = str(tenant_id).strip()
        out.append(s)
        if s.isdigit():
            out.append(int(s))
        # 32 digits is both a number and a UUID hex
        try:
            u = uuid.UUID(s)
        except ValueError:
            pass
        else:
            out += [str(u), u.hex]
    return list(dict.fromkeys(out))


def canonical_tenant(tenant_id: TenantLike) -> TenantId:
    """The form written to the stores: UUIDs as their canonical string."""
    if isinstance(tenant_id, uuid.UUID):
        return str(tenant_id)
    if isinstance(tenant_id, str):
        return tenant_id.strip()
    return tenant_id


def tenant_matches(record_tenant: TenantId, aliases: Sequence[TenantId]) -> bool:
    if not aliases:
        return True
    return any(type(a) is type(record_tenant) and a == record_tenant for a in aliases)


# ── Interfaces ───────────────────────────────────────────────────────────


class CertificateStore(Protocol):
    supports_vectors: bool

    def search(self, query: TextQuery) -> List[StoredCertificate]: ...

    def similar(self, query_text: str, query: TextQuery) -> List[Tuple[StoredCertificate, float]]: ...

    def get(self, tenant_id: TenantLike, source_id: str) -> Optional[StoredCertificate]: ...

    def upsert(self, certificate: StoredCertificate) -> None: ...

    def delete(self, tenant_id: TenantLike, source_id: str) -> bool: ...

    def list_sources(self, tenant_id: TenantLike) -> List[str]: ...


class ChunkStore(Protocol):
    supports_vectors: bool

    def search(self, query: TextQuery) -> List[EvidenceChunk]: ...

    def similar(self, query_text: str, query: TextQuery) -> List[Tuple[EvidenceChunk, float]]: ...

    def replace_source(self, tenant_id: TenantLike, source_id: str, chunks: List[EvidenceChunk]) -> None: ...

    def delete_source(self, tenant_id: TenantLike, source_id: str) -> int: ...


@dataclass
class StoreBundle:
    """Persistent sources available to one analysis. Both are optional."""
    certificate_store: Optional[CertificateStore] = None
    chunk_store: Optional[ChunkStore] = None

    @property
    def empty(self) -> bool:
        return self.certificate_store is None and self.chunk_store is None


# ── In-memory backend ────────────────────────────────────────────────────


class _InMemoryCollection:
    """Shared plumbing: thread-safe dict of records + optional vectors."""

    text_field = "text"

    def __init__(self, embedder: Optional[Embedder] = None):
        self._records: Dict[Tuple[str, str], object] = {}
        self._vectors: Dict[Tuple[str, str], List[float]] = {}
        self._embedder = embedder
        self._lock = threading.RLock()

    @property
    def supports_vectors(self) -> bool:
        return self._embedder is not None

    def _put(self, key: Tuple[str, str], record) -> None:
        vector = None
        if self._embedder is not None:
            vector = self._embedder.embed(getattr(record, self.text_field))
        with self._lock:
            self._records[key] = record
            if vector is not None:
                self._vectors[key] = vector

    def _pop(self, key: Tuple[str, str]) -> bool:
        with self._lock:
            self._vectors.pop(key, None)
            return self._records.pop(key, None) is not None

    def _snapshot(self) -> List[Tuple[Tuple[str, str], object]]:
        with self._lock:
            return list(self._records.items())

    def search(self, query: TextQuery) -> list:
        aliases = tenant_aliases(query.tenant_id)
        compiled = query.compiled()
        hits = []
        for _, record in self._snapshot():
            if not tenant_matches(record.tenant_id, aliases):
                continue
            if matches_clauses(record, compiled):
                hits.append(record)
                if query.limit and len(hits) >= query.limit:
                    break
        return hits

    def similar(self, query_text: str, query: TextQuery) -> list:
        if self._embedder is None:
            return []
        qv = self._embedder.embed(query_text)
        aliases = tenant_aliases(query.tenant_id)
        compiled = query.compiled()
        with self._lock:
            vectors = dict(self._vectors)
        scored = []
        for key, record in self._snapshot():
            if key not in vectors or not tenant_matches(record.tenant_id, aliases):
                continue
            if matches_clauses(record, compiled):
                scored.append((record, max(0.0, cosine_similarity(qv, vectors[key]))))
        scored.sort(key=lambda x: x[1], reverse=True)
        return scored[:query.limit] if query.limit else scored


class InMemoryCertificateStore(_InMemoryCollection):
    """Single-process certificate collection; also the test double."""

    def get(self, tenant_id: TenantLike, source_id: str) -> Optional[StoredCertificate]:
        aliases = tenant_aliases(tenant_id)
        for _, record in self._snapshot():
            if record.source_id == source_id and tenant_matches(record.tenant_id, aliases):
                return record
        return None

    def upsert(self, certificate: StoredCertificate) -> None:
        existing = self.get(certificate.tenant_id, certificate.source_id)
        if existing is not None:
            self._pop((str(existing.tenant_id), existing.source_id))
        self._put((str(certificate.tenant_id), certificate.source_id), certificate)

    def delete(self, tenant_id: TenantLike, source_id: str) -> bool:
        existing = self.get(tenant_id, source_id)
        if existing is None:
            return False
        return self._pop((str(existing.tenant_id), existing.source_id))

    def list_sources(self, tenant_id: TenantLike) -> List[str]:
        aliases = tenant_aliases(tenant_id)
        return sorted(r.source_id for _, r in self._snapshot() if tenant_matches(r.tenant_id, aliases))


class InMemoryChunkStore(_InMemoryCollection):

    def replace_source(self, tenant_id: TenantLike, source_id: str, chunks: List[EvidenceChunk]) -> None:
        self.delete_source(tenant_id, source_id)
        for chunk in chunks:
            self._put((str(chunk.tenant_id), chunk.chunk_id), chunk)

    def delete_source(self, tenant_id: TenantLike, source_id: str) -> int:
        aliases = tenant_aliases(tenant_id)
        doomed = [
            key for key, r in self._snapshot()
            if r.source_id == source_id and tenant_matches(r.tenant_id, aliases)
        ]
        for key in doomed:
            self._pop(key)
        return len(doomed)


def build_store_bundle(embedder: Optional[Embedder] = None) -> StoreBundle:
    """Stores for the configured backend (STORE_BACKEND)."""
    from tender_viability.config import config

    if config.store.backend == "memory":
        return StoreBundle(
            certificate_store=InMemoryCertificateStore(embedder),
            chunk_store=InMemoryChunkStore(embedder),
        )
    from tender_viability.chroma_store import ChromaCertificateStore, ChromaChunkStore

    return StoreBundle(
        certificate_store=ChromaCertificateStore(),
        chunk_store=ChromaChunkStore(),
    )
