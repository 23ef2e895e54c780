"""
chroma_store.py — ChromaDB-backed certificate and chunk collections.

Chroma's `where` filter only does equality/range on metadata, so tenant
scoping is pushed down to Chroma ($or over every alias of the tenant)
and the regex clauses of a TextQuery are applied in Python afterwards.
For a single tenant's CAT library (hundreds of files, not millions) that
is fast enough and keeps the query semantics identical to the in-memory
store.

Any Chroma failure surfaces as StoreUnavailable so the retriever can drop
this source and carry on.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import chromadb
from chromadb.utils import embedding_functions

from tender_viability.config import config
from tender_viability.errors import StoreUnavailable
from tender_viability.schemas import EvidenceChunk, StoredCertificate
from tender_viability.stores import TenantLike, TextQuery, matches_clauses, tenant_aliases

logger = logging.getLogger(__name__)

# Chroma caps the batch size per add(); 500 stays well under it.
_BATCH_SIZE = 500
# Regex clauses are applied after the fetch, so ask Chroma for more rows
# than the caller's limit.
_OVERFETCH = 4


def _tenant_where(tenant_id: Optional[TenantLike]) -> Optional[Dict[str, Any]]:
    aliases = tenant_aliases(tenant_id)
    if not aliases:
        return None
    if len(aliases) == 1:
        return {"tenant_id": aliases[0]}
    return {"$or": [{"tenant_id": a} for a in aliases]}


def _and_where(*conds: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    present = [c for c in conds if c]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return {"$and": present}


class _ChromaCollection:
    """Lazily opened persistent collection with cosine HNSW space."""

    def __init__(self, name: str, persist_dir: Optional[str] = None, client=None):
        self._name = name
        self._persist_dir = persist_dir or config.store.chroma_persist_dir
        self._client = client
        self._collection = None

    supports_vectors = True

    def _coll(self):
        if self._collection is not None:
            return self._collection
        try:
            if self._client is None:
                self._client = chromadb.PersistentClient(path=self._persist_dir)
            ef = embedding_functions.SentenceTransformerEmbeddingFunction(
                model_name=config.embedding.model_name
            )
            self._collection = self._client.get_or_create_collection(
                name=self._name,
                embedding_function=ef,
                metadata={"hnsw:space": "cosine"},
            )
            logger.info("ChromaDB collection '%s' ready (%d records).",
                        self._name, self._collection.count())
        except Exception as exc:
            raise StoreUnavailable(f"ChromaDB collection '{self._name}' unavailable: {exc}") from exc
        return self._collection

    def _get(self, where: Optional[Dict[str, Any]], limit: Optional[int] = None) -> List[Tuple[str, str, Dict[str, Any]]]:
        try:
            res = self._coll().get(where=where, limit=limit, include=["documents", "metadatas"])
        except StoreUnavailable:
            raise
        except Exception as exc:
            raise StoreUnavailable(f"ChromaDB get on '{self._name}' failed: {exc}") from exc
        return list(zip(res.get("ids") or [], res.get("documents") or [], res.get("metadatas") or []))

    def _query(self, text: str, where: Optional[Dict[str, Any]], n: int) -> List[Tuple[str, str, Dict[str, Any], float]]:
        coll = self._coll()
        try:
            total = coll.count()
            if total == 0:
                return []
            res = coll.query(
                query_texts=[text],
                n_results=min(n, total),
                where=where,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise StoreUnavailable(f"ChromaDB query on '{self._name}' failed: {exc}") from exc
        if not res or not res.get("ids") or not res["ids"][0]:
            return []
        return [
            # cosine distance → similarity
            (i, d, m, max(0.0, 1.0 - dist))
            for i, d, m, dist in zip(res["ids"][0], res["documents"][0],
                                     res["metadatas"][0], res["distances"][0])
        ]

    def _write(self, ids: List[str], documents: List[str], metadatas: List[Dict[str, Any]]) -> None:
        coll = self._coll()
        try:
            for i in range(0, len(ids), _BATCH_SIZE):
                coll.upsert(
                    ids=ids[i:i + _BATCH_SIZE],
                    documents=documents[i:i + _BATCH_SIZE],
                    metadatas=metadatas[i:i + _BATCH_SIZE],
                )
        except Exception as exc:
            raise StoreUnavailable(f"ChromaDB write on '{self._name}' failed: {exc}") from exc

    def _delete(self, where: Dict[str, Any]) -> int:
        ids = [i for i, _, _ in self._get(where)]
        if not ids:
            return 0
        try:
            self._coll().delete(ids=ids)
        except Exception as exc:
            raise StoreUnavailable(f"ChromaDB delete on '{self._name}' failed: {exc}") from exc
        return len(ids)


def _certificate_id(tenant_id, source_id: str) -> str:
    return f"{tenant_id}::{source_id}"


def _to_certificate(doc: str, meta: Dict[str, Any]) -> StoredCertificate:
    processed = meta.get("processed_at")
    return StoredCertificate(
        tenant_id=meta.get("tenant_id", ""),
        source_id=meta.get("source_id", ""),
        file_name=meta.get("file_name", ""),
        manager=meta.get("manager", ""),
        text=doc or "",
        chunk_count=int(meta.get("chunk_count", 0)),
        processed_at=datetime.fromisoformat(processed) if processed else datetime.now(),
    )


def _to_chunk(chunk_id: str, doc: str, meta: Dict[str, Any]) -> EvidenceChunk:
    return EvidenceChunk(
        chunk_id=chunk_id,
        tenant_id=meta.get("tenant_id", ""),
        source_id=meta.get("source_id", ""),
        chunk_index=int(meta.get("chunk_index", 0)),
        text=doc or "",
    )


class ChromaCertificateStore(_ChromaCollection):
    """Full-text certificates, one record per tenant + source."""

    def __init__(self, persist_dir: Optional[str] = None, client=None,
                 collection_name: Optional[str] = None):
        super().__init__(collection_name or config.store.certificate_collection, persist_dir, client)

    def search(self, query: TextQuery) -> List[StoredCertificate]:
        compiled = query.compiled()
        hits: List[StoredCertificate] = []
        for _, doc, meta in self._get(_tenant_where(query.tenant_id)):
            cert = _to_certificate(doc, meta)
            if matches_clauses(cert, compiled):
                hits.append(cert)
                if query.limit and len(hits) >= query.limit:
                    break
        return hits

    def similar(self, query_text: str, query: TextQuery) -> List[Tuple[StoredCertificate, float]]:
        n = (query.limit or 12) * _OVERFETCH
        compiled = query.compiled()
        out = []
        for _, doc, meta, sim in self._query(query_text, _tenant_where(query.tenant_id), n):
            cert = _to_certificate(doc, meta)
            if matches_clauses(cert, compiled):
                out.append((cert, sim))
        return out[:query.limit] if query.limit else out

    def get(self, tenant_id: TenantLike, source_id: str) -> Optional[StoredCertificate]:
        rows = self._get(_and_where(_tenant_where(tenant_id), {"source_id": source_id}), limit=1)
        return _to_certificate(rows[0][1], rows[0][2]) if rows else None

    def upsert(self, certificate: StoredCertificate) -> None:
        self.delete(certificate.tenant_id, certificate.source_id)
        self._write(
            ids=[_certificate_id(certificate.tenant_id, certificate.source_id)],
            documents=[certificate.text],
            metadatas=[{
                "tenant_id": certificate.tenant_id,
                "source_id": certificate.source_id,
                "file_name": certificate.file_name,
                "manager": certificate.manager,
                "chunk_count": certificate.chunk_count,
                "processed_at": certificate.processed_at.isoformat(),
            }],
        )

    def delete(self, tenant_id: TenantLike, source_id: str) -> bool:
        return self._delete(_and_where(_tenant_where(tenant_id), {"source_id": source_id})) > 0

    def list_sources(self, tenant_id: TenantLike) -> List[str]:
        return sorted({meta.get("source_id", "") for _, _, meta in self._get(_tenant_where(tenant_id))})


class ChromaChunkStore(_ChromaCollection):
    """Chunk collection; the vector path of the retriever lives here."""

    def __init__(self, persist_dir: Optional[str] = None, client=None,
                 collection_name: Optional[str] = None):
        super().__init__(collection_name or config.store.chunk_collection, persist_dir, client)

    def search(self, query: TextQuery) -> List[EvidenceChunk]:
        compiled = query.compiled()
        hits: List[EvidenceChunk] = []
        for cid, doc, meta in self._get(_tenant_where(query.tenant_id)):
            chunk = _to_chunk(cid, doc, meta)
            if matches_clauses(chunk, compiled):
                hits.append(chunk)
                if query.limit and len(hits) >= query.limit:
                    break
        return hits

    def similar(self, query_text: str, query: TextQuery) -> List[Tuple[EvidenceChunk, float]]:
        n = (query.limit or 16) * _OVERFETCH
        compiled = query.compiled()
        out = []
        for cid, doc, meta, sim in self._query(query_text, _tenant_where(query.tenant_id), n):
            chunk = _to_chunk(cid, doc, meta)
            if matches_clauses(chunk, compiled):
                out.append((chunk, sim))
        return out[:query.limit] if query.limit else out

    def replace_source(self, tenant_id: TenantLike, source_id: str, chunks: List[EvidenceChunk]) -> None:
        self.delete_source(tenant_id, source_id)
        if not chunks:
            return
        self._write(
            ids=[c.chunk_id for c in chunks],
            documents=[c.text for c in chunks],
            metadatas=[{
                "tenant_id": c.tenant_id,
                "source_id": c.source_id,
                "chunk_index": c.chunk_index,
            } for c in chunks],
        )

    def delete_source(self, tenant_id: TenantLike, source_id: str) -> int:
        return self._delete(_and_where(_tenant_where(tenant_id), {"source_id": source_id}))
