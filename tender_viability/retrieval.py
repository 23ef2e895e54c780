"""
retrieval.py — Candidate certificates and on-the-fly evidence.

find_matches() gathers every plausible CAT for a tender object from up to
four sources and returns a scored, deduplicated, domain-filtered superset
(capped at limit * 3) for the ranker:

  A) vector similarity   — certificate store, or the chunk store when
                           there is no certificate store (optional)
  B) lexical / regex     — certificate store and chunk store
  C) local files         — uploaded with the bid, never persisted
  D) hybrid score        — lexical evidence blended with vector sim

Each persistent source can fail on its own. A StoreUnavailable from one
of them is logged, reported through the debug hook, and the rest of the
sources still run. Worst case we score local files only, and an empty
result is a valid answer ("no aligned CAT found").

EvidenceSearcher covers requirements that certificate matching does not:
it ranks passages of the uploaded files with BM25 (plus embeddings when
available) so the LLM reviewer has something concrete to judge.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from rank_bm25 import BM25Okapi

from tender_viability.chunking import chunk_text
from tender_viability.config import config
from tender_viability.embeddings import Embedder, cosine_similarity, min_max_normalize
from tender_viability.errors import StoreUnavailable
from tender_viability.metadata import extract_metadata
from tender_viability.schemas import CertificateDocument, EvidenceHit, LocalFile, RankedCandidate
from tender_viability.scoring import dedup_retrieved, retrieval_score
from tender_viability.stores import (
    ChunkStore,
    FieldMatch,
    StoreBundle,
    TenantLike,
    TextQuery,
    tenant_aliases,
)
from tender_viability.taxonomy import (
    CERTIFICATE_NAME_RX,
    CERTIFICATE_TEXT_RX,
    DomainTaxonomy,
    any_pattern,
    taxonomy as default_taxonomy,
)

logger = logging.getLogger(__name__)

DebugHook = Callable[[Dict[str, Any]], None]

_LOCAL_NAME_RX = re.compile(CERTIFICATE_NAME_RX, re.IGNORECASE)
_NOT_A_CAT_NAME_RX = re.compile(r"edital", re.IGNORECASE)
_FINGERPRINT_TITLE_RX = re.compile(r"Certid[ãa]o\s+de\s+Acervo\s+T[ée]cnico", re.IGNORECASE)
_FINGERPRINT_NUMBER_RX = re.compile(r"CAT\s*[Nº°o\.:\- ]+\s*\d{3,}", re.IGNORECASE)


@dataclass
class RetrievalOptions:
    tenant_id: Optional[TenantLike] = None
    debug: Optional[DebugHook] = None
    use_vectors: bool = True


@dataclass
class _Candidate:
    kind: str  # "certificate" | "chunk" | "local"
    source_id: str
    file_name: str
    text: str
    vector_score: Optional[float] = None


def _file_name_of(source: str) -> str:
    return re.split(r"[\\/]", source or "")[-1] or source


def _emitter(hook: Optional[DebugHook]) -> DebugHook:
    """Wrap the caller's hook so nothing it does can affect retrieval."""
    def emit(event: Dict[str, Any]) -> None:
        if hook is None:
            return
        try:
            hook(dict(event))
        except Exception as exc:
            logger.warning("Retrieval debug hook raised %s: %s (ignored)",
                           type(exc).__name__, exc)
    return emit


def looks_like_certificate_name(name: str) -> bool:
    return bool(_LOCAL_NAME_RX.search(name or "")) and not _NOT_A_CAT_NAME_RX.search(name or "")


def has_certificate_fingerprint(text: str) -> bool:
    return bool(_FINGERPRINT_TITLE_RX.search(text or "")) and bool(_FINGERPRINT_NUMBER_RX.search(text or ""))


def find_scored_matches(
    stores: Optional[StoreBundle],
    object_text: str,
    limit: int = 8,
    local_files: Optional[Sequence[LocalFile]] = None,
    options: Optional[RetrievalOptions] = None,
    taxonomy: Optional[DomainTaxonomy] = None,
) -> List[RankedCandidate]:
    """find_matches() with the hybrid retrieval score attached."""
    tax = taxonomy or default_taxonomy
    opts = options or RetrievalOptions()
    tenant_aliases(opts.tenant_id)  # blank tenant raises InvalidTenantScope
    bundle = stores or StoreBundle()
    emit = _emitter(opts.debug)
    object_text = object_text or ""

    base_terms = tax.base_term_set(object_text)
    base_rx = any_pattern(base_terms)
    object_domains = tax.signatures_for(object_text)
    domain_rx = any_pattern(tax.domain_terms(object_domains)) if object_domains else None

    cert_store = bundle.certificate_store
    chunk_store = bundle.chunk_store
    candidates: List[_Candidate] = []

    def certificate_clauses(with_marker: bool) -> List[List[FieldMatch]]:
        clauses: List[List[FieldMatch]] = []
        if with_marker:
            clauses.append([FieldMatch("file_name", CERTIFICATE_NAME_RX),
                            FieldMatch("text", CERTIFICATE_TEXT_RX)])
        if domain_rx:
            clauses.append([FieldMatch("file_name", domain_rx), FieldMatch("text", domain_rx)])
        return clauses

    def chunk_clauses() -> List[List[FieldMatch]]:
        clauses = [[FieldMatch("text", CERTIFICATE_TEXT_RX)]]
        if domain_rx:
            clauses.append([FieldMatch("text", domain_rx), FieldMatch("source_id", domain_rx)])
        return clauses

    # ── A) Vector similarity ────────────────────────────────────────
    if opts.use_vectors:
        try:
            if cert_store is not None and cert_store.supports_vectors:
                q = TextQuery(certificate_clauses(with_marker=False), opts.tenant_id, max(limit * 3, 12))
                rows = cert_store.similar(object_text, q)
                emit({"kind": "vector_certificates", "total": len(rows)})
                for cert, sim in rows:
                    candidates.append(_Candidate("certificate", cert.source_id, cert.file_name, cert.text, sim))
            elif chunk_store is not None and chunk_store.supports_vectors:
                q = TextQuery(chunk_clauses(), opts.tenant_id, max(limit * 4, 16))
                rows = chunk_store.similar(object_text, q)
                emit({"kind": "vector_chunks", "total": len(rows)})
                for chunk, sim in rows:
                    candidates.append(_Candidate("chunk", chunk.source_id,
                                                 _file_name_of(chunk.source_id), chunk.text, sim))
        except StoreUnavailable as exc:
            logger.warning("Vector search unavailable, continuing lexically: %s", exc)
            emit({"kind": "store_error", "source": "vector", "message": str(exc)})

    # ── B) Lexical / regex ──────────────────────────────────────────
    if cert_store is not None:
        try:
            q = TextQuery(
                certificate_clauses(with_marker=True) + [[FieldMatch("text", base_rx)]],
                opts.tenant_id,
                limit * 5,
            )
            rows = cert_store.search(q)
            emit({"kind": "lexical_certificates", "total": len(rows)})
            for i, cert in enumerate(rows, start=1):
                emit({"kind": "certificate_item", "i": i, "source": cert.source_id})
                candidates.append(_Candidate("certificate", cert.source_id, cert.file_name, cert.text))
        except StoreUnavailable as exc:
            logger.warning("Certificate store unavailable, skipping: %s", exc)
            emit({"kind": "store_error", "source": "certificates", "message": str(exc)})

    if chunk_store is not None:
        try:
            q = TextQuery(chunk_clauses() + [[FieldMatch("text", base_rx)]], opts.tenant_id, limit * 5)
            rows = chunk_store.search(q)
            emit({"kind": "lexical_chunks", "total": len(rows)})
            for i, chunk in enumerate(rows, start=1):
                emit({"kind": "chunk_item", "i": i, "source": chunk.source_id})
                candidates.append(_Candidate("chunk", chunk.source_id,
                                             _file_name_of(chunk.source_id), chunk.text))
        except StoreUnavailable as exc:
            logger.warning("Chunk store unavailable, skipping: %s", exc)
            emit({"kind": "store_error", "source": "chunks", "message": str(exc)})

    # ── C) Local files ──────────────────────────────────────────────
    files = [f for f in (local_files or []) if f.text]
    emit({"kind": "local_batch", "total": len(files)})
    base_compiled = re.compile(base_rx, re.IGNORECASE)
    for i, f in enumerate(files, start=1):
        emit({"kind": "local_item", "i": i, "source": f.source})
        if not (looks_like_certificate_name(f.source) or has_certificate_fingerprint(f.text)):
            continue
        if base_compiled.search(f.text):
            candidates.append(_Candidate("local", f.source, _file_name_of(f.source), f.text))

    # ── D) Hybrid score ─────────────────────────────────────────────
    scored: List[Tuple[CertificateDocument, float]] = []
    for c in candidates:
        try:
            doc = extract_metadata(c.file_name, c.text, source_id=c.source_id)
        except Exception as exc:
            # Field absent, not a failed batch.
            logger.warning("Metadata extraction failed for %s: %s", c.source_id, exc)
            doc = CertificateDocument(source_id=c.source_id, file_name=c.file_name, raw_text=c.text)
        scored.append((doc, retrieval_score(doc, object_text, c.vector_score, tax)))

    unique = dedup_retrieved(scored)
    aligned = [
        (doc, s) for doc, s in unique
        if tax.has_domain_overlap(object_text, doc.raw_text, doc.file_name)
    ]
    aligned.sort(key=lambda x: x[1], reverse=True)
    result = aligned[:limit * 3]

    emit({"kind": "scored", "total": len(result)})
    logger.info(
        "Retrieved %d candidates (%d raw, %d after dedup, %d domain-aligned) for '%s...'",
        len(result), len(candidates), len(unique), len(aligned), object_text[:40],
    )
    return [RankedCandidate(certificate=doc, score=s) for doc, s in result]


def find_matches(
    stores: Optional[StoreBundle],
    object_text: str,
    limit: int = 8,
    local_files: Optional[Sequence[LocalFile]] = None,
    options: Optional[RetrievalOptions] = None,
    taxonomy: Optional[DomainTaxonomy] = None,
) -> List[CertificateDocument]:
    """Candidate certificates for a tender object, best first, at most limit * 3."""
    return [
        r.certificate
        for r in find_scored_matches(stores, object_text, limit, local_files, options, taxonomy)
    ]


# ── On-the-fly evidence ──────────────────────────────────────────────────

_ANNEX_RX = re.compile(r"anexo\s+([xivlcdm0-9]+)\b", re.IGNORECASE)
_WORD_RX = re.compile(r"\w+", re.UNICODE)


def _tokenize(text: str) -> List[str]:
    return _WORD_RX.findall(text.lower())


class EvidenceSearcher:
    """
    BM25 (+ optional embeddings) over the files uploaded with one bid.

    Usage:
        searcher = EvidenceSearcher(local_files, embedder=None)
        hits = searcher.search("Apresentar declaração conforme Anexo IV")

    The index is built once per analysis; each requirement is one query.
    """

    def __init__(
        self,
        local_files: Sequence[LocalFile],
        embedder: Optional[Embedder] = None,
        chunk_store: Optional[ChunkStore] = None,
        tenant_id: Optional[TenantLike] = None,
    ):
        self._embedder = embedder
        self._chunk_store = chunk_store
        self._tenant_id = tenant_id
        self._passages: List[Tuple[str, str]] = []  # (source, text)
        self._token_sets: List[set] = []
        corpus: List[List[str]] = []
        for f in local_files:
            for window in chunk_text(f.text):
                tokens = _tokenize(window)
                if not tokens:
                    continue
                self._passages.append((f.source, window))
                self._token_sets.append(set(tokens))
                corpus.append(tokens)

        self._bm25: Optional[BM25Okapi] = None
        self._vectors: Optional[List[List[float]]] = None
        if corpus:
            self._bm25 = BM25Okapi(corpus)
            if embedder is not None:
                self._vectors = embedder.embed_batch([t for _, t in self._passages])
        logger.info("Evidence index: %d passages from %d files (embeddings=%s)",
                    len(self._passages), len(local_files), embedder is not None)

    def _local_hits(self, requirement: str) -> List[EvidenceHit]:
        if self._bm25 is None:
            return []
        rc = config.retrieval
        query_tokens = _tokenize(requirement)
        # BM25 idf goes to zero or below on tiny corpora (one or two
        # files), so it only orders passages; membership is token overlap.
        bm25_raw = np.array(self._bm25.get_scores(query_tokens), dtype="float32")
        bm25_norm = min_max_normalize(bm25_raw)
        query_set = {t for t in query_tokens if len(t) >= 4}

        if self._vectors is not None:
            qv = self._embedder.embed(requirement)
            emb = np.array([max(0.0, cosine_similarity(qv, v)) for v in self._vectors], dtype="float32")
            fused = rc.bm25_weight * bm25_norm + rc.embedding_weight * emb
        else:
            fused = bm25_norm

        annex = _ANNEX_RX.search(requirement)
        annex_rx = re.compile(rf"anexo\s*{re.escape(annex.group(1))}\b", re.IGNORECASE) if annex else None

        hits = []
        for idx, ((source, text), score) in enumerate(zip(self._passages, fused.tolist())):
            annex_hit = annex_rx is not None and bool(annex_rx.search(text))
            if annex_hit:
                score += rc.annex_boost
            relevant = annex_hit or bool(query_set & self._token_sets[idx]) or (
                self._vectors is not None and score > 0
            )
            if relevant:
                hits.append(EvidenceHit(source=source, text=text, score=float(score)))
        return hits

    def _store_hits(self, requirement: str) -> List[EvidenceHit]:
        if self._chunk_store is None or not self._chunk_store.supports_vectors:
            return []
        try:
            rows = self._chunk_store.similar(requirement, TextQuery([], self._tenant_id, 5))
        except StoreUnavailable as exc:
            logger.warning("Chunk vector search failed, local evidence only: %s", exc)
            return []
        return [EvidenceHit(source=c.source_id, text=c.text, score=s) for c, s in rows]

    def search(self, requirement: str, top_k: Optional[int] = None) -> List[EvidenceHit]:
        """Best passages for one requirement, deduplicated by text."""
        k = top_k or config.retrieval.evidence_top_k
        hits = self._local_hits(requirement) + self._store_hits(requirement)
        hits.sort(key=lambda h: h.score, reverse=True)
        seen = set()
        out: List[EvidenceHit] = []
        for h in hits:
            if h.text in seen:
                continue
            seen.add(h.text)
            out.append(h)
            if len(out) >= k:
                break
        return out
