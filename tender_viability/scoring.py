"""
scoring.py — Certificate-to-object alignment, dedup and ranking.

Two scores live here and they answer different questions:

  retrieval_score()     — "is this candidate worth keeping at all?"
                          Lexical evidence (base-term hits, metadata,
                          file-name domains, recency) squashed to [0,1]
                          and blended with vector similarity when there
                          is one. Used by the retriever to order and cap
                          its superset.

  score_cat_to_object() — "how well does this CAT back this tender?"
                          Unbounded, domain-driven: +8 per shared object
                          domain, +4 per shared lot domain, -7 per
                          intruding domain. Used for the final ranking,
                          the alignment threshold and the RT pick.

The undomained fallback (object text matches no domain at all) scores by
shared significant tokens and subtracts 5 when there are none, so an
unrelated document can never float to the top just because it carries
ART + CREA + a recent year.
"""

from __future__ import annotations

import logging
import re
from typing import FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from tender_viability.config import config
from tender_viability.schemas import CertificateDocument, RankedCandidate
from tender_viability.taxonomy import DomainTaxonomy, taxonomy as default_taxonomy

logger = logging.getLogger(__name__)

STOPWORDS: FrozenSet[str] = frozenset({
    "de", "da", "do", "das", "dos", "e", "em", "para", "por", "com", "um", "uma",
    "o", "a", "os", "as", "no", "na", "nos", "nas", "que", "ou", "se", "ao", "à",
    "às", "pelo", "pela", "pelos", "pelas", "sobre", "entre", "como",
})

_TOKEN_RX = re.compile(r"[^\wÀ-ÿ\s]", re.UNICODE)
_CONCLUDED_RX = re.compile(
    r"\batividade\s+conclu[íi]da|obra\s+conclu[íi]da|\bconclu[íi]d[ao]\b", re.IGNORECASE,
)
_ELECTRICAL_TITLE_RX = re.compile(r"eletric", re.IGNORECASE)


def significant_tokens(text: Optional[str]) -> Set[str]:
    """Lowercased tokens of 4+ chars, stopwords removed."""
    cleaned = _TOKEN_RX.sub(" ", (text or "").lower())
    return {w for w in cleaned.split() if len(w) >= 4 and w not in STOPWORDS}


def token_overlap(a: Optional[str], b: Optional[str]) -> int:
    return len(significant_tokens(a) & significant_tokens(b))


def _clamp01(x: float) -> float:
    return 0.0 if x < 0 else 1.0 if x > 1 else x


def _token_fallback(object_text: str, candidate_text: str) -> float:
    sc = config.scoring
    ov = token_overlap(object_text, candidate_text)
    bonus = float(min(ov, sc.overlap_cap))
    if ov == 0:
        bonus -= sc.zero_overlap_penalty
    return bonus


def candidate_domains(
    doc: CertificateDocument,
    taxonomy: Optional[DomainTaxonomy] = None,
) -> FrozenSet[str]:
    tax = taxonomy or default_taxonomy
    return tax.signatures_for(doc.raw_text) | frozenset(doc.file_hints.domains) | frozenset(doc.domain_tags)


# ── Retrieval (hybrid) score ─────────────────────────────────────────────


def lexical_score(
    doc: CertificateDocument,
    object_text: str,
    taxonomy: Optional[DomainTaxonomy] = None,
) -> float:
    """Raw lexical/metadata evidence for one retrieved candidate."""
    tax = taxonomy or default_taxonomy
    rc = config.retrieval
    text = doc.raw_text

    lex = float(sum(1 for t in tax.base_term_set(object_text) if re.search(t, text, re.IGNORECASE)))
    if doc.has_license_mark:
        lex += 2
    if doc.has_council_registration:
        lex += 1
    if doc.mentions_maintenance:
        lex += 1
    if doc.mentions_construction:
        lex += 1
    if _CONCLUDED_RX.search(text):
        lex += 1

    obj = tax.signatures_for(object_text)
    lex += rc.filename_domain_bonus * len(obj & frozenset(doc.file_hints.domains))

    year = doc.file_hints.year or doc.year
    if year:
        lex += (year - rc.recency_baseline) / rc.recency_scale

    if not obj:
        lex += _token_fallback(object_text, text)
    return lex


def retrieval_score(
    doc: CertificateDocument,
    object_text: str,
    vector_score: Optional[float] = None,
    taxonomy: Optional[DomainTaxonomy] = None,
) -> float:
    """vector_weight * vec + lexical_weight * clamp(lex / lexical_scale)."""
    rc = config.retrieval
    vec = _clamp01(vector_score) if vector_score is not None else 0.0
    lex01 = _clamp01(lexical_score(doc, object_text, taxonomy) / rc.lexical_scale)
    return rc.vector_weight * vec + rc.lexical_weight * lex01


# ── Alignment score ──────────────────────────────────────────────────────


def score_cat_to_object(
    candidate: CertificateDocument,
    object_text: str,
    lot_text: str = "",
    taxonomy: Optional[DomainTaxonomy] = None,
) -> float:
    """Alignment of one certificate with the tender object (and lot)."""
    tax = taxonomy or default_taxonomy
    sc = config.scoring

    obj = tax.signatures_for(object_text)
    lot = tax.signatures_for(lot_text)
    cand = candidate_domains(candidate, tax)

    score = 0.0
    score += sc.object_domain_bonus * len(obj & cand)
    score += sc.lot_domain_bonus * len(lot & cand)
    if obj:
        score -= sc.intruder_penalty * len(cand - obj)

    if candidate.has_license_mark:
        score += sc.license_mark_bonus
    if candidate.has_council_registration:
        score += sc.council_bonus
    if candidate.mentions_maintenance:
        score += sc.maintenance_bonus
    if candidate.mentions_construction:
        score += sc.construction_bonus

    year = candidate.effective_year
    if year:
        score += (year - sc.recency_baseline) / sc.recency_scale

    if "eletrica" in obj and _ELECTRICAL_TITLE_RX.search(candidate.professional_title or ""):
        score += sc.title_bonus

    if not obj:
        score += _token_fallback(object_text, candidate.raw_text)
    return score


# ── Dedup ────────────────────────────────────────────────────────────────


def unique_by_cat(candidates: Iterable[CertificateDocument]) -> List[CertificateDocument]:
    """
    Drop repeats, first-seen wins. A candidate repeats an earlier one when
    it has the same (file name, certificate number) pair or the same
    source id. Idempotent: the output contains no such pair twice.
    """
    seen_pairs: Set[Tuple[str, str]] = set()
    seen_sources: Set[str] = set()
    out: List[CertificateDocument] = []
    for c in candidates:
        pair = (c.file_name, c.effective_certificate_number or "")
        if pair in seen_pairs or c.source_id in seen_sources:
            continue
        seen_pairs.add(pair)
        seen_sources.add(c.source_id)
        out.append(c)
    return out


def dedup_retrieved(scored: Sequence[Tuple[CertificateDocument, float]]) -> List[Tuple[CertificateDocument, float]]:
    """
    Retrieval-side collapse: same (source id, certificate number) or same
    non-empty file name. Keeps the first occurrence.
    """
    seen_pairs: Set[Tuple[str, str]] = set()
    seen_names: Set[str] = set()
    out = []
    for doc, score in scored:
        pair = (doc.source_id, doc.effective_certificate_number or "")
        if pair in seen_pairs or (doc.file_name and doc.file_name in seen_names):
            continue
        seen_pairs.add(pair)
        if doc.file_name:
            seen_names.add(doc.file_name)
        out.append((doc, score))
    return out


# ── Ranking ──────────────────────────────────────────────────────────────


def rank_candidates(
    candidates: Sequence[CertificateDocument],
    object_text: str,
    lot_text: str = "",
    taxonomy: Optional[DomainTaxonomy] = None,
) -> List[RankedCandidate]:
    """
    Domain hard filter, then descending alignment score. Python's sort is
    stable, so ties keep retrieval order.
    """
    tax = taxonomy or default_taxonomy
    obj = tax.signatures_for(object_text)
    kept = [c for c in candidates if not obj or obj & candidate_domains(c, tax)]
    if len(kept) < len(candidates):
        logger.info("Domain filter dropped %d/%d candidates (object domains: %s)",
                    len(candidates) - len(kept), len(candidates), sorted(obj))
    ranked = [
        RankedCandidate(certificate=c, score=score_cat_to_object(c, object_text, lot_text, tax))
        for c in kept
    ]
    ranked.sort(key=lambda r: r.score, reverse=True)
    return ranked


def select_aligned(
    ranked: Sequence[RankedCandidate],
    object_text: str,
    taxonomy: Optional[DomainTaxonomy] = None,
) -> Tuple[List[RankedCandidate], bool]:
    """
    Top certificates that clear the alignment threshold, plus whether any
    did. The threshold is higher when the object has a domain.
    """
    tax = taxonomy or default_taxonomy
    sc = config.scoring
    threshold = sc.min_align_domain if tax.signatures_for(object_text) else sc.min_align_generic
    passing = [r for r in ranked if r.score >= threshold]
    return passing[:sc.top_certificates], bool(passing)
