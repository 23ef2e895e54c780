"""
recommendation.py — Bucket summaries and the participation verdict.

Per bucket: (ok + 0.5 * partial) / total, 0 for an empty bucket.
Global: 0.6 * technical + 0.4 * administrative (RecommendationConfig).

Two adjustments to the technical bucket, both applied to a copy:
  - no technical requirement was extracted → one synthetic outcome from
    the aligned-certificate flag (OK if aligned, NONE otherwise). A bid
    whose requirement list happens to be all paperwork should not read
    as "zero technical coverage" when we hold a matching CAT.
  - at least one aligned certificate → technical score floored at 0.70.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from tender_viability.config import config
from tender_viability.schemas import BucketSummary, Recommendation, RequirementOutcome

logger = logging.getLogger(__name__)

LABEL_RECOMMENDED = "PARTICIPAÇÃO RECOMENDADA"
LABEL_CONDITIONAL = "PARTICIPAÇÃO POSSÍVEL (CONDICIONADA)"
LABEL_NOT_RECOMMENDED = "PARTICIPAÇÃO NÃO RECOMENDADA"

_NOT_MET_RX = re.compile(r"\bn[ãa]o\s+atendido\b|🔴", re.IGNORECASE)
_PARTIAL_RX = re.compile(r"atendido\s+parcialmente|🟡", re.IGNORECASE)
_MET_RX = re.compile(r"\batendido\b|🟢", re.IGNORECASE)


def status_from_text(text: Optional[str]) -> Optional[str]:
    """OK / PARTIAL / NONE from a free-text verdict, None if it has none."""
    t = text or ""
    if _NOT_MET_RX.search(t):
        return "NONE"
    if _PARTIAL_RX.search(t):
        return "PARTIAL"
    if _MET_RX.search(t):
        return "OK"
    return None


def summarize(outcomes: Iterable[RequirementOutcome]) -> BucketSummary:
    ok = partial = none = 0
    for o in outcomes:
        if o.status == "OK":
            ok += 1
        elif o.status == "PARTIAL":
            partial += 1
        else:
            none += 1
    total = ok + partial + none
    score = (ok + 0.5 * partial) / total if total else 0.0
    return BucketSummary(ok=ok, partial=partial, none=none, total=total, score=score)


def _pct(x: float) -> int:
    return int(round(x * 100))


def build_recommendation(
    technical: BucketSummary,
    administrative: BucketSummary,
    has_aligned_certificate: bool,
) -> Recommendation:
    rc = config.recommendation

    if technical.total == 0:
        tech = BucketSummary(
            ok=1 if has_aligned_certificate else 0,
            partial=0,
            none=0 if has_aligned_certificate else 1,
            total=1,
            score=1.0 if has_aligned_certificate else 0.0,
        )
    elif has_aligned_certificate:
        tech = technical.model_copy(update={"score": max(technical.score, rc.aligned_floor)})
    else:
        tech = technical.model_copy()

    global_score = tech.score * rc.technical_weight + administrative.score * rc.admin_weight

    if global_score >= rc.recommended_threshold:
        label, badge = LABEL_RECOMMENDED, "🟢"
    elif global_score >= rc.conditional_threshold:
        label, badge = LABEL_CONDITIONAL, "🟡"
    else:
        label, badge = LABEL_NOT_RECOMMENDED, "🔴"

    weights = f"{_pct(rc.technical_weight)}/{_pct(rc.admin_weight)}"
    rationale = "\n".join([
        f"{badge} **{label}**",
        "",
        f"**Técnico:** {tech.ok} OK • {tech.partial} PARCIAL • {tech.none} NÃO ({_pct(tech.score)}%)",
        f"**Documental:** {administrative.ok} OK • {administrative.partial} PARCIAL • "
        f"{administrative.none} NÃO ({_pct(administrative.score)}%)",
        f"**Global ({weights}): {_pct(global_score)}%**",
    ])
    logger.info("Recommendation: %s (global=%.2f, tech=%.2f, admin=%.2f)",
                label, global_score, tech.score, administrative.score)

    return Recommendation(
        label=label,
        badge=badge,
        global_score=global_score,
        technical=tech,
        administrative=administrative.model_copy(),
        rationale=rationale,
    )
