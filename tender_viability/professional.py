"""
professional.py — Responsible-professional (RT) pick and capacity check.

suggest_best_professional() picks, among the certificates that share a
domain with the object, the one whose holder we would name as RT.

compare_requirement_vs_certificate() checks the capacity figures a bid
demands (kVA, kV, TR, addressable fire alarm) against what the chosen
CAT actually proves. One line per figure the requirement mentions.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from tender_viability.metadata import pick_reasonable_year
from tender_viability.schemas import CertificateDocument, ProfessionalSuggestion
from tender_viability.scoring import candidate_domains
from tender_viability.taxonomy import DomainTaxonomy, taxonomy as default_taxonomy

logger = logging.getLogger(__name__)

# Object hints → what the CAT text must show to earn the context bonus
_MAINTENANCE_OBJECT_RX = re.compile(r"manuten[çc][ãa]o|predial|edifica", re.IGNORECASE)
_SUBSTATION_OBJECT_RX = re.compile(r"subesta[çc][ãa]o|kva|disjuntor|transformador", re.IGNORECASE)
_SUBSTATION_CAT_RX = re.compile(r"subest|kva|transformador|disjuntor", re.IGNORECASE)
_HVAC_OBJECT_RX = re.compile(r"climatiza[çc][ãa]o|chiller|\btr\b|vrf", re.IGNORECASE)
_HVAC_CAT_RX = re.compile(r"climatiza|chiller|\bTR\b|VRF", re.IGNORECASE)
_FIRE_OBJECT_RX = re.compile(r"inc[êe]ndio|hidrante|sprinkler|sdai|endere[çc]a", re.IGNORECASE)
_FIRE_CAT_RX = _FIRE_OBJECT_RX

# Professional title that fits each domain
TITLE_BY_DOMAIN = {
    "eletrica": re.compile(r"eletric", re.IGNORECASE),
    "civil": re.compile(r"civil|arquitet", re.IGNORECASE),
    "incendio": re.compile(r"seguran[çc]a|inc[êe]ndio", re.IGNORECASE),
    "clima": re.compile(r"mec[âa]nic|refrigera", re.IGNORECASE),
    "agua": re.compile(r"sanit[áa]ri|ambiental|h[íi]dric", re.IGNORECASE),
    "saude_social": re.compile(r"enferm|m[ée]dic|assistente\s+social", re.IGNORECASE),
}

MISSING = "—"


def _professional_of(doc: CertificateDocument) -> str:
    if doc.professional_name:
        return doc.professional_name
    # Certificates are synced as <manager>/<file>, and the manager folder
    # is named after the professional.
    if "/" in doc.source_id:
        return doc.source_id.split("/", 1)[0].strip() or MISSING
    return MISSING


def suggest_best_professional(
    candidates: Sequence[CertificateDocument],
    object_text: str,
    taxonomy: Optional[DomainTaxonomy] = None,
) -> Optional[ProfessionalSuggestion]:
    """Best-fit RT among domain-overlapping candidates, or None."""
    tax = taxonomy or default_taxonomy
    pool = [c for c in candidates if tax.has_domain_overlap(object_text, c.raw_text, c.file_name)]
    if not pool:
        return None

    obj = tax.signatures_for(object_text)
    best, best_score = None, None
    for c in pool:
        s = 2.0 * len(candidate_domains(c, tax) & obj)
        text = c.raw_text

        if _MAINTENANCE_OBJECT_RX.search(object_text):
            s += (3 if c.mentions_maintenance else 0) + (1 if c.mentions_construction else 0)
        if _SUBSTATION_OBJECT_RX.search(object_text) and _SUBSTATION_CAT_RX.search(text):
            s += 2
        if _HVAC_OBJECT_RX.search(object_text) and _HVAC_CAT_RX.search(text):
            s += 2
        if _FIRE_OBJECT_RX.search(object_text) and _FIRE_CAT_RX.search(text):
            s += 2

        if c.has_license_mark:
            s += 2
        if c.has_council_registration:
            s += 1
        title = c.professional_title or ""
        if title and any(TITLE_BY_DOMAIN[d].search(title) for d in obj if d in TITLE_BY_DOMAIN):
            s += 1

        year = pick_reasonable_year(text) or c.effective_year or 0
        s += year / 1000

        # strict > keeps the earlier (better ranked) candidate on ties
        if best_score is None or s > best_score:
            best, best_score = c, s

    year = pick_reasonable_year(best.raw_text) or best.effective_year
    logger.info("Suggested RT: %s (%s, score=%.3f)", _professional_of(best), best.file_name, best_score)
    return ProfessionalSuggestion(
        professional=_professional_of(best),
        certificate_number=best.effective_certificate_number or MISSING,
        year=str(year) if year else MISSING,
        issuing_body=best.effective_issuing_body or MISSING,
        scope=best.scope_summary or MISSING,
        source_file=best.file_name or best.source_id or MISSING,
    )


# ── Capacity comparison ──────────────────────────────────────────────────

_THOUSANDS = r"\d{1,3}(?:\.\d{3})+(?:,\d+)?"
_NUM = r"(?<![\d.,])(" + _THOUSANDS + r"|\d+(?:[.,]\d+)?)"
_THOUSANDS_RX = re.compile(_THOUSANDS)
_KVA_RX = re.compile(_NUM + r"\s*kva\b")
_KV_RX = re.compile(_NUM + r"\s*kv\b")
_TR_RX = re.compile(_NUM + r"\s*tr\b")
_ADDRESSABLE_RX = re.compile(r"endere[çc][áa]vel")
_CONVENTIONAL_RX = re.compile(r"convencional")


@dataclass
class Capabilities:
    kva: Optional[float] = None
    kv: Optional[float] = None
    tr: Optional[float] = None
    addressable: bool = False


def _to_number(raw: str) -> float:
    # "1.500" is fifteen hundred, "112,5" and "13.8" are decimals
    if _THOUSANDS_RX.fullmatch(raw):
        raw = raw.replace(".", "")
    return float(raw.replace(",", "."))


def _fmt(value: float):
    return int(value) if value.is_integer() else str(value).replace(".", ",")


def _first_number(rx: "re.Pattern[str]", text: str) -> Optional[float]:
    m = rx.search(text)
    return _to_number(m.group(1)) if m else None


def parse_capabilities(text: Optional[str]) -> Capabilities:
    t = (text or "").lower()
    return Capabilities(
        kva=_first_number(_KVA_RX, t),
        kv=_first_number(_KV_RX, t),
        tr=_first_number(_TR_RX, t),
        addressable=bool(_ADDRESSABLE_RX.search(t)),
    )


def _compare_numeric(required: Optional[float], offered: Optional[float], unit: str) -> Optional[str]:
    if required is None:
        return None
    required_s = _fmt(required)
    if offered is None:
        return f"⚠ exige ≥ {required_s} {unit} e a CAT não cita {unit}"
    if offered > required:
        return f"✅ **superior**: {_fmt(offered)} {unit} > exigido {required_s} {unit}"
    if offered == required:
        return f"✅ **igual**: {_fmt(offered)} {unit}"
    return f"❌ **inferior**: {_fmt(offered)} {unit} < exigido {required_s} {unit}"


def compare_requirement_vs_certificate(requirement_text: str, certificate_text: str) -> List[str]:
    req = parse_capabilities(requirement_text)
    cat = parse_capabilities(certificate_text)
    lines = [
        line for line in (
            _compare_numeric(req.kva, cat.kva, "kVA"),
            _compare_numeric(req.kv, cat.kv, "kV"),
            _compare_numeric(req.tr, cat.tr, "TR"),
        ) if line
    ]
    if req.addressable:
        cat_lower = (certificate_text or "").lower()
        if cat.addressable:
            lines.append("✅ **igual**: sistema de alarme **endereçável** citado")
        elif _CONVENTIONAL_RX.search(cat_lower):
            lines.append("❌ **inferior**: CAT cita sistema **convencional**, edital exige **endereçável**")
        else:
            lines.append("⚠ exige **endereçável**, CAT não deixa explícito")
    return lines
