"""
tender_header.py — Pull the cover-page fields out of a bid ("edital").

Bids have no fixed layout, so every field is a short list of patterns
tried in order; the first non-empty capture wins. The object text is the
one that matters downstream (domain detection and scoring run on it), so
it gets its own block-aware extractor and OCR clean-up.
"""

import logging
import re
from typing import Optional, Sequence

from tender_viability.schemas import BidHeader

logger = logging.getLogger(__name__)

OBJECT_MAX_CHARS = 300

_FIELD_JUNK = ("-", "para")


def normalize_field(value: Optional[str]) -> str:
    s = (value or "").strip()
    if not s or s.lower() in _FIELD_JUNK or "integrante da administração" in s.lower():
        return ""
    return re.sub(r"\s{2,}", " ", s)


def _strip_line(s: Optional[str]) -> str:
    return re.sub(r"\s+", " ", s or "").strip()


def _first(text: str, patterns: Sequence["re.Pattern[str]"]) -> str:
    for rx in patterns:
        m = rx.search(text)
        if m and m.group(1).strip():
            return m.group(1)
    return ""


def _rx(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern, re.IGNORECASE)


_ISSUING_BODY = (
    _rx(r"(?:[ÓO]rg[ãa]o\s+Licitante|ENTIDADE\s+CONTRATANTE|CONTRATANTE|[ÓO]RG[ÃA]O)[:\s]+(.+?)(?:\n|$)"),
    _rx(r"(?:Cliente|Promotora?|Contratante)\s*[:\-]\s*(.+?)(?:\n|$)"),
)
_MODALITY = (
    _rx(r"(CONCORR[ÊE]NCIA\s+ELETR[ÔO]NICA[^\n]*)(?:\n|$)"),
    _rx(r"(Preg[ãa]o\s+Eletr[ôo]nico\s*N[ºo°]\s*[^\n]+)(?:\n|$)"),
    _rx(r"((?:Preg[ãa]o|Concorr[êe]ncia|Tomada\s+de\s+Pre[çc]os)[^\n]{0,80})(?:\n|$)"),
)
_JUDGEMENT = (
    _rx(r"Tipo\s*[:\-]\s*(.+?)(?:\n|$)"),
    _rx(r"TIPO\s*DE\s*JULGAMENTO\s*[:\-]\s*(.+?)(?:\n|$)"),
    _rx(r"Crit[ée]ri[oa]\s*de\s*Julgamento\s*[:\-]\s*(.+?)(?:\n|$)"),
)
_EXECUTION_PERIOD = (
    _rx(r"Prazo\s+de\s+execu[çc][ãa]o[^:\n]*[:\-\s]+(.+?)(?:\n|$)"),
    _rx(r"Vig[êe]ncia\s*[:\-]\s*(.+?)(?:\n|$)"),
)
_EXPENSE_CLASS = (_rx(r"Classifica[çc][ãa]o\s+de\s+Despesa\s*[:\-\s]+(.+?)(?:\n|$)"),)
_ESTIMATED_VALUE = (
    _rx(r"(?:Valor\s+Estimado|Valor\s+do\s+Objeto|Or[çc]amento\s+Estimado)[^\n:]*[:\-\s]+(.+?)(?:\n|$)"),
)
_PROPOSAL_DEADLINE = (
    _rx(r"Prazo\s+m[áa]ximo\s+para\s+proposta\s*[:\-\s]+(.+?)(?:\n|$)"),
    _rx(r"Data\s+limite\s+para\s+propostas\s*[:\-\s]+(.+?)(?:\n|$)"),
)

_OBJECT_BLOCKS = (
    _rx(
        r"(?:^|\n)\s*(?:DO\s+OBJETO|OBJETO(?:\s+LICITADO)?|CL[ÁA]USULA\s+\d+\s*-\s*OBJETO)\s*[:\-]?\s*\n"
        r"([\s\S]{1,1200}?)(?:\n\s*(?:CL[ÁA]USULA|ITEM|CAP[ÍI]TULO|SE[ÇC][ÃA]O)\b|$)"
    ),
    _rx(r"Objeto(?:\s+licitado)?\s*[:\-]\s*([\s\S]{1,1200}?)(?:\n{2,}|ITEM|CL[ÁA]USULA|$)"),
)


def extract_object(text: str) -> str:
    """Object block, else the first line mentioning "objeto"."""
    for rx in _OBJECT_BLOCKS:
        m = rx.search(text or "")
        if m and m.group(1).strip():
            return _strip_line(m.group(1))
    for line in (text or "").splitlines():
        if re.search(r"objeto", line, re.IGNORECASE):
            return _strip_line(line)
    return ""


def tidy_object(raw: str, max_chars: int = OBJECT_MAX_CHARS) -> str:
    """Drop page counters, trailing notice boilerplate and URLs; cap length."""
    s = re.sub(r"^\s*\d+\s*/\s*\d+\s*$", "", raw or "", flags=re.MULTILINE)
    s = re.sub(r"AVISO\s+DE\s+LICITA[ÇC][ÃA]O[\s\S]*$", "", s, flags=re.IGNORECASE)
    s = re.sub(r"https?://\S+", "", s, flags=re.IGNORECASE)
    s = re.sub(r"\s+", " ", s).strip()
    if len(s) > max_chars:
        return s[:max_chars] + "…"
    return s


def parse_bid_header(text: str) -> BidHeader:
    t = text or ""
    budget = " | ".join(
        part for part in (_first(t, _EXPENSE_CLASS).strip(), _first(t, _ESTIMATED_VALUE).strip()) if part
    )
    header = BidHeader(
        issuing_body=normalize_field(_first(t, _ISSUING_BODY)),
        modality=normalize_field(_first(t, _MODALITY)),
        judgement_type=normalize_field(_first(t, _JUDGEMENT)),
        execution_period=normalize_field(_first(t, _EXECUTION_PERIOD)),
        budget=normalize_field(budget),
        object_text=tidy_object(extract_object(t)),
        proposal_deadline=normalize_field(_first(t, _PROPOSAL_DEADLINE)),
    )
    logger.info("Bid header: modality=%r, object=%r", header.modality, header.object_text[:80])
    return header
