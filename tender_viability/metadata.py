"""
metadata.py — Structured hints out of a certificate's file name and text.

Every field is best-effort. CATs arrive as native PDFs, scans run through
OCR, DOCX exports from the council portal, and occasionally a photo of a
printout; the same field is laid out differently in each. So the rules
here are ordered lists of regexes where the first hit wins, the text is
always tried before the file name, and an unmatched field is simply left
empty. extract_metadata() never raises for string input.

Year selection deserves a note: CAT texts routinely cite the regulating
law ("Lei nº 5.194, de 24 de dezembro de 1966") and the council
resolution years, so the first year in the text is usually wrong. We take
the maximum year inside [1990, next year], which in practice is the
issue or completion date.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from tender_viability.schemas import (
    MIN_REASONABLE_YEAR,
    CertificateDocument,
    FileHints,
    max_reasonable_year,
)
from tender_viability.taxonomy import taxonomy

logger = logging.getLogger(__name__)

SCOPE_MAX_CHARS = 500
FALLBACK_SCOPE_CHARS = 300

_WS_RX = re.compile(r"\s+")
_YEAR_RX = re.compile(r"\b(19\d{2}|20\d{2})\b")
# File names use "_" as a separator, which \b treats as a word character.
_FILENAME_YEAR_RX = re.compile(r"(?<!\d)(19\d{2}|20\d{2})(?!\d)")

# ── Certificate number ───────────────────────────────────────────────────
_NUMBER_RXS = (
    re.compile(r"\bCAT\s*[Nº°o\.:\- ]+\s*(\d[\d\-/\.]*)", re.IGNORECASE),
    re.compile(
        r"Certid[ãa]o\s+de\s+Acervo\s+T[ée]cnico(?:\s+com\s+Atestado)?\s*[Nº°o\.:\- ]+\s*(\d[\d\-/\.]*)",
        re.IGNORECASE,
    ),
    # last resort: a bare number/year pair ("1234/2023")
    re.compile(r"\b(\d{3,}\s*/\s*(?:19|20)\d{2})\b"),
)
_FILENAME_NUMBER_RX = re.compile(
    r"cat\s*(?:n[º°o]\.?\s*)?[\-:_\s]*(\d{2,}(?:[/\-]\d{2,4})?)", re.IGNORECASE,
)

# ── Issuing body ─────────────────────────────────────────────────────────
_NAME = r"[A-ZÀ-Ý][\wÀ-ÿ\-]+(?:\s+(?:d[aeo]s?\s+)?[A-ZÀ-Ý][\wÀ-ÿ\-]+){0,3}"
_LONG_FORM_BODY_RXS = (
    re.compile(r"(?i:prefeitura(?:\s+municipal)?\s+d[aeo]\s+)" + _NAME),
    re.compile(r"(?i:governo\s+do\s+estado\s+d[aeo]\s+)" + _NAME),
    re.compile(r"(?i:secretaria\s+(?:municipal\s+|estadual\s+)?d[aeo]s?\s+)" + _NAME),
    re.compile(r"(?i:universidade\s+(?:federal\s+|estadual\s+)?(?:rural\s+)?d[aeo]\s+)" + _NAME),
    re.compile(r"(?i:c[âa]mara\s+municipal\s+d[aeo]\s+)" + _NAME),
    re.compile(r"\bPM\s+d[eao]\s+" + _NAME),
)
_ACRONYM_BODY_RX = re.compile(
    r"\b(CELPE|CHESF|COMPESA|CAGEPA|CODEVASF|DNIT|SEINFRA(?:/[A-Z]{2})?|SINFRA|"
    r"PMJP|UFAL|UFRPE|UFPE|SEDUC|EMLURB|NEOENERGIA)\b"
)
_FILENAME_BODY_RX = re.compile(
    r"\b(CELPE|CHESF|COMPESA|PM\s+DE\s+[A-ZÇÃÕ ]+|PREFEITURA\s+DE\s+[A-ZÇÃÕ ]+|CREA-?[A-Z]{2})\b",
    re.IGNORECASE,
)

# ── Flags ────────────────────────────────────────────────────────────────
_LICENSE_RX = re.compile(
    r"\bART\b|\bRRT\b|(?i:anota[çc][ãa]o\s+de\s+responsabilidade\s+t[ée]cnica)"
    r"|(?i:registro\s+de\s+responsabilidade\s+t[ée]cnica)"
)
_COUNCIL_RX = re.compile(r"\b(?:CREA|CAU)\b", re.IGNORECASE)
_CONSTRUCTION_RX = re.compile(r"\bobras?\b|edifica[çc][ãa]o|constru[çc][ãa]o", re.IGNORECASE)
_MAINTENANCE_RX = re.compile(r"manuten[çc][ãa]o|preventiva|corretiva|predial", re.IGNORECASE)

# ── Professional ─────────────────────────────────────────────────────────
_PROFESSIONAL_RXS = (
    re.compile(r"Profissional\s*:\s*(.{3,80}?)\s+(?:Registro|RNP|T[íi]tulo)", re.IGNORECASE),
    re.compile(r"Profissional\s*:\s*(.{3,80}?)(?:\s*[,;|]|\s+CPF\b|$)", re.IGNORECASE),
)
_TITLE_RX = re.compile(
    r"T[íi]tulo\s+profissional\s*:\s*(.+?)(?:\s+(?:RNP|Registro|Empresa|CPF|Contratante)\b|[;|]|$)",
    re.IGNORECASE,
)

_COMPLETED_RX = re.compile(r"(?:atividade|obra|servi[çc]o)\s+conclu[íi]d[ao]", re.IGNORECASE)
_IN_PROGRESS_RX = re.compile(r"(?:atividade|obra|servi[çc]o)\s+em\s+andamento", re.IGNORECASE)

_SCOPE_HEADER_RX = re.compile(
    r"(?:OBJETO|OBJETIVO|DESCRI[ÇC][ÃA]O(?:\s+DA\s+OBRA\s+OU\s+SERVI[ÇC]O)?|"
    r"ATIVIDADE\s+T[ÉE]CNICA|OBSERVA[ÇC](?:[ÃA]O|[ÕO]ES))\s*[:\-]\s*",
    re.IGNORECASE,
)


def normalize_spaces(text: Optional[str]) -> str:
    return _WS_RX.sub(" ", text or "").strip()


def _years_in(text: str, rx: "re.Pattern[str]") -> List[int]:
    hi = max_reasonable_year()
    return [y for y in map(int, rx.findall(text or "")) if MIN_REASONABLE_YEAR <= y <= hi]


def pick_reasonable_year(text: Optional[str]) -> Optional[int]:
    """Largest year in [1990, next year] mentioned in the text, or None."""
    years = _years_in(text or "", _YEAR_RX)
    return max(years) if years else None


def _first_group(rxs, text: str) -> Optional[str]:
    for rx in rxs:
        m = rx.search(text)
        if m:
            value = m.group(1).strip().rstrip(".-/")
            if value:
                return value
    return None


def parse_filename_hints(file_name: Optional[str]) -> FileHints:
    fn = file_name or ""
    number = _FILENAME_NUMBER_RX.search(fn)
    years = _years_in(fn, _FILENAME_YEAR_RX)
    body = _FILENAME_BODY_RX.search(re.sub(r"[_]+", " ", fn))
    return FileHints(
        certificate_number=number.group(1) if number else None,
        year=years[0] if years else None,
        issuing_body=body.group(0).strip() if body else None,
        domains=sorted(taxonomy.filename_domains(fn)),
    )


def _issuing_body(text: str) -> Optional[str]:
    for rx in _LONG_FORM_BODY_RXS:
        m = rx.search(text)
        if m:
            return m.group(0).strip(" ,.;-")
    m = _ACRONYM_BODY_RX.search(text)
    return m.group(1) if m else None


def _scope_summary(text: str) -> str:
    m = _SCOPE_HEADER_RX.search(text)
    if m:
        block = text[m.end():m.end() + SCOPE_MAX_CHARS]
        cut = [i for i in (block.find(". "), block.find(";")) if i > 0]
        if cut:
            block = block[:min(cut)]
        block = block.strip()
        if block:
            return block
    snippet = text[:FALLBACK_SCOPE_CHARS].strip()
    if len(text) > FALLBACK_SCOPE_CHARS and not snippet.endswith("..."):
        snippet += "..."
    return snippet


def _completion_status(text: str) -> str:
    if _COMPLETED_RX.search(text):
        return "completed"
    if _IN_PROGRESS_RX.search(text):
        return "in_progress"
    return "unknown"


def extract_metadata(
    file_name: Optional[str],
    raw_text: Optional[str],
    source_id: Optional[str] = None,
) -> CertificateDocument:
    """
    Build a CertificateDocument from a file name and its extracted text.

    Text wins over file name for every field that both can supply; the
    file-name values are still kept in `file_hints` for the report.
    """
    fn = file_name or ""
    t = normalize_spaces(raw_text)
    hints = parse_filename_hints(fn)

    professional = _first_group(_PROFESSIONAL_RXS, t)
    title = _TITLE_RX.search(t)

    return CertificateDocument(
        source_id=source_id or fn or "sem-nome",
        file_name=fn,
        raw_text=t,
        certificate_number=_first_group(_NUMBER_RXS, t) or hints.certificate_number,
        issuing_body=_issuing_body(t) or hints.issuing_body,
        year=pick_reasonable_year(t) or hints.year,
        has_license_mark=bool(_LICENSE_RX.search(t)),
        has_council_registration=bool(_COUNCIL_RX.search(t)),
        mentions_construction=bool(_CONSTRUCTION_RX.search(t)),
        mentions_maintenance=bool(_MAINTENANCE_RX.search(t)),
        professional_name=professional,
        professional_title=title.group(1).strip() if title else None,
        completion_status=_completion_status(t),
        scope_summary=_scope_summary(t),
        domain_tags=hints.domains,
        file_hints=hints,
    )


# ── Smoke test ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    sample = """
    CERTIDÃO DE ACERVO TÉCNICO COM ATESTADO
    CAT Nº 1234/2021
    Profissional: JOSÉ DA SILVA Registro: 12345 Título profissional: Engenheiro Eletricista RNP 111
    Contratante: Prefeitura Municipal de Caruaru, CNPJ 00.000.000/0001-00
    Lei nº 5.194, de 1966. ART nº PE2021000. CREA-PE.
    Atividade Técnica: Execução de manutenção do parque de iluminação pública com LED; 1200 pontos.
    Atividade concluída. Emitido em 2021.
    """
    doc = extract_metadata("CAT_1234-2021_CELPE.pdf", sample, "jose/CAT_1234-2021_CELPE.pdf")
    for k, v in doc.model_dump(exclude={"raw_text"}).items():
        print(f"{k:<26} {v}")
