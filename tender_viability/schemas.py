"""
schemas.py — Pydantic v2 models shared by every stage.

CertificateDocument is the central type: everything the retriever finds,
whether it came from the certificate collection, a chunk, or a file the
user uploaded with the bid, is normalised into one of these before
scoring. Fields the extractor could not find stay None / False rather
than raising, because the scorer treats a missing field as a zero
contribution.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

MIN_REASONABLE_YEAR = 1990

RequirementKind = Literal["TECH", "ADMIN"]
OutcomeStatus = Literal["OK", "PARTIAL", "NONE"]
JobStatus = Literal["running", "completed", "failed"]
TenantId = Union[str, int]


def max_reasonable_year() -> int:
    return datetime.now().year + 1


def _sane_year(v: Optional[int]) -> Optional[int]:
    if v is None:
        return None
    if MIN_REASONABLE_YEAR <= v <= max_reasonable_year():
        return v
    return None


# ── Certificates ─────────────────────────────────────────────────────────


class FileHints(BaseModel):
    """Fields parsed from the file name only. Fallbacks, never authoritative."""
    certificate_number: Optional[str] = None
    year: Optional[int] = None
    issuing_body: Optional[str] = None
    domains: List[str] = Field(default_factory=list)

    @field_validator("year")
    @classmethod
    def year_must_be_reasonable(cls, v: Optional[int]) -> Optional[int]:
        return _sane_year(v)


class CertificateDocument(BaseModel):
    """One technical-capability certificate (CAT) as seen by the scorer."""
    source_id: str
    file_name: str
    raw_text: str = ""
    certificate_number: Optional[str] = None
    issuing_body: Optional[str] = None
    year: Optional[int] = None
    has_license_mark: bool = False
    has_council_registration: bool = False
    mentions_construction: bool = False
    mentions_maintenance: bool = False
    professional_name: Optional[str] = None
    professional_title: Optional[str] = None
    completion_status: Literal["completed", "in_progress", "unknown"] = "unknown"
    scope_summary: str = ""
    domain_tags: List[str] = Field(default_factory=list)
    file_hints: FileHints = Field(default_factory=FileHints)

    @field_validator("year")
    @classmethod
    def year_must_be_reasonable(cls, v: Optional[int]) -> Optional[int]:
        # Legal citations ("Lei 5.194, de 1966") and OCR garbage land here.
        return _sane_year(v)

    @property
    def effective_certificate_number(self) -> Optional[str]:
        return self.certificate_number or self.file_hints.certificate_number

    @property
    def effective_year(self) -> Optional[int]:
        return self.year or self.file_hints.year

    @property
    def effective_issuing_body(self) -> Optional[str]:
        return self.issuing_body or self.file_hints.issuing_body


class StoredCertificate(BaseModel):
    """A certificate as persisted once per tenant + source."""
    tenant_id: TenantId
    source_id: str = Field(..., description="<manager>/<file name>")
    file_name: str
    manager: str = ""
    text: str
    chunk_count: int = 0
    processed_at: datetime = Field(default_factory=datetime.now)


class EvidenceChunk(BaseModel):
    """Fixed-size slice of one source's text. Owned by exactly one source."""
    chunk_id: str
    tenant_id: TenantId
    source_id: str
    chunk_index: int
    text: str


class LocalFile(BaseModel):
    """A file uploaded together with the bid. Never persisted."""
    source: str
    text: str = ""


class RankedCandidate(BaseModel):
    certificate: CertificateDocument
    score: float


class EvidenceHit(BaseModel):
    """One passage backing (or failing to back) a requirement."""
    source: str
    text: str
    score: float


# ── Requirements and recommendation ──────────────────────────────────────


class RequirementOutcome(BaseModel):
    requirement: str
    kind: RequirementKind
    status: OutcomeStatus
    justification: str = ""


class BucketSummary(BaseModel):
    ok: int = 0
    partial: int = 0
    none: int = 0
    total: int = 0
    score: float = 0.0


class Recommendation(BaseModel):
    label: str
    badge: str
    global_score: float
    technical: BucketSummary
    administrative: BucketSummary
    rationale: str = ""


class ProfessionalSuggestion(BaseModel):
    """The responsible professional (RT) we would put on the bid."""
    professional: str
    certificate_number: str
    year: str
    issuing_body: str
    scope: str
    source_file: str


class ComplianceChecklist(BaseModel):
    """
    The company's administrative documentation status, one flag per item
    a tender usually asks for. Unknown means False.
    """
    cnpj_active: bool = False
    articles_of_incorporation: bool = False
    power_of_attorney: bool = False
    representative_accreditation: bool = False
    fgts_regular: bool = False
    inss_regular: bool = False
    federal_tax_regular: bool = False
    balance_sheet: bool = False
    bankruptcy_certificate: bool = False
    economic_financial_qualification: bool = False
    small_business_status: bool = False
    simples_nacional: bool = False
    independent_proposal: bool = False
    no_impeding_fact: bool = False
    bid_guarantee: bool = False
    contract_guarantee: bool = False
    insurance: bool = False
    site_visit: bool = False
    capability_attestations: bool = False
    license_marks: bool = False
    council_registration: bool = False
    technical_manager: bool = False


# ── Tender + run output ──────────────────────────────────────────────────


class BidHeader(BaseModel):
    """Identification block of a tender, as far as regexes can find it."""
    issuing_body: str = ""
    modality: str = ""
    judgement_type: str = ""
    execution_period: str = ""
    budget: str = ""
    object_text: str = ""
    proposal_deadline: str = ""

    @property
    def lot_text(self) -> str:
        return f"{self.modality}\n{self.judgement_type}".strip()


class AnalysisResult(BaseModel):
    """Everything one analysis run produced, report included."""
    header: BidHeader
    object_text: str
    object_domains: List[str] = Field(default_factory=list)
    requirements: List[str] = Field(default_factory=list)
    outcomes: List[RequirementOutcome] = Field(default_factory=list)
    top_certificates: List[RankedCandidate] = Field(default_factory=list)
    domain_aligned: bool = False
    recommendation: Recommendation
    professional: Optional[ProfessionalSuggestion] = None
    capability_comparison: List[str] = Field(default_factory=list)
    executive_summary: str = ""
    report_markdown: str = ""


class Job(BaseModel):
    job_id: str
    kind: str
    status: JobStatus = "running"
    progress: int = 0
    message: str = ""
    tenant_id: Optional[TenantId] = None
    created_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


# ── Smoke test ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    doc = CertificateDocument(source_id="joao/cat_123.pdf", file_name="cat_123.pdf", year=1966)
    assert doc.year is None
    assert doc.completion_status == "unknown"
    print("Test 1 passed: unreasonable year dropped")

    doc = CertificateDocument(
        source_id="x", file_name="x.pdf",
        file_hints=FileHints(certificate_number="123/2020", year=2020),
    )
    assert doc.effective_certificate_number == "123/2020"
    assert doc.effective_year == 2020
    print("Test 2 passed: file hints used as fallback")

    print("\nAll schema tests passed.")
