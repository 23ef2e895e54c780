"""
compliance.py — ADMIN requirements against the company's checklist.

Ordered rules, first match wins. A requirement no rule recognises is
PARTIAL: we cannot confirm it from the checklist, but we do not want an
unrecognised wording to sink the administrative score either.
"""

import re
from typing import Tuple

from tender_viability.schemas import ComplianceChecklist, RequirementOutcome

# (pattern, checklist flag)
ADMIN_RULES: Tuple[Tuple["re.Pattern[str]", str], ...] = tuple(
    (re.compile(rx, re.IGNORECASE), flag) for rx, flag in (
        (r"\bcnpj\b", "cnpj_active"),
        (r"contrato\s+social|estatuto", "articles_of_incorporation"),
        (r"procura[çc][ãa]o", "power_of_attorney"),
        (r"preposto|credenciamento", "representative_accreditation"),
        (r"\bfgts\b|\bcrf\b", "fgts_regular"),
        (r"\binss\b|previd[êe]ncia", "inss_regular"),
        (r"fazenda|pgfn|receita|d[íi]vida\s+ativa|regularidade\s+(?:fiscal|federal|estadual|municipal)|"
         r"\bicms\b|\biss\b|\bcndt\b|trabalhista", "federal_tax_regular"),
        (r"balan[çc]o|demonstra[çc](?:[ãa]o|[õo]es)\s+cont[áa]beis", "balance_sheet"),
        (r"fal[êe]ncia|recupera[çc][ãa]o\s+judicial", "bankruptcy_certificate"),
        (r"capacidade\s+financeira|qualifica[çc][ãa]o\s+econ[ôo]mico", "economic_financial_qualification"),
        (r"me/epp|microempresa|empresa\s+de\s+pequeno\s+porte", "small_business_status"),
        (r"simples\s+nacional", "simples_nacional"),
        (r"proposta\s+independente", "independent_proposal"),
        (r"fato\s+impeditivo|inexist[êe]ncia\s+de\s+fato", "no_impeding_fact"),
        (r"garantia\s+de\s+proposta", "bid_guarantee"),
        (r"garantia\s+contratual", "contract_guarantee"),
        (r"\bseguros?\b", "insurance"),
        (r"vistoria\s+t[ée]cnica", "site_visit"),
        (r"atestados?\s+de?\s+capacidade", "capability_attestations"),
        (r"\b(?:cat|art|rrt)\b", "license_marks"),
        (r"registro\s+n[oa]?\s+conselho|\bcrea\b|\bcau\b|\bcrbio\b|\bcrq\b", "council_registration"),
        (r"respons[áa]vel\s+t[ée]cnico", "technical_manager"),
    )
)


def evaluate_admin_requirement(requirement: str, checklist: ComplianceChecklist) -> RequirementOutcome:
    for rx, flag in ADMIN_RULES:
        if rx.search(requirement or ""):
            ok = bool(getattr(checklist, flag))
            label = "**ATENDIDO**" if ok else "**NÃO ATENDIDO**"
            return RequirementOutcome(
                requirement=requirement,
                kind="ADMIN",
                status="OK" if ok else "NONE",
                justification=(
                    f"Requisito: {requirement}\n\n"
                    f"{label} — Avaliado com base no checklist de compliance da empresa."
                ),
            )
    return RequirementOutcome(
        requirement=requirement,
        kind="ADMIN",
        status="PARTIAL",
        justification=(
            f"Requisito: {requirement}\n\n"
            "**ATENDIDO PARCIALMENTE** — Item administrativo sem mapeamento explícito no checklist."
        ),
    )
