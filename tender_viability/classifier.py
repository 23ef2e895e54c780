"""
classifier.py — TECH vs ADMIN labelling of extracted requirements.

TECH requirements go through certificate matching; ADMIN ones go through
the compliance checklist or generic evidence review. When nothing
matches we default to TECH: a technical item wrongly sent to the
evidence path still gets reviewed, while a technical item wrongly
labelled ADMIN would skip certificate matching entirely.
"""

import re

TECH_REQ_RX = re.compile(
    r"\b(?:cats?|capacidade\s+t[ée]cnica|capacita[çc][ãa]o\s+t[ée]cnica|"
    r"atestados?\s+de?\s+capacidade|acervo\s+t[ée]cnico|"
    r"experi[êe]ncia(?:\s+t[ée]cnica)?|respons[áa]vel\s+t[ée]cnico|rt)\b",
    re.IGNORECASE,
)

ADMIN_REQ_RX = re.compile(
    r"\b(?:cnpj|contrato\s+social|estatuto|procura[çc][ãa]o|preposto|credenciamento|"
    r"regularidade\s+(?:fiscal|trabalhista|federal|estadual|municipal)|receita|pgfn|"
    r"d[íi]vida\s+ativa|fgts|crf|inss|previd[êe]ncia|fazenda\s+nacional|icms|iss|cndt|"
    r"balan[çc]o\s+patrimonial|demonstra[çc](?:[ãa]o|[õo]es)\s+cont[áa]beis|"
    r"certid[ãa]o\s+(?:negativa\s+de\s+)?fal[êe]ncia|recupera[çc][ãa]o\s+judicial|"
    r"me/epp|microempresa|empresa\s+de\s+pequeno\s+porte|simples\s+nacional|sicaf|"
    r"habilita[çc][ãa]o\s+jur[íi]dica|capacidade\s+financeira|"
    r"qualifica[çc][ãa]o\s+econ[ôo]mico[-\s]*financeira|declara[çc](?:[ãa]o|[õo]es)|"
    r"proposta\s+independente|fato\s+impeditivo|garantia\s+de\s+proposta|"
    r"garantia\s+contratual|seguros?|vistoria\s+t[ée]cnica|"
    r"registro\s+(?:no|junto\s+ao)\s+(?:conselho|crea|cau))\b",
    re.IGNORECASE,
)

# Narrower net for leftovers that mention typical paperwork.
ADMIN_FALLBACK_RX = re.compile(
    r"certid[ãa]o|cnpj|contrato|estatuto|balan[çc]o|regularidade|sicaf|fgts|inss|"
    r"fazenda|simples|procura[çc][ãa]o|preposto|garantia|vistoria|declara[çc]",
    re.IGNORECASE,
)


def classify_requirement(text: str) -> str:
    """Return "TECH" or "ADMIN" for one requirement string."""
    req = text or ""
    if TECH_REQ_RX.search(req):
        return "TECH"
    if ADMIN_REQ_RX.search(req):
        return "ADMIN"
    return "ADMIN" if ADMIN_FALLBACK_RX.search(req) else "TECH"
