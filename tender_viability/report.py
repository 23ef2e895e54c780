"""
report.py — Markdown viability report.

Section order is fixed; the bid teams diff reports between runs and got
confused every time a section moved:

  # RELATÓRIO DE VIABILIDADE
  ## Dados do edital
  ### Resultado ponderado
  ### Viabilidade profissional e técnica
  ### Responsável Técnico Sugerido        (only when we have one)
  ## Sumário Executivo
  ## Análise Detalhada
"""

import re
from typing import List

from tender_viability.schemas import AnalysisResult, CertificateDocument

_FINAL_RECOMMENDATION_RX = re.compile(r"###\s*Recomenda[çc][ãa]o\s+Final[\s\S]*?(?=\n###|\n##|$)", re.IGNORECASE)


def _pct(x: float) -> int:
    return int(round(x * 100))


def certificate_label(c: CertificateDocument) -> str:
    name = c.file_name or c.source_id
    year = c.effective_year
    return f"{name} ({year})" if year else name


def certificate_evidence_tags(c: CertificateDocument) -> str:
    tags = []
    if c.effective_certificate_number:
        tags.append(f"CAT nº {c.effective_certificate_number}")
    if c.has_license_mark:
        tags.append("ART")
    if c.has_council_registration:
        tags.append("CREA/CAU")
    return " · ".join(tags) or "—"


def _header_section(result: AnalysisResult) -> str:
    h = result.header
    rows = [
        ("Órgão Licitante", h.issuing_body),
        ("Modalidade", h.modality),
        ("Tipo", h.judgement_type),
        ("Prazo de execução", h.execution_period),
        ("Classificação de Despesa e valor", h.budget),
        ("Objeto licitado", h.object_text or result.object_text),
        ("Prazo máximo para proposta", h.proposal_deadline),
    ]
    return "\n".join(f"- **{label}:** {value or '-'}" for label, value in rows)


def _weighted_section(result: AnalysisResult) -> str:
    rec = result.recommendation
    t, a = rec.technical, rec.administrative
    ok, partial, none = t.ok + a.ok, t.partial + a.partial, t.none + a.none
    return "\n\n".join([
        "### Resultado ponderado",
        f"**Recomendação:** {rec.badge} {rec.label}",
        f"**Indicadores gerais:** {ok} OK • {partial} PARCIAL • {none} NÃO • "
        f"**Atendimento global (ponderado): {_pct(rec.global_score)}%**",
        f"**Técnico:** {t.ok} OK • {t.partial} PARCIAL • {t.none} NÃO ({_pct(t.score)}%)",
        f"**Documental:** {a.ok} OK • {a.partial} PARCIAL • {a.none} NÃO ({_pct(a.score)}%)",
    ])


def _viability_section(result: AnalysisResult) -> str:
    title = "### Viabilidade profissional e técnica"
    if not result.top_certificates:
        return (
            f"{title}\n\n- **Não localizamos CATs aderentes automaticamente.** "
            "Recomenda-se checagem manual do acervo."
        )
    adherence = "**aderência técnica direta**" if result.domain_aligned else "**aderência parcial**"
    items: List[str] = []
    for ranked in result.top_certificates:
        c = ranked.certificate
        head = [f"**CAT:** {c.file_name or c.source_id}"]
        if c.effective_issuing_body:
            head.append(f"**Órgão/Entidade:** {c.effective_issuing_body}")
        if c.effective_year:
            head.append(f"**Ano:** {c.effective_year}")
        items.append(
            f"- {' | '.join(head)}\n"
            f"  - **Escopo/Resumo:** {c.scope_summary or '-'}\n"
            f"  - **Comprovações:** {certificate_evidence_tags(c)}"
        )
    return (
        f"{title}\n\nCom base no acervo (CATs), identificamos {adherence} ao objeto licitado:\n\n"
        + "\n\n".join(items)
    )


def _professional_section(result: AnalysisResult) -> str:
    rt = result.professional
    if rt is None:
        return ""
    comparison = (
        "\n".join(f"- {line}" for line in result.capability_comparison)
        or "- (Sem parâmetros comparáveis explícitos)"
    )
    return "\n\n".join([
        "### Responsável Técnico Sugerido",
        f"**Nome:** {rt.professional}",
        f"**CAT nº / Ano / Órgão:** {rt.certificate_number} / {rt.year} / {rt.issuing_body}",
        f"**Escopo (resumo):** {rt.scope}",
        f"**Fonte (arquivo):** {rt.source_file}",
        "#### Comprovação de equivalência/excedente frente ao edital",
        comparison,
    ])


def _summary_section(result: AnalysisResult) -> str:
    rec = result.recommendation
    indicators = (
        f"**Indicadores (ponderado):** Técnico {_pct(rec.technical.score)}% • "
        f"Documental {_pct(rec.administrative.score)}% • **Global {_pct(rec.global_score)}%**"
    )
    summary = result.executive_summary.strip() or "- (Sumário executivo indisponível)"

    # Stamp the computed indicators into the model's own final-recommendation block
    def _patch(m: "re.Match[str]") -> str:
        block = m.group(0).rstrip()
        return block if "Indicadores (ponderado):" in block else f"{block}\n\n{indicators}"

    summary = _FINAL_RECOMMENDATION_RX.sub(_patch, summary, count=1)
    return f"## Sumário Executivo\n\n{summary}"


def _details_section(result: AnalysisResult) -> str:
    blocks = [o.justification for o in result.outcomes if o.justification]
    body = "\n\n".join(blocks) or "- (Não foi possível gerar a análise detalhada)"
    return f"## Análise Detalhada\n\n{body}"


def build_report(result: AnalysisResult) -> str:
    sections = [
        "# RELATÓRIO DE VIABILIDADE",
        "## Dados do edital",
        _header_section(result),
        _weighted_section(result),
        _viability_section(result),
        _professional_section(result),
        _summary_section(result),
        _details_section(result),
    ]
    return "\n\n".join(s for s in sections if s) + "\n"
