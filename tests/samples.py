"""
samples.py — Shared fixtures for the test suite.

Synthetic but realistic: the certificate texts follow the layout of the
CREA-PE "Certidão de Acervo Técnico com Atestado" we see most often, the
bid follows a municipal Concorrência Eletrônica.
"""

from __future__ import annotations

import json
from typing import List

LIGHTING_OBJECT = "Modernização do parque de iluminação pública com substituição por LED"

LIGHTING_CAT_NAME = "CAT_1234-2021_Iluminacao_Publica.pdf"
LIGHTING_CAT_TEXT = """
CERTIDÃO DE ACERVO TÉCNICO COM ATESTADO
CAT Nº 1234/2021
Profissional: JOSÉ DA SILVA Registro: 12345 Título profissional: Engenheiro Eletricista RNP 111
Contratante: Prefeitura Municipal de Caruaru, CNPJ 00.000.000/0001-00
Conforme Lei nº 5.194, de 24 de dezembro de 1966.
ART nº PE20210000. CREA-PE.
Atividade Técnica: Execução de manutenção do parque de iluminação pública com substituição de 1200 luminárias LED; potência instalada 750 kVA.
Atividade concluída em 2021.
"""

WATER_CAT_NAME = "CAT_5678-2019_ETA_Compesa.pdf"
WATER_CAT_TEXT = """
CERTIDÃO DE ACERVO TÉCNICO COM ATESTADO
CAT Nº 5678/2019
Profissional: MARIA SOUZA Registro: 999 Título profissional: Engenheira Sanitarista RNP 222
Contratante: COMPESA
ART nº PE20190000. CREA-PE.
Atividade Técnica: Construção de estação de tratamento de água; vazão 120 L/s.
Obra concluída em 2019.
"""

BID_TEXT = """
EDITAL DE LICITAÇÃO
Órgão Licitante: Prefeitura Municipal de Caruaru
CONCORRÊNCIA ELETRÔNICA Nº 012/2024
Tipo: Menor preço global
Prazo de execução: 12 (doze) meses
Valor Estimado: R$ 2.500.000,00
Objeto: Modernização do parque de iluminação pública com substituição por LED

7. DA HABILITAÇÃO
7.1 Apresentar CAT do responsável técnico compatível com o objeto.
7.2 Certidão negativa de débitos trabalhistas (CNDT).
7.3 Credenciamento no sistema Licitanet.
Prazo máximo para proposta: 15/03/2024 às 09h
"""

BID_REQUIREMENTS = [
    "Apresentar CAT do responsável técnico compatível com o objeto.",
    "Certidão negativa de débitos trabalhistas (CNDT).",
    "Credenciamento no sistema Licitanet.",
]


class FakeCompletion:
    """
    Deterministic stand-in for the LLM. Routes on the prompt: requirement
    extraction, per-requirement verdict, or executive summary.
    """

    def __init__(self, requirements: List[str] = None, verdict: str = "**NÃO ATENDIDO** — sem evidência.",
                 summary: str = None, requirements_raw: str = None):
        self.requirements = BID_REQUIREMENTS if requirements is None else requirements
        self.requirements_raw = requirements_raw
        self.verdict = verdict
        self.summary = summary if summary is not None else (
            "Sumário Executivo\n\nBoa aderência técnica ao objeto.\n\n"
            "### Recomendação Final\nParticipar, regularizando a CNDT."
        )
        self.prompts: List[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if "array JSON de strings" in prompt:
            if self.requirements_raw is not None:
                return self.requirements_raw
            return json.dumps(self.requirements, ensure_ascii=False)
        if "Avalie o requisito" in prompt:
            return self.verdict
        return self.summary


class FailingSummaryCompletion(FakeCompletion):
    """Fails only on the executive summary."""

    def complete(self, prompt: str) -> str:
        if "sumário executivo" in prompt:
            raise RuntimeError("model crashed")
        return super().complete(prompt)
