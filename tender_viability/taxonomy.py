"""
taxonomy.py — Engineering/service domains and text signatures.

A "signature" is the set of domains whose vocabulary shows up in a piece
of text. Tender objects and CAT texts are free Portuguese with plenty of
OCR noise, so detection is a permissive OR over many near-synonyms: one
hit is enough to tag the domain.

The pattern lists are plain data. Everything else in the package talks to
them through DomainTaxonomy, so swapping the regex lists for a trained
classifier later means replacing one class.

Two tables:
  DOMAIN_LEXICON      — applied to any text (objects, certificates)
  FILENAME_SYNONYMS   — extra hints applied to file names only
"""

from __future__ import annotations

import re
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Pattern, Sequence, Set, Tuple

DOMAIN_LEXICON: Mapping[str, Tuple[str, ...]] = {
    "eletrica": (
        r"subesta", r"kva", r"\bkv\b", r"transformador", r"disjuntor", r"qgbt",
        r"cabine\s+prim[áa]ria", r"baixa\s+tens[ãa]o", r"m[ée]dia\s+tens[ãa]o",
        r"prote[çc][ãa]o\s+el[ée]trica", r"religadores?", r"seccionadoras?",
        r"barramentos?", r"\blt\b", r"\bld\b",
        r"instala[çc](?:[ãa]o|[õo]es)\s+el[ée]tricas?", r"rede\s+el[ée]trica",
        # iluminação pública
        r"ilumina[çc][ãa]o\s+p[úu]blica", r"lumin[áa]ri[ao]s?", r"\bled\b",
        r"fotoc[ée]lula", r"rel[ée]\s*fot[oô]el[ée]trico",
        r"postes?\s+de\s+ilumina", r"bra[çc]o\s+de\s+luz",
        r"parque\s+de\s+ilumina", r"pontos?\s+de\s+luz",
        r"ilumina[çc][ãa]o\s+vi[áa]ria", r"driver\s+de\s+lumin[áa]ria",
        r"\brel[ée]\b", r"\bip\b(?![a-z0-9])",
    ),
    "civil": (
        r"edifica", r"paviment", r"obra\s+civil", r"concreto", r"alvenaria",
        r"funda[çc][ãa]o", r"creche", r"escola", r"pr[ée]dio",
        r"manuten[çc][ãa]o\s+predial", r"reforma",
    ),
    "incendio": (
        r"inc[êe]ndio", r"sdai", r"sprinkler", r"hidrante", r"bomba\s+de\s+inc[êe]ndio",
        r"endere[çc]a", r"alarme", r"detec[çc][ãa]o",
    ),
    "clima": (
        r"climatiza", r"ar\s+condicionado", r"chiller", r"fan\s?coil", r"vrf",
        r"\btr\b", r"split", r"self\s+contained",
    ),
    "agua": (
        r"micromedi", r"hidr[oô]metro", r"adu[çc][ãa]o", r"\beta\b", r"\bete\b", r"\betap\b",
        r"po[çc]os?\s+(?:tubular|artesiano|profundo)", r"submers[íi]vel",
        r"per[íi]metros?\s+de\s+irriga", r"bomba\s+d['\s]?[áa]gua",
        r"tratamento\s+de\s+[áa]gua", r"esta[çc][ãa]o\s+de\s+tratamento",
        r"abastecimento\s+de\s+[áa]gua", r"saneamento",
    ),
    "saude_social": (
        r"sa[úu]de", r"sistema\s+[úu]nico\s+de\s+sa[úu]de|\bsus\b",
        r"assist[êe]ncia\s+social", r"\bsuas\b", r"\bcras\b", r"\bcreas\b",
        r"unidade\s+b[áa]sica\s+de\s+sa[úu]de|\bubs\b", r"\bupa\b", r"posto\s+de\s+sa[úu]de",
        r"hospital", r"cl[íi]nica", r"ambulat[óo]rio",
        r"\bidos[oa]s?\b", r"geriatr", r"geronto", r"casa\s+lar",
        r"institui[çc][ãa]o\s+de\s+longa\s+perman[êe]ncia|\bilpi\b",
        r"cuidad(?:or|ora)(?:es)?\s+de\s+idos[oa]s?",
        r"cuidado\s+domiciliar", r"home\s*care",
        r"enferm(?:eir[oa]s?|agem)", r"t[ée]cnico\s+de\s+enfermagem",
        r"curativos?", r"medica[çc][ãa]o",
    ),
}

# Abbreviations people put in file names but rarely in running text.
FILENAME_SYNONYMS: Mapping[str, Tuple[str, ...]] = {
    "eletrica": (
        r"linha\s+viva", r"linha\s+morta", r"\b(?:69|138|230)\s*kv\b",
        r"alimentador", r"\bip\b", r"\bsubest\b",
    ),
    "civil": (r"predial", r"constru[çc][ãa]o"),
    "incendio": (r"alarme\s+de\s+inc[êe]ndio", r"endere[çc][áa]vel", r"\bppci\b"),
    "clima": (r"\bhvac\b", r"refrigera[çc][ãa]o"),
    "agua": (r"\bsaa\b", r"\bses\b", r"esgot"),
    "saude_social": (r"cuidador(?:a)?\s+de\s+idos", r"enfermagem"),
}

# Generic vocabulary that makes a text look like a technical-capability record.
CERTIFICATE_TERMS: Tuple[str, ...] = (
    r"Certid[ãa]o\s+de\s+Acervo\s+T[ée]cnico", r"\bCAT\b", r"atestado",
    r"respons[áa]vel\s+t[ée]cnico", r"manuten[çc][ãa]o", r"obra",
)
# Used when the object carries no domain at all: broad, so nothing is
# excluded for lack of a topic.
GENERIC_TERMS: Tuple[str, ...] = (
    r"\bCAT\b", r"\bART\b", r"\bCREA\b", r"manuten[çc][ãa]o", r"obra", r"atestado",
)

CERTIFICATE_NAME_RX = r"cat|certid[ãa]o.*acervo|acervo.*t[ée]cnico"
CERTIFICATE_TEXT_RX = r"Certid[ãa]o\s+de\s+Acervo\s+T[ée]cnico|\bCAT\b"


def _compile(patterns: Iterable[str]) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


class DomainTaxonomy:
    """
    Regex-backed domain detector.

    Instances are immutable after construction and safe to share between
    threads. The module-level `taxonomy` is the one the rest of the
    package uses.
    """

    def __init__(
        self,
        lexicon: Mapping[str, Sequence[str]] = DOMAIN_LEXICON,
        filename_synonyms: Optional[Mapping[str, Sequence[str]]] = FILENAME_SYNONYMS,
    ):
        self._lexicon: Dict[str, Tuple[str, ...]] = {d: tuple(p) for d, p in lexicon.items()}
        self._compiled: Dict[str, Tuple[Pattern[str], ...]] = {
            d: _compile(p) for d, p in self._lexicon.items()
        }
        self._filename_compiled: Dict[str, Tuple[Pattern[str], ...]] = {
            d: _compile(p) for d, p in (filename_synonyms or {}).items()
        }

    @property
    def domains(self) -> Tuple[str, ...]:
        return tuple(self._lexicon)

    def patterns(self, domain: str) -> Tuple[str, ...]:
        return self._lexicon.get(domain, ())

    def signatures_for(self, text: Optional[str]) -> FrozenSet[str]:
        """Domains with at least one pattern present in `text`."""
        if not text:
            return frozenset()
        s = text.lower()
        return frozenset(
            d for d, rxs in self._compiled.items() if any(rx.search(s) for rx in rxs)
        )

    def filename_domains(self, file_name: Optional[str]) -> FrozenSet[str]:
        """Text signatures of the name plus the file-name-only synonyms."""
        if not file_name:
            return frozenset()
        # "cat_iluminacao_publica.pdf" → spaces so multi-word patterns hit
        s = re.sub(r"[_\-.]+", " ", file_name.lower())
        hits: Set[str] = set(self.signatures_for(s))
        for d, rxs in self._filename_compiled.items():
            if any(rx.search(s) for rx in rxs):
                hits.add(d)
        return frozenset(hits)

    def candidate_domains(self, text: Optional[str], file_name: Optional[str]) -> FrozenSet[str]:
        return self.signatures_for(text) | self.filename_domains(file_name)

    def has_domain_overlap(self, object_text: str, candidate_text: str, file_name: str = "") -> bool:
        """
        True when the object is undomained, otherwise True only if the
        candidate (text or file name) shares at least one domain with it.
        """
        obj = self.signatures_for(object_text)
        if not obj:
            return True
        return bool(obj & self.candidate_domains(candidate_text, file_name))

    def domain_terms(self, domains: Iterable[str]) -> List[str]:
        terms: List[str] = []
        for d in sorted(domains):
            terms.extend(self.patterns(d))
        return terms

    def base_term_set(self, object_text: str) -> List[str]:
        """
        Terms a candidate must hit at least once to be considered.

        Domain-bearing object → certificate vocabulary plus every pattern
        of the matched domains. Undomained object → the broad generic set.
        Order is stable (insertion order, duplicates removed).
        """
        domains = self.signatures_for(object_text)
        if not domains:
            return list(GENERIC_TERMS)
        return list(dict.fromkeys([*CERTIFICATE_TERMS, *self.domain_terms(domains)]))


def any_pattern(patterns: Iterable[str]) -> str:
    """Join patterns into one alternation that preserves each one's grouping."""
    return "|".join(f"(?:{p})" for p in patterns)


taxonomy = DomainTaxonomy()

signatures_for = taxonomy.signatures_for
filename_domains = taxonomy.filename_domains
has_domain_overlap = taxonomy.has_domain_overlap
base_term_set = taxonomy.base_term_set


# ── Smoke test ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    samples = [
        "Modernização do parque de iluminação pública com substituição por LED",
        "Construção de estação de tratamento de água (ETA)",
        "Contratação de cuidadores de idosos para ILPI",
        "Aquisição de material de expediente",
    ]
    for s in samples:
        print(f"{sorted(signatures_for(s))!s:<30} {s}")
    print(filename_domains("CAT_123-2021_Iluminacao_Publica_CELPE.pdf"))
