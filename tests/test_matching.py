"""
test_matching.py — Certificate retrieval, ranking and RT suggestion.

No LLM and no embeddings: everything here runs on the lexical path with
in-memory stores and the synthetic CATs from samples.py. Covers:
  - domain signatures and the TECH/ADMIN classifier
  - retrieval from local files, stores, and both at once
  - tenant scoping (42 vs "42" vs another tenant)
  - a store that is down, and a debug hook that throws
  - dedup idempotence and alignment ranking
  - responsible-professional choice and the kVA / TR / alarm comparison

Run with:
    python tests/test_matching.py
    python -m pytest tests/test_matching.py -v
"""

from __future__ import annotations

import logging
import sys
import uuid
from pathlib import Path

# Make sure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tender_viability.classifier import classify_requirement
from tender_viability.errors import InvalidTenantScope, StoreUnavailable
from tender_viability.ingestion import ingest_certificate_file
from tender_viability.metadata import extract_metadata
from tender_viability.professional import compare_requirement_vs_certificate, suggest_best_professional
from tender_viability.retrieval import RetrievalOptions, find_matches, find_scored_matches
from tender_viability.schemas import LocalFile
from tender_viability.scoring import rank_candidates, select_aligned, unique_by_cat
from tender_viability.stores import (
    InMemoryCertificateStore,
    InMemoryChunkStore,
    StoreBundle,
    TextQuery,
    tenant_aliases,
)
from tender_viability.taxonomy import taxonomy

from samples import (
    LIGHTING_CAT_NAME,
    LIGHTING_CAT_TEXT,
    LIGHTING_OBJECT,
    WATER_CAT_NAME,
    WATER_CAT_TEXT,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")
logger = logging.getLogger(__name__)

SUBSTATION_OBJECT = "Manutenção preventiva e corretiva de subestação de 500 kVA"


def _local_files():
    return [
        LocalFile(source=LIGHTING_CAT_NAME, text=LIGHTING_CAT_TEXT),
        LocalFile(source=WATER_CAT_NAME, text=WATER_CAT_TEXT),
    ]


def _memory_bundle():
    return StoreBundle(certificate_store=InMemoryCertificateStore(), chunk_store=InMemoryChunkStore())


class _DownStore:
    """Certificate store whose backend is unreachable."""
    supports_vectors = False

    def search(self, query):
        raise StoreUnavailable("connection refused")

    def similar(self, query_text, query):
        raise StoreUnavailable("connection refused")


# ── Taxonomy + classifier ────────────────────────────────────────────────


def test_object_signatures():
    """Lighting object is electrical; HVAC and undomained objects are told apart."""
    assert taxonomy.signatures_for(LIGHTING_OBJECT) == frozenset({"eletrica"})
    assert taxonomy.signatures_for("Manutenção de ar condicionado tipo split") == frozenset({"clima"})
    assert taxonomy.signatures_for("Aquisição de material de expediente") == frozenset()
    assert "agua" in taxonomy.filename_domains(WATER_CAT_NAME)
    print("  ✓ test_object_signatures")


def test_undomained_object_overlaps_everything():
    """Without an object domain nothing is excluded for lack of a topic."""
    assert taxonomy.has_domain_overlap("Aquisição de material de expediente", WATER_CAT_TEXT)
    assert not taxonomy.has_domain_overlap(LIGHTING_OBJECT, WATER_CAT_TEXT, WATER_CAT_NAME)
    assert taxonomy.has_domain_overlap(LIGHTING_OBJECT, LIGHTING_CAT_TEXT, LIGHTING_CAT_NAME)
    print("  ✓ test_undomained_object_overlaps_everything")


def test_classifier():
    """Technical wording wins; paperwork is ADMIN; unknown defaults to TECH."""
    assert classify_requirement("Apresentar CAT do responsável técnico compatível com o objeto.") == "TECH"
    assert classify_requirement("Atestado de capacidade técnica em obras similares") == "TECH"
    assert classify_requirement("Certidão negativa de débitos trabalhistas (CNDT).") == "ADMIN"
    assert classify_requirement("Certidão negativa de falência") == "ADMIN"
    assert classify_requirement("Apresentar certidão de registro da empresa") == "ADMIN"
    assert classify_requirement("Possuir frota própria de caminhões") == "TECH"
    print("  ✓ test_classifier")


# ── Retrieval ────────────────────────────────────────────────────────────


def test_local_files_domain_filter():
    """The water-treatment CAT never reaches a lighting tender."""
    matches = find_matches(None, LIGHTING_OBJECT, local_files=_local_files())
    assert [m.file_name for m in matches] == [LIGHTING_CAT_NAME]
    assert matches[0].effective_certificate_number == "1234/2021"
    print("  ✓ test_local_files_domain_filter")


def test_scored_matches_are_bounded():
    """Hybrid score stays in [0, 1] and the result is capped at limit * 3."""
    many = [
        LocalFile(source=f"CAT_{100 + i}-2020_Iluminacao.pdf", text=LIGHTING_CAT_TEXT.replace("1234", str(100 + i)))
        for i in range(10)
    ]
    scored = find_scored_matches(None, LIGHTING_OBJECT, limit=2, local_files=many)
    assert len(scored) == 6
    assert all(0.0 <= r.score <= 1.0 for r in scored)
    assert [r.score for r in scored] == sorted((r.score for r in scored), reverse=True)
    print("  ✓ test_scored_matches_are_bounded")


def test_non_certificate_local_file_ignored():
    """An uploaded file that is neither named nor shaped like a CAT is skipped."""
    files = [LocalFile(source="planilha_orcamento.pdf", text="Luminárias LED, 1200 unidades, iluminação pública")]
    assert find_matches(None, LIGHTING_OBJECT, local_files=files) == []
    print("  ✓ test_non_certificate_local_file_ignored")


def test_store_retrieval_is_tenant_scoped():
    """Tenant 42 stored as int is found through "42", never by tenant 7."""
    stores = _memory_bundle()
    assert ingest_certificate_file(stores, 42, "jose", LIGHTING_CAT_NAME, text=LIGHTING_CAT_TEXT)

    found = find_matches(stores, LIGHTING_OBJECT, options=RetrievalOptions(tenant_id="42"))
    assert len(found) == 1
    assert found[0].source_id == f"jose/{LIGHTING_CAT_NAME}"

    assert find_matches(stores, LIGHTING_OBJECT, options=RetrievalOptions(tenant_id=7)) == []
    print("  ✓ test_store_retrieval_is_tenant_scoped")


def test_store_and_local_copy_collapse():
    """Same CAT from the store and as an upload is scored once per source."""
    stores = _memory_bundle()
    ingest_certificate_file(stores, "acme", "jose", LIGHTING_CAT_NAME, text=LIGHTING_CAT_TEXT)
    found = find_matches(
        stores, LIGHTING_OBJECT,
        local_files=[LocalFile(source=LIGHTING_CAT_NAME, text=LIGHTING_CAT_TEXT)],
        options=RetrievalOptions(tenant_id="acme"),
    )
    # store hit (jose/...) and upload share the file name → one candidate
    assert len(found) == 1
    print("  ✓ test_store_and_local_copy_collapse")


def test_tenant_aliases():
    """Every persisted form of a tenant id, given form first."""
    assert tenant_aliases("42") == ["42", 42]
    assert tenant_aliases(42) == [42, "42"]
    assert tenant_aliases(None) == []
    u = "12345678-1234-5678-1234-567812345678"
    assert tenant_aliases(u) == [u, u.replace("-", "")]
    print("  ✓ test_tenant_aliases")


def test_blank_tenant_rejected():
    """A blank tenant is an error, not an empty scope."""
    for call in (
        lambda: tenant_aliases("   "),
        lambda: tenant_aliases(""),
        lambda: find_matches(None, LIGHTING_OBJECT, local_files=_local_files(),
                             options=RetrievalOptions(tenant_id="  ")),
    ):
        try:
            call()
        except InvalidTenantScope:
            pass
        else:
            raise AssertionError("blank tenant accepted")
    print("  ✓ test_blank_tenant_rejected")


def test_uuid_tenant_ingest_and_retrieve():
    """A UUID tenant is stored in canonical form and found by either form."""
    u = uuid.UUID("12345678-1234-5678-1234-567812345678")
    stores = _memory_bundle()
    assert ingest_certificate_file(stores, u, "jose", LIGHTING_CAT_NAME, text=LIGHTING_CAT_TEXT)

    source_id = f"jose/{LIGHTING_CAT_NAME}"
    stored = stores.certificate_store.get(u, source_id)
    assert stored is not None and stored.tenant_id == str(u)
    chunks = stores.chunk_store.search(TextQuery([], u))
    assert chunks and all(c.tenant_id == str(u) for c in chunks)

    for tenant in (u, str(u), u.hex):
        found = find_matches(stores, LIGHTING_OBJECT, options=RetrievalOptions(tenant_id=tenant))
        assert [m.source_id for m in found] == [source_id], tenant
    assert find_matches(stores, LIGHTING_OBJECT, options=RetrievalOptions(tenant_id=uuid.uuid4())) == []
    print("  ✓ test_uuid_tenant_ingest_and_retrieve")


def test_store_failure_falls_back_to_local():
    """A store that is down costs its candidates, not the retrieval."""
    events = []
    found = find_matches(
        StoreBundle(certificate_store=_DownStore()),
        LIGHTING_OBJECT,
        local_files=_local_files(),
        options=RetrievalOptions(debug=events.append),
    )
    assert [m.file_name for m in found] == [LIGHTING_CAT_NAME]
    errors = [e for e in events if e["kind"] == "store_error"]
    assert errors and errors[0]["source"] == "certificates"
    print("  ✓ test_store_failure_falls_back_to_local")


def test_debug_hook_errors_are_ignored():
    """A broken debug hook must not change the result."""
    def hook(event):
        raise RuntimeError("observer bug")

    found = find_matches(None, LIGHTING_OBJECT, local_files=_local_files(),
                         options=RetrievalOptions(debug=hook))
    assert len(found) == 1
    print("  ✓ test_debug_hook_errors_are_ignored")


# ── Dedup + ranking ──────────────────────────────────────────────────────


def test_unique_by_cat_idempotent():
    """Dedup twice equals dedup once, first occurrence kept."""
    a = extract_metadata(LIGHTING_CAT_NAME, LIGHTING_CAT_TEXT, "jose/a")
    a_again = extract_metadata(LIGHTING_CAT_NAME, LIGHTING_CAT_TEXT, "upload/a")
    b = extract_metadata(WATER_CAT_NAME, WATER_CAT_TEXT, "maria/b")
    b_same_source = extract_metadata("outro_nome.pdf", WATER_CAT_TEXT, "maria/b")

    once = unique_by_cat([a, b, a_again, b_same_source])
    assert [d.source_id for d in once] == ["jose/a", "maria/b"]
    assert [d.source_id for d in unique_by_cat(once)] == [d.source_id for d in once]
    print("  ✓ test_unique_by_cat_idempotent")


def test_rank_and_select_aligned():
    """The lighting CAT clears the domain threshold; the water CAT is filtered out."""
    docs = [
        extract_metadata(WATER_CAT_NAME, WATER_CAT_TEXT, "maria/" + WATER_CAT_NAME),
        extract_metadata(LIGHTING_CAT_NAME, LIGHTING_CAT_TEXT, "jose/" + LIGHTING_CAT_NAME),
    ]
    ranked = rank_candidates(docs, LIGHTING_OBJECT)
    assert [r.certificate.file_name for r in ranked] == [LIGHTING_CAT_NAME]
    assert ranked[0].score > 10

    top, aligned = select_aligned(ranked, LIGHTING_OBJECT)
    assert aligned
    assert len(top) == 1
    print("  ✓ test_rank_and_select_aligned")


def test_select_aligned_empty():
    """No candidates means no aligned CAT, not an error."""
    top, aligned = select_aligned([], LIGHTING_OBJECT)
    assert top == [] and aligned is False
    print("  ✓ test_select_aligned_empty")


# ── Responsible professional ─────────────────────────────────────────────

ANA_TEXT = """
CERTIDÃO DE ACERVO TÉCNICO
CAT Nº 111/2020
Profissional: ANA LIMA Registro: 1 Título profissional: Engenheira Eletricista RNP 2
Contratante: CELPE
ART nº 123. CREA-PE.
Atividade Técnica: Manutenção preventiva em subestação de 750 kVA. Atividade concluída em 2020.
"""

BRUNO_TEXT = """
CERTIDÃO DE ACERVO TÉCNICO
CAT Nº 222/2023
Profissional: BRUNO REIS Registro: 3 Título profissional: Técnico em Edificações RNP 4
CREA-PE.
Atividade Técnica: Construção de rede com transformador de 75 kVA. Obra concluída em 2023.
"""


def test_suggest_best_professional():
    """Maintenance + substation + ART beats a newer construction-only CAT."""
    bruno = extract_metadata("CAT_222-2023_Rede.pdf", BRUNO_TEXT, "bruno/CAT_222-2023_Rede.pdf")
    ana = extract_metadata("CAT_111-2020_Subestacao.pdf", ANA_TEXT, "ana/CAT_111-2020_Subestacao.pdf")

    rt = suggest_best_professional([bruno, ana], SUBSTATION_OBJECT)
    assert rt is not None
    assert rt.professional == "ANA LIMA"
    assert rt.certificate_number == "111/2020"
    assert rt.year == "2020"
    assert rt.issuing_body == "CELPE"
    assert rt.source_file == "CAT_111-2020_Subestacao.pdf"
    print("  ✓ test_suggest_best_professional")


def test_professional_name_from_manager_folder():
    """No "Profissional:" line → the manager folder of the source id."""
    doc = extract_metadata("CAT_9.pdf", "Atividade Técnica: manutenção de subestação 300 kVA",
                           "carlos/CAT_9.pdf")
    rt = suggest_best_professional([doc], SUBSTATION_OBJECT)
    assert rt.professional == "carlos"
    assert rt.year == "—"
    print("  ✓ test_professional_name_from_manager_folder")


def test_no_professional_without_overlap():
    """Off-domain certificates produce no RT suggestion."""
    water = extract_metadata(WATER_CAT_NAME, WATER_CAT_TEXT, "maria/" + WATER_CAT_NAME)
    assert suggest_best_professional([water], LIGHTING_OBJECT) is None
    assert suggest_best_professional([], LIGHTING_OBJECT) is None
    print("  ✓ test_no_professional_without_overlap")


def test_capacity_comparison_numeric():
    """kVA and TR comparisons: superior, equal, inferior, not cited."""
    assert compare_requirement_vs_certificate(SUBSTATION_OBJECT, ANA_TEXT) == [
        "✅ **superior**: 750 kVA > exigido 500 kVA"
    ]
    assert compare_requirement_vs_certificate("Subestação de 1.500 kVA", "subestação 1.500 kVA") == [
        "✅ **igual**: 1500 kVA"
    ]
    assert compare_requirement_vs_certificate("Climatização com 200 TR", "central de água gelada 150 TR") == [
        "❌ **inferior**: 150 TR < exigido 200 TR"
    ]
    assert compare_requirement_vs_certificate("transformador de 300 kVA", "rede de distribuição") == [
        "⚠ exige ≥ 300 kVA e a CAT não cita kVA"
    ]
    assert compare_requirement_vs_certificate(LIGHTING_OBJECT, LIGHTING_CAT_TEXT) == []
    print("  ✓ test_capacity_comparison_numeric")


def test_capacity_comparison_decimals():
    """Decimal ratings with comma or dot; thousands separators still read as such."""
    assert compare_requirement_vs_certificate("112,5 kVA", "112,5 kVA") == ["✅ **igual**: 112,5 kVA"]
    assert compare_requirement_vs_certificate("Rede de 13,8 kV", "linha de 69 kV") == [
        "✅ **superior**: 69 kV > exigido 13,8 kV"
    ]
    assert compare_requirement_vs_certificate("Alimentação em 13.8 kV", "rede 11,4 kV") == [
        "❌ **inferior**: 11,4 kV < exigido 13,8 kV"
    ]
    assert compare_requirement_vs_certificate("2.000 kVA", "1.500,5 kVA") == [
        "❌ **inferior**: 1500,5 kVA < exigido 2000 kVA"
    ]
    print("  ✓ test_capacity_comparison_decimals")


def test_capacity_comparison_addressable_alarm():
    """Addressable fire alarm: cited, conventional, or unclear."""
    req = "Sistema de alarme de incêndio endereçável"
    assert compare_requirement_vs_certificate(req, "Instalação de SDAI endereçável") == [
        "✅ **igual**: sistema de alarme **endereçável** citado"
    ]
    assert compare_requirement_vs_certificate(req, "Instalação de sistema convencional") == [
        "❌ **inferior**: CAT cita sistema **convencional**, edital exige **endereçável**"
    ]
    assert compare_requirement_vs_certificate(req, "Instalação de alarme") == [
        "⚠ exige **endereçável**, CAT não deixa explícito"
    ]
    print("  ✓ test_capacity_comparison_addressable_alarm")


def run_all_tests():
    """Run all tests and report results."""
    print("\n" + "=" * 60)
    print("  TenderViability — Matching Tests")
    print("=" * 60 + "\n")

    tests = [
        # Taxonomy + classifier
        test_object_signatures,
        test_undomained_object_overlaps_everything,
        test_classifier,
        # Retrieval
        test_local_files_domain_filter,
        test_scored_matches_are_bounded,
        test_non_certificate_local_file_ignored,
        test_store_retrieval_is_tenant_scoped,
        test_store_and_local_copy_collapse,
        test_tenant_aliases,
        test_blank_tenant_rejected,
        test_uuid_tenant_ingest_and_retrieve,
        test_store_failure_falls_back_to_local,
        test_debug_hook_errors_are_ignored,
        # Dedup + ranking
        test_unique_by_cat_idempotent,
        test_rank_and_select_aligned,
        test_select_aligned_empty,
        # Responsible professional
        test_suggest_best_professional,
        test_professional_name_from_manager_folder,
        test_no_professional_without_overlap,
        test_capacity_comparison_numeric,
        test_capacity_comparison_decimals,
        test_capacity_comparison_addressable_alarm,
    ]

    passed = 0
    failed = 0

    for test_fn in tests:
        try:
            test_fn()
            passed += 1
        except Exception as exc:
            failed += 1
            print(f"  ✗ {test_fn.__name__} FAILED: {exc}")

    print(f"\n{'=' * 60}")
    print(f"  Results: {passed} passed, {failed} failed, {len(tests)} total")
    print(f"{'=' * 60}\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
