"""
config.py — Central configuration for TenderViability.

Every weight, threshold and path the matching engine uses lives here.
The scoring constants look arbitrary in isolation but they interact: the
domain bonus (+8) has to beat the intruder penalty (-7) plus any metadata
bonuses, otherwise an off-topic certificate with ART + CREA + a recent
year outranks an on-topic one. Change them together or not at all.

Deployment overrides go through environment variables, same as the rest
of our services.
"""

from dataclasses import dataclass, field
import os
import logging

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class LLMConfig:
    """
    Local instruct model via llama-cpp-python.

    The retry knobs apply to transient failures only (rate limit, busy
    server, timeouts). Everything else fails on the first attempt.
    """
    model_path: str = os.getenv(
        "LLM_MODEL_PATH",
        "models/mistral-7b-instruct-v0.2.Q4_K_M.gguf",
    )
    n_ctx: int = 8192
    max_tokens: int = 2048
    temperature: float = 0.1
    n_threads: int = 0  # 0 = auto-detect
    max_retries: int = int(os.getenv("LLM_MAX_RETRIES", "6"))
    retry_base_delay: float = 1.2
    retry_max_delay: float = 60.0
    # Whole-call budget across all attempts, in seconds.
    retry_total_budget: float = float(os.getenv("LLM_RETRY_BUDGET", "900"))
    # Bid text sent to the requirement extractor is cut here.
    max_prompt_chars: int = 40000


@dataclass
class EmbeddingConfig:
    """Optional sentence-transformers backend for the vector blend."""
    enabled: bool = _env_bool("EMBEDDINGS_ENABLED", True)
    # Multilingual model: CAT texts are Portuguese, the English MiniLM
    # checkpoints tokenise "iluminação" into garbage.
    model_name: str = os.getenv(
        "EMBEDDING_MODEL",
        "paraphrase-multilingual-MiniLM-L12-v2",
    )


@dataclass
class StoreConfig:
    """Persistent certificate / chunk collections."""
    backend: str = os.getenv("STORE_BACKEND", "chroma")  # "chroma" | "memory"
    chroma_persist_dir: str = os.getenv("CHROMA_PERSIST_DIR", "./chroma_db")
    certificate_collection: str = "certificates"
    chunk_collection: str = "certificate_chunks"
    # <root>/<tenant>/<manager>/<file>
    certificates_root: str = os.getenv("CERTIFICATES_ROOT", "./data/certificates")
    upload_dir: str = os.getenv("UPLOAD_DIR", "./uploads")
    output_dir: str = os.getenv("OUTPUT_DIR", "./outputs")


@dataclass
class ChunkingConfig:
    """
    Character windows, not tokens. Certificates are short and OCR'd; a
    2000-char window holds one full CAT page and the 120-char overlap
    keeps a certificate number from being split across two chunks.
    """
    chunk_chars: int = 2000
    overlap_chars: int = 120
    max_chunks_per_file: int = 1200


@dataclass
class RetrievalConfig:
    """
    Certificate retrieval and on-the-fly evidence search.

    vector_weight / lexical_weight only matter when a vector-capable
    store is configured. Without one the vector term is 0 for every
    candidate and ordering is purely lexical.
    """
    default_limit: int = 8
    vector_weight: float = 0.6
    lexical_weight: float = 0.4
    # Raw lexical score is divided by this and clamped to [0, 1].
    lexical_scale: float = 15.0
    filename_domain_bonus: float = 3.0
    recency_baseline: int = 2010
    recency_scale: float = 12.0

    # Evidence search over uploaded files (BM25 + optional embeddings)
    bm25_weight: float = 0.4
    embedding_weight: float = 0.6
    evidence_top_k: int = 4
    annex_boost: float = 0.1


@dataclass
class ScoringConfig:
    """Certificate-to-object alignment score."""
    object_domain_bonus: float = 8.0
    lot_domain_bonus: float = 4.0
    intruder_penalty: float = 7.0
    license_mark_bonus: float = 2.0
    council_bonus: float = 1.0
    maintenance_bonus: float = 1.0
    construction_bonus: float = 1.0
    title_bonus: float = 1.0
    recency_baseline: int = 2015
    recency_scale: float = 10.0
    overlap_cap: int = 4
    zero_overlap_penalty: float = 5.0

    # Minimum score for a certificate to count as aligned with the object
    min_align_domain: float = 5.0
    min_align_generic: float = 3.0
    top_certificates: int = 2


@dataclass
class RecommendationConfig:
    """
    Global score = technical * technical_weight + admin * admin_weight.

    60/40 with the three-tier thresholds below. 70/30 was tried on a batch
    of electrical tenders and pushed too many "documentation missing"
    bids into RECOMENDADA.
    """
    technical_weight: float = 0.6
    admin_weight: float = 0.4
    recommended_threshold: float = 0.75
    conditional_threshold: float = 0.55
    aligned_floor: float = 0.70


@dataclass
class Config:
    """Master config — instantiated once, used everywhere."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    recommendation: RecommendationConfig = field(default_factory=RecommendationConfig)

    max_file_size_mb: int = 50
    supported_formats: tuple = (".pdf", ".docx", ".txt", ".md")
    max_bid_chars: int = 200000
    max_workers: int = int(os.getenv("MAX_WORKERS", "4"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Fail fast on nonsense weights instead of producing odd rankings."""
        pairs = [
            ("retrieval vector/lexical", self.retrieval.vector_weight, self.retrieval.lexical_weight),
            ("evidence bm25/embedding", self.retrieval.bm25_weight, self.retrieval.embedding_weight),
            ("recommendation technical/admin",
             self.recommendation.technical_weight, self.recommendation.admin_weight),
        ]
        for name, a, b in pairs:
            for w in (a, b):
                if not 0 <= w <= 1:
                    raise ValueError(f"{name} weight must be in [0,1], got {w}")
            if abs((a + b) - 1.0) > 0.01:
                logger.warning(
                    "%s weights sum to %.2f (expected 1.0). "
                    "Scores will not be in [0,1].", name, a + b
                )

        rec = self.recommendation
        if rec.conditional_threshold > rec.recommended_threshold:
            raise ValueError(
                f"conditional_threshold ({rec.conditional_threshold}) must not exceed "
                f"recommended_threshold ({rec.recommended_threshold})"
            )
        if self.chunking.overlap_chars >= self.chunking.chunk_chars:
            raise ValueError("Chunk overlap must be smaller than the chunk size.")
        if self.store.backend not in ("chroma", "memory"):
            raise ValueError(f"Unknown STORE_BACKEND: {self.store.backend}")


# Singleton: every module imports this same instance
config = Config()
