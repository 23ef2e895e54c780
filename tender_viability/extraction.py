"""
extraction.py — LLM collaborator: requirement extraction, per-requirement
verdicts and the executive summary.

Everything that talks to the model goes through CompletionService so the
pipeline and the tests never touch llama-cpp directly. The local adapter
(LlamaCompletionService) loads the GGUF lazily, same as we always have.

Failure policy, learned the hard way:

  - Transient failures (rate limit 429, busy backend 500/503, timeouts,
    dropped connections) are retried by with_retry() with exponential
    backoff + jitter, a capped delay and a total time budget. Exhausting
    either raises ServiceUnavailable.
  - Anything else fails on the first attempt. Retrying a bad prompt or a
    missing model file six times just makes the user wait 90s for the
    same traceback.
  - A reply that is not a JSON array of strings is a hard error
    (MalformedModelOutput). We used to coerce "whatever came back" into a
    one-item list and ended up scoring the model's apology as a
    requirement.
"""

from __future__ import annotations

import json
import logging
import random
import re
import threading
import time
from typing import Any, Callable, List, Optional, Protocol, Sequence, TypeVar

from tender_viability.config import config
from tender_viability.errors import AnalysisCancelled, MalformedModelOutput, ServiceUnavailable
from tender_viability.schemas import EvidenceHit

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS = frozenset({429, 500, 503})


class CompletionService(Protocol):
    def complete(self, prompt: str) -> str: ...


# ── Retry ────────────────────────────────────────────────────────────────


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    return _status_of(exc) in TRANSIENT_STATUS


def _retry_after(exc: BaseException) -> Optional[float]:
    value = getattr(exc, "retry_after", None)
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def with_retry(
    fn: Callable[[], T],
    *,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    total_budget: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Call fn() until it succeeds, retrying transient failures only.

    Delay for attempt n is min(max_delay, base_delay * 2**(n-1)) plus up to
    25% jitter, or the server's retry_after hint when it sends one. The
    sleep/clock hooks exist for the tests.
    """
    llm = config.llm
    max_attempts = max_attempts or llm.max_retries
    base_delay = llm.retry_base_delay if base_delay is None else base_delay
    max_delay = llm.retry_max_delay if max_delay is None else max_delay
    total_budget = llm.retry_total_budget if total_budget is None else total_budget

    started = clock()
    last_error: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise AnalysisCancelled("Cancelled while calling an external service.")
        try:
            return fn()
        except Exception as exc:
            if not is_transient(exc):
                raise
            last_error = exc
            if attempt == max_attempts:
                break

            hint = _retry_after(exc)
            delay = hint if hint is not None else min(max_delay, base_delay * (2 ** (attempt - 1)))
            delay += random.uniform(0, delay * 0.25)
            if clock() - started + delay > total_budget:
                logger.warning("Retry budget of %.0fs exhausted after %d attempts.", total_budget, attempt)
                break

            logger.warning(
                "Transient failure on attempt %d/%d: %s. Retrying in %.1fs.",
                attempt, max_attempts, exc, delay,
            )
            sleep(delay)

    raise ServiceUnavailable(f"External service kept failing: {last_error}") from last_error


# ── Local LLM adapter ────────────────────────────────────────────────────


class LlamaCompletionService:
    """
    Mistral-7B-Instruct (GGUF) via llama-cpp-python.

    The model takes ~10s to load and ~4GB of RAM, so it is loaded on the
    first complete() call and kept for the life of the object.
    """

    def __init__(self, model_path: Optional[str] = None, cancel_event: Optional[threading.Event] = None):
        self.model_path = model_path or config.llm.model_path
        self.cancel_event = cancel_event
        self._llm = None
        self._lock = threading.Lock()

    def _get_llm(self):
        with self._lock:
            if self._llm is not None:
                return self._llm
            try:
                from llama_cpp import Llama
            except ImportError as exc:
                raise ServiceUnavailable(
                    "llama-cpp-python is not installed; pass a CompletionService instead."
                ) from exc

            logger.info("Loading LLM from: %s", self.model_path)
            try:
                self._llm = Llama(
                    model_path=self.model_path,
                    n_ctx=config.llm.n_ctx,
                    n_threads=config.llm.n_threads or None,
                    verbose=False,
                )
            except (ValueError, OSError) as exc:
                raise ServiceUnavailable(
                    f"Failed to load LLM '{self.model_path}': {exc}. "
                    f"Set LLM_MODEL_PATH to a valid GGUF file."
                ) from exc
            logger.info("LLM loaded successfully.")
            return self._llm

    def complete(self, prompt: str) -> str:
        llm = self._get_llm()

        def _call() -> str:
            response = llm(
                prompt,
                max_tokens=config.llm.max_tokens,
                temperature=config.llm.temperature,
                stop=["\n\n\n\n"],
            )
            return response["choices"][0]["text"].strip()

        text = with_retry(_call, cancel_event=self.cancel_event)
        logger.info("LLM generated %d chars", len(text))
        return text


# ── Prompts ──────────────────────────────────────────────────────────────
# Portuguese on purpose: the model answers in the language it is asked in,
# and the report is read by Brazilian bid teams.

REQUIREMENTS_PROMPT = """Analise o texto do edital e extraia os principais requisitos de habilitação técnica e administrativa.
Sua resposta deve ser **apenas** um array JSON de strings, válido, sem comentários e sem texto extra.

Exemplo:
["Apresentar CAT do responsável técnico.","Certidão negativa de débitos trabalhistas (CNDT)."]

Texto:
---
{text}
---"""

ANALYSIS_PROMPT = """Você é um analista de licitações sênior. Avalie o requisito abaixo **apenas** com base nas evidências.

Requisito:
"{requirement}"

Evidências:
{evidence}

Responda iniciando com: **ATENDIDO**, **ATENDIDO PARCIALMENTE** ou **NÃO ATENDIDO**, seguido de justificativa curta."""

SUMMARY_PROMPT = """Você é um consultor de licitações. Com base nas análises abaixo, escreva um sumário executivo curto em Markdown
sobre a viabilidade de participação no edital cujo objeto é:
"{object_text}"

Inclua os principais pontos fortes, as pendências e uma seção "### Recomendação Final".

Análises:
{analyses}"""


# ── Requirement extraction ───────────────────────────────────────────────

_FENCE_RX = re.compile(r"```(?:json)?\s*")
_ARRAY_RX = re.compile(r"\[[\s\S]*\]")

# Portal logistics, not qualification requirements
PLATFORM_ITEM_RX = re.compile(
    r"credenciamento|chave|senha|licitanet|comprasnet|\bbll\b|enviar\s+proposta",
    re.IGNORECASE,
)


def _parse_json_array(text: str) -> Any:
    """
    Direct parse, then fence-stripped, then the outermost [...] span.
    Returns None when none of them is valid JSON.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    cleaned = _FENCE_RX.sub("", text).strip().rstrip("`")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    match = _ARRAY_RX.search(cleaned)
    if match:
        try:
            return json.loads(match.group())
        except json.JSONDecodeError:
            pass
    return None


def extract_requirements(bid_text: str, completion: CompletionService) -> List[str]:
    """
    Ask the model for the bid's qualification requirements.

    Raises MalformedModelOutput unless the reply parses to a JSON array
    whose items are all strings. Blank items are dropped.
    """
    text = bid_text or ""
    limit = config.llm.max_prompt_chars
    if len(text) > limit:
        logger.info("Bid text truncated from %d to %d chars for requirement extraction", len(text), limit)
        text = text[:limit]

    raw = completion.complete(REQUIREMENTS_PROMPT.format(text=text))
    parsed = _parse_json_array(raw or "")

    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        logger.error("Requirement list is not a JSON array of strings. First 500 chars: %s", (raw or "")[:500])
        raise MalformedModelOutput("Model did not return a JSON array of strings.", raw_output=raw or "")

    requirements = [item.strip() for item in parsed if item.strip()]
    logger.info("Extracted %d requirements", len(requirements))
    return requirements


def filter_platform_items(requirements: Sequence[str]) -> List[str]:
    kept = [r for r in requirements if not PLATFORM_ITEM_RX.search(r)]
    if len(kept) < len(requirements):
        logger.info("Dropped %d portal/credential items", len(requirements) - len(kept))
    return kept


# ── Per-requirement verdict ──────────────────────────────────────────────


def _format_evidence(evidence: Sequence[EvidenceHit]) -> str:
    if not evidence:
        return "Nenhuma evidência foi encontrada."
    return "\n".join(
        f"- Trecho do arquivo '{e.source}' (similaridade: {e.score:.3f}): \"{e.text}\""
        for e in evidence
    )


def analyze_requirement(
    requirement: str,
    evidence: Sequence[EvidenceHit],
    completion: CompletionService,
) -> str:
    prompt = ANALYSIS_PROMPT.format(requirement=requirement, evidence=_format_evidence(evidence))
    verdict = (completion.complete(prompt) or "").strip()
    return f"Requisito: {requirement}\n\n{verdict}"


# ── Executive summary ────────────────────────────────────────────────────

_SUMMARY_HEADING_RX = re.compile(
    r"^\s*(?:#{1,6}\s*)?\**\s*sum[áa]rio\s+executivo[\s*:]*?\n+", re.IGNORECASE,
)


def normalize_summary(markdown: Optional[str]) -> str:
    """Strip a leading "Sumário Executivo" heading; the report adds its own."""
    return _SUMMARY_HEADING_RX.sub("", (markdown or "").strip(), count=1).strip()


def generate_executive_summary(
    analyses: Sequence[str],
    object_text: str,
    completion: CompletionService,
) -> str:
    joined = "\n\n".join(analyses) or "(nenhuma análise disponível)"
    limit = config.llm.max_prompt_chars
    if len(joined) > limit:
        joined = joined[:limit]
    raw = completion.complete(SUMMARY_PROMPT.format(object_text=object_text or "-", analyses=joined))
    return normalize_summary(raw)
