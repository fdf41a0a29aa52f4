"""Optional embedding-similarity classification strategy (OpenAI embeddings).

Used only by callers that opt in (``use_embeddings``), chained after pattern
extraction. The narrative and every vocabulary label are embedded with
``text-embedding-3-small``; the best label by cosine similarity is accepted
when it clears ``threshold``. Any service failure, including a missing API
key, degrades to the sentinel classification and never raises.
"""

from __future__ import annotations

import math
import os
import random
import re
import time
from collections.abc import Callable, Sequence

from openai import OpenAI

from .cache import BoundedCache
from .logging_setup import get_logger
from .models import METHOD_EMBEDDING, SENTINEL_CLASSIFICATION, Classification

_MODEL: str = "text-embedding-3-small"
_THRESHOLD: float = 0.80
_MAX_ATTEMPTS: int = 2
_BACKOFF_SEC: float = 0.5
_JITTER_PCT: float = 0.20

# Date fragments carry no account signal and dominate short narratives.
_DATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\d{2,4}년\s*\d{1,2}월"),
    re.compile(r"\d{4}-\d{2}-\d{2}"),
    re.compile(r"\d{2,4}\.\d{1,2}"),
    re.compile(r"\d{8}"),
    re.compile(r"\d{4}년"),
    re.compile(r"\d{1,2}월"),
)

_logger = get_logger("settlement_recon.similarity")


def strip_dates(text: str) -> str:
    out = text or ""
    for pat in _DATE_PATTERNS:
        out = pat.sub("", out)
    return " ".join(out.replace("|", " ").split())


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return dot / (na * nb)


def _create_client() -> OpenAI:
    return OpenAI()


def _is_retryable(exc: BaseException) -> bool:
    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


class EmbeddingSimilarityStrategy:
    """Nearest vocabulary label by embedding cosine similarity."""

    def __init__(
        self,
        *,
        threshold: float = _THRESHOLD,
        model: str = _MODEL,
        client_factory: Callable[[], OpenAI] | None = None,
    ) -> None:
        if not 0.0 < threshold <= 1.0:
            raise ValueError("threshold must be within (0,1]")
        self.threshold = threshold
        self.model = model
        self._client_factory = client_factory or _create_client
        self._client: OpenAI | None = None
        self._label_vectors: BoundedCache[tuple[str, ...], list[list[float]]] = BoundedCache(
            4, name="label-embeddings"
        )

    def _client_or_none(self) -> OpenAI | None:
        if self._client is None:
            if self._client_factory is _create_client and not os.getenv("OPENAI_API_KEY"):
                _logger.warning("similarity:disabled reason=OPENAI_API_KEY not set")
                return None
            self._client = self._client_factory()
        return self._client

    def _embed(self, client: OpenAI, inputs: list[str]) -> list[list[float]]:
        attempt = 1
        while True:
            try:
                resp = client.embeddings.create(model=self.model, input=inputs)
                return [list(d.embedding) for d in resp.data]
            except Exception as e:  # noqa: BLE001 - SDK raises a wide hierarchy
                if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                    raise
                _logger.warning(
                    "similarity:retry attempt=%d error=%s", attempt, e.__class__.__name__
                )
                jitter = _BACKOFF_SEC * _JITTER_PCT
                time.sleep(max(0.0, _BACKOFF_SEC + random.uniform(-jitter, jitter)))
                attempt += 1

    def classify(self, narrative: str, vocabulary: Sequence[str]) -> Classification:
        text = strip_dates(narrative)
        labels = tuple(vocabulary)
        if not text or not labels:
            return SENTINEL_CLASSIFICATION

        try:
            client = self._client_or_none()
            if client is None:
                return SENTINEL_CLASSIFICATION
            label_vecs = self._label_vectors.get(labels)
            if label_vecs is None:
                label_vecs = self._embed(client, list(labels))
                self._label_vectors.set(labels, label_vecs)
            (query,) = self._embed(client, [text])
        except Exception as e:  # noqa: BLE001 - degrade to sentinel on any failure
            _logger.warning("similarity:unavailable error=%s", e.__class__.__name__)
            return SENTINEL_CLASSIFICATION

        best_idx, best_score = -1, 0.0
        for i, vec in enumerate(label_vecs):
            score = cosine_similarity(query, vec)
            if score > best_score:
                best_idx, best_score = i, score
        if best_idx == -1 or best_score < self.threshold:
            return SENTINEL_CLASSIFICATION
        return Classification(
            account_category=labels[best_idx],
            match_method=METHOD_EMBEDDING,
            match_confidence=round(min(1.0, best_score), 4),
        )


__all__ = ["EmbeddingSimilarityStrategy", "cosine_similarity", "strip_dates"]
