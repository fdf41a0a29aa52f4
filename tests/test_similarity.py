# ruff: noqa: E402, I001
from __future__ import annotations

import pytest

import settlement_recon.similarity as sim_mod
from settlement_recon.similarity import EmbeddingSimilarityStrategy, cosine_similarity, strip_dates
from tests.helpers.openai_stub import OpenAIEmbeddingsStub

VOCAB = ("운반비", "복리후생비")
VECTORS = {
    "운반비": [1.0, 0.0, 0.0],
    "복리후생비": [0.0, 1.0, 0.0],
    "택배 발송": [0.95, 0.1, 0.0],
    "애매한 내용": [0.6, 0.6, 0.5],
}


def _strategy(stub: OpenAIEmbeddingsStub, **kw) -> EmbeddingSimilarityStrategy:
    return EmbeddingSimilarityStrategy(client_factory=lambda: stub, **kw)


def test_strip_dates():
    assert strip_dates("2025년 11월|택배 발송|2025-11-03") == "택배 발송"
    assert strip_dates("11월 택배") == "택배"


def test_cosine_similarity_edge_cases():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([0, 0], [1, 0]) == 0.0
    assert cosine_similarity([1], [1, 0]) == 0.0


def test_best_label_above_threshold():
    stub = OpenAIEmbeddingsStub(VECTORS)

    result = _strategy(stub).classify("11월|택배 발송", VOCAB)

    assert result.account_category == "운반비"
    assert result.match_method == "embedding-similarity"
    assert 0.8 <= result.match_confidence <= 1.0
    assert stub.calls[0]["model"] == "text-embedding-3-small"


def test_below_threshold_is_sentinel():
    stub = OpenAIEmbeddingsStub(VECTORS)

    assert _strategy(stub).classify("애매한 내용", VOCAB).is_sentinel


def test_label_vectors_are_embedded_once_per_vocabulary():
    stub = OpenAIEmbeddingsStub(VECTORS)
    strategy = _strategy(stub)

    strategy.classify("택배 발송", VOCAB)
    strategy.classify("애매한 내용", VOCAB)

    # One label batch plus one query per call.
    assert len(stub.calls) == 3
    assert stub.calls[0]["input"] == list(VOCAB)


def test_service_failure_degrades_to_sentinel():
    stub = OpenAIEmbeddingsStub(VECTORS, fail_with=RuntimeError("boom"))

    assert _strategy(stub).classify("택배 발송", VOCAB).is_sentinel


def test_retryable_error_is_retried_once(monkeypatch: pytest.MonkeyPatch):
    class _RateLimited(Exception):
        status_code = 429

    monkeypatch.setattr(sim_mod.time, "sleep", lambda s: None)
    stub = OpenAIEmbeddingsStub(VECTORS, fail_with=_RateLimited())

    assert _strategy(stub).classify("택배 발송", VOCAB).is_sentinel
    assert len(stub.calls) == 2


def test_missing_api_key_disables_without_calling_factory(monkeypatch: pytest.MonkeyPatch):
    def _boom():
        raise AssertionError("client must not be created")

    monkeypatch.setattr(sim_mod, "_create_client", _boom)
    strategy = EmbeddingSimilarityStrategy()

    assert strategy.classify("택배 발송", VOCAB).is_sentinel


def test_threshold_bounds():
    with pytest.raises(ValueError):
        EmbeddingSimilarityStrategy(threshold=0)
