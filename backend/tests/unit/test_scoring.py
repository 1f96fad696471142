# backend/tests/unit/test_scoring.py
import pytest

from chatflow.services.scoring import (
    dedup_similarity,
    jaccard_similarity,
    jaro_winkler_similarity,
    levenshtein_similarity,
)


def test_jaccard_similarity():
    assert jaccard_similarity(frozenset({"oi", "tudo"}), frozenset({"oi", "tudo"})) == 1.0
    assert jaccard_similarity(frozenset({"oi", "tudo", "bem"}), frozenset({"oi"})) == pytest.approx(1 / 3)
    assert jaccard_similarity(frozenset(), frozenset({"oi"})) == 0.0


def test_levenshtein_similarity():
    assert levenshtein_similarity("boleto", "boleto") == 1.0
    # one substitution over six characters
    assert levenshtein_similarity("boleto", "boleta") == pytest.approx(5 / 6)
    assert levenshtein_similarity("", "boleto") == 0.0


def test_jaro_winkler_favours_common_prefix():
    close = jaro_winkler_similarity("orcamento", "orcamentos")
    far = jaro_winkler_similarity("orcamento", "pagamento")

    assert close > 0.9
    assert close > far
    assert jaro_winkler_similarity("abc", "") == 0.0


def test_dedup_similarity_blends_tokens_and_edits():
    assert dedup_similarity("quero um orcamento", "quero um orcamento") == pytest.approx(1.0)
    assert dedup_similarity("qual o horario", "como pagar") < 0.3
