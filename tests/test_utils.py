import math

import pytest

from readphase.utils import (
    DegenerateProbabilityError,
    hap_threshold_from_qual,
    log_prob_one_minus,
    log_sum_exp,
    normalize_log_pair,
    phred,
    quality_byte,
    to_phred,
)


def test_log_sum_exp_matches_direct_sum():
    a, b = math.log(0.2), math.log(0.3)
    assert log_sum_exp(a, b) == pytest.approx(math.log(0.5))


def test_log_sum_exp_very_small_values():
    out = log_sum_exp(-1000.0, -1000.0)
    assert out == pytest.approx(-1000.0 + math.log(2.0))


def test_normalize_log_pair_sums_to_one():
    p0, p1 = normalize_log_pair(-3.0, -7.5)
    assert math.exp(p0) + math.exp(p1) == pytest.approx(1.0)
    assert p0 > p1


def test_normalize_log_pair_equal_inputs():
    p0, p1 = normalize_log_pair(-800.0, -800.0)
    assert p0 == pytest.approx(math.log(0.5))
    assert p1 == pytest.approx(math.log(0.5))


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf"), 0.5])
def test_normalize_log_pair_rejects_degenerate(bad):
    with pytest.raises(DegenerateProbabilityError):
        normalize_log_pair(bad, -1.0)


def test_phred_of_known_probabilities():
    assert phred(math.log(0.01)) == pytest.approx(20.0)
    assert phred(0.0) == 0.0
    assert to_phred(math.log(0.05)) == 13


def test_quality_byte_values():
    # 13.01 + 33 -> '.', 26.99 + 33 -> ';'
    assert quality_byte(math.log(0.05)) == ord(".")
    assert quality_byte(math.log(0.002)) == ord(";")


def test_quality_byte_is_capped():
    assert quality_byte(-50.0) == 126
    assert quality_byte(-1e6) == 126
    assert quality_byte(-math.inf) == 126


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), 0.5])
def test_quality_byte_rejects_degenerate(bad):
    with pytest.raises(DegenerateProbabilityError):
        quality_byte(bad)


def test_log_prob_one_minus():
    assert log_prob_one_minus(math.log(0.25)) == pytest.approx(math.log(0.75))
    assert log_prob_one_minus(math.log(0.9)) == pytest.approx(math.log(0.1))


def test_hap_threshold_from_qual_20():
    assert hap_threshold_from_qual(20) == pytest.approx(math.log(0.99))
    with pytest.raises(ValueError):
        hap_threshold_from_qual(0)
