# =============================================
# File: tests/test_normalizer.py
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import pytest

from app.services.normalizer import normalize, tokenize


@pytest.mark.parametrize("raw,expected", [
    ("  Sunset   PHOTO ", "sunset photo"),
    ("wedding\tcake\nbakery", "wedding cake bakery"),
    ("", ""),
    (None, ""),
    ("   ", ""),
    ("Ünïcode  Café", "ünïcode café"),
])
def test_normalize_lowercases_trims_and_collapses(raw, expected):
    assert normalize(raw) == expected


@pytest.mark.parametrize("raw", ["  A  b ", "x", "", "Bridal   MAKEUP\t", "already normal"])
def test_normalize_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(once) == once


def test_tokenize_splits_on_whitespace():
    assert tokenize("  Wedding   Cake ") == ["wedding", "cake"]
    assert tokenize(None) == []
