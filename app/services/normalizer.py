# =============================================
# File: app/services/normalizer.py
# Purpose: Query normalization and tokenization
# =============================================
from __future__ import annotations
from typing import List, Optional


def normalize(text: Optional[str]) -> str:
    """
    Lowercase, trim and collapse whitespace. Never raises; None -> "".
    Idempotent: normalize(normalize(x)) == normalize(x).
    """
    if not text:
        return ""
    return " ".join(str(text).lower().split())


def tokenize(text: Optional[str]) -> List[str]:
    return normalize(text).split()
