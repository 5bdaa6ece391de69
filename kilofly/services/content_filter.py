"""
Masks contact details in chat messages so buyers and travelers cannot move
the deal off the platform before payment.
"""
from __future__ import annotations

import re

_SEP = r"[\s.-]?"

PHONE_PATTERNS = [
    # International with + (+33 6 12 34 56 78, +221 77 123 45 67)
    re.compile(r"\+\d{1,4}" + _SEP + r"\d{1,4}" + _SEP + r"\d{2,4}" + _SEP + r"\d{2,4}" + _SEP + r"\d{2,4}", re.ASCII),
    # Country code with 00 prefix
    re.compile(r"00\s?\d{1,4}" + _SEP + r"\d{1,4}" + _SEP + r"\d{2,4}" + _SEP + r"\d{2,4}" + _SEP + r"\d{2,4}", re.ASCII),
    # Local formats (06 12 34 56 78, 077-123-4567)
    re.compile(r"\b0\d{1,2}" + _SEP + r"\d{2,3}" + _SEP + r"\d{2,3}" + _SEP + r"\d{2,4}\b", re.ASCII),
    # Continuous digits
    re.compile(r"\b\d{10,15}\b", re.ASCII),
    # Pairs with separators (06.12.34.56.78)
    re.compile(r"\b\d{2}[.\-\s]\d{2}[.\-\s]\d{2}[.\-\s]\d{2}[.\-\s]\d{2}\b", re.ASCII),
    # Spelled-out digits in French
    re.compile(
        r"(?:zero|un|deux|trois|quatre|cinq|six|sept|huit|neuf)"
        r"(?:\s+(?:zero|un|deux|trois|quatre|cinq|six|sept|huit|neuf)){7,}",
        re.IGNORECASE | re.ASCII,
    ),
]

EMAIL_PATTERNS = [
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", re.ASCII),
    # "name at gmail dot com"
    re.compile(
        r"[a-zA-Z0-9._%+-]+\s*(?:@|at|chez)\s*[a-zA-Z0-9.-]+\s*(?:\.|dot|point)\s*"
        r"(?:com|fr|net|org|io|co|gmail|yahoo|hotmail)",
        re.IGNORECASE | re.ASCII,
    ),
    # "name [at] gmail [dot] com"
    re.compile(
        r"[a-zA-Z0-9._%+-]+\s*\[?\s*(?:@|at|chez)\s*\]?\s*[a-zA-Z0-9.-]+\s*\[?\s*(?:\.|dot|point)\s*\]?\s*[a-zA-Z]{2,}",
        re.IGNORECASE | re.ASCII,
    ),
]

SOCIAL_PATTERNS = [
    re.compile(
        r"whatsapp\s*[:\-]?\s*[\+]?\d{1,4}" + _SEP + r"\d{1,4}" + _SEP + r"\d{2,4}" + _SEP + r"\d{2,4}" + _SEP + r"\d{2,4}",
        re.IGNORECASE | re.ASCII,
    ),
    re.compile(r"(?:telegram|signal|viber|imo|skype)\s*[:\-]?\s*[@]?[\w._-]+", re.IGNORECASE | re.ASCII),
    re.compile(r"(?:facebook|instagram|insta|fb|ig)\s*[:\-]?\s*[@]?[\w._-]+", re.IGNORECASE | re.ASCII),
]

MASK_REPLACEMENT = "***"
PHONE_MASK = "[téléphone masqué]"
EMAIL_MASK = "[email masqué]"


def mask_sensitive_content(content: str) -> str:
    filtered = content
    for pattern in PHONE_PATTERNS:
        filtered = pattern.sub(PHONE_MASK, filtered)
    for pattern in EMAIL_PATTERNS:
        filtered = pattern.sub(EMAIL_MASK, filtered)
    for pattern in SOCIAL_PATTERNS:
        filtered = pattern.sub(MASK_REPLACEMENT, filtered)
    return filtered


def contains_sensitive_content(content: str) -> bool:
    return any(p.search(content) for p in (*PHONE_PATTERNS, *EMAIL_PATTERNS, *SOCIAL_PATTERNS))


def mask_phone_number(phone: str | None) -> str:
    """+33612345678 -> '+336 ****** 78'"""
    if not phone:
        return ""
    cleaned = re.sub(r"\s", "", phone)
    if len(cleaned) <= 6:
        return "** ** **"
    middle = re.sub(r"\d", "*", cleaned[4:-2], flags=re.ASCII)
    return f"{cleaned[:4]} {middle} {cleaned[-2:]}"


def truncate_phone_for_log(phone: str | None) -> str:
    return (phone or "")[:6] + "***"
