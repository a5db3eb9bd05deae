"""
Vendor Normalizer - canonical fingerprint for free-text merchant strings

The fingerprint is the join key for the classification cache, the
similarity matcher and auto-sort rules, so two strings a human reads as
the same merchant must collapse to one value.

Examples:
    "STARBUCKS #4521"          → "starbucks"
    "AMAZON.COM*AB12"          → "amazon"
    "Amazon.com*CD34"          → "amazon"
    "SQ *BLUE BOTTLE COFFEE"   → "bluebottlecoffee"
    "POS DEBIT SHELL OIL 5744" → "shelloil"

Heuristics that can merge distinct merchants (documented on purpose):
- trailing tokens that are pure digits or letter+digit codes are dropped,
  so "UBER 1234" and "UBER 9876" are one vendor;
- the fingerprint is cut to MAX_FINGERPRINT_LENGTH characters.

normalize_vendor() is pure and idempotent: normalizing a fingerprint
returns it unchanged.
"""
import re
from typing import List

MAX_FINGERPRINT_LENGTH = 32

# Card processors that put the merchant AFTER the asterisk ("SQ *MERCHANT")
PROCESSOR_PREFIXES = frozenset({
    "sq", "tst", "sp", "pp", "paypal", "in", "ic", "py", "dd", "clover", "stripe",
})

# Bank-feed noise that never identifies a merchant
NOISE_TOKENS = frozenset({
    "pos", "debit", "credit", "card", "checkcard", "purchase", "recurring",
    "ach", "visa", "mc", "withdrawal", "pmt", "online", "web", "www",
})

# Known aliases, keyed by fingerprint; every value must be a fixed point
VENDOR_ALIASES = {
    "amzn": "amazon",
    "amznmktp": "amazon",
    "amznmktpus": "amazon",
    "amznmktpca": "amazon",
    "amznmktpuk": "amazon",
    "amazonmktp": "amazon",
    "amazonmktpus": "amazon",
    "amazonmarketplace": "amazon",
    "amzndigital": "amazon",
    "amzndigitalus": "amazon",
    "googlegsuite": "google",
    "googleworkspace": "google",
}

# "store"/"no" need a separator so a fingerprint like "store5" is left alone
_STORE_NUMBER = re.compile(r"(?:#\s*|\bstore\s+|\bno(?:\.\s*|\s+))\d+\b")
_DOMAIN_SUFFIX = re.compile(r"\.(?:com|net|org|io|co)\b")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_HAS_DIGIT = re.compile(r"\d")


def _split_processor(text: str) -> str:
    """Resolve "PREFIX*MERCHANT" vs "MERCHANT*TXNCODE"."""
    if "*" not in text:
        return text
    head, _, tail = text.partition("*")
    head_key = _NON_ALNUM.sub("", head)
    if head_key in PROCESSOR_PREFIXES and tail.strip():
        # "sq *merchant*code" keeps only the merchant
        return tail.split("*", 1)[0]
    if head_key:
        return head
    return tail


def _is_code(token: str) -> bool:
    """Pure digits, or a letter+digit code like "ab12" / "x7k9p2"."""
    if token.isdigit():
        return True
    return len(token) >= 3 and bool(_HAS_DIGIT.search(token)) and any(c.isalpha() for c in token)


def _tokens(text: str) -> List[str]:
    return [t for t in _NON_ALNUM.split(text) if t]


def normalize_vendor(raw: str) -> str:
    """
    Canonicalize a vendor string into a stable fingerprint.

    Args:
        raw: Vendor text exactly as it came from the bank feed

    Returns:
        Lowercase alphanumeric fingerprint ("" for blank input)
    """
    if not raw:
        return ""

    text = raw.casefold().strip()
    text = _split_processor(text)
    text = _STORE_NUMBER.sub(" ", text)
    text = _DOMAIN_SUFFIX.sub(" ", text)

    tokens = _tokens(text)
    if not tokens:
        return ""

    meaningful = [t for t in tokens if t not in NOISE_TOKENS]
    if meaningful:
        tokens = meaningful

    # Drop trailing transaction / terminal codes, keep at least one token
    while len(tokens) > 1 and _is_code(tokens[-1]):
        tokens.pop()

    fingerprint = "".join(tokens)[:MAX_FINGERPRINT_LENGTH]
    return VENDOR_ALIASES.get(fingerprint, fingerprint)
