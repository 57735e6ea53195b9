"""Canonical JSON serialization and content hashing for extracted fields.

Object keys are sorted at every depth, arrays keep their order, and output
is compact, so two field sets that are deep-equal up to key order always
produce the same string and therefore the same digest.
"""
import hashlib
import json


def canonicalize(value):
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def pretty(value):
    return json.dumps(value, indent=2, ensure_ascii=False)


def compute_hash(fields):
    """SHA-256 hex digest of the canonical form of an ExtractedFields (or plain dict)."""
    data = fields.to_dict() if hasattr(fields, "to_dict") else fields
    return hashlib.sha256(canonicalize(data).encode("utf-8", errors="surrogatepass")).hexdigest()
