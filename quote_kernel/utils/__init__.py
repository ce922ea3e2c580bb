"""Utility functions."""

from quote_kernel.utils.hashing import canonicalize_json, hash_payload, hash_request, render_json

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "hash_request",
    "render_json",
]
