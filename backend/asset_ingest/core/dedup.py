from __future__ import annotations

"""Content hashing for duplicate detection.

Dedup rule:
- content_hash = SHA256(raw content bytes), hex encoded.

Important:
- Pure and side-effect free. Callers store the hash next to the record so
  content is never re-read just to compare.
- Do not log raw content. The hash is safe for ops/audit.
"""

import hashlib


def compute_content_hash_bytes(content: bytes) -> bytes:
    return hashlib.sha256(content or b"").digest()


def compute_content_hash(content: bytes) -> str:
    return compute_content_hash_bytes(content).hex()
