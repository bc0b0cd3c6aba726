# hashing.py
from __future__ import annotations

import hashlib
import json
from typing import Any

# ---------------------------------------------------------------------
# Content hashes
# ---------------------------------------------------------------------
# Hashes are taken over parsed, normalized records (never raw file text),
# so YAML formatting, comments and key order do not count as changes.
#
#   instance hash = sha256(canonical json of Instance.to_record())
#   job hash      = sha256(canonical json of the payload minus its context)
# ---------------------------------------------------------------------


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def content_hash(obj: Any) -> str:
    """Deterministic hash of any JSON-like structure."""
    return _sha256_str(_json_dumps_stable(obj))


def short_hash(digest: str, length: int = 12) -> str:
    return digest[:length]
