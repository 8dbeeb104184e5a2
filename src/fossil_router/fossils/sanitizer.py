"""Credential redaction and content hashing for fossil inputs."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

REDACTION_MARKER = "[REDACTED]"

SENSITIVE_KEYS = frozenset(
    {
        "apiKey",
        "openaiApiKey",
        "anthropicApiKey",
        "api_key",
        "token",
        "secret",
        "password",
        "key",
        "auth",
    }
)

INPUT_HASH_LENGTH = 16


def sanitize_request(payload: Any) -> Any:
    """Return a copy of ``payload`` with credential-bearing keys redacted.

    Matching is exact and case-sensitive; nested mappings and lists are walked.
    """

    if isinstance(payload, Mapping):
        return {
            key: (
                REDACTION_MARKER
                if key in SENSITIVE_KEYS and value is not None
                else sanitize_request(value)
            )
            for key, value in payload.items()
        }
    if isinstance(payload, (list, tuple)):
        return [sanitize_request(item) for item in payload]
    return payload


def compute_input_hash(payload: Mapping[str, Any]) -> str:
    canonical = json.dumps(
        sanitize_request(payload),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:INPUT_HASH_LENGTH]
