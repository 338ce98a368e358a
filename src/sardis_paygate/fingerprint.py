"""Argument fingerprints for matching a resubmitted call to its original."""
from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping


def compute_fingerprint(tool_name: str, arguments: Mapping[str, Any]) -> str:
    """Hash a tool name and its arguments.

    Keys are sorted so argument order never matters; values that are not
    JSON-native are stringified.
    """
    normalized = json.dumps(
        {"tool": tool_name, "arguments": dict(arguments)},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(normalized.encode()).hexdigest()


def hash_proof(proof: str) -> str:
    """Stable digest of a payment proof, safe to persist and log."""
    return hashlib.sha256(proof.encode()).hexdigest()
