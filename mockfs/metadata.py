# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Shared helpers for ``pa.KeyValueMetadata`` used on the mock's wire.

Centralises the well-known metadata keys (including the wire-protocol
version constant ``REQUEST_VERSION``) and the encode/decode helpers so
that ``wire.py``, ``log.py`` and ``host.py`` share one implementation.
"""

from __future__ import annotations

import pyarrow as pa

__all__ = [
    "LOG_EXTRA_KEY",
    "LOG_LEVEL_KEY",
    "LOG_MESSAGE_KEY",
    "REQUEST_ID_KEY",
    "REQUEST_VERSION",
    "REQUEST_VERSION_KEY",
    "RPC_METHOD_KEY",
    "SERVER_ID_KEY",
    "decode_metadata",
    "encode_metadata",
]

# ---------------------------------------------------------------------------
# Well-known metadata keys (bytes, matching what appears on the wire)
# ---------------------------------------------------------------------------

RPC_METHOD_KEY = b"mockfs.method"
LOG_LEVEL_KEY = b"mockfs.log_level"
LOG_MESSAGE_KEY = b"mockfs.log_message"
LOG_EXTRA_KEY = b"mockfs.log_extra"
REQUEST_VERSION_KEY = b"mockfs.request_version"
REQUEST_VERSION = b"1"

SERVER_ID_KEY = b"mockfs.server_id"
REQUEST_ID_KEY = b"mockfs.request_id"

# ---------------------------------------------------------------------------
# Encode / decode
# ---------------------------------------------------------------------------


def encode_metadata(metadata: dict[str, str]) -> pa.KeyValueMetadata:
    """Encode a plain ``dict[str, str]`` to ``pa.KeyValueMetadata`` with bytes keys/values."""
    return pa.KeyValueMetadata({k.encode(): v.encode() for k, v in metadata.items()})


def decode_metadata(metadata: pa.KeyValueMetadata | None) -> dict[str, str]:
    """Decode ``pa.KeyValueMetadata`` to a plain ``dict[str, str]`` (empty when absent)."""
    if metadata is None:
        return {}
    result: dict[str, str] = {}
    for k, v in metadata.items():
        key = k.decode("utf-8", errors="replace") if isinstance(k, bytes) else k
        val = v.decode("utf-8", errors="replace") if isinstance(v, bytes) else v
        result[key] = val
    return result
