# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Debug logging infrastructure for wire protocol diagnostics.

Provides logger instances under the ``mockfs.wire.*`` hierarchy and
formatting helpers for Arrow IPC objects.  Enabling
``logging.getLogger("mockfs.wire").setLevel(logging.DEBUG)`` shows every
request, response and error batch that crosses the loopback.

All formatting helpers return ``str`` and never log directly.  Call them
inside ``isEnabledFor`` guards.
"""

from __future__ import annotations

import logging

import pyarrow as pa

# ---------------------------------------------------------------------------
# Logger hierarchy: mockfs.wire.*
# ---------------------------------------------------------------------------

wire_request_logger = logging.getLogger("mockfs.wire.request")
"""Request serialization / deserialization."""

wire_response_logger = logging.getLogger("mockfs.wire.response")
"""Response serialization / deserialization."""

wire_batch_logger = logging.getLogger("mockfs.wire.batch")
"""Batch classification (error / data dispatch)."""

wire_http_logger = logging.getLogger("mockfs.wire.http")
"""HTTP client requests / responses."""

# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 80


def fmt_schema(schema: pa.Schema) -> str:
    """Format an Arrow schema compactly as ``"(a: double, b: double)"``."""
    if len(schema) == 0:
        return "(empty)"
    fields = ", ".join(f"{f.name}: {f.type}" for f in schema)
    return f"({fields})"


def fmt_metadata(metadata: pa.KeyValueMetadata | None) -> str:
    """Format Arrow custom metadata as ``"{mockfs.method='Commit', ...}"``."""
    if metadata is None:
        return "None"
    parts: list[str] = []
    for k, v in metadata.items():
        key = k.decode("utf-8", errors="replace") if isinstance(k, bytes) else k
        val = v.decode("utf-8", errors="replace") if isinstance(v, bytes) else v
        if len(val) > _MAX_VALUE_LEN:
            val = val[:_MAX_VALUE_LEN] + "..."
        parts.append(f"{key}={val!r}")
    return "{" + ", ".join(parts) + "}"


def fmt_batch(batch: pa.RecordBatch) -> str:
    """Format a RecordBatch summary."""
    return (
        f"RecordBatch(rows={batch.num_rows}, cols={batch.num_columns}, "
        f"schema={fmt_schema(batch.schema)}, bytes={batch.nbytes})"
    )
