# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Canonicalize requests before structural comparison.

Client libraries emit some repeated fields in no particular order.  The
field transforms of a commit are the case that matters: a client that
builds them from a mapping may list them in any order, while dataclass
equality is order-sensitive.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from mockfs.messages import CommitRequest, Write

__all__ = ["normalize"]


def normalize(request: Any) -> Any:
    """Return *request* in canonical form for comparison.

    For a :class:`CommitRequest`, returns a copy in which every write's
    transform lists its field transforms sorted by ``field_path`` (stable,
    so transforms sharing a path keep their relative order).  Any other
    value is returned as-is.  The input is never modified.
    """
    if isinstance(request, CommitRequest):
        return dataclasses.replace(request, writes=[_sort_transforms(w) for w in request.writes])
    return request


def _sort_transforms(write: Write) -> Write:
    if write.transform is None:
        return write
    ordered = sorted(write.transform.field_transforms, key=lambda t: t.field_path)
    return dataclasses.replace(write, transform=dataclasses.replace(write.transform, field_transforms=ordered))
