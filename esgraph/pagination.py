"""
Cursors and result pages

A cursor is an opaque (base64) string that encodes the absolute position of a document in the result sequence,
together with a fingerprint of the filter and sort order it was issued for. Resuming 'after' a cursor starts at the
next position, so consecutive pages are disjoint and contiguous as long as the index does not change in between.
"""

import base64
import binascii
import hashlib
import json
from typing import Any

from esgraph.models import QueryDescriptor
from esgraph.query import QueryError

CURSOR_PREFIX = "c1"


class CursorError(QueryError):
    """The cursor is malformed or was issued for another query"""


def query_fingerprint(descriptor: QueryDescriptor) -> str:
    """Short hash of the filter and sort order of this query (ignoring paging)"""
    key = descriptor.model_dump(mode="json", include={"filter", "sort"})
    return hashlib.sha1(json.dumps(key, sort_keys=True).encode("utf-8")).hexdigest()[:12]


def encode_cursor(position: int, fingerprint: str) -> str:
    raw = f"{CURSOR_PREFIX}:{position}:{fingerprint}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str, fingerprint: str) -> int:
    """
    Decode a cursor into the (0-based) position of the document it points to

    :raises CursorError: if the cursor cannot be decoded or belongs to a different filter or sort order
    """
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        prefix, position, cursor_fingerprint = raw.split(":")
        pos = int(position)
    except (ValueError, UnicodeError, binascii.Error):
        raise CursorError(f"Malformed cursor: {cursor!r}")
    if prefix != CURSOR_PREFIX or pos < 0:
        raise CursorError(f"Malformed cursor: {cursor!r}")
    if cursor_fingerprint != fingerprint:
        raise CursorError("Cursor was issued for a different filter or sort order")
    return pos


def pagination_result(documents: list[dict[str, Any]], total: int) -> dict[str, Any]:
    return {"items": documents, "total": total}


def connection_result(documents: list[dict[str, Any]], offset: int, total: int, fingerprint: str) -> dict[str, Any]:
    """
    Build a relay style connection for a page of documents starting at the given offset
    """
    edges = [
        {"node": doc, "cursor": encode_cursor(offset + i, fingerprint)} for (i, doc) in enumerate(documents)
    ]
    page_info = {
        "hasNextPage": offset + len(edges) < total,
        "hasPreviousPage": offset > 0,
        "startCursor": edges[0]["cursor"] if edges else None,
        "endCursor": edges[-1]["cursor"] if edges else None,
    }
    return {"edges": edges, "pageInfo": page_info, "totalCount": total}
