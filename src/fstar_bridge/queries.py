"""Outbound queries for the F* IDE protocol.

Every query sent to a session is stamped with the next value of that
session's counter, so ids run "1", "2", ... with no gaps or reuse.
"""

from __future__ import annotations

import logging

from fstar_bridge.schema import Query
from fstar_bridge.session import SessionRegistry

logger = logging.getLogger(__name__)

VFS_ADD = "vfs-add"
FULL_BUFFER = "full-buffer"


def vfs_add(contents: str) -> Query:
    # A null filename tells F* the contents come from the editor, not disk.
    return Query(query=VFS_ADD, args={"filename": None, "contents": contents})


def full_buffer(code: str) -> Query:
    return Query(
        query=FULL_BUFFER,
        args={"kind": "full", "code": code, "line": 0, "column": 0},
    )


def send(registry: SessionRegistry, uri: str, query: Query) -> int | None:
    """Write `query` to the session for `uri` and return its id.

    Returns None when the document has no session; closes can race with
    pending validations, so that is not an error.
    """
    session = registry.get(uri)
    if session is None:
        logger.debug("No session for %s; dropping %s query", uri, query.query)
        return None
    with session.write_lock:
        session.last_query_id += 1
        query_id = session.last_query_id
        query.query_id = str(query_id)
        session.write_line(query.to_line())
    logger.debug("Sent %s query %s to %s", query.query, query_id, uri)
    return query_id
