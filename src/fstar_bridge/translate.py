from __future__ import annotations

import logging
from typing import Protocol, Sequence

from lsprotocol.types import Diagnostic, DiagnosticSeverity, Position, Range

from fstar_bridge.schema import (
    FRAGMENT_OK_STAGE,
    IdeError,
    ProgressMessage,
    ProtocolInfo,
    RangeDTO,
    StatusClearParams,
    StatusOkParams,
    SuccessResponse,
)
from fstar_bridge.session import Session

logger = logging.getLogger(__name__)

DIAGNOSTIC_SOURCE = "fstar"
BRIDGE_SOURCE = "fstar-bridge"


class EditorSink(Protocol):
    def publish_diagnostics(self, uri: str, diagnostics: list[Diagnostic]) -> None: ...

    def status_ok(self, params: StatusOkParams) -> None: ...

    def status_clear(self, params: StatusClearParams) -> None: ...

    def log_error(self, message: str) -> None: ...


def to_position(pos: Sequence[int]) -> Position:
    # F* lines are 1-based, LSP lines are 0-based; columns agree.
    return Position(line=pos[0] - 1, character=pos[1])


def to_range(beg: Sequence[int], end: Sequence[int]) -> Range:
    return Range(start=to_position(beg), end=to_position(end))


_DOCUMENT_START = Range(
    start=Position(line=0, character=0),
    end=Position(line=0, character=0),
)


class Translator:
    def __init__(self, sink: EditorSink) -> None:
        self._sink = sink

    def protocol_info(self, session: Session, message: ProtocolInfo) -> None:
        logger.info(
            "F* IDE protocol version %s for %s (features: %s)",
            message.version,
            session.uri,
            ", ".join(message.features) or "none",
        )

    def progress(self, session: Session, message: ProgressMessage) -> StatusOkParams | None:
        contents = message.contents
        if contents.stage != FRAGMENT_OK_STAGE or contents.ranges is None:
            return None
        ok_range = to_range(contents.ranges.beg, contents.ranges.end)
        params = StatusOkParams(uri=session.uri, ranges=[RangeDTO.from_lsp(ok_range)])
        logger.debug("statusOk %s %s", session.uri, ok_range)
        self._sink.status_ok(params)
        return params

    def failure(self, session: Session, errors: list[IdeError]) -> list[Diagnostic]:
        """Publish one Error diagnostic per entry, using only its first range.

        Diagnostics accumulate on the session until the next clear, and every
        publish carries the whole accumulated list rather than just this
        batch: an LSP publish replaces whatever the editor showed for the
        document, so sending only the new entries would hide earlier ones.
        The returned list is this batch alone.
        """
        batch = [self._diagnostic(error) for error in errors]
        if not batch:
            return batch
        session.diagnostics.extend(batch)
        self._sink.publish_diagnostics(session.uri, list(session.diagnostics))
        return batch

    def success(self, session: Session, message: SuccessResponse) -> None:
        return None

    def clear(self, session: Session) -> None:
        session.diagnostics.clear()
        self._sink.publish_diagnostics(session.uri, [])
        logger.debug("statusClear %s", session.uri)
        self._sink.status_clear(StatusClearParams(uri=session.uri))

    def transport_error(self, uri: str, message: str) -> Diagnostic:
        logger.error("%s: %s", uri, message)
        diagnostic = Diagnostic(
            range=_DOCUMENT_START,
            message=message,
            severity=DiagnosticSeverity.Error,
            source=BRIDGE_SOURCE,
        )
        self._sink.publish_diagnostics(uri, [diagnostic])
        self._sink.log_error(f"{uri}: {message}")
        return diagnostic

    @staticmethod
    def _diagnostic(error: IdeError) -> Diagnostic:
        if error.ranges:
            first = error.ranges[0]
            diag_range = to_range(first.beg, first.end)
        else:
            diag_range = _DOCUMENT_START
        return Diagnostic(
            range=diag_range,
            message=error.message,
            severity=DiagnosticSeverity.Error,
            source=DIAGNOSTIC_SOURCE,
        )
