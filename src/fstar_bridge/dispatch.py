from __future__ import annotations

import json
import logging

from pydantic import BaseModel, ValidationError

from fstar_bridge.schema import (
    IDE_MESSAGE_ADAPTER,
    FailureResponse,
    ProgressMessage,
    ProtocolInfo,
    SuccessResponse,
    UnhandledMessage,
)
from fstar_bridge.session import Session
from fstar_bridge.translate import Translator

logger = logging.getLogger(__name__)


def parse_message(line: str) -> BaseModel:
    """Parse one line of F* output into its tagged message model.

    Raises `json.JSONDecodeError` for text that is not JSON. Anything that
    is JSON but matches no known shape comes back as `UnhandledMessage`.
    """
    raw = json.loads(line)
    if not isinstance(raw, dict):
        return UnhandledMessage(reason=f"expected an object, got {type(raw).__name__}")
    try:
        return IDE_MESSAGE_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        return UnhandledMessage(
            kind=raw.get("kind"),
            reason=f"{exc.error_count()} validation error(s)",
        )


class ResponseDispatcher:
    def __init__(self, translator: Translator) -> None:
        self._translator = translator

    def feed(self, session: Session, chunk: str) -> list[BaseModel]:
        return self._dispatch_lines(session, session.lines.feed(chunk))

    def finish(self, session: Session) -> list[BaseModel]:
        return self._dispatch_lines(session, session.lines.flush())

    def _dispatch_lines(self, session: Session, lines: list[str]) -> list[BaseModel]:
        routed: list[BaseModel] = []
        for line in lines:
            message = self.dispatch_line(session, line)
            if message is not None:
                routed.append(message)
        return routed

    def dispatch_line(self, session: Session, line: str) -> BaseModel | None:
        if not line.strip():
            return None
        try:
            message = parse_message(line)
        except json.JSONDecodeError as exc:
            logger.warning("Dropping unparsable F* output for %s: %s: %r", session.uri, exc, line)
            return None
        self.route(session, message)
        return message

    def route(self, session: Session, message: BaseModel) -> None:
        if isinstance(message, ProtocolInfo):
            self._translator.protocol_info(session, message)
        elif isinstance(message, ProgressMessage):
            if self._is_stale(session, message):
                return
            self._translator.progress(session, message)
        elif isinstance(message, FailureResponse):
            if self._is_stale(session, message):
                return
            if message.response is None:
                return
            if isinstance(message.response, str):
                logger.warning("F* rejected a query for %s: %s", session.uri, message.response)
                return
            self._translator.failure(session, message.response)
        elif isinstance(message, SuccessResponse):
            self._translator.success(session, message)
        else:
            logger.info(
                "Unhandled F* message for %s: kind=%r %s",
                session.uri,
                getattr(message, "kind", None),
                getattr(message, "reason", None) or "",
            )

    @staticmethod
    def _is_stale(session: Session, message: ProgressMessage | FailureResponse) -> bool:
        query_id = message.query_number()
        if session.is_superseded(query_id):
            logger.debug("Dropping %s for superseded query %s", message.kind, query_id)
            return True
        return False
