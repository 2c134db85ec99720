from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable
from urllib.parse import unquote, urlparse

from fstar_bridge.config import BridgeConfig
from fstar_bridge.dispatch import ResponseDispatcher
from fstar_bridge.exceptions import SessionSpawnError, SessionTransportError
from fstar_bridge.queries import full_buffer, send, vfs_add
from fstar_bridge.schema import Query
from fstar_bridge.session import Session, SessionRegistry
from fstar_bridge.translate import EditorSink, Translator

logger = logging.getLogger(__name__)

Scheduler = Callable[..., None]


def _call_now(fn: Callable[..., None], *args: object) -> None:
    fn(*args)


def uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


class Bridge:
    """Owns the per-document F* sessions for one language server lifetime.

    Output and exit notifications from session reader threads are passed
    through `schedule` (the event loop's `call_soon_threadsafe` when running
    under pygls), so dispatch and translation always run on one thread.
    """

    def __init__(
        self,
        config: BridgeConfig,
        sink: EditorSink,
        *,
        process_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
        schedule: Scheduler | None = None,
    ) -> None:
        self.config = config
        self.translator = Translator(sink)
        self.dispatcher = ResponseDispatcher(self.translator)
        self.registry = SessionRegistry(
            config,
            on_output=self._on_output,
            on_exit=self._on_exit,
            process_factory=process_factory,
        )
        self._schedule = schedule or _call_now

    def open_document(self, uri: str, text: str, path: Path | None = None) -> Session | None:
        path = path or uri_to_path(uri)
        logger.info("Opening %s (dir=%s, file=%s)", uri, path.parent, path.name)
        try:
            session = self.registry.open(uri, path.parent, path.name)
        except SessionSpawnError as exc:
            self.translator.transport_error(uri, str(exc))
            return None
        if self._send(uri, vfs_add(text)) is None:
            return None
        self.change_document(uri, text)
        return session

    def change_document(self, uri: str, text: str) -> int | None:
        session = self.registry.get(uri)
        if session is None:
            logger.debug("Ignoring change for %s: no F* session", uri)
            return None
        self.translator.clear(session)
        query_id = self._send(uri, full_buffer(text))
        if query_id is not None:
            session.check_query_id = query_id
        return query_id

    def close_document(self, uri: str) -> bool:
        logger.info("Closing %s", uri)
        return self.registry.close(uri)

    def shutdown(self) -> None:
        self.registry.close_all()

    def _send(self, uri: str, query: Query) -> int | None:
        try:
            return send(self.registry, uri, query)
        except SessionTransportError as exc:
            session = self.registry.get(uri)
            if session is not None:
                self.registry.discard(session)
            self.translator.transport_error(uri, str(exc))
            return None

    def _on_output(self, session: Session, chunk: str) -> None:
        self._schedule(self._handle_output, session, chunk)

    def _on_exit(self, session: Session, returncode: int | None) -> None:
        self._schedule(self._handle_exit, session, returncode)

    def _handle_output(self, session: Session, chunk: str) -> None:
        if session.closed:
            return
        self.dispatcher.feed(session, chunk)

    def _handle_exit(self, session: Session, returncode: int | None) -> None:
        if session.closed:
            return
        self.dispatcher.finish(session)
        if self.registry.discard(session):
            self.translator.transport_error(
                session.uri,
                f"F* process exited unexpectedly (exit code {returncode})",
            )
