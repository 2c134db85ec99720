from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Callable

from pygls.lsp.server import LanguageServer
from lsprotocol.types import (
    INITIALIZED,
    SHUTDOWN,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    Diagnostic,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    InitializedParams,
    LogMessageParams,
    MessageType,
    PublishDiagnosticsParams,
    TextDocumentSyncKind,
)

from fstar_bridge import __version__
from fstar_bridge.bridge import Bridge, uri_to_path
from fstar_bridge.config import BridgeConfig, bridge_config
from fstar_bridge.schema import StatusClearParams, StatusOkParams

logger = logging.getLogger(__name__)

STATUS_OK_NOTIFICATION = "custom/statusOk"
STATUS_CLEAR_NOTIFICATION = "custom/statusClear"


class LanguageServerSink:
    """Sends translated F* output to the editor over the pygls connection."""

    def __init__(self, ls: LanguageServer) -> None:
        self._ls = ls

    def publish_diagnostics(self, uri: str, diagnostics: list[Diagnostic]) -> None:
        self._ls.text_document_publish_diagnostics(
            PublishDiagnosticsParams(uri=uri, diagnostics=list(diagnostics))
        )

    def status_ok(self, params: StatusOkParams) -> None:
        self._ls.protocol.notify(STATUS_OK_NOTIFICATION, params.model_dump())

    def status_clear(self, params: StatusClearParams) -> None:
        self._ls.protocol.notify(STATUS_CLEAR_NOTIFICATION, params.model_dump())

    def log_error(self, message: str) -> None:
        self._ls.window_log_message(LogMessageParams(type=MessageType.Error, message=message))


class BridgeServer(LanguageServer):
    def __init__(
        self,
        *args,
        config_path: Path | None = None,
        process_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.config_path = config_path
        self.config = BridgeConfig()
        self.process_factory = process_factory
        self._bridge: Bridge | None = None
        self._event_loop: asyncio.AbstractEventLoop | None = None

    def configure(self, config_path: Path | None = None) -> None:
        self.config_path = config_path
        self.config = bridge_config(config_path=config_path)

    @property
    def bridge(self) -> Bridge:
        if self._event_loop is None:
            self.bind_event_loop()
        if self._bridge is None:
            self._bridge = Bridge(
                self.config,
                LanguageServerSink(self),
                process_factory=self.process_factory,
                schedule=self.call_soon,
            )
        return self._bridge

    def bind_event_loop(self) -> None:
        try:
            self._event_loop = asyncio.get_running_loop()
        except RuntimeError:
            self._event_loop = None

    def call_soon(self, fn: Callable[..., None], *args: object) -> None:
        loop = self._event_loop
        if loop is None or loop.is_closed():
            logger.warning("No running event loop bound; calling %s inline", fn)
            fn(*args)
            return
        loop.call_soon_threadsafe(fn, *args)


server = BridgeServer(
    "fstar-bridge",
    __version__,
    text_document_sync_kind=TextDocumentSyncKind.Full,
)


@server.feature(INITIALIZED)
def initialized(ls: BridgeServer, params: InitializedParams) -> None:
    ls.bind_event_loop()
    root = Path(ls.workspace.root_path) if ls.workspace.root_path else None
    ls.config = bridge_config(root=root, config_path=ls.config_path)
    logger.info("Using F* executable %s", ls.config.executable)


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: BridgeServer, params: DidOpenTextDocumentParams) -> None:
    document = params.text_document
    ls.bridge.open_document(document.uri, document.text, uri_to_path(document.uri))


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: BridgeServer, params: DidChangeTextDocumentParams) -> None:
    uri = params.text_document.uri
    document = ls.workspace.get_text_document(uri)
    ls.bridge.change_document(uri, document.source)


@server.feature(TEXT_DOCUMENT_DID_CLOSE)
def did_close(ls: BridgeServer, params: DidCloseTextDocumentParams) -> None:
    ls.bridge.close_document(params.text_document.uri)


@server.feature(SHUTDOWN)
def shutdown(ls: BridgeServer, *_args) -> None:
    ls.bridge.shutdown()


def start(start_fn: Callable[[], None] | None = None) -> None:
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
