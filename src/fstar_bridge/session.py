from __future__ import annotations

import codecs
import logging
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from lsprotocol.types import Diagnostic

from fstar_bridge.config import BridgeConfig
from fstar_bridge.exceptions import SessionSpawnError, SessionTransportError
from fstar_bridge.invariants import never

logger = logging.getLogger(__name__)

_READ_CHUNK_SIZE = 65536


class LineBuffer:
    """Reassembles newline-terminated lines from arbitrarily split chunks."""

    def __init__(self) -> None:
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: str) -> list[str]:
        data = self._pending + chunk
        *lines, self._pending = data.split("\n")
        return lines

    def flush(self) -> list[str]:
        rest, self._pending = self._pending, ""
        return [rest] if rest else []


@dataclass
class Session:
    uri: str
    process: subprocess.Popen
    last_query_id: int = 0
    check_query_id: int = 0
    closed: bool = False
    lines: LineBuffer = field(default_factory=LineBuffer)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    readers: list[threading.Thread] = field(default_factory=list, repr=False)
    write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def write_line(self, line: str) -> None:
        stdin = self.process.stdin
        if stdin is None:
            never("session process has no stdin pipe", uri=self.uri)
        try:
            stdin.write(line.encode("utf-8"))
            stdin.flush()
        except (OSError, ValueError) as exc:
            raise SessionTransportError(
                f"F* process stopped accepting input: {exc}", uri=self.uri
            ) from exc

    def is_superseded(self, query_id: int | None) -> bool:
        if query_id is None:
            return False
        return query_id < self.check_query_id


OutputCallback = Callable[[Session, str], None]
ExitCallback = Callable[[Session, int | None], None]


class SessionRegistry:
    def __init__(
        self,
        config: BridgeConfig,
        *,
        on_output: OutputCallback,
        on_exit: ExitCallback,
        process_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self._config = config
        self._on_output = on_output
        self._on_exit = on_exit
        self._process_factory = process_factory
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def open(self, uri: str, working_directory: Path, filename: str) -> Session:
        self.close(uri)
        command = self._config.command(filename)
        logger.info("Starting %s in %s", " ".join(command), working_directory)
        try:
            process = self._process_factory(
                command,
                cwd=str(working_directory),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise SessionSpawnError(
                f"Could not start {command[0]}: {exc}", uri=uri
            ) from exc
        if process.stdin is None or process.stdout is None:
            never("F* process spawned without pipes", uri=uri)
        session = Session(uri=uri, process=process)
        with self._lock:
            self._sessions[uri] = session
        self._start_readers(session, filename)
        return session

    def get(self, uri: str) -> Session | None:
        with self._lock:
            return self._sessions.get(uri)

    def uris(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def close(self, uri: str) -> bool:
        with self._lock:
            session = self._sessions.pop(uri, None)
        if session is None:
            return False
        self._terminate(session)
        return True

    def discard(self, session: Session) -> bool:
        """Remove `session` only if it is still the one registered for its URI."""
        with self._lock:
            if self._sessions.get(session.uri) is not session:
                return False
            del self._sessions[session.uri]
        self._terminate(session)
        return True

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            self._terminate(session)

    def _terminate(self, session: Session) -> None:
        session.closed = True
        process = session.process
        if process.stdin is not None:
            try:
                process.stdin.close()
            except OSError as exc:
                logger.debug("Closing stdin for %s failed: %s", session.uri, exc)
        if process.poll() is not None:
            return
        logger.info("Terminating F* process for %s", session.uri)
        process.terminate()
        # Escalation waits, so it runs off the event loop.
        threading.Thread(
            target=self._reap,
            args=(session,),
            name=f"fstar-reap:{session.uri}",
            daemon=True,
        ).start()

    def _reap(self, session: Session) -> None:
        process = session.process
        try:
            process.wait(timeout=self._config.terminate_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("F* process for %s ignored terminate; killing", session.uri)
            process.kill()
            try:
                process.wait(timeout=self._config.terminate_timeout)
            except subprocess.TimeoutExpired:
                logger.error("F* process for %s survived kill", session.uri)

    def _start_readers(self, session: Session, filename: str) -> None:
        stdout_reader = threading.Thread(
            target=self._pump_stdout,
            args=(session,),
            name=f"fstar-stdout:{filename}",
            daemon=True,
        )
        session.readers.append(stdout_reader)
        if session.process.stderr is not None:
            session.readers.append(
                threading.Thread(
                    target=self._pump_stderr,
                    args=(session, filename),
                    name=f"fstar-stderr:{filename}",
                    daemon=True,
                )
            )
        for reader in session.readers:
            reader.start()

    def _pump_stdout(self, session: Session) -> None:
        returncode: int | None = None
        try:
            self._read_stdout(session)
            try:
                returncode = session.process.wait(timeout=self._config.terminate_timeout)
            except subprocess.TimeoutExpired:
                returncode = None
        except Exception:
            logger.exception("Reading F* output for %s failed", session.uri)
        finally:
            self._on_exit(session, returncode)

    def _read_stdout(self, session: Session) -> None:
        stream = session.process.stdout
        read = getattr(stream, "read1", None) or stream.read
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            try:
                chunk = read(_READ_CHUNK_SIZE)
            except (OSError, ValueError) as exc:
                logger.debug("stdout of %s closed: %s", session.uri, exc)
                break
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                self._on_output(session, text)
        tail = decoder.decode(b"", final=True)
        if tail:
            self._on_output(session, tail)

    def _pump_stderr(self, session: Session, filename: str) -> None:
        stream = session.process.stderr
        try:
            for raw in stream:
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    logger.info("[%s] %s", filename, line)
        except (OSError, ValueError) as exc:
            logger.debug("stderr of %s closed: %s", session.uri, exc)
