from __future__ import annotations

import io
import json
import queue
import subprocess
import threading
import time
from typing import Callable

from lsprotocol.types import Diagnostic

from fstar_bridge.schema import StatusClearParams, StatusOkParams


class BlockingStream:
    """Pipe stand-in: reads block until bytes are pushed or the stream ends."""

    def __init__(self) -> None:
        self._chunks: queue.Queue[bytes] = queue.Queue()
        self.ended = False

    def push(self, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._chunks.put(data)

    def end(self) -> None:
        if not self.ended:
            self.ended = True
            self._chunks.put(b"")

    def read1(self, size: int = -1) -> bytes:
        chunk = self._chunks.get()
        if not chunk:
            self._chunks.put(b"")
        return chunk

    read = read1


class RecordingStdin:
    def __init__(self) -> None:
        self.data = bytearray()
        self.closed = False
        self.broken = False

    def write(self, data: bytes) -> int:
        if self.closed or self.broken:
            raise BrokenPipeError(32, "Broken pipe")
        self.data.extend(data)
        return len(data)

    def flush(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    def messages(self) -> list[dict]:
        return [json.loads(line) for line in self.data.decode("utf-8").splitlines()]


class FakeProcess:
    def __init__(self, args: list[str], *, stubborn: bool = False, **kwargs) -> None:
        self.args = args
        self.kwargs = kwargs
        self.stubborn = stubborn
        self.stdin = RecordingStdin()
        self.stdout = BlockingStream()
        self.stderr = io.BytesIO(b"")
        self.returncode: int | None = None
        self.terminated = False
        self.killed = False
        self._exited = threading.Event()

    def poll(self) -> int | None:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        if not self.stubborn:
            self.exit(-15)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()
        self.stdout.end()

    def wait(self, timeout: float | None = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode


class FakeProcessFactory:
    def __init__(self, *, stubborn: bool = False, error: OSError | None = None) -> None:
        self.stubborn = stubborn
        self.error = error
        self.processes: list[FakeProcess] = []

    def __call__(self, args: list[str], **kwargs) -> FakeProcess:
        if self.error is not None:
            raise self.error
        process = FakeProcess(args, stubborn=self.stubborn, **kwargs)
        self.processes.append(process)
        return process

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def publish_diagnostics(self, uri: str, diagnostics: list[Diagnostic]) -> None:
        self.events.append(("diagnostics", (uri, list(diagnostics))))

    def status_ok(self, params: StatusOkParams) -> None:
        self.events.append(("statusOk", params))

    def status_clear(self, params: StatusClearParams) -> None:
        self.events.append(("statusClear", params))

    def log_error(self, message: str) -> None:
        self.events.append(("log", message))

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]

    def published(self) -> list[list[Diagnostic]]:
        return [payload[1] for kind, payload in self.events if kind == "diagnostics"]


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
