from __future__ import annotations

import json
from pathlib import Path

from lsprotocol.types import Position

from fstar_bridge.bridge import Bridge, uri_to_path
from fstar_bridge.schema import StatusClearParams
from tests.fakes import FakeProcessFactory, RecordingSink, wait_for

SYNTAX_ERROR = (
    '{"kind":"response","status":"failure","response":'
    '[{"message":"syntax error","ranges":[{"beg":[1,4],"end":[1,5]}]}]}\n'
)


def _has_nonempty_diagnostics(sink: RecordingSink) -> bool:
    return any(diagnostics for diagnostics in sink.published())


def test_uri_to_path() -> None:
    path = Path("/tmp/demo.fst")
    assert uri_to_path(path.as_uri()) == path
    assert uri_to_path("file:///dir%20with%20space/a.fst") == Path("/dir with space/a.fst")
    assert uri_to_path("relative/a.fst") == Path("relative/a.fst")


def test_open_check_and_failure_end_to_end(bridge: Bridge, sink: RecordingSink, process_factory) -> None:
    session = bridge.open_document("file:///a.fst", "let x = 1")

    assert session is not None
    process = process_factory.last
    assert process.args == ["fstar.exe", "--ide", "a.fst"]
    assert process.kwargs["cwd"] == "/"
    assert process.stdin.messages() == [
        {
            "query": "vfs-add",
            "args": {"filename": None, "contents": "let x = 1"},
            "query-id": "1",
        },
        {
            "query": "full-buffer",
            "args": {"kind": "full", "code": "let x = 1", "line": 0, "column": 0},
            "query-id": "2",
        },
    ]
    assert sink.kinds() == ["diagnostics", "statusClear"]

    process.stdout.push(SYNTAX_ERROR)
    assert wait_for(lambda: _has_nonempty_diagnostics(sink))

    (diagnostic,) = sink.published()[-1]
    assert diagnostic.message == "syntax error"
    assert diagnostic.range.start == Position(line=0, character=4)
    assert diagnostic.range.end == Position(line=0, character=5)


def test_every_change_clears_before_checking(bridge: Bridge, sink: RecordingSink, process_factory) -> None:
    bridge.open_document("file:///a.fst", "let x = 1")
    sink.events.clear()

    assert bridge.change_document("file:///a.fst", "let x = 1") == 3
    assert bridge.change_document("file:///a.fst", "let x = 1") == 4

    assert sink.events == [
        ("diagnostics", ("file:///a.fst", [])),
        ("statusClear", StatusClearParams(uri="file:///a.fst")),
        ("diagnostics", ("file:///a.fst", [])),
        ("statusClear", StatusClearParams(uri="file:///a.fst")),
    ]
    queries = [message["query"] for message in process_factory.last.stdin.messages()]
    assert queries == ["vfs-add", "full-buffer", "full-buffer", "full-buffer"]


def test_change_without_session_is_ignored(bridge: Bridge, sink: RecordingSink) -> None:
    assert bridge.change_document("file:///never-opened.fst", "x") is None
    assert sink.events == []


def test_spawn_failure_surfaces_single_diagnostic(config, sink: RecordingSink) -> None:
    factory = FakeProcessFactory(error=FileNotFoundError(2, "No such file or directory", "fstar.exe"))
    bridge = Bridge(config, sink, process_factory=factory)

    assert bridge.open_document("file:///a.fst", "let x = 1") is None

    published = sink.published()
    assert len(published) == 1
    (diagnostic,) = published[0]
    assert "Could not start fstar.exe" in diagnostic.message
    assert sink.kinds() == ["diagnostics", "log"]

    bridge.change_document("file:///a.fst", "let x = 2")
    assert len(sink.published()) == 1


def test_close_terminates_process_without_error(bridge: Bridge, sink: RecordingSink, process_factory) -> None:
    bridge.open_document("file:///a.fst", "let x = 1")
    process = process_factory.last

    assert bridge.close_document("file:///a.fst") is True
    assert process.terminated
    assert process.poll() is not None
    assert bridge.registry.get("file:///a.fst") is None
    assert bridge.change_document("file:///a.fst", "let x = 2") is None
    assert "log" not in sink.kinds()


def test_output_after_close_is_ignored(bridge: Bridge, sink: RecordingSink) -> None:
    session = bridge.open_document("file:///a.fst", "let x = 1")
    bridge.close_document("file:///a.fst")
    sink.events.clear()
    bridge._handle_output(session, SYNTAX_ERROR)
    assert sink.events == []


def test_unexpected_exit_tears_session_down(bridge: Bridge, sink: RecordingSink, process_factory) -> None:
    bridge.open_document("file:///a.fst", "let x = 1")
    process_factory.last.exit(1)

    assert wait_for(lambda: "log" in sink.kinds())
    assert bridge.registry.get("file:///a.fst") is None
    (diagnostic,) = sink.published()[-1]
    assert "exited unexpectedly (exit code 1)" in diagnostic.message


def test_broken_pipe_tears_session_down(bridge: Bridge, sink: RecordingSink, process_factory) -> None:
    bridge.open_document("file:///a.fst", "let x = 1")
    process = process_factory.last
    process.stdin.broken = True

    assert bridge.change_document("file:///a.fst", "let x = 2") is None
    assert bridge.registry.get("file:///a.fst") is None
    assert process.terminated
    assert "stopped accepting input" in sink.published()[-1][0].message


def test_stale_failure_from_superseded_check_is_dropped(bridge: Bridge, sink: RecordingSink, process_factory) -> None:
    session = bridge.open_document("file:///a.fst", "let x = 1")
    bridge.change_document("file:///a.fst", "let x = 2")
    assert session.check_query_id == 3

    stale = json.loads(SYNTAX_ERROR)
    stale["query-id"] = "2"
    current = dict(stale, **{"query-id": "3"})
    process_factory.last.stdout.push(json.dumps(stale) + "\n" + json.dumps(current) + "\n")

    assert wait_for(lambda: _has_nonempty_diagnostics(sink))
    assert [len(diagnostics) for diagnostics in sink.published() if diagnostics] == [1]


def test_shutdown_closes_every_session(bridge: Bridge, process_factory) -> None:
    bridge.open_document("file:///a.fst", "a")
    bridge.open_document("file:///b.fst", "b")
    bridge.shutdown()
    assert bridge.registry.uris() == []
    assert all(process.terminated for process in process_factory.processes)


def test_schedule_receives_reader_callbacks(config, sink: RecordingSink) -> None:
    scheduled: list[tuple] = []
    factory = FakeProcessFactory()
    bridge = Bridge(config, sink, process_factory=factory, schedule=lambda fn, *args: scheduled.append((fn, args)))
    bridge.open_document("file:///a.fst", "let x = 1")
    factory.last.stdout.push(SYNTAX_ERROR)

    assert wait_for(lambda: len(scheduled) == 1)
    assert not _has_nonempty_diagnostics(sink)
    fn, args = scheduled[0]
    fn(*args)
    assert _has_nonempty_diagnostics(sink)
    bridge.shutdown()
