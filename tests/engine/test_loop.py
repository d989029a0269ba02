import pytest

from clish_shell.engine.cancellation import CancellationToken
from clish_shell.engine.loop import ExecutionLoop, LoopResult
from clish_shell.engine.ports import DispatchResult
from clish_shell.engine.state_machine import SessionState
from clish_shell.errors import LoopCancelled, SourceReadError
from clish_shell.interactive.line_reader import StreamLineReader
from clish_shell.interactive.session import Session


def run_loop(session, reader, dispatcher, token=None):
    return ExecutionLoop(reader, dispatcher).run(session, token)


def test_file_runs_to_eof(make_stream, reader, make_dispatcher):
    stream = make_stream("one\ntwo\nthree\n", name="script")
    session = Session(stream)
    dispatcher = make_dispatcher(session)

    result = run_loop(session, reader, dispatcher)

    assert result is LoopResult.COMPLETED
    assert result.ran_to_completion
    assert dispatcher.executed == ["one", "two", "three"]
    # Three lines, then the read that hits end of file.
    assert reader.reads == ["script"] * 4
    assert not session.input_stack
    # The primordial stream belongs to the caller.
    assert not stream.closed


def test_terminal_survives_script_error(make_stream, reader, make_dispatcher):
    session = Session(make_stream("bad\ngood\nalso good\n", tty=True))
    dispatcher = make_dispatcher(session, {"bad": DispatchResult.SCRIPT_ERROR})

    result = run_loop(session, reader, dispatcher)

    assert result is LoopResult.COMPLETED
    assert dispatcher.executed == ["bad", "good", "also good"]
    # The iteration after the error is back in READY before it reads.
    assert dispatcher.states[1] is SessionState.READY


def test_file_stops_on_script_error(make_stream, reader, make_dispatcher):
    session = Session(make_stream("l1\nl2\nl3\nl4\n"))
    dispatcher = make_dispatcher(session, {"l2": DispatchResult.SCRIPT_ERROR})

    result = run_loop(session, reader, dispatcher)

    assert result is LoopResult.STOPPED_ON_ERROR
    assert result.ran_to_completion
    assert dispatcher.executed == ["l1", "l2"]
    assert reader.lines == ["l1", "l2"]
    assert session.last_result is LoopResult.STOPPED_ON_ERROR


def test_nested_source_is_read_before_parent(make_stream, reader, make_dispatcher):
    session = Session(make_stream("before\ninclude\nafter\n", name="main"))
    nested = make_stream("inner-1\ninner-2\n", name="nested")

    def include():
        session.input_stack.push(nested, owns_stream=True, name="nested")
        return DispatchResult.OK

    dispatcher = make_dispatcher(session, {"include": include})

    result = run_loop(session, reader, dispatcher)

    assert result is LoopResult.COMPLETED
    assert dispatcher.executed == ["before", "include", "inner-1", "inner-2", "after"]
    assert nested.closed


def test_error_in_nested_file_unwinds_every_file(make_stream, reader, make_dispatcher):
    session = Session(make_stream("include\nafter\n", name="main"))
    nested = make_stream("inner-1\nbroken\ninner-3\n", name="nested")

    def include():
        session.input_stack.push(nested, owns_stream=True, name="nested")
        return DispatchResult.OK

    dispatcher = make_dispatcher(
        session, {"include": include, "broken": DispatchResult.SCRIPT_ERROR}
    )

    result = run_loop(session, reader, dispatcher)

    assert result is LoopResult.STOPPED_ON_ERROR
    assert dispatcher.executed == ["include", "inner-1", "broken"]
    assert nested.closed


def test_error_in_nested_file_returns_to_terminal(make_stream, reader, make_dispatcher):
    session = Session(make_stream("include\nafter\n", tty=True, name="tty"))
    nested = make_stream("broken\nnever\n", name="nested")

    def include():
        session.input_stack.push(nested, owns_stream=True, name="nested")
        return DispatchResult.OK

    dispatcher = make_dispatcher(
        session, {"include": include, "broken": DispatchResult.SCRIPT_ERROR}
    )

    result = run_loop(session, reader, dispatcher)

    assert result is LoopResult.COMPLETED
    assert dispatcher.executed == ["include", "broken", "after"]
    assert dispatcher.states[-1] is SessionState.READY


def test_fatal_stops_immediately(make_stream, reader, make_dispatcher):
    session = Session(make_stream("first\nboom\nlast\n", tty=True))
    dispatcher = make_dispatcher(session, {"boom": DispatchResult.FATAL})

    result = run_loop(session, reader, dispatcher)

    assert result is LoopResult.STOPPED_ON_ERROR
    assert dispatcher.executed == ["first", "boom"]
    assert session.state is SessionState.CLOSING
    assert not session.input_stack


def test_close_request_stops_reading(make_stream, reader, make_dispatcher):
    session = Session(make_stream("include\n", name="main"))
    nested = make_stream("exit\nnever\n", name="nested")

    def include():
        session.input_stack.push(nested, owns_stream=True, name="nested")
        return DispatchResult.OK

    def close():
        session.close()
        return DispatchResult.OK

    dispatcher = make_dispatcher(session, {"include": include, "exit": close})

    result = run_loop(session, reader, dispatcher)

    assert result is LoopResult.COMPLETED
    assert dispatcher.executed == ["include", "exit"]
    assert nested.closed
    assert not session.input_stack


def test_closing_session_does_not_run(make_stream, reader, make_dispatcher):
    session = Session(make_stream("never\n"))
    session.close()
    dispatcher = make_dispatcher(session)

    result = run_loop(session, reader, dispatcher)

    assert result is LoopResult.COMPLETED
    assert reader.reads == []
    assert dispatcher.executed == []


def test_previous_script_error_does_not_leak_into_new_run(
    make_stream, reader, make_dispatcher
):
    session = Session(make_stream("ok\n"))
    session.state = SessionState.SCRIPT_ERROR
    dispatcher = make_dispatcher(session)

    result = run_loop(session, reader, dispatcher)

    assert result is LoopResult.COMPLETED
    assert dispatcher.executed == ["ok"]


def test_cancelled_token_stops_at_checkpoint(make_stream, reader, make_dispatcher):
    session = Session(make_stream("never\n"))
    token = CancellationToken()
    token.cancel()
    dispatcher = make_dispatcher(session)

    with pytest.raises(LoopCancelled):
        run_loop(session, reader, dispatcher, token)

    assert reader.reads == []
    assert not session.input_stack


def test_blank_iterations_do_not_need_dispatch_results(make_stream, reader, make_dispatcher):
    session = Session(make_stream("\n\n", tty=True))
    dispatcher = make_dispatcher(session)

    assert run_loop(session, reader, dispatcher) is LoopResult.COMPLETED
    assert dispatcher.executed == ["", ""]


class UnreadableReader(StreamLineReader):
    """Fails every read from the sources named in `unreadable`."""

    def __init__(self, *unreadable):
        self.unreadable = set(unreadable)

    def read_line(self, source):
        if source.name in self.unreadable:
            raise SourceReadError(f"Cannot read '{source.name}'")
        return super().read_line(source)


def test_unreadable_nested_file_returns_to_terminal(make_stream, make_dispatcher):
    session = Session(make_stream("include\nafter\n", tty=True, name="tty"))
    nested = make_stream("never\n", name="nested")

    def include():
        session.input_stack.push(nested, owns_stream=True, name="nested")
        return DispatchResult.OK

    dispatcher = make_dispatcher(session, {"include": include})

    result = run_loop(session, UnreadableReader("nested"), dispatcher)

    assert result is LoopResult.COMPLETED
    assert dispatcher.executed == ["include", "after"]
    assert dispatcher.states[-1] is SessionState.READY
    assert nested.closed


def test_unreadable_nested_file_unwinds_every_file(make_stream, make_dispatcher):
    session = Session(make_stream("include\nafter\n", name="main"))
    nested = make_stream("never\n", name="nested")

    def include():
        session.input_stack.push(nested, owns_stream=True, name="nested")
        return DispatchResult.OK

    dispatcher = make_dispatcher(session, {"include": include})

    result = run_loop(session, UnreadableReader("nested"), dispatcher)

    assert result is LoopResult.STOPPED_ON_ERROR
    assert dispatcher.executed == ["include"]
    assert not session.input_stack


def test_unreadable_terminal_ends_its_input(make_stream, make_dispatcher):
    session = Session(make_stream("never\n", tty=True, name="tty"))
    dispatcher = make_dispatcher(session)

    result = run_loop(session, UnreadableReader("tty"), dispatcher)

    assert result is LoopResult.COMPLETED
    assert dispatcher.executed == []
