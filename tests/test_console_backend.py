"""
Tests for the process-wide console channel and its thread-safe backend.
"""
import logging
import threading

import pytest

from utils import console
from utils.console import (
    ConsoleBackend,
    console_print,
    report_to_user,
    check_atomic_environment,
)


class Recorder:
    """Console hooks that store everything they receive."""

    def __init__(self):
        self.printed = []
        self.reported = []

    def print(self, msg):
        self.printed.append(msg)

    def report(self, msg, level):
        self.reported.append((level, msg))


@pytest.fixture
def recorder(monkeypatch):
    rec = Recorder()
    monkeypatch.setattr(console, 'print_func', rec.print)
    monkeypatch.setattr(console, 'report_to_user_func', rec.report)
    assert ConsoleBackend.refcount() == 0
    yield rec
    assert ConsoleBackend.refcount() == 0


class TestDispatch:
    """Dispatchers follow whichever hooks are installed."""

    def test_print_goes_to_installed_hook(self, recorder):
        console_print("hello")
        assert recorder.printed == ["hello"]

    def test_report_carries_level(self, recorder):
        report_to_user("careful", logging.WARNING)
        report_to_user("fyi")
        assert recorder.reported == [(logging.WARNING, "careful"), (logging.INFO, "fyi")]

    def test_default_print_writes_stderr(self, capsys):
        console._default_print("to stderr")
        assert capsys.readouterr().err == "to stderr\n"

    def test_default_report_logs(self, caplog):
        with caplog.at_level(logging.INFO, logger='dwidenoise.console'):
            console._default_report_to_user("logged", logging.INFO)
        assert "logged" in caplog.text


class TestConsoleBackend:
    """Reference counting and hook swapping."""

    def test_acquire_installs_wrappers(self, recorder):
        ConsoleBackend.acquire()
        try:
            assert console.print_func is not recorder.print
            assert ConsoleBackend.is_active()
            console_print("wrapped")
            report_to_user("wrapped report", logging.ERROR)
        finally:
            ConsoleBackend.release()

        assert recorder.printed == ["wrapped"]
        assert recorder.reported == [(logging.ERROR, "wrapped report")]

    def test_release_restores_hooks(self, recorder):
        ConsoleBackend.acquire()
        ConsoleBackend.release()

        assert console.print_func == recorder.print
        assert console.report_to_user_func == recorder.report
        assert not ConsoleBackend.is_active()

    def test_nested_acquire(self, recorder):
        assert ConsoleBackend.acquire() == 1
        wrapped = console.print_func
        assert ConsoleBackend.acquire() == 2
        assert console.print_func is wrapped

        assert ConsoleBackend.release() == 1
        assert console.print_func is wrapped
        assert ConsoleBackend.release() == 0
        assert console.print_func == recorder.print

    def test_release_without_acquire(self, recorder):
        with pytest.raises(RuntimeError):
            ConsoleBackend.release()
        assert ConsoleBackend.refcount() == 0

    def test_context_manager_releases_on_error(self, recorder):
        with pytest.raises(ValueError):
            with ConsoleBackend():
                assert ConsoleBackend.refcount() == 1
                raise ValueError("boom")

        assert ConsoleBackend.refcount() == 0
        assert console.print_func == recorder.print

    def test_messages_not_interleaved(self, monkeypatch):
        """Character-by-character hook output stays whole per message."""
        chars = []

        def slow_print(msg):
            for ch in msg:
                chars.append(ch)
                # Give other threads a chance to run mid-message
                threading.Event().wait(0)

        monkeypatch.setattr(console, 'print_func', slow_print)

        n_threads, n_messages, length = 8, 20, 40
        letters = 'ABCDEFGH'
        barrier = threading.Barrier(n_threads)

        def work(letter):
            barrier.wait()
            for _ in range(n_messages):
                console_print(letter * length)

        with ConsoleBackend():
            threads = [threading.Thread(target=work, args=(letters[i],)) for i in range(n_threads)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        output = ''.join(chars)
        assert len(output) == n_threads * n_messages * length
        for i in range(0, len(output), length):
            block = output[i:i + length]
            assert block == block[0] * length
        for letter in letters:
            assert output.count(letter) == n_messages * length


class TestAtomicEnvironment:

    def test_uint8_is_one_byte(self):
        assert check_atomic_environment()

    def test_mismatch_only_warns(self, monkeypatch, caplog):
        monkeypatch.setattr(console.ctypes, 'sizeof', lambda _type: 4)
        with caplog.at_level(logging.WARNING):
            assert not check_atomic_environment()
        assert "instabilities" in caplog.text
