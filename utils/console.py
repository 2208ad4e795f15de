"""
Process-wide console output channel.

Status, progress and diagnostic text is emitted through two replaceable hook
functions: ``print_func(msg)`` and ``report_to_user_func(msg, level)``. Code
should call the dispatchers :func:`console_print` and :func:`report_to_user`
rather than the hooks directly, so that whichever hooks are installed at call
time are used.

The default hooks are not safe to call from several threads at once: a
multi-part message written by one worker may be split by another. While a
:class:`ConsoleBackend` is held, both hooks are replaced by wrappers that run
the original hook under a single shared lock.

Usage:
    with ConsoleBackend():
        ...  # fan out worker threads that call console_print()
"""
import ctypes
import logging
import sys
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Messages routed through report_to_user() land on this logger by default
user_logger = logging.getLogger('dwidenoise.console')

PrintFunc = Callable[[str], None]
ReportFunc = Callable[[str, int], None]


def _default_print(msg: str) -> None:
    sys.stderr.write(msg)
    sys.stderr.write('\n')
    sys.stderr.flush()


def _default_report_to_user(msg: str, level: int) -> None:
    user_logger.log(level, msg)


# Currently installed hooks
print_func: PrintFunc = _default_print
report_to_user_func: ReportFunc = _default_report_to_user


def console_print(msg: str) -> None:
    """Print *msg* through the currently installed print hook."""
    print_func(msg)


def report_to_user(msg: str, level: int = logging.INFO) -> None:
    """Report *msg* through the currently installed report hook."""
    report_to_user_func(msg, level)


def check_atomic_environment() -> bool:
    """
    Sanity check of the interpreter's smallest unsigned counter type.

    Returns:
        True when ctypes.c_uint8 is one byte wide. A mismatch is logged as a
        warning only; it never blocks initialization.
    """
    size = ctypes.sizeof(ctypes.c_uint8)
    if size != 1:
        logger.warning(
            f"uint8 counter type is {size} bytes instead of 1 - "
            f"this may introduce instabilities in multi-threaded operation!"
        )
        return False
    return True


class ConsoleBackend:
    """
    Reference-counted guard that serializes the console hooks.

    The first ``acquire()`` saves the installed hooks and swaps in locked
    wrappers; the matching last ``release()`` restores the saved hooks. All
    wrapped calls share one lock, so messages from different threads are never
    interleaved, though their relative order is first-come-first-served.

    Instances are context managers; class methods can be used directly when
    acquisition and release happen in different scopes.
    """

    _refcount = 0
    _guard = threading.Lock()      # protects _refcount and the hook swap
    _mutex = threading.Lock()      # serializes console output
    _previous_print: Optional[PrintFunc] = None
    _previous_report: Optional[ReportFunc] = None

    @classmethod
    def acquire(cls) -> int:
        """Take a reference; installs the locked hooks on 0 -> 1."""
        global print_func, report_to_user_func
        with cls._guard:
            if cls._refcount == 0:
                check_atomic_environment()
                cls._previous_print = print_func
                cls._previous_report = report_to_user_func
                print_func = cls._thread_print
                report_to_user_func = cls._thread_report_to_user
                logger.debug("Thread-safe console backend installed")
            cls._refcount += 1
            return cls._refcount

    @classmethod
    def release(cls) -> int:
        """Drop a reference; restores the original hooks on 1 -> 0."""
        global print_func, report_to_user_func
        with cls._guard:
            if cls._refcount == 0:
                raise RuntimeError("ConsoleBackend released more times than acquired")
            cls._refcount -= 1
            if cls._refcount == 0:
                print_func = cls._previous_print
                report_to_user_func = cls._previous_report
                cls._previous_print = None
                cls._previous_report = None
                logger.debug("Thread-safe console backend removed")
            return cls._refcount

    @classmethod
    def refcount(cls) -> int:
        with cls._guard:
            return cls._refcount

    @classmethod
    def is_active(cls) -> bool:
        return cls.refcount() > 0

    @classmethod
    def _thread_print(cls, msg: str) -> None:
        with cls._mutex:
            cls._previous_print(msg)

    @classmethod
    def _thread_report_to_user(cls, msg: str, level: int) -> None:
        with cls._mutex:
            cls._previous_report(msg, level)

    def __enter__(self) -> 'ConsoleBackend':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False
