"""
Worker thread count resolution.

The number of worker threads is resolved lazily, once, from an ordered list
of sources (first match wins):

1. an explicit override (e.g. ``--nthreads``) when greater than zero
2. the DWIDENOISE_NTHREADS environment variable, parsed as an unsigned
   integer (a value of 0 counts as unset)
3. the ``NumberOfThreads`` setting, defaulting to the hardware concurrency

The resolved value is cached; later calls never consult the sources again
until the policy is reset.
"""
import os
import re
import logging
from typing import Mapping, Optional

from models.app_settings import AppSettings, get_settings
from utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_VARIABLE = 'DWIDENOISE_NTHREADS'

_UNSIGNED_RE = re.compile(r'[0-9]+')


def hardware_concurrency() -> int:
    """Number of logical CPUs reported by the system (at least 1)."""
    return os.cpu_count() or 1


def parse_unsigned(text: str, source: str = ENV_VARIABLE) -> int:
    """
    Parse *text* as an unsigned integer.

    Raises:
        ConfigurationError: If *text* is not a plain non-negative integer
    """
    stripped = text.strip()
    if not _UNSIGNED_RE.fullmatch(stripped):
        raise ConfigurationError(
            f"Invalid value for {source}: '{text}' (expected a non-negative integer)"
        )
    return int(stripped)


class ThreadCountPolicy:
    """
    Memoized worker thread count.

    Args:
        override: Explicit thread count; ignored unless > 0
        environ: Environment mapping (default: os.environ at resolve time)
        settings: Settings store (default: the AppSettings singleton)
    """

    def __init__(self,
                 override: Optional[int] = None,
                 environ: Optional[Mapping[str, str]] = None,
                 settings: Optional[AppSettings] = None):
        self.override = override
        self._environ = environ
        self._settings = settings
        self._resolved: Optional[int] = None

    @property
    def is_resolved(self) -> bool:
        return self._resolved is not None

    def resolve(self) -> int:
        """Return the thread count, resolving and caching it on first use."""
        if self._resolved is None:
            value, source = self._resolve_from_sources()
            self._resolved = value
            logger.debug(f"Using {value} worker thread(s) ({source})")
        return self._resolved

    def reset(self) -> None:
        """Forget the cached value and any explicit override."""
        self._resolved = None
        self.override = None

    def _resolve_from_sources(self):
        if self.override is not None and int(self.override) > 0:
            return int(self.override), 'explicit override'

        environ = os.environ if self._environ is None else self._environ
        from_env = environ.get(ENV_VARIABLE)
        if from_env is not None:
            value = parse_unsigned(from_env)
            if value > 0:
                return value, f'{ENV_VARIABLE} environment variable'

        settings = self._settings if self._settings is not None else get_settings()
        value = settings.get_number_of_threads(hardware_concurrency())
        return max(1, value), f'{AppSettings.NUMBER_OF_THREADS} setting'


# Process-wide policy
_policy = ThreadCountPolicy()


def get_thread_count_policy() -> ThreadCountPolicy:
    """Get the process-wide thread count policy."""
    return _policy


def number_of_threads(override: Optional[int] = None) -> int:
    """
    Resolve the process-wide worker thread count.

    Args:
        override: Explicit override; only honoured if the count has not been
                  resolved yet
    """
    if override is not None and not _policy.is_resolved:
        _policy.override = override
    elif override and override != _policy.resolve():
        logger.debug(f"Thread count already resolved to {_policy.resolve()}, "
                     f"ignoring override {override}")
    return _policy.resolve()
