"""Utilities package - console channel, thread policy and helpers."""
from .errors import ConfigurationError, DenoisingError
from .console import ConsoleBackend, console_print, report_to_user
from .thread_count import ThreadCountPolicy, number_of_threads, get_thread_count_policy
from .sample_data import generate_sample_dwi_volume

__all__ = [
    'ConfigurationError',
    'DenoisingError',
    'ConsoleBackend',
    'console_print',
    'report_to_user',
    'ThreadCountPolicy',
    'number_of_threads',
    'get_thread_count_policy',
    'generate_sample_dwi_volume',
]
