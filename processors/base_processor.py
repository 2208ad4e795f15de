"""
Base processor class - common contract for volume processing operations.

Processors are configured once through keyword parameters, never modify their
input volume, and can be serialized to a plain dict so a configured run can be
stored alongside its outputs and rebuilt later.
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Callable
from models.dwi_volume import DWIVolume

# Type alias for progress callbacks: (current, total, message) -> None
ProgressCallback = Callable[[int, int, str], None]


class BaseProcessor(ABC):
    """
    Abstract base class for volume processors.

    Subclasses validate ``self.params`` in ``_validate_params`` (raising a
    ValueError subclass) and implement ``process`` and ``get_description``.
    """

    def __init__(self, **params):
        self.params = params
        self._progress_callback: Optional[ProgressCallback] = None
        self._validate_params()

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> 'BaseProcessor':
        """
        Set progress callback for processing status updates.

        Args:
            callback: Function(current, total, message), or None to disable

        Returns:
            self for method chaining
        """
        self._progress_callback = callback
        return self

    def _report_progress(self, current: int, total: int, message: str = ""):
        if self._progress_callback is not None:
            self._progress_callback(current, total, message)

    @abstractmethod
    def _validate_params(self):
        """Validate processor parameters. Raise ValueError if invalid."""

    @abstractmethod
    def process(self, volume: DWIVolume):
        """Process *volume* and return new output object(s)."""

    @abstractmethod
    def get_description(self) -> str:
        """Get human-readable description of this processor and its parameters."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.params})"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize processor class name and parameters."""
        return {
            'class_name': self.__class__.__name__,
            'params': self.params.copy()
        }

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'BaseProcessor':
        """
        Reconstruct a processor from ``to_dict()`` output.

        The class is looked up in the processor registry.

        Raises:
            ValueError: If the config is malformed or names an unknown class
        """
        from processors import get_processor_class

        try:
            processor_class = get_processor_class(config['class_name'])
            params = config['params']
        except KeyError as e:
            raise ValueError(f"Invalid processor config: {e}")
        return processor_class(**params)
