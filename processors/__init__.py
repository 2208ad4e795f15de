"""
Processors package - volume processing operations.

Includes a processor registry so serialized processor configs can be rebuilt.
"""
from typing import Dict, Type, Any

from .base_processor import BaseProcessor, ProgressCallback
from .mppca_denoise import (
    MPPCADenoise,
    DenoiseResult,
    DenoiseOutput,
    DEFAULT_WINDOW_SIZE,
    MAX_WINDOW_SIZE,
    validate_window_size,
    load_window,
    select_rank,
    reconstruct,
    denoise_matrix,
    denoise_voxel,
)

# =============================================================================
# Processor Registry
# =============================================================================

# Registry mapping class names to processor classes
PROCESSOR_REGISTRY: Dict[str, Type[BaseProcessor]] = {
    'MPPCADenoise': MPPCADenoise,
}


def get_processor_class(name: str) -> Type[BaseProcessor]:
    """
    Get processor class by name from registry.

    Raises:
        KeyError: If processor name not found in registry
    """
    if name not in PROCESSOR_REGISTRY:
        raise KeyError(f"Unknown processor: {name}. Available: {list(PROCESSOR_REGISTRY.keys())}")
    return PROCESSOR_REGISTRY[name]


def create_processor(config: Dict[str, Any]) -> BaseProcessor:
    """Create processor instance from a to_dict() configuration."""
    return BaseProcessor.from_dict(config)


def register_processor(name: str, processor_class: Type[BaseProcessor]) -> None:
    """
    Register a custom processor class.

    Raises:
        TypeError: If processor_class is not a BaseProcessor subclass
    """
    if not issubclass(processor_class, BaseProcessor):
        raise TypeError(f"{processor_class} is not a BaseProcessor subclass")
    PROCESSOR_REGISTRY[name] = processor_class


__all__ = [
    # Base classes
    'BaseProcessor',
    'ProgressCallback',
    # MP-PCA
    'MPPCADenoise',
    'DenoiseResult',
    'DenoiseOutput',
    'DEFAULT_WINDOW_SIZE',
    'MAX_WINDOW_SIZE',
    'validate_window_size',
    'load_window',
    'select_rank',
    'reconstruct',
    'denoise_matrix',
    'denoise_voxel',
    # Registry functions
    'PROCESSOR_REGISTRY',
    'get_processor_class',
    'create_processor',
    'register_processor',
]
