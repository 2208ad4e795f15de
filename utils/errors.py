"""
Exception types shared by the denoising pipeline.
"""


class ConfigurationError(ValueError):
    """Invalid option or environment value, raised before any work begins."""
    pass


class DenoisingError(RuntimeError):
    """Unexpected failure inside a worker; aborts the whole scan."""
    pass
