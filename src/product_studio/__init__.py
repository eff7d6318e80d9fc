"""Product marketing image generation pipeline."""

__version__ = "0.1.0"
