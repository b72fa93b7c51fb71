"""Visit Scribe - Segmented speech transcription and transcript stitching for clinical visits."""

__version__ = "0.1.0"

__all__ = ["__version__"]
