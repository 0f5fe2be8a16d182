"""
Service layer orchestrators for batch chunk extraction.
"""

from .extraction import ExtractionCallbacks, ExtractionReport, ExtractionService, FileExtraction

__all__ = ["ExtractionCallbacks", "ExtractionReport", "ExtractionService", "FileExtraction"]
