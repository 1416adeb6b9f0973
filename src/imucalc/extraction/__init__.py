"""Property extraction from cadastral certificates (visure)."""

from imucalc.extraction.visura import ExtractedProperty, VisuraExtractionError, VisuraExtractor

__all__ = ["ExtractedProperty", "VisuraExtractionError", "VisuraExtractor"]
