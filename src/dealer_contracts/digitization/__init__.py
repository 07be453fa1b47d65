"""Template digitization: field layout extraction."""

from .engines import ExtractionEngine, HttpExtractionEngine, NullExtractionEngine, parse_fields
from .processor import DigitizationProcessor

__all__ = [
    'ExtractionEngine',
    'HttpExtractionEngine',
    'NullExtractionEngine',
    'parse_fields',
    'DigitizationProcessor',
]
