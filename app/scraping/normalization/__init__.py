"""
Value normalization exports.
"""

from app.scraping.normalization.value_normalizer import ValueNormalizer

__all__ = ["ValueNormalizer"]
