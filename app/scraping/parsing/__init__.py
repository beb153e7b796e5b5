"""
HTML parsing exports.
"""

from app.scraping.parsing.selector_extractor import SelectorExtractor

__all__ = ["SelectorExtractor"]
