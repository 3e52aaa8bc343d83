"""Compliance document parsers."""

from .base import DocumentParser
from .frontmatter_parser import FrontmatterParser

__all__ = ["DocumentParser", "FrontmatterParser"]
