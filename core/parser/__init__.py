"""
Content parsing for vault files.

Turns raw file bytes into sync-ready entities: Markdown notes get their
frontmatter, tags and wikilinks extracted; everything else is carried as
an opaque attachment.

Example:
    from core.parser import ContentTransformer

    transformer = ContentTransformer(note_extensions=[".md"])
    entity = transformer.transform("daily/2024-01-01.md", data, fingerprint, stat)
"""

from .frontmatter_parser import Frontmatter, parse_frontmatter
from .markdown_parser import extract_wikilinks, extract_inline_tags
from .transformer import ContentTransformer

__all__ = [
    "Frontmatter",
    "parse_frontmatter",
    "extract_wikilinks",
    "extract_inline_tags",
    "ContentTransformer",
]
