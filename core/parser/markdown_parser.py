"""
Markdown body analysis: wikilinks and inline tags.
"""

import re
from typing import Iterable, List

WIKILINK_PATTERN = re.compile(r"\[\[([^\]|]+)(?:\|[^\]]+)?\]\]")
INLINE_TAG_PATTERN = re.compile(r"(?:^|[^&\w])#([a-zA-Z][a-zA-Z0-9_/-]*)")
FENCED_CODE_PATTERN = re.compile(r"```.*?```", re.DOTALL)
INLINE_CODE_PATTERN = re.compile(r"`[^`\n]*`")


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


def extract_wikilinks(body: str) -> List[str]:
    """
    Collect outgoing ``[[links]]`` in order of first appearance.

    Display aliases (``[[target|label]]``) and heading anchors
    (``[[target#heading]]``) are stripped so only the target note remains.
    """
    targets = []
    for match in WIKILINK_PATTERN.finditer(body):
        target = match.group(1).split("#", 1)[0].strip()
        targets.append(target)
    return _dedupe(targets)


def strip_code(body: str) -> str:
    """Remove fenced and inline code spans so their contents are not scanned."""
    body = FENCED_CODE_PATTERN.sub("", body)
    return INLINE_CODE_PATTERN.sub("", body)


def extract_inline_tags(body: str) -> List[str]:
    """Collect ``#tags`` from prose, lowercased and deduplicated."""
    text = strip_code(body)
    return _dedupe(match.group(1).lower() for match in INLINE_TAG_PATTERN.finditer(text))


def merge_tags(*tag_lists: Iterable[str]) -> List[str]:
    """Merge tag lists, lowercasing, dropping a leading '#', keeping first occurrence order."""
    merged = []
    for tags in tag_lists:
        for tag in tags:
            tag = tag.strip().lstrip("#").lower()
            merged.append(tag)
    return _dedupe(merged)
