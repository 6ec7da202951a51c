"""
Filename normalization for matching exported files against expected names.

Browsers and operating systems rewrite download names (emoji dropped, punctuation
replaced, long names truncated), so names are compared in a canonical form.
"""

import re
from pathlib import Path

VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi")

# Emoticons, misc symbols & pictographs, transport, flags, misc symbols, dingbats
_EMOJI_RE = re.compile(
    "[\U0001F600-\U0001F64F"
    "\U0001F300-\U0001F5FF"
    "\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF"
    "☀-⛿"
    "✀-➿]"
)
_SPECIAL_RE = re.compile(r"[^\w.-]", re.ASCII)
_UNDERSCORES_RE = re.compile(r"_+")

MATCH_PREFIX_LENGTH = 30


def normalize_filename(name: str) -> str:
    """
    Reduce a filename to lowercase ASCII word characters joined by underscores.

    >>> normalize_filename("My 🎬 Clip!!")
    'my_clip'
    """
    name = _EMOJI_RE.sub("_", name)
    name = _SPECIAL_RE.sub("_", name)
    name = _UNDERSCORES_RE.sub("_", name)
    return name.strip("_").lower()


def normalize_stem(filename: str) -> str:
    """Normalize a filename with its extension removed."""
    return normalize_filename(re.sub(r"\.[^.]+$", "", filename))


def names_match(expected: str, candidate: str, prefix_length: int = MATCH_PREFIX_LENGTH) -> bool:
    """
    True when two filenames refer to the same export.

    Accepts prefix overlap in either direction to tolerate truncated names.
    """
    a = normalize_stem(expected)
    b = normalize_stem(candidate)
    if not a or not b:
        return False
    return a == b or a[:prefix_length] in b or b[:prefix_length] in a


def is_video_file(path: Path) -> bool:
    return path.suffix.lower() in VIDEO_EXTENSIONS
