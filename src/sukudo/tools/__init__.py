"""External tool detection for Sukudo."""

from sukudo.tools.detection import (
    FilterSupport,
    MediaProbe,
    detect_filters,
    find_tool,
    probe_media,
    probe_separator,
    require_tool,
)

__all__ = [
    "FilterSupport",
    "MediaProbe",
    "detect_filters",
    "find_tool",
    "probe_media",
    "probe_separator",
    "require_tool",
]
