"""
Member colour palette.
"""

from collections import Counter
from typing import Iterable, List

# Reserved for the room owner, never handed to a member
OWNER_COLOR = "#DC2626"

MEMBER_COLORS: List[str] = [
    "#16A085",
    "#2980B9",
    "#8E44AD",
    "#F39C12",
    "#27AE60",
    "#E67E22",
    "#9B59B6",
    "#34495E",
    "#1ABC9C",
    "#3498DB",
    "#F1C40F",
    "#95A5A6",
    "#E91E63",
    "#FF5722",
    "#607D8B",
    "#795548",
    "#009688",
    "#673AB7",
    "#FF9800",
    "#4CAF50",
]


def assign_color(existing_colors: Iterable[str]) -> str:
    """
    Pick the first palette colour not already in use.

    Once the palette is exhausted the least-used colour is reused, ties going
    to palette order.
    """
    usage = Counter(color for color in existing_colors if color != OWNER_COLOR)

    for color in MEMBER_COLORS:
        if color not in usage:
            return color

    return min(MEMBER_COLORS, key=lambda color: usage[color])
