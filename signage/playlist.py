from enum import Enum
from typing import List, Optional, Sequence, Union
from .models import MediaItem

class Direction(str, Enum):
    NEXT = "next"
    PREVIOUS = "previous"

class Playlist:
    """
    Latest playlist snapshot plus the consumer-held current index.
    The index always stays within [0, len) (0 when empty).
    """

    def __init__(self, items: Sequence[MediaItem] = ()):
        self.items: List[MediaItem] = list(items)
        self.index = 0

    def __len__(self) -> int:
        return len(self.items)

    @property
    def current(self) -> Optional[MediaItem]:
        if not self.items:
            return None
        return self.items[self.index]

    def replace(self, items: Sequence[MediaItem]):
        """Swap in a new snapshot. Keeps the index if still valid so playback continues."""
        self.items = list(items)
        if self.index >= len(self.items):
            self.index = 0

    def navigate(self, direction: Union[Direction, str]):
        count = len(self.items)
        if count == 0:
            return
        try:
            direction = Direction(direction)
        except ValueError:
            return
        if direction is Direction.NEXT:
            self.index = (self.index + 1) % count
        else:
            self.index = (self.index - 1 + count) % count
