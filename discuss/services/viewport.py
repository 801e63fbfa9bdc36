"""
Scroll geometry for the message list.

The UI layer owns the real widget; it mirrors its measurements into a
``Viewport`` so the synchronizer can anchor scroll position across
prepends and decide whether to follow new messages.
"""

from dataclasses import dataclass


@dataclass
class Viewport:
    """Scroll measurements of the message list, in pixels."""

    scroll_top: float = 0.0
    scroll_height: float = 0.0
    client_height: float = 0.0

    @property
    def distance_from_bottom(self) -> float:
        return self.scroll_height - self.scroll_top - self.client_height

    def near_bottom(self, threshold: float = 100) -> bool:
        return self.distance_from_bottom < threshold

    def near_top(self, threshold: float = 60) -> bool:
        return self.scroll_top < threshold

    def scroll_to_bottom(self) -> None:
        self.scroll_top = max(0.0, self.scroll_height - self.client_height)


@dataclass(frozen=True)
class ScrollAnchor:
    """Content height captured before older rows are prepended."""

    scroll_height: float
    scroll_top: float

    @classmethod
    def capture(cls, viewport: Viewport) -> "ScrollAnchor":
        return cls(viewport.scroll_height, viewport.scroll_top)

    def restore(self, viewport: Viewport, new_scroll_height: float) -> None:
        """Shift the offset by the height delta so the same rows stay in view."""
        viewport.scroll_height = new_scroll_height
        viewport.scroll_top = self.scroll_top + (new_scroll_height - self.scroll_height)


def should_follow(viewport: Viewport | None, threshold: float = 100) -> bool:
    """Whether a newly arrived message should scroll the view to the bottom."""
    if viewport is None:
        return True
    return viewport.near_bottom(threshold)
