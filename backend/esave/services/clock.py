from __future__ import annotations
from typing import Protocol


class Clock(Protocol):
    def current_height(self) -> int: ...


class BlockClock:
    """Monotonic block-height counter used when the engine is hosted locally."""

    def __init__(self, height: int = 0):
        if height < 0:
            raise ValueError("height must be >= 0")
        self._height = int(height)

    def current_height(self) -> int:
        return self._height

    def advance(self, blocks: int = 1) -> int:
        if blocks < 0:
            raise ValueError("block height cannot move backwards")
        self._height += int(blocks)
        return self._height

    def set_height(self, height: int) -> int:
        if height < self._height:
            raise ValueError(f"block height cannot move backwards ({self._height} -> {height})")
        self._height = int(height)
        return self._height
