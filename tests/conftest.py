"""
Pytest configuration and fixtures for work storage tests.
"""

from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from PIL import Image

from sojmieblo_backend.registry import WorkRegistry


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def works_root(tmp_path: Path) -> Path:
    """Provide a fresh works directory."""
    return tmp_path / "works"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(works_root: Path) -> WorkRegistry:
    """An initialized registry on the real clock."""
    reg = WorkRegistry(works_root)
    reg.initialize()
    return reg


@pytest.fixture
def clocked_registry(works_root: Path, clock: FakeClock) -> WorkRegistry:
    """An initialized registry driven by the fake clock."""
    reg = WorkRegistry(works_root, clock=clock)
    reg.initialize()
    return reg


def make_png(width: int = 64, height: int = 48, color: tuple[int, ...] = (200, 30, 30), mode: str = "RGB") -> bytes:
    image = Image.new(mode, (width, height), color)
    out = io.BytesIO()
    image.save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def png_factory():
    """Build small in-memory PNGs."""
    return make_png
