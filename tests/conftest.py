from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from loguru import logger
from PIL import Image


@pytest.fixture(autouse=True)
def _reset_loguru():
    yield
    logger.remove()


@pytest.fixture
def log_records() -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


@pytest.fixture
def make_image():
    def _make(
        path: Path,
        size: tuple[int, int] = (640, 480),
        mode: str = "RGB",
        color: Any = (200, 40, 40),
        **save_kwargs: Any,
    ) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new(mode, size, color).save(path, **save_kwargs)
        return path

    return _make
