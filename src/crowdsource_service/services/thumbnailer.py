"""Image resizing for task pictures."""

from __future__ import annotations

import uuid
from pathlib import Path

from PIL import Image

from crowdsource_service.logging import get_logger

_PNG_MODES = frozenset({"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"})


class Thumbnailer:
    """
    Writes scaled-down copies of uploaded images.

    Failures surface as ``OSError`` (Pillow raises ``UnidentifiedImageError``,
    an ``OSError`` subclass, for unreadable input).
    """

    def __init__(self, output_directory: str) -> None:
        self._output_directory = Path(output_directory)
        self._output_directory.mkdir(parents=True, exist_ok=True)
        self._logger = get_logger(__name__)

    @property
    def output_directory(self) -> Path:
        return self._output_directory

    def resize(self, source_path: Path, dimensions: tuple[int, int]) -> str:
        """Write a thumbnail fitting within ``dimensions`` and return its filename."""
        filename = f"{uuid.uuid4().hex}.png"
        target = self._output_directory / filename
        with Image.open(source_path) as image:
            image.thumbnail(dimensions)
            converted = image if image.mode in _PNG_MODES else image.convert("RGB")
            converted.save(target, format="PNG")
        self._logger.debug(
            "Thumbnail written",
            extra={"source": str(source_path), "thumbnail": filename},
        )
        return filename
