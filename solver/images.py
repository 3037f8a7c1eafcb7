"""Read question images from disk into ImageInput values."""

from pathlib import Path

from solver.models import ImageInput

_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def mime_type_for(path: Path) -> str:
    """Map a file extension to an image MIME type, defaulting to JPEG."""
    return _MIME_TYPES.get(path.suffix.lower(), "image/jpeg")


def load_image(path: Path) -> ImageInput:
    return ImageInput(data=path.read_bytes(), mime_type=mime_type_for(path))


def load_images(paths: list[Path]) -> list[ImageInput]:
    return [load_image(p) for p in paths]
