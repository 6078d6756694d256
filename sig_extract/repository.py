"""Repository for image file operations."""
import re
import logging
from io import BytesIO
from pathlib import Path
from typing import Iterable, List

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .state import ProcessedSignature

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\s]+')


class RepositoryError(Exception):
    """Raised when repository operations fail."""
    pass


def load_image(image_path: Path) -> np.ndarray:
    """
    Decode a photo into an RGBA array.

    EXIF orientation is applied so the pixels match what a viewer shows.

    Args:
        image_path: Path to image file

    Returns:
        RGBA array of shape (height, width, 4)

    Raises:
        RepositoryError: If the file cannot be read or decoded
    """
    try:
        with Image.open(image_path) as image:
            image = ImageOps.exif_transpose(image)
            rgba = np.array(image.convert('RGBA'))
        logger.info(f"Loaded {image_path.name} ({rgba.shape[1]}x{rgba.shape[0]})")
        return rgba
    except (OSError, UnidentifiedImageError) as e:
        logger.error(f"Error loading image {image_path}: {e}")
        raise RepositoryError(f"Error loading image: {str(e)}") from e


def encode_png(bitmap: np.ndarray) -> bytes:
    """
    Encode a gray, RGB or RGBA array as PNG bytes.

    Raises:
        RepositoryError: If encoding fails
    """
    try:
        buffer = BytesIO()
        Image.fromarray(np.array(bitmap, dtype=np.uint8)).save(buffer, format='PNG')
        return buffer.getvalue()
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Error encoding PNG: {e}")
        raise RepositoryError(f"Error encoding PNG: {str(e)}") from e


def save_image(image_path: Path, image_data: bytes) -> bool:
    """
    Save image data to file.

    Args:
        image_path: Destination path
        image_data: Image data as bytes

    Returns:
        True if successful

    Raises:
        RepositoryError: If save fails
    """
    try:
        image_path.parent.mkdir(parents=True, exist_ok=True)
        image_path.write_bytes(image_data)
        logger.debug(f"Saved image to {image_path}")
        return True
    except OSError as e:
        logger.error(f"Error saving image {image_path}: {e}")
        raise RepositoryError(f"Error saving image: {str(e)}") from e


def signature_filename(signature: ProcessedSignature, index: int) -> str:
    """
    File name for an exported signature.

    The annotation is used as the name when present, otherwise the
    1-based position.
    """
    name = str(index + 1)
    if signature.annotation:
        cleaned = _UNSAFE_CHARS.sub('_', signature.annotation.strip()).strip('._')
        if cleaned:
            name = cleaned
    return f"signature_{name}_{signature.width}x{signature.height}.png"


def save_signatures(signatures: Iterable[ProcessedSignature], output_dir: Path) -> List[Path]:
    """
    Write each signature's bitmap as a PNG file.

    Name collisions get a numeric suffix.

    Args:
        signatures: Signatures to export
        output_dir: Destination directory, created if missing

    Returns:
        Paths of the written files, in input order

    Raises:
        RepositoryError: If a file cannot be written
    """
    written = []
    for index, signature in enumerate(signatures):
        dst = output_dir / signature_filename(signature, index)
        counter = 1
        while dst in written or dst.exists():
            dst = output_dir / f"{Path(signature_filename(signature, index)).stem}_{counter}.png"
            counter += 1
        save_image(dst, encode_png(signature.processed_bitmap))
        written.append(dst)

    logger.info(f"Saved {len(written)} signatures to {output_dir}")
    return written
