from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from common.errors import DecodeError


def decode_image(data: Optional[bytes]) -> Optional[np.ndarray]:
    """
    Bytes -> 3-channel BGR uint8 array (OpenCV order). Returns None for empty
    or undecodable input; callers decide whether that is an error.
    """
    if not data:
        return None
    arr = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    return img


_SIGNATURES = (
    (b"\xff\xd8\xff", ".jpg"),
    (b"\x89PNG\r\n\x1a\n", ".png"),
)


def image_ext(data: Optional[bytes]) -> Optional[str]:
    """Extension (".jpg" or ".png") from the leading magic bytes, None for anything else."""
    for magic, ext in _SIGNATURES:
        if data and data.startswith(magic):
            return ext
    return None


def same_format(data: bytes, ext: str) -> bool:
    want = ".jpg" if ext.lower() in (".jpg", ".jpeg") else ext.lower()
    return image_ext(data) == want


def encode_image(img: np.ndarray, ext: str, *, jpeg_quality: int = 95) -> bytes:
    """Encode by extension (".png" lossless, ".jpg" with the given quality)."""
    params = []
    if ext.lower() in (".jpg", ".jpeg"):
        params = [int(cv2.IMWRITE_JPEG_QUALITY), int(jpeg_quality)]
    ok, buf = cv2.imencode(ext, img, params)
    if not ok:
        raise DecodeError(f"cannot encode {img.shape} image as {ext}")
    return buf.tobytes()


def blank_canvas(size: Tuple[int, int], color: Tuple[int, int, int] = (0, 0, 0)) -> np.ndarray:
    """(width, height) canvas filled with an RGB color, stored BGR."""
    w, h = size
    canvas = np.empty((h, w, 3), dtype=np.uint8)
    canvas[:, :] = rgb_to_bgr(color)
    return canvas


def rgb_to_bgr(color: Tuple[int, int, int]) -> Tuple[int, int, int]:
    r, g, b = color
    return (int(b), int(g), int(r))
