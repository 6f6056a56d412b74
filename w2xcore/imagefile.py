"""Reading and writing image files as BGR(A)-ordered numpy arrays."""

from __future__ import annotations

import io
import struct
import zlib
from dataclasses import dataclass
from os import fspath
from pathlib import Path

import numpy as np
from PIL import Image

from .modelinfo import FailedOpenInputFileError, FailedOpenOutputFileError, PathArg

# Rounding offsets used when turning [0, 1] floats back into integers.
_CLIP_EPS8 = (1.0 / 255.0) * 0.5 - (1.0e-7 * (1.0 / 255.0) * 0.5)
_CLIP_EPS16 = (1.0 / 65535.0) * 0.5 - (1.0e-7 * (1.0 / 65535.0) * 0.5)
_CLIP_EPS32 = 1.0 * 0.5 - (1.0e-7 * 0.5)

_DECODE_ERRORS = (OSError, ValueError, SyntaxError, EOFError, TypeError, Image.DecompressionBombError)


@dataclass(frozen=True)
class OutputFormat:
    """An output file type: its bit depths and its quality setting, if any."""

    ext: str
    depths: tuple[int, ...]
    quality_min: int | None = None
    quality_max: int | None = None
    quality_default: int | None = None
    quality_option: str | None = None


OUTPUT_FORMATS: tuple[OutputFormat, ...] = (
    OutputFormat(".png", (8, 16)),
    OutputFormat(".bmp", (8,)),
    OutputFormat(".jpg", (8,), 0, 100, 95, "quality"),
    OutputFormat(".jp2", (8, 16)),
    OutputFormat(".sr", (8,)),
    OutputFormat(".tif", (8, 16, 32)),
    OutputFormat(".hdr", (8, 16, 32)),
    OutputFormat(".exr", (8, 16, 32)),
    OutputFormat(".ppm", (8, 16)),
    OutputFormat(".webp", (8,), 1, 100, 100, "quality"),
    OutputFormat(".tga", (8,), 0, 1, 0, "rle"),
)


def output_format(ext: str) -> OutputFormat | None:
    """Return the output format registered for ``ext`` (exact match), or None."""
    return next((fmt for fmt in OUTPUT_FORMATS if fmt.ext == ext), None)


def depth_max_value(depth: int) -> float:
    """Largest sample value for a bit depth; 8-bit for unknown depths."""
    return {8: 255.0, 16: 65535.0, 32: 1.0}.get(depth, 255.0)


def rounding_eps(depth: int) -> float:
    """Rounding offset added when converting floats to ``depth`` bits."""
    return {8: _CLIP_EPS8, 16: _CLIP_EPS16, 32: _CLIP_EPS32}.get(depth, _CLIP_EPS8)


def to_float(pixels: np.ndarray) -> np.ndarray:
    """Convert integer samples to float32 in [0, 1]; floats are passed through."""
    pixels = np.asarray(pixels)
    if pixels.dtype == np.uint8:
        return pixels.astype(np.float32) / np.float32(depth_max_value(8))
    if pixels.dtype == np.uint16:
        return pixels.astype(np.float32) / np.float32(depth_max_value(16))
    if pixels.dtype == np.float32:
        return pixels
    if pixels.dtype == np.float64:
        return pixels.astype(np.float32)
    raise ValueError(f"unsupported sample type: {pixels.dtype}")


def from_float(pixels: np.ndarray, depth: int) -> np.ndarray:
    """Convert [0, 1] float samples to ``depth`` bits; depth 32 stays float."""
    pixels = np.asarray(pixels)
    if depth == 32:
        return pixels
    dtype = np.uint16 if depth == 16 else np.uint8
    max_val = depth_max_value(16 if depth == 16 else 8)
    eps = rounding_eps(16 if depth == 16 else 8)
    scaled = np.rint(pixels.astype(np.float64) * max_val + eps)
    return np.clip(scaled, 0.0, max_val).astype(dtype)


def _swap_red_blue(pixels: np.ndarray) -> np.ndarray:
    if pixels.ndim == 3 and pixels.shape[2] == 3:
        return pixels[:, :, [2, 1, 0]]
    if pixels.ndim == 3 and pixels.shape[2] == 4:
        return pixels[:, :, [2, 1, 0, 3]]
    return pixels


def _image_to_array(img: Image.Image) -> np.ndarray:
    mode = img.mode
    if mode.startswith("I;16"):
        arr = np.asarray(img).astype(np.uint16)
    elif mode == "I":
        arr = np.clip(np.asarray(img), 0, 65535).astype(np.uint16)
    elif mode == "F":
        arr = np.asarray(img, dtype=np.float32)
    elif mode == "L":
        arr = np.asarray(img, dtype=np.uint8)
    elif mode == "1":
        arr = np.asarray(img.convert("L"), dtype=np.uint8)
    elif mode == "P":
        target = "RGBA" if "transparency" in img.info else "RGB"
        arr = np.asarray(img.convert(target), dtype=np.uint8)
    elif mode in ("RGBA", "LA", "PA", "La", "RGBa"):
        arr = np.asarray(img.convert("RGBA"), dtype=np.uint8)
    elif mode == "RGB":
        arr = np.asarray(img, dtype=np.uint8)
    else:
        arr = np.asarray(img.convert("RGB"), dtype=np.uint8)
    return np.ascontiguousarray(_swap_red_blue(arr))


def _decode(data: bytes, formats: tuple[str, ...] | None) -> np.ndarray:
    with Image.open(io.BytesIO(data), formats=formats) as img:
        img.load()
        return _image_to_array(img)


def decode_pixels(data: bytes, suffix: str = "") -> np.ndarray:
    """Decode an encoded image into an (H, W) or (H, W, C) BGR(A) array.

    A ``.bmp`` suffix makes the BMP decoder be tried first.
    """
    attempts: list[tuple[str, ...] | None] = [None]
    if suffix.lower() == ".bmp":
        attempts.insert(0, ("BMP",))
    for formats in attempts:
        try:
            return _decode(bytes(data), formats)
        except _DECODE_ERRORS:
            continue
    raise FailedOpenInputFileError("image data could not be decoded")


def load_pixels(path: PathArg) -> np.ndarray:
    """Read and decode the image file at ``path``."""
    try:
        with open(path, "rb") as stream:
            data = stream.read()
    except OSError as exc:
        raise FailedOpenInputFileError(str(exc)) from exc
    return decode_pixels(data, Path(fspath(path)).suffix)


def _to_pil(pixels: np.ndarray) -> Image.Image:
    arr = np.asarray(pixels)
    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[:, :, 0]
    supported = (
        (arr.dtype == np.uint8 and (arr.ndim == 2 or (arr.ndim == 3 and arr.shape[2] in (2, 3, 4))))
        or (arr.dtype == np.uint16 and arr.ndim == 2)
        or (arr.dtype == np.float32 and arr.ndim == 2)
    )
    if not supported:
        raise FailedOpenOutputFileError(f"cannot encode samples of type {arr.dtype} and shape {arr.shape}")
    return Image.fromarray(np.ascontiguousarray(_swap_red_blue(arr)))


def _png_chunk(kind: bytes, body: bytes) -> bytes:
    return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body) & 0xFFFFFFFF)


def _encode_png16(pixels: np.ndarray) -> bytes:
    arr = pixels if pixels.ndim == 3 else pixels[:, :, None]
    height, width, channels = arr.shape
    color_type = {1: 0, 2: 4, 3: 2, 4: 6}.get(channels)
    if color_type is None:
        raise FailedOpenOutputFileError(f"cannot encode {channels} channels as PNG")
    arr = _swap_red_blue(arr)
    rows = np.ascontiguousarray(arr, dtype=">u2").reshape(height, -1).view(np.uint8)
    scanlines = np.concatenate([np.zeros((height, 1), dtype=np.uint8), rows], axis=1)
    header = struct.pack(">IIBBBBB", width, height, 16, color_type, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", zlib.compress(scanlines.tobytes()))
        + _png_chunk(b"IEND", b"")
    )


def _encode_tga(pixels: np.ndarray, quality: int | None) -> bytes:
    arr = np.asarray(pixels)
    if arr.dtype != np.uint8:
        raise FailedOpenOutputFileError("TGA output needs 8-bit samples")
    fmt = output_format(".tga")
    rle = quality if fmt is not None and fmt.quality_option and quality is not None else 1
    options = {"compression": "tga_rle"} if rle else {}
    buffer = io.BytesIO()
    _to_pil(arr).save(buffer, format="TGA", **options)
    return buffer.getvalue()


def _encode(pixels: np.ndarray, ext: str, quality: int | None) -> bytes:
    arr = np.asarray(pixels)
    format_name = Image.registered_extensions().get(ext.lower())
    if format_name is None or format_name not in Image.SAVE:
        raise FailedOpenOutputFileError(f"no encoder for {ext!r}")
    if format_name == "PNG" and arr.dtype == np.uint16:
        return _encode_png16(arr)

    options = {}
    fmt = output_format(ext)
    if fmt is not None and fmt.quality_option and quality is not None:
        options[fmt.quality_option] = quality

    buffer = io.BytesIO()
    _to_pil(arr).save(buffer, format=format_name, **options)
    return buffer.getvalue()


def write_pixels(pixels: np.ndarray, path: PathArg, quality: int | None = None) -> None:
    """Encode a BGR(A) array by the extension of ``path`` and write it there."""
    ext = Path(fspath(path)).suffix
    try:
        if ext.lower() == ".tga":
            data = _encode_tga(pixels, quality)
        else:
            data = _encode(pixels, ext, quality)
    except FailedOpenOutputFileError:
        raise
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise FailedOpenOutputFileError(str(exc)) from exc

    try:
        with open(path, "wb") as stream:
            stream.write(data)
    except OSError as exc:
        raise FailedOpenOutputFileError(str(exc)) from exc