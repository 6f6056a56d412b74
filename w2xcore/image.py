"""Image preparation for the network and reassembly of its output."""

from __future__ import annotations

from fractions import Fraction
from os import fspath
from pathlib import Path

import numpy as np

from .imagefile import from_float, load_pixels, to_float, write_pixels
from .modelinfo import PathArg

_METHODS = ("nearest", "cubic", "area")
_CUBIC_A = -0.75
_YUV_DELTA = 0.5

# Luma weights and chroma factors of the YUV colour space.
_R2Y, _G2Y, _B2Y = 0.299, 0.587, 0.114
_B2U, _R2V = 0.492, 0.877
_U2B, _U2G, _V2G, _V2R = 2.032, -0.395, -0.581, 1.140


def bgr_to_yuv(image: np.ndarray) -> np.ndarray:
    """Convert a float BGR(A) image to YUV; any alpha channel is dropped."""
    arr = np.asarray(image, dtype=np.float32)
    if arr.ndim != 3 or arr.shape[2] < 3:
        raise ValueError("image must have at least three channels")
    b, g, r = arr[:, :, 0], arr[:, :, 1], arr[:, :, 2]
    y = _R2Y * r + _G2Y * g + _B2Y * b
    u = (b - y) * _B2U + _YUV_DELTA
    v = (r - y) * _R2V + _YUV_DELTA
    return np.stack([y, u, v], axis=2).astype(np.float32)


def yuv_to_bgr(image: np.ndarray) -> np.ndarray:
    """Convert a float YUV image back to BGR."""
    arr = np.asarray(image, dtype=np.float32)
    if arr.ndim != 3 or arr.shape[2] != 3:
        raise ValueError("image must have three channels")
    y = arr[:, :, 0]
    du = arr[:, :, 1] - _YUV_DELTA
    dv = arr[:, :, 2] - _YUV_DELTA
    b = y + _U2B * du
    g = y + _U2G * du + _V2G * dv
    r = y + _V2R * dv
    return np.stack([b, g, r], axis=2).astype(np.float32)


def _rgb_to_gray(image: np.ndarray) -> np.ndarray:
    arr = np.asarray(image, dtype=np.float32)
    return (_R2Y * arr[:, :, 0] + _G2Y * arr[:, :, 1] + _B2Y * arr[:, :, 2]).astype(np.float32)


def _cubic_coeffs(t: np.ndarray) -> np.ndarray:
    a = _CUBIC_A
    t1 = t + 1.0
    u = 1.0 - t
    c0 = ((a * t1 - 5.0 * a) * t1 + 8.0 * a) * t1 - 4.0 * a
    c1 = ((a + 2.0) * t - (a + 3.0)) * t * t + 1.0
    c2 = ((a + 2.0) * u - (a + 3.0)) * u * u + 1.0
    c3 = 1.0 - c0 - c1 - c2
    return np.stack([c0, c1, c2, c3], axis=1)


def _axis_weights(src: int, dst: int, method: str) -> np.ndarray:
    scale = src / dst
    weights = np.zeros((dst, src), dtype=np.float64)
    rows = np.arange(dst)

    if method == "nearest":
        idx = np.minimum(np.floor(rows * scale).astype(int), src - 1)
        weights[rows, idx] = 1.0
    elif method == "cubic":
        x = (rows + 0.5) * scale - 0.5
        x0 = np.floor(x).astype(int)
        coeffs = _cubic_coeffs(x - x0)
        for k in range(4):
            idx = np.clip(x0 + k - 1, 0, src - 1)
            np.add.at(weights, (rows, idx), coeffs[:, k])
    elif scale >= 1.0:
        for i in rows:
            start = i * scale
            end = start + scale
            for j in range(int(np.floor(start)), min(int(np.ceil(end)), src)):
                overlap = min(end, j + 1) - max(start, j)
                if overlap > 0:
                    weights[i, j] += overlap / scale
    else:
        sx = np.floor(rows * scale).astype(int)
        fx = (rows + 1) - (sx + 1) / scale
        fx = np.where(fx <= 0, 0.0, fx - np.floor(fx))
        at_edge = sx >= src - 1
        fx = np.where(at_edge, 0.0, fx)
        sx = np.where(at_edge, src - 1, sx)
        np.add.at(weights, (rows, sx), 1.0 - fx)
        np.add.at(weights, (rows, np.minimum(sx + 1, src - 1)), fx)
    return weights


def resize(image: np.ndarray, width: int, height: int, method: str = "cubic") -> np.ndarray:
    """Resize an (H, W) or (H, W, C) image with "nearest", "cubic" or "area" sampling."""
    if method not in _METHODS:
        raise ValueError(f"unknown resize method: {method!r}")
    if width < 1 or height < 1:
        raise ValueError("target size must be positive")
    arr = np.asarray(image)
    if arr.ndim not in (2, 3) or arr.shape[0] == 0 or arr.shape[1] == 0:
        raise ValueError("image must be a non-empty (H, W) or (H, W, C) array")
    src_h, src_w = arr.shape[:2]
    if (src_w, src_h) == (width, height):
        return arr.copy()

    rows = _axis_weights(src_h, height, method)
    cols = _axis_weights(src_w, width, method)
    out = np.tensordot(rows, arr.astype(np.float64), axes=(1, 0))
    out = np.swapaxes(np.tensordot(cols, out, axes=(1, 1)), 0, 1)

    if np.issubdtype(arr.dtype, np.integer):
        info = np.iinfo(arr.dtype)
        return np.clip(np.rint(out), info.min, info.max).astype(arr.dtype)
    return out.astype(arr.dtype)


def is_one_color(plane: np.ndarray) -> bool:
    """True if every sample of a single-channel image has the same value."""
    arr = np.asarray(plane)
    if arr.size == 0:
        return True
    return bool(np.all(arr == arr.flat[0]))


def _pad_reflect101(arr: np.ndarray) -> np.ndarray:
    for axis in (0, 1):
        widths = [(0, 0)] * arr.ndim
        widths[axis] = (1, 1)
        arr = np.pad(arr, widths, mode="reflect" if arr.shape[axis] > 1 else "edge")
    return arr


def _box_sum(arr: np.ndarray) -> np.ndarray:
    padded = _pad_reflect101(arr)
    h, w = arr.shape
    total = np.zeros_like(arr)
    for dy in range(3):
        for dx in range(3):
            total += padded[dy : dy + h, dx : dx + w]
    return total


def alpha_make_border(planes: list[np.ndarray], alpha: np.ndarray, offset: int) -> list[np.ndarray]:
    """Spread the colour of visible pixels ``offset`` pixels into transparent ones.

    Colour under fully transparent pixels is cleared first; the result is
    clipped to [0, 1].
    """
    mask = (np.asarray(alpha) > 0).astype(np.float32)
    result = [np.asarray(p, dtype=np.float32) * mask for p in planes]

    for _ in range(offset):
        weight = _box_sum(mask)
        invalid = mask == 0
        spread = []
        for plane in result:
            border = np.divide(
                _box_sum(plane), weight, out=np.zeros_like(plane), where=weight != 0
            )
            spread.append(np.where(invalid, border, plane).astype(np.float32))
        result = spread
        mask = (weight > 0).astype(np.float32)

    return [np.clip(p, 0.0, 1.0) for p in result]


def pad_image(
    image: np.ndarray, net_offset: int, outer_padding: int, crop_w: int, crop_h: int
) -> np.ndarray:
    """Pad so the image body is a multiple of the crop size, replicating edges.

    The image stays at the top left; the network margin is added on every side.
    """
    if crop_w < 1 or crop_h < 1:
        raise ValueError("crop size must be positive")
    arr = np.asarray(image)
    h, w = arr.shape[:2]
    pad1 = net_offset + outer_padding
    pad_w2 = -(-w // crop_w) * crop_w - w + pad1
    pad_h2 = -(-h // crop_h) * crop_h - h + pad1
    widths = [(pad1, pad_h2), (pad1, pad_w2)] + [(0, 0)] * (arr.ndim - 2)
    return np.pad(arr, widths, mode="edge")


def alpha_clean(image: np.ndarray) -> np.ndarray:
    """Clear the colour of fully transparent pixels of a BGRA image."""
    arr = np.asarray(image)
    if arr.ndim != 3 or arr.shape[2] <= 3:
        return arr
    cleaned = arr.copy()
    cleaned[arr[:, :, 3] == 0, :3] = 0
    return cleaned


def _crop(image: np.ndarray, size: tuple[int, int], inner_scale: int) -> np.ndarray:
    arr = np.asarray(image)
    width, height = size[0] * inner_scale, size[1] * inner_scale
    if arr.shape[0] < height or arr.shape[1] < width:
        raise ValueError("reconstructed image is smaller than the expected size")
    return np.ascontiguousarray(arr[:height, :width])


class ImageJob:
    """One image travelling through preparation, reconstruction and output."""

    def __init__(self, pixels: np.ndarray, request_denoise: bool = False) -> None:
        arr = np.asarray(pixels)
        if arr.ndim == 3 and arr.shape[2] == 1:
            arr = arr[:, :, 0]
        if arr.ndim == 2:
            channels = 1
        elif arr.ndim == 3:
            channels = arr.shape[2]
        else:
            channels = 0
        if channels not in (1, 3, 4):
            raise ValueError("image must have 1, 3 or 4 channels")

        self.channels = channels
        self.width = int(arr.shape[1])
        self.height = int(arr.shape[0])
        self.request_denoise = request_denoise
        self._org: np.ndarray | None = arr
        self._rgb: np.ndarray | None = None
        self._alpha: np.ndarray | None = None
        self._alpha_one: np.ndarray | None = None
        self._end: np.ndarray | None = None

    @classmethod
    def load(cls, path: PathArg) -> ImageJob:
        """Read an image file; JPEG input asks for denoising."""
        pixels = load_pixels(path)
        ext = Path(fspath(path)).suffix.lower()
        return cls(pixels, request_denoise=ext in (".jpg", ".jpeg"))

    @classmethod
    def from_buffer(
        cls, source: bytes, width: int, height: int, channel: int, stride: int
    ) -> ImageJob:
        """Take 8-bit RGB(A) or grey rows from ``source``, ``stride`` bytes apart."""
        if channel not in (1, 3, 4):
            raise ValueError("channel count must be 1, 3 or 4")
        if width < 1 or height < 1:
            raise ValueError("image size must be positive")
        row_bytes = width * channel
        if stride < row_bytes:
            raise ValueError("stride is shorter than a row")
        buf = np.frombuffer(bytes(source), dtype=np.uint8)
        if buf.size < stride * (height - 1) + row_bytes:
            raise ValueError("buffer is too small for the given size")
        rows = np.lib.stride_tricks.as_strided(buf, shape=(height, row_bytes), strides=(stride, 1))
        pixels = rows.reshape(height, width, channel).copy()
        if channel >= 3:
            pixels[:, :, [0, 2]] = pixels[:, :, [2, 0]]
        return cls(pixels, request_denoise=False)

    @property
    def has_alpha(self) -> bool:
        """True if a varying alpha channel is being carried alongside the colour."""
        return self._alpha is not None

    @property
    def end_image(self) -> np.ndarray | None:
        """The finished image after postprocessing, or None before that."""
        return self._end

    def scale_from_width(self, width: int) -> Fraction:
        """Scale factor that turns the original width into ``width``."""
        return Fraction(width, self.width)

    def scale_from_height(self, height: int) -> Fraction:
        """Scale factor that turns the original height into ``height``."""
        return Fraction(height, self.height)

    def preprocess(self, input_plane: int, net_offset: int) -> None:
        """Convert to float and to the layout the network expects."""
        if self._org is None:
            raise ValueError("image has already been preprocessed")
        self._org = to_float(self._org)
        org = self._org

        if input_plane == 1:
            if self.channels == 1:
                self._rgb = org
                return
            color = org
            if self.channels == 4:
                alpha = org[:, :, 3]
                self._alpha = alpha
                planes = alpha_make_border([org[:, :, c] for c in range(3)], alpha, net_offset)
                color = np.stack(planes, axis=2)
            self._rgb = bgr_to_yuv(color)[:, :, 0]
            return

        if self.channels == 1:
            self._rgb = np.stack([org] * 3, axis=2)
        else:
            planes = [org[:, :, c] for c in range(3)]
            if self.channels == 4:
                alpha = org[:, :, 3]
                if not is_one_color(alpha):
                    planes = alpha_make_border(planes, alpha, net_offset)
                    self._alpha = np.stack([alpha] * 3, axis=2)
                else:
                    self._alpha_one = alpha
            self._rgb = np.stack(planes[::-1], axis=2)
        self._org = None

    @staticmethod
    def _scale_padded(
        image: np.ndarray, net_offset: int, outer_padding: int, crop_w: int, crop_h: int, scale: int
    ) -> tuple[np.ndarray, tuple[int, int]]:
        if scale > 1:
            h, w = image.shape[:2]
            image = resize(image, w * scale, h * scale, "nearest")
        size = (int(image.shape[1]), int(image.shape[0]))
        return pad_image(image, net_offset, outer_padding, crop_w, crop_h), size

    def padded_rgb(
        self, net_offset: int, outer_padding: int, crop_w: int, crop_h: int, scale: int
    ) -> tuple[np.ndarray, tuple[int, int]]:
        """Hand over the colour (or luma) image, enlarged and padded, with its (width, height)."""
        if self._rgb is None:
            raise ValueError("no prepared colour image")
        image, self._rgb = self._rgb, None
        return self._scale_padded(image, net_offset, outer_padding, crop_w, crop_h, scale)

    def set_reconstructed_rgb(self, image: np.ndarray, size: tuple[int, int], inner_scale: int) -> None:
        """Take back the network output for the colour image, cropping the block padding."""
        self._rgb = _crop(image, size, inner_scale)

    def padded_alpha(
        self, net_offset: int, outer_padding: int, crop_w: int, crop_h: int, scale: int
    ) -> tuple[np.ndarray, tuple[int, int]]:
        """Hand over the alpha image, enlarged and padded, with its (width, height)."""
        if self._alpha is None:
            raise ValueError("no prepared alpha image")
        image, self._alpha = self._alpha, None
        return self._scale_padded(image, net_offset, outer_padding, crop_w, crop_h, scale)

    def set_reconstructed_alpha(self, image: np.ndarray, size: tuple[int, int], inner_scale: int) -> None:
        """Take back the network output for the alpha image, cropping the block padding."""
        self._alpha = _crop(image, size, inner_scale)

    def _deconvert(self, input_plane: int) -> np.ndarray:
        if self._rgb is None:
            raise ValueError("no reconstructed image")
        rgb = self._rgb

        if input_plane == 1:
            if self.channels == 1:
                end = rgb
            else:
                h, w = rgb.shape[:2]
                yuv = bgr_to_yuv(resize(self._org[:, :, :3], w, h, "cubic"))
                yuv[:, :, 0] = rgb
                end = yuv_to_bgr(yuv)
                if self._alpha is not None:
                    end = np.dstack([end, self._alpha])
                elif self._alpha_one is not None:
                    end = np.dstack([end, resize(self._alpha_one, w, h, "nearest")])
        elif self.channels == 1:
            end = _rgb_to_gray(rgb)
        else:
            planes = [rgb[:, :, c] for c in (2, 1, 0)]
            h, w = planes[0].shape
            if self._alpha is not None:
                planes.append(_rgb_to_gray(self._alpha))
            elif self._alpha_one is not None:
                planes.append(resize(self._alpha_one, w, h, "nearest"))
            end = np.stack(planes, axis=2)

        self._org = self._rgb = self._alpha = self._alpha_one = None
        return np.asarray(end, dtype=np.float32)

    def _finish(self, end: np.ndarray, depth: int) -> None:
        end = np.clip(end, 0.0, 1.0)
        self._end = alpha_clean(from_float(end, depth))

    def postprocess(self, input_plane: int, scale: Fraction | float, depth: int = 8) -> None:
        """Reassemble the image and bring it to ``scale`` times the original size."""
        end = self._deconvert(input_plane)
        factor = Fraction(scale)
        width = int(float(factor * self.width))
        height = int(float(factor * self.height))
        if end.shape[1] != width or end.shape[0] != height:
            method = "area" if float(factor) < 0.5 else "cubic"
            end = resize(end, width, height, method)
        self._finish(end, depth)

    def postprocess_to_size(self, input_plane: int, width: int, height: int, depth: int = 8) -> None:
        """Reassemble the image and bring it to exactly ``width`` by ``height``."""
        end = self._deconvert(input_plane)
        if end.shape[1] != width or end.shape[0] != height:
            scale_w = np.float32(end.shape[1]) / np.float32(width)
            scale_h = np.float32(end.shape[0]) / np.float32(height)
            method = "area" if scale_w < 0.5 or scale_h < 0.5 else "cubic"
            end = resize(end, width, height, method)
        self._finish(end, depth)

    def save(self, path: PathArg, quality: int | None = None) -> None:
        """Write the finished image; the file type follows the extension."""
        if self._end is None:
            raise ValueError("image has not been postprocessed")
        write_pixels(self._end, path, quality)