"""Convolutional network that reconstructs an image block by block."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .modelinfo import (
    FailedConstructModelError,
    FailedOpenModelFileError,
    FailedParseModelFileError,
    FailedProcessError,
    ModelInfo,
    ModelType,
    PathArg,
)

_MODEL_SCALE = 2
_FLOAT_SIZE = 4
_DEFAULT_NEGATIVE_SLOPE = 0.1


@dataclass
class ConvLayer:
    """One convolution (or transposed convolution) with a bias.

    ``weight`` is laid out as (out, in, kh, kw) for a convolution and as
    (in, out, kh, kw) for a transposed convolution.
    """

    weight: np.ndarray
    bias: np.ndarray
    stride: int = 1
    padding: int = 0
    transposed: bool = False

    def __post_init__(self) -> None:
        self.weight = np.asarray(self.weight, dtype=np.float32)
        self.bias = np.asarray(self.bias, dtype=np.float32)
        if self.weight.ndim != 4:
            raise ValueError("weight must have four dimensions")
        if self.bias.shape != (self.out_planes,):
            raise ValueError("bias length does not match the output planes")
        if self.stride < 1 or self.padding < 0:
            raise ValueError("stride must be positive and padding non-negative")

    @property
    def in_planes(self) -> int:
        """Number of input channels."""
        return int(self.weight.shape[0] if self.transposed else self.weight.shape[1])

    @property
    def out_planes(self) -> int:
        """Number of output channels."""
        return int(self.weight.shape[1] if self.transposed else self.weight.shape[0])

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Apply the layer to an (N, C, H, W) batch."""
        x = np.asarray(x, dtype=np.float32)
        if x.ndim != 4 or x.shape[1] != self.in_planes:
            raise ValueError("input must be (N, C, H, W) with matching channels")
        y = self._transposed_conv(x) if self.transposed else self._conv(x)
        return (y + self.bias[None, :, None, None]).astype(np.float32, copy=False)

    def _conv(self, x: np.ndarray) -> np.ndarray:
        p = self.padding
        if p:
            x = np.pad(x, ((0, 0), (0, 0), (p, p), (p, p)))
        kh, kw = self.weight.shape[2:]
        if x.shape[2] < kh or x.shape[3] < kw:
            raise ValueError("input is smaller than the kernel")
        windows = sliding_window_view(x, (kh, kw), axis=(2, 3))
        windows = windows[:, :, :: self.stride, :: self.stride]
        return np.einsum("nchwij,ocij->nohw", windows, self.weight, optimize=True)

    def _transposed_conv(self, x: np.ndarray) -> np.ndarray:
        n, _, h, w = x.shape
        kh, kw = self.weight.shape[2:]
        s = self.stride
        contrib = np.einsum("nchw,coij->nohwij", x, self.weight, optimize=True)
        full = np.zeros((n, self.out_planes, (h - 1) * s + kh, (w - 1) * s + kw), dtype=np.float32)
        for i in range(kh):
            for j in range(kw):
                full[:, :, i : i + (h - 1) * s + 1 : s, j : j + (w - 1) * s + 1 : s] += contrib[..., i, j]
        p = self.padding
        if p:
            full = full[:, :, p : full.shape[2] - p, p : full.shape[3] - p]
        return full


@dataclass
class ConvNet:
    """A chain of layers with a leaky ReLU between consecutive layers."""

    layers: list[ConvLayer]
    negative_slope: float = _DEFAULT_NEGATIVE_SLOPE

    def __post_init__(self) -> None:
        self.layers = list(self.layers)
        if not self.layers:
            raise ValueError("a network needs at least one layer")
        for before, after in zip(self.layers, self.layers[1:]):
            if before.out_planes != after.in_planes:
                raise ValueError("consecutive layers do not agree on plane count")

    @property
    def input_planes(self) -> int:
        """Channels the network takes."""
        return self.layers[0].in_planes

    @property
    def output_planes(self) -> int:
        """Channels the network produces."""
        return self.layers[-1].out_planes

    @classmethod
    def from_json(cls, path: PathArg) -> ConvNet:
        """Build a network from a JSON list of layer descriptions."""
        try:
            with open(path, "rb") as stream:
                raw = stream.read()
        except OSError as exc:
            raise FailedOpenModelFileError(str(exc)) from exc

        try:
            doc = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as exc:
            raise FailedParseModelFileError(str(exc)) from exc

        if not isinstance(doc, list) or not doc or not all(isinstance(e, dict) for e in doc):
            raise FailedParseModelFileError("model parameters are not a list of layers")
        try:
            input_plane = doc[0]["nInputPlane"]
            output_plane = doc[-1]["nOutputPlane"]
        except KeyError as exc:
            raise FailedParseModelFileError(f"missing member {exc}") from None
        if not isinstance(input_plane, int) or not isinstance(output_plane, int):
            raise FailedParseModelFileError("plane counts are not integers")
        if input_plane == 0 or output_plane == 0:
            raise FailedParseModelFileError("plane count is zero")
        if input_plane != output_plane:
            raise FailedParseModelFileError("input and output plane counts differ")

        layers = [_layer_from_json(entry) for entry in doc]
        try:
            return cls(layers)
        except ValueError as exc:
            raise FailedConstructModelError(str(exc)) from exc

    def forward(self, batch: np.ndarray) -> np.ndarray:
        """Run an (N, C, H, W) batch through every layer."""
        x = np.asarray(batch, dtype=np.float32)
        last = len(self.layers) - 1
        for index, layer in enumerate(self.layers):
            x = layer.forward(x)
            if index != last:
                x = np.where(x >= 0, x, x * np.float32(self.negative_slope))
        return x


def _layer_from_json(entry: dict[str, Any]) -> ConvLayer:
    try:
        n_in = entry["nInputPlane"]
        n_out = entry["nOutputPlane"]
        k_w = entry["kW"]
        weight = np.asarray(entry["weight"], dtype=np.float32)
        bias = np.asarray(entry["bias"], dtype=np.float32)
        stride = int(entry.get("dW", 1))
        padding = int(entry.get("padW", 0))
    except KeyError as exc:
        raise FailedConstructModelError(f"missing member {exc}") from None
    except (ValueError, TypeError) as exc:
        raise FailedConstructModelError(str(exc)) from exc

    class_name = str(entry.get("class_name", ""))
    transposed = "FullConvolution" in class_name or "Deconvolution" in class_name

    if weight.ndim != 4:
        raise FailedConstructModelError("weight must have four dimensions")
    expected = (n_in, n_out) if transposed else (n_out, n_in)
    if tuple(weight.shape[:2]) != expected or weight.shape[3] != k_w:
        raise FailedConstructModelError("weight shape does not match the layer description")
    if bias.shape != (n_out,):
        raise FailedConstructModelError("bias length does not match the layer description")
    try:
        return ConvLayer(weight, bias, stride=stride, padding=padding, transposed=transposed)
    except ValueError as exc:
        raise FailedConstructModelError(str(exc)) from exc


class Net:
    """A model network together with the geometry it was built for."""

    def __init__(self, info: ModelInfo, mode: ModelType, network: ConvNet) -> None:
        param = info.param_for(mode)
        self.mode = mode
        self.network = network
        self.scale = _MODEL_SCALE
        self.inner_scale = param.scale_factor
        self.net_offset = param.offset
        self.input_plane = info.channels
        self.has_noise_scale_model = info.has_noise_scale
        if network.input_planes != self.input_plane:
            raise FailedConstructModelError("network input channels do not match the model info")

    @classmethod
    def load(cls, mode: ModelType, param_path: PathArg, info: ModelInfo) -> Net:
        """Load the network weights from ``param_path``."""
        return cls(info, mode, ConvNet.from_json(param_path))

    def _block_sizes(self, crop_w: int, crop_h: int, outer_padding: int) -> tuple[int, int, int, int]:
        pad = self.net_offset + outer_padding
        in_w = crop_w + pad * 2
        in_h = crop_h + pad * 2
        out_w = in_w * self.inner_scale - self.net_offset * 2
        out_h = in_h * self.inner_scale - self.net_offset * 2
        return in_w, in_h, out_w, out_h

    def input_memory_size(self, crop_w: int, crop_h: int, outer_padding: int, batch_size: int) -> int:
        """Bytes of float input needed for one batch."""
        in_w, in_h, _, _ = self._block_sizes(crop_w, crop_h, outer_padding)
        return in_w * in_h * self.input_plane * batch_size * _FLOAT_SIZE

    def output_memory_size(self, crop_w: int, crop_h: int, outer_padding: int, batch_size: int) -> int:
        """Bytes of float output produced by one batch."""
        _, _, out_w, out_h = self._block_sizes(crop_w, crop_h, outer_padding)
        return out_w * out_h * self.input_plane * batch_size * _FLOAT_SIZE

    def reconstruct(
        self,
        image: np.ndarray,
        crop_w: int,
        crop_h: int,
        outer_padding: int,
        batch_size: int,
    ) -> np.ndarray:
        """Run a padded float image through the network block by block.

        ``image`` is (H, W) or (H, W, C) with the padding from the image
        preparation already applied; the result has the padding removed,
        is scaled by the inner scale and is clipped to [0, 1].
        """
        pixels = np.asarray(image, dtype=np.float32)
        squeeze = pixels.ndim == 2
        if squeeze:
            pixels = pixels[:, :, None]
        if pixels.ndim != 3:
            raise ValueError("image must be (H, W) or (H, W, C)")
        if pixels.shape[2] != self.input_plane:
            raise ValueError("image channels do not match the network input")
        if crop_w < 1 or crop_h < 1 or batch_size < 1 or outer_padding < 0:
            raise ValueError("crop size and batch size must be positive")

        pad = self.net_offset + outer_padding
        height, width = pixels.shape[:2]
        plain_w = width - pad * 2
        plain_h = height - pad * 2
        if plain_w <= 0 or plain_h <= 0 or plain_w % crop_w or plain_h % crop_h:
            raise ValueError("unpadded image size must be a positive multiple of the crop size")

        in_w, in_h, out_w, out_h = self._block_sizes(crop_w, crop_h, outer_padding)
        scale = self.inner_scale
        crop_out_w = crop_w * scale
        crop_out_h = crop_h * scale
        skip_w = (out_w - crop_out_w) // 2
        skip_h = (out_h - crop_out_h) // 2

        result = np.empty((plain_h * scale, plain_w * scale, self.input_plane), dtype=np.float32)
        blocks_across = plain_w // crop_w
        block_count = blocks_across * (plain_h // crop_h)
        positions = [divmod(index, blocks_across) for index in range(block_count)]

        for start in range(0, block_count, batch_size):
            chunk = positions[start : start + batch_size]
            batch = np.stack(
                [
                    pixels[hn * crop_h : hn * crop_h + in_h, wn * crop_w : wn * crop_w + in_w].transpose(2, 0, 1)
                    for hn, wn in chunk
                ]
            )
            try:
                output = self.network.forward(batch)
            except Exception as exc:
                raise FailedProcessError(str(exc)) from exc
            if output.shape != (len(chunk), self.input_plane, out_h, out_w):
                raise FailedProcessError(f"network produced blocks of shape {output.shape}")

            for (hn, wn), block in zip(chunk, output):
                top = hn * crop_out_h
                left = wn * crop_out_w
                result[top : top + crop_out_h, left : left + crop_out_w] = block[
                    :, skip_h : skip_h + crop_out_h, skip_w : skip_w + crop_out_w
                ].transpose(1, 2, 0)

        np.clip(result, 0.0, 1.0, out=result)
        return result[:, :, 0] if squeeze else result