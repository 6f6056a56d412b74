"""Model description files: the JSON ``info`` file that sits next to a model."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from os import PathLike
from typing import Any, Union

PathArg = Union[str, "PathLike[str]"]


class ModelType(Enum):
    """Which of a model's networks a conversion uses."""

    NOISE = "noise"
    SCALE = "scale"
    NOISE_SCALE = "noise_scale"
    AUTO_SCALE = "auto_scale"


class Waifu2xError(Exception):
    """Base class of every error raised by the conversion pipeline."""


class FailedOpenModelFileError(Waifu2xError):
    """A model file could not be opened."""


class FailedParseModelFileError(Waifu2xError):
    """A model file was opened but its contents are not usable."""


class FailedWriteModelFileError(Waifu2xError):
    """A model file could not be written."""


class FailedConstructModelError(Waifu2xError):
    """The network could not be built from the model files."""


class FailedProcessError(Waifu2xError):
    """Running the network failed."""


class FailedOpenInputFileError(Waifu2xError):
    """An input image could not be opened or decoded."""


class FailedOpenOutputFileError(Waifu2xError):
    """An output image could not be encoded or written."""


@dataclass
class ModelParam:
    """Geometry of one network of a model."""

    scale_factor: int = 1
    offset: int = 0
    recommended_crop_size: int | None = None


@dataclass
class ModelInfo:
    """Everything an ``info.json`` file says about a model."""

    name: str
    arch_name: str
    channels: int
    has_noise_scale: bool = False
    has_noise_only: bool = False
    force_divisible_crop_size: int = 1
    noise: ModelParam = field(default_factory=ModelParam)
    scale: ModelParam = field(default_factory=ModelParam)
    noise_scale: ModelParam = field(default_factory=ModelParam)

    def param_for(self, mode: ModelType) -> ModelParam:
        """Return the network parameters used for ``mode``."""
        if mode is ModelType.NOISE:
            return self.noise
        if mode is ModelType.SCALE:
            return self.scale
        if mode in (ModelType.NOISE_SCALE, ModelType.AUTO_SCALE):
            return self.noise_scale
        raise ValueError(f"unknown model type: {mode!r}")


def _require(doc: dict[str, Any], key: str, kind: type) -> Any:
    try:
        value = doc[key]
    except KeyError:
        raise FailedParseModelFileError(f"missing member {key!r}") from None
    if kind is int and (isinstance(value, bool) or not isinstance(value, int)):
        raise FailedParseModelFileError(f"member {key!r} is not an integer")
    if kind is not int and not isinstance(value, kind):
        raise FailedParseModelFileError(f"member {key!r} is not a {kind.__name__}")
    return value


def _optional_flag(doc: dict[str, Any], key: str) -> bool:
    return key in doc and _require(doc, key, bool)


_PARAM_FIELDS = ("offset", "scale_factor", "recommended_crop_size")
_PARAM_SECTIONS = ("noise", "scale", "noise_scale")


def read_model_info(path: PathArg) -> ModelInfo:
    """Read and validate a model's ``info.json``."""
    try:
        with open(path, "rb") as stream:
            raw = stream.read()
    except OSError as exc:
        raise FailedOpenModelFileError(str(exc)) from exc

    try:
        doc = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise FailedParseModelFileError(str(exc)) from exc
    if not isinstance(doc, dict):
        raise FailedParseModelFileError("model info is not a JSON object")

    info = ModelInfo(
        name=_require(doc, "name", str),
        arch_name=_require(doc, "arch_name", str),
        has_noise_scale=_optional_flag(doc, "has_noise_scale"),
        has_noise_only=_optional_flag(doc, "has_noise_only"),
        channels=_require(doc, "channels", int),
        force_divisible_crop_size=(
            _require(doc, "force_divisible_crop_size", int)
            if "force_divisible_crop_size" in doc
            else 1
        ),
    )

    # Shared values first, then the per-network overrides.
    for attr in _PARAM_FIELDS:
        if attr in doc:
            value = _require(doc, attr, int)
            for section in _PARAM_SECTIONS:
                setattr(getattr(info, section), attr, value)

    for section in _PARAM_SECTIONS:
        for attr in _PARAM_FIELDS:
            key = f"{attr}_{section}"
            if key in doc:
                setattr(getattr(info, section), attr, _require(doc, key, int))

    return info


def model_name(path: PathArg) -> str:
    """Return the model's name, or an empty string if the info file is unusable."""
    try:
        return read_model_info(path).name
    except Waifu2xError:
        return ""