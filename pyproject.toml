[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "w2xcore"
version = "0.1.0"
description = "Building blocks for a waifu2x-style image upscaler: model info, tiled network reconstruction, image pre- and post-processing, and UI string tables."
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "pillow",
]
keywords = ["waifu2x", "upscaling", "super-resolution", "denoise", "image", "convolutional network"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Multimedia :: Graphics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["w2xcore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
