"""Model info, tiled network reconstruction, image processing and UI strings for waifu2x-style upscaling."""

__version__ = "0.1.0"
__all__ = ["modelinfo", "langstrings", "net", "imagefile", "image"]