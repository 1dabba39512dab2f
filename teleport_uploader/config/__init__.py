"""Configuration for the Teleport uploader."""

from .loader import load_config
from .uploader_config import UploaderConfig

__all__ = ["UploaderConfig", "load_config"]
