"""Top-level package for lazi."""

__version__ = "0.1.0"

from . import classifier, clipboard, config, errors, panel, permissions, recorder, storage, transcriber

__all__ = ["classifier", "clipboard", "config", "errors", "panel", "permissions", "recorder", "storage", "transcriber"]
