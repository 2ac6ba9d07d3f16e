"""macOS pasteboard access."""

from __future__ import annotations


def copy_to_pasteboard(text: str) -> None:
    try:
        from AppKit import NSPasteboard, NSPasteboardTypeString  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "The `pyobjc` packages are required to access the clipboard. Install lazi[mac]."
        ) from exc

    pasteboard = NSPasteboard.generalPasteboard()
    pasteboard.clearContents()
    pasteboard.setString_forType_(text, NSPasteboardTypeString)
