"""
Icon encoding for persisted app records.

Icons arrive as whatever image blob the enumerator could read (PNG, ICNS,
ICO, ...). Records always store PNG. Encoding is CPU-bound, so the engine
runs it on its background executor when the caller must not wait.
"""

from __future__ import annotations

import logging

from PySide6.QtCore import QBuffer, QByteArray, QIODevice
from PySide6.QtGui import QImage

log = logging.getLogger(__name__)


def encode_png(icon: bytes) -> bytes:
    """Return the icon re-encoded as PNG, or b"" if it cannot be decoded."""
    if not icon:
        return b""

    image = QImage.fromData(QByteArray(icon))
    if image.isNull():
        log.debug(f"Icon blob of {len(icon)} bytes could not be decoded")
        return b""

    buffer = QBuffer()
    buffer.open(QIODevice.OpenModeFlag.WriteOnly)
    try:
        if not image.save(buffer, "PNG"):
            log.debug("PNG encoding failed")
            return b""
        return bytes(buffer.data().data())
    finally:
        buffer.close()
