from PySide6.QtCore import QBuffer, QIODevice
from PySide6.QtGui import QColor, QImage

from decaf.core.monitor.icons import encode_png

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def _bmp_bytes() -> bytes:
    image = QImage(4, 4, QImage.Format.Format_ARGB32)
    image.fill(QColor(200, 30, 30))
    buffer = QBuffer()
    buffer.open(QIODevice.OpenModeFlag.WriteOnly)
    image.save(buffer, "BMP")
    data = bytes(buffer.data().data())
    buffer.close()
    return data


def test_encodes_other_formats_to_png():
    bmp = _bmp_bytes()
    assert not bmp.startswith(PNG_MAGIC)

    png = encode_png(bmp)

    assert png.startswith(PNG_MAGIC)
    decoded = QImage.fromData(png)
    assert (decoded.width(), decoded.height()) == (4, 4)


def test_undecodable_icons_encode_to_empty():
    assert encode_png(b"") == b""
    assert encode_png(b"definitely not an image") == b""
