# firmware/crc.py
import zlib


def crc32(data: bytes, value: int = 0) -> int:
    """
    CRC-32/ISO-HDLC (отражённый полином 0xEDB88320, init 0xFFFFFFFF,
    инверсия на выходе) — тот же, что проверяет загрузчик.
    value — результат по предыдущим блокам, чтобы считать по частям.
    """
    return zlib.crc32(data, value) & 0xFFFFFFFF


def image_checksum(chunks) -> int:
    """CRC по всему образу, накапливаемый по границам блоков передачи."""
    value = 0
    for chunk in chunks:
        value = crc32(chunk.data, value)
    return value
