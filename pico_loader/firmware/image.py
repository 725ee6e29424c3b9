# firmware/image.py
"""
Разбор образа прошивки: Intel HEX (.hex, через intelhex) или сырой бинарь (.bin).

Результат — FirmwareImage: упорядоченные по адресу, непересекающиеся
сегменты. Модуль ничего не знает про порт и устройство.
"""
from __future__ import annotations
import io
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import intelhex
from intelhex import IntelHex

from ..errors import (
    ImageFormatError,
    RecordChecksumError,
    MissingEndRecordError,
    UnsupportedRecordTypeError,
    EmptyImageError,
    UnsupportedFileTypeError,
    OverlappingDataError,
)
from .map import APP_SLOT

ADDRESS_LIMIT = 1 << 32

FORMATS = {".hex": "hex", ".bin": "bin"}


@dataclass(frozen=True)
class Segment:
    base_address: int
    data: bytes

    @property
    def end(self) -> int:
        return self.base_address + len(self.data)


@dataclass(frozen=True)
class FirmwareImage:
    segments: Tuple[Segment, ...]
    start_address: Optional[int] = None

    @property
    def total_size(self) -> int:
        return sum(len(s.data) for s in self.segments)


# ---- Intel HEX ----
def _eof_line(lines: List[str]) -> bool:
    # intelhex молча останавливается, если EOF-записи нет вовсе
    return any(line.startswith(":") and line[7:9] == "01" for line in lines)


def _translate(e: intelhex.IntelHexError) -> ImageFormatError:
    if isinstance(e, intelhex.RecordChecksumError):
        cls = RecordChecksumError
    elif isinstance(e, intelhex.RecordTypeError):
        cls = UnsupportedRecordTypeError
    elif isinstance(e, intelhex.AddressOverlapError):
        cls = OverlappingDataError
    else:
        cls = ImageFormatError
    err = cls(str(e))
    err.line = getattr(e, "line", None)
    return err


def _start_address(ih: IntelHex) -> Optional[int]:
    start = ih.start_addr
    if not start:
        return None
    if "EIP" in start:
        return start["EIP"]
    return (start["CS"] << 16) | start["IP"]


def decode_hex(text: bytes | str) -> FirmwareImage:
    if isinstance(text, bytes):
        try:
            text = text.decode("ascii")
        except UnicodeDecodeError:
            raise ImageFormatError("HEX file is not ASCII text") from None

    # номера строк сохраняются: пустые строки остаются пустыми
    lines = [line.strip() for line in text.splitlines()]
    ih = IntelHex()
    try:
        ih.loadhex(io.StringIO("\n".join(lines) + "\n"))
    except intelhex.IntelHexError as e:
        raise _translate(e) from e

    if not _eof_line(lines):
        raise MissingEndRecordError("no end-of-file record")
    spans = ih.segments()
    if not spans:
        raise EmptyImageError("HEX file contains no data records")
    if spans[-1][1] > ADDRESS_LIMIT:
        raise ImageFormatError("data exceeds 32-bit address space")
    segments = tuple(Segment(start, ih.gets(start, stop - start)) for start, stop in spans)
    return FirmwareImage(segments, start_address=_start_address(ih))


def encode_hex(image: FirmwareImage, record_size: int = 16) -> str:
    """Обратное преобразование: образ -> текст Intel HEX."""
    if not (0 < record_size <= 255):
        raise ValueError("record_size must be 1..255")
    ih = IntelHex()
    for seg in image.segments:
        ih.puts(seg.base_address, seg.data)
    if image.start_address is not None:
        ih.start_addr = {"EIP": image.start_address}
    out = io.StringIO()
    ih.write_hex_file(out, byte_count=record_size)
    return out.getvalue()


# ---- Сырой бинарь ----
def decode_bin(data: bytes, load_address: int = APP_SLOT.start) -> FirmwareImage:
    if not data:
        raise EmptyImageError("binary file is empty")
    if load_address + len(data) > ADDRESS_LIMIT:
        raise ImageFormatError("binary exceeds 32-bit address space")
    return FirmwareImage((Segment(load_address, bytes(data)),))


def decode_image(raw: bytes, fmt: str) -> FirmwareImage:
    if fmt == "hex":
        return decode_hex(raw)
    if fmt == "bin":
        return decode_bin(raw)
    raise UnsupportedFileTypeError(f"unknown image format {fmt!r}")


def format_for(path: Path) -> str:
    fmt = FORMATS.get(Path(path).suffix.lower())
    if fmt is None:
        raise UnsupportedFileTypeError(
            f"unsupported file type {Path(path).suffix or '(none)'!r}; expected .hex or .bin")
    return fmt


def load_image(path: Path) -> FirmwareImage:
    """Прочитать файл и разобрать его по расширению."""
    fmt = format_for(path)
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise ImageFormatError(f"cannot read {path}: {e.strerror or e}") from e
    return decode_image(raw, fmt)
