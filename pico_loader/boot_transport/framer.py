# boot_transport/framer.py
"""
Кадры протокола загрузчика поверх SerialLink.

Перед кадрами загрузчик переводится в режим обновления одиночным байтом
'u', ответ — ACK.

Исходящие кадры: 0xAA, код команды, поля little-endian.
  HELLO     AA 01
  DATA      AA 03 addr:u32 len:u16 data crc32(data):u32
  FINALIZE  AA 04 total:u32 crc32(образа):u32
Ответ на каждый кадр — один байт ACK (0x06) или NACK (0x15); на HELLO
после ACK идут 4 байта идентификатора загрузчика ("PBL1").
"""
from __future__ import annotations
import enum
import struct
from dataclasses import dataclass
from typing import Iterator, Optional

from ..config import MAX_CHUNK
from ..errors import TransferAbortedError, IntegrityMismatchError, ProtocolError
from ..firmware.crc import crc32
from ..retry import RetryState

SOF = 0xAA
CMD_HELLO = 0x01
CMD_DATA = 0x03
CMD_FINALIZE = 0x04

UPDATE_TRIGGER = b"u"

ACK = 0x06
NACK = 0x15

BOOTLOADER_ID_PREFIX = b"PBL"
ID_LEN = 4


class Reply(enum.Enum):
    ACK = "ack"
    NACK = "nack"
    TIMEOUT = "timeout"
    GARBAGE = "garbage"


@dataclass(frozen=True)
class Chunk:
    address: int
    data: bytes


def iter_chunks(image, chunk_size: int = MAX_CHUNK) -> Iterator[Chunk]:
    """Сегменты -> блоки не длиннее chunk_size; блок не пересекает сегмент."""
    if not (0 < chunk_size <= MAX_CHUNK):
        raise ValueError(f"chunk_size must be 1..{MAX_CHUNK}")
    for seg in image.segments:
        for i in range(0, len(seg.data), chunk_size):
            yield Chunk(seg.base_address + i, seg.data[i:i + chunk_size])


# ---- кодирование кадров ----
def encode_hello() -> bytes:
    return bytes([SOF, CMD_HELLO])


def encode_data(address: int, data: bytes) -> bytes:
    if not (0 < len(data) <= MAX_CHUNK):
        raise ValueError(f"chunk length must be 1..{MAX_CHUNK}")
    return (bytes([SOF, CMD_DATA]) + struct.pack("<IH", address, len(data))
            + data + struct.pack("<I", crc32(data)))


def encode_finalize(total: int, checksum: int) -> bytes:
    return bytes([SOF, CMD_FINALIZE]) + struct.pack("<II", total, checksum)


class Framer:
    def __init__(self, link, settings):
        self.link = link
        self.settings = settings

    def _reply(self) -> Reply:
        b = self.link.read(1)
        if not b:
            return Reply.TIMEOUT
        if b[0] == ACK:
            return Reply.ACK
        if b[0] == NACK:
            return Reply.NACK
        return Reply.GARBAGE

    def enter_update_mode(self) -> bool:
        """Байт 'u': загрузчик подтверждает переход в режим обновления."""
        self.link.reset_input()
        self.link.write(UPDATE_TRIGGER)
        return self._reply() is Reply.ACK

    def identify(self) -> Optional[bytes]:
        """HELLO; вернёт идентификатор загрузчика или None, если не ответил."""
        self.link.reset_input()
        self.link.write(encode_hello())
        if self._reply() is not Reply.ACK:
            return None
        ident = self.link.read(ID_LEN)
        if len(ident) != ID_LEN or not ident.startswith(BOOTLOADER_ID_PREFIX):
            return None
        return ident

    def send_chunk(self, data: bytes, address: int) -> Reply:
        self.link.write(encode_data(address, data))
        return self._reply()

    def send_finalize(self, checksum: int, total: int) -> Reply:
        self.link.write(encode_finalize(total, checksum))
        return self._reply()

    def deliver_chunk(self, chunk: Chunk, retry: RetryState, acked: int = 0, on_retry=None) -> int:
        """
        Отправить блок, повторяя на NACK/тайм-аут до retry.limit раз.
        acked — сколько байт уже подтверждено (для текста ошибки).
        Возвращает число повторов, понадобившихся этому блоку.
        """
        while True:
            reply = self.send_chunk(chunk.data, chunk.address)
            if reply is Reply.ACK:
                return retry.count
            if retry.exhausted:
                # последняя неудача — не повтор: count остаётся равным limit
                retry.last_error = reply.value
                raise TransferAbortedError(
                    f"chunk at 0x{chunk.address:08X} failed after {retry.count + 1} attempts "
                    f"(last: {reply.value}); {acked} bytes acknowledged",
                    bytes_transferred=acked)
            retry.record(reply.value)
            if on_retry is not None:
                on_retry(chunk, retry)
            # поздний ACK от прошлой попытки не должен сойти за ответ на новую
            self.link.reset_input()

    def finalize(self, checksum: int, total: int) -> None:
        reply = self.send_finalize(checksum, total)
        if reply is Reply.ACK:
            return
        if reply is Reply.NACK:
            raise IntegrityMismatchError(
                f"device rejected CRC32 0x{checksum:08X} over {total} bytes",
                bytes_transferred=total)
        raise ProtocolError(f"no valid reply to finalize ({reply.value})", bytes_transferred=total)
