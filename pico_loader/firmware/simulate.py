# firmware/simulate.py
from __future__ import annotations
import struct

import serial

from .crc import crc32
from ..boot_transport.framer import (
    SOF, CMD_HELLO, CMD_DATA, CMD_FINALIZE, ACK, NACK, UPDATE_TRIGGER,
)
from ..reboot import REBOOT_COMMAND

APP = "app"
BOOT = "boot"


class SimBootloader:
    """
    Очень простой симулятор платы с загрузчиком, вместо serial.Serial:
    - в режиме приложения понимает только текстовую команду "reboot";
    - после reboot отваливается и при следующем открытии порта уже в загрузчике;
    - в загрузчике отвечает на 'u', HELLO, DATA, FINALIZE; пока не пришёл 'u',
      HELLO остаётся без ответа (require_trigger=False это отключает);
    - пишет принятые блоки в память (словарь адрес -> байт) и считает CRC32.
    Флаги неисправностей нужны тестам и демо.
    """

    def __init__(self, mode: str = BOOT, ident: bytes = b"PBL1", *,
                 nack_first_attempt: bool = False,
                 silent_on_data: bool = False,
                 corrupt_storage: bool = False,
                 vanish_after_reboot: bool = False,
                 ignore_reboot: bool = False,
                 require_trigger: bool = True):
        self.mode = mode
        self.ident = ident
        self.nack_first_attempt = nack_first_attempt
        self.silent_on_data = silent_on_data
        self.corrupt_storage = corrupt_storage
        self.vanish_after_reboot = vanish_after_reboot
        self.ignore_reboot = ignore_reboot
        self.require_trigger = require_trigger

        self.is_open = False
        self.open_count = 0
        self.memory: dict = {}
        self.received = bytearray()
        self.data_frames = 0
        self.finalized = False
        self._attempted: set = set()
        self._rebooting = False
        self._armed = False
        self._rx = bytearray()
        self._tx = bytearray()

    # ---- "железо" порта ----
    def open_port(self, port: str, baudrate: int, timeout: float):
        if self._rebooting:
            self._rebooting = False
            if self.vanish_after_reboot:
                self._rebooting = True
                raise serial.SerialException(f"could not open port {port}: device not present")
            self.mode = BOOT
        self.is_open = True
        self.open_count += 1
        self._armed = False
        self._rx.clear()
        self._tx.clear()
        return self

    def close(self):
        self.is_open = False

    def flush(self):
        pass

    def reset_input_buffer(self):
        self._tx.clear()

    def write(self, data: bytes) -> int:
        if not self.is_open:
            raise serial.SerialException("port not open")
        self._rx.extend(data)
        if self.mode == APP:
            self._pump_app()
        else:
            self._pump_boot()
        return len(data)

    def read(self, size: int = 1) -> bytes:
        if not self.is_open:
            raise serial.SerialException("port not open")
        out = bytes(self._tx[:size])
        del self._tx[:size]
        return out

    # ---- приложение ----
    def _pump_app(self):
        if REBOOT_COMMAND in self._rx:
            self._rx.clear()
            if not self.ignore_reboot:
                self._rebooting = True
        elif len(self._rx) > 64:
            self._rx.clear()

    # ---- загрузчик ----
    def _pump_boot(self):
        while self._rx:
            head = self._rx[0]
            if head == UPDATE_TRIGGER[0]:
                del self._rx[0]
                self._armed = True
                self._tx.append(ACK)
                continue
            if head != SOF:
                del self._rx[0]
                continue
            if len(self._rx) < 2:
                return
            cmd = self._rx[1]
            if cmd == CMD_HELLO:
                del self._rx[:2]
                if self.require_trigger and not self._armed:
                    continue
                self._tx.append(ACK)
                self._tx.extend(self.ident)
            elif cmd == CMD_DATA:
                if len(self._rx) < 8:
                    return
                addr, length = struct.unpack_from("<IH", self._rx, 2)
                size = 8 + length + 4
                if len(self._rx) < size:
                    return
                frame = bytes(self._rx[:size])
                del self._rx[:size]
                self._on_data(addr, frame[8:8 + length], struct.unpack_from("<I", frame, 8 + length)[0])
            elif cmd == CMD_FINALIZE:
                if len(self._rx) < 10:
                    return
                total, crc = struct.unpack_from("<II", self._rx, 2)
                del self._rx[:10]
                self._on_finalize(total, crc)
            else:
                del self._rx[:2]
                self._tx.append(NACK)

    def _on_data(self, addr: int, data: bytes, crc: int):
        self.data_frames += 1
        if self.silent_on_data:
            return
        if self.nack_first_attempt and addr not in self._attempted:
            self._attempted.add(addr)
            self._tx.append(NACK)
            return
        if crc32(data) != crc:
            self._tx.append(NACK)
            return
        if self.corrupt_storage and not self.received:
            data = bytes([data[0] ^ 0x01]) + data[1:]
        for i, b in enumerate(data):
            self.memory[addr + i] = b
        self.received.extend(data)
        self._tx.append(ACK)

    def _on_finalize(self, total: int, crc: int):
        ok = total == len(self.received) and crc32(bytes(self.received)) == crc
        self.finalized = ok
        self._tx.append(ACK if ok else NACK)

    def info(self) -> dict:
        return {
            "mode": self.mode,
            "bytes": len(self.received),
            "crc32": f"0x{crc32(bytes(self.received)):08X}",
            "frames": self.data_frames,
        }
