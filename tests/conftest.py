from __future__ import annotations
import pytest

from pico_loader.boot_transport.framer import (
    ACK, NACK, SOF, CMD_HELLO, CMD_DATA, CMD_FINALIZE, UPDATE_TRIGGER,
)
from pico_loader.config import LoaderSettings


def make_record(rtype: int, offset: int, data: bytes = b"") -> str:
    raw = bytes([len(data)]) + offset.to_bytes(2, "big") + bytes([rtype]) + data
    return ":" + (raw + bytes([(-sum(raw)) & 0xFF])).hex().upper()


EOF_RECORD = ":00000001FF"


class ScriptedPort:
    """
    Фейковый порт с заранее заданными ответами на DATA-кадры.
    data_replies — по одному элементу на кадр: ACK, NACK или b"" (молчание);
    когда список кончился, используется default.
    """

    def __init__(self, data_replies=(), default=bytes([ACK]), finalize=bytes([ACK]),
                 ident=b"PBL1", answer_hello=True, answer_trigger=True):
        self.data_replies = list(data_replies)
        self.default = default
        self.finalize_reply = finalize
        self.ident = ident
        self.answer_hello = answer_hello
        self.answer_trigger = answer_trigger
        self.written = []
        self.is_open = True
        self._tx = bytearray()

    @property
    def data_frames(self):
        return [f for f in self.written if f[:2] == bytes([SOF, CMD_DATA])]

    def write(self, data):
        data = bytes(data)
        self.written.append(data)
        if data == UPDATE_TRIGGER and self.answer_trigger:
            self._tx += bytes([ACK])
            return len(data)
        if data[:1] != bytes([SOF]):
            return len(data)
        cmd = data[1]
        if cmd == CMD_HELLO and self.answer_hello:
            self._tx += bytes([ACK]) + self.ident
        elif cmd == CMD_DATA:
            self._tx += self.data_replies.pop(0) if self.data_replies else self.default
        elif cmd == CMD_FINALIZE:
            self._tx += self.finalize_reply
        return len(data)

    def read(self, size=1):
        out = bytes(self._tx[:size])
        del self._tx[:size]
        return out

    def flush(self):
        pass

    def reset_input_buffer(self):
        self._tx.clear()

    def close(self):
        self.is_open = False

    def factory(self, port, baudrate, timeout):
        self.is_open = True
        return self


@pytest.fixture
def fast_settings():
    return LoaderSettings(
        chunk_size=4,
        read_timeout=0.01,
        chunk_retries=3,
        hello_attempts=2,
        reacquire_timeout=0.05,
        reboot_timeout=0.05,
        backoff_initial=0.0,
        backoff_factor=1.0,
        backoff_max=0.0,
    )


@pytest.fixture
def three_byte_hex(tmp_path):
    path = tmp_path / "app.hex"
    path.write_text(":03000000341211A6\n" + EOF_RECORD + "\n")
    return path


@pytest.fixture
def make_hex(tmp_path):
    def _make(records, name="fw.hex"):
        path = tmp_path / name
        path.write_text("\n".join(records) + "\n")
        return path
    return _make

