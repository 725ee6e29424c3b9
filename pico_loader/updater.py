# updater.py
"""
Сессия обновления прошивки — конечный автомат:

    IDLE -> DECODING -> [REBOOT_PENDING] -> AWAITING_BOOTLOADER
         -> TRANSFERRING -> VERIFYING -> COMPLETED

FAILED достижим из любого нетерминального состояния и хранит ошибку и число
подтверждённых байт. Образ разбирается до открытия порта, порт освобождается
на любом выходе.
"""
from __future__ import annotations
import enum
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .boot_transport.framer import Framer, iter_chunks
from .boot_transport.link import SerialLink
from .config import DEFAULT_BAUD, LoaderSettings
from .errors import LoaderError, BootloaderNotFoundError, SessionCancelledError
from .firmware.crc import image_checksum
from .firmware.image import FirmwareImage, load_image
from .reboot import backoff_from, reboot_into_bootloader
from .retry import RetryState, poll

EventSink = Callable[[str, dict], None]


class SessionState(enum.Enum):
    IDLE = "idle"
    DECODING = "decoding"
    REBOOT_PENDING = "reboot_pending"
    AWAITING_BOOTLOADER = "awaiting_bootloader"
    TRANSFERRING = "transferring"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UpdateSession:
    port: str
    baud: int = DEFAULT_BAUD
    reboot: bool = False
    image: Optional[FirmwareImage] = None
    state: SessionState = SessionState.IDLE
    bytes_transferred: int = 0
    retries: Dict[int, RetryState] = field(default_factory=dict)  # адрес блока -> повторы
    checksum: Optional[int] = None
    bootloader_id: Optional[bytes] = None
    error: Optional[LoaderError] = None
    history: List[SessionState] = field(default_factory=lambda: [SessionState.IDLE])

    @property
    def ok(self) -> bool:
        return self.state is SessionState.COMPLETED

    @property
    def total_retries(self) -> int:
        return sum(r.count for r in self.retries.values())


class Updater:
    def __init__(self, session: UpdateSession, settings: Optional[LoaderSettings] = None,
                 link_factory: Optional[Callable] = None,
                 cancel: Optional[threading.Event] = None,
                 on_event: Optional[EventSink] = None):
        self.session = session
        self.settings = settings or LoaderSettings()
        self.link_factory = link_factory
        self.cancel = cancel
        self.on_event = on_event

    def _emit(self, event: str, **payload):
        if self.on_event is not None:
            self.on_event(event, payload)

    def _enter(self, state: SessionState):
        self.session.state = state
        self.session.history.append(state)
        self._emit("state", state=state.value)

    def run(self, source: Path) -> UpdateSession:
        s = self.session
        if s.state is not SessionState.IDLE:
            raise RuntimeError(f"session already {s.state.value}; start a new one")
        try:
            self._enter(SessionState.DECODING)
            s.image = load_image(source)
            s.checksum = image_checksum(iter_chunks(s.image, self.settings.chunk_size))
            self._emit("image", source=str(source), bytes=s.image.total_size,
                       segments=[[seg.base_address, len(seg.data)] for seg in s.image.segments],
                       head=s.image.segments[0].data[:4].hex(), crc32=f"0x{s.checksum:08X}")

            link = SerialLink(s.port, s.baud, self.settings.read_timeout, self.link_factory)
            with link:
                framer = Framer(link, self.settings)
                if s.reboot:
                    self._enter(SessionState.REBOOT_PENDING)
                    reboot_into_bootloader(link, self.settings, self.on_event)
                self._enter(SessionState.AWAITING_BOOTLOADER)
                self._await_bootloader(framer)
                self._enter(SessionState.TRANSFERRING)
                self._transfer(framer)
                self._enter(SessionState.VERIFYING)
                framer.finalize(s.checksum, s.image.total_size)
            self._enter(SessionState.COMPLETED)
            self._emit("completed", bytes=s.bytes_transferred, retries=s.total_retries)
        except LoaderError as e:
            self._fail(e)
        return s

    def _fail(self, error: LoaderError):
        s = self.session
        s.error = error
        self._enter(SessionState.FAILED)
        self._emit("failed", kind=error.kind, message=str(error), bytes=s.bytes_transferred)

    def _await_bootloader(self, framer: Framer):
        # 'u' шлётся и с --reboot, и без него: загрузчик отвечает на HELLO
        # только в режиме обновления
        def attempt():
            if not framer.enter_update_mode():
                return None
            return framer.identify()

        ident = poll(attempt, backoff_from(self.settings), attempts=self.settings.hello_attempts)
        if ident is None:
            raise BootloaderNotFoundError(
                f"no bootloader answered on {self.session.port} "
                f"after {self.settings.hello_attempts} attempts")
        self.session.bootloader_id = ident
        self._emit("bootloader", id=ident.decode("ascii", errors="replace"))

    def _transfer(self, framer: Framer):
        s = self.session

        def on_retry(chunk, retry):
            self._emit("retry", address=chunk.address, attempt=retry.count, reason=retry.last_error)

        for chunk in iter_chunks(s.image, self.settings.chunk_size):
            if self.cancel is not None and self.cancel.is_set():
                raise SessionCancelledError(
                    f"cancelled after {s.bytes_transferred} bytes", s.bytes_transferred)
            retry = s.retries.setdefault(chunk.address, RetryState(self.settings.chunk_retries))
            framer.deliver_chunk(chunk, retry, acked=s.bytes_transferred, on_retry=on_retry)
            s.bytes_transferred += len(chunk.data)
            self._emit("chunk", address=chunk.address, size=len(chunk.data),
                       done=s.bytes_transferred, total=s.image.total_size)


def run_update(port: str, source: Path, *, baud: int = DEFAULT_BAUD, reboot: bool = False,
               settings: Optional[LoaderSettings] = None, link_factory: Optional[Callable] = None,
               cancel: Optional[threading.Event] = None,
               on_event: Optional[EventSink] = None) -> UpdateSession:
    """Одна сессия: новый UpdateSession на каждый вызов."""
    session = UpdateSession(port=port, baud=baud, reboot=reboot)
    return Updater(session, settings, link_factory, cancel, on_event).run(source)
