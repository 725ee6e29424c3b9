# reboot.py
from __future__ import annotations

from .boot_transport.framer import Framer
from .errors import RebootTimeoutError
from .retry import Backoff, poll

REBOOT_COMMAND = b"reboot\r\n"


def backoff_from(settings) -> Backoff:
    return Backoff(settings.backoff_initial, settings.backoff_factor, settings.backoff_max)


def reboot_into_bootloader(link, settings, on_event=None) -> None:
    """
    Перезагрузить работающее приложение в загрузчик:
    - шлём текстовую команду "reboot";
    - переоткрываем порт (устройство пропадает и появляется заново);
    - ждём, пока загрузчик не подтвердит байт 'u'.
    Получение команды приложением не гарантируется, поэтому после
    этого вызывающий всё равно проверяет загрузчик через 'u' и HELLO.
    """
    emit = on_event or (lambda kind, payload: None)
    backoff = backoff_from(settings)

    link.reset_input()
    link.write(REBOOT_COMMAND)
    emit("reboot_sent", {"port": link.port})

    link.reopen(settings.reacquire_timeout, backoff)
    emit("port_reacquired", {"port": link.port})

    framer = Framer(link, settings)

    def ready():
        return True if framer.enter_update_mode() else None

    if poll(ready, backoff, timeout=settings.reboot_timeout) is None:
        raise RebootTimeoutError(
            f"bootloader did not signal ready within {settings.reboot_timeout:g}s after reboot")
    emit("bootloader_ready", {"port": link.port})
