# errors.py
"""
Иерархия ошибок загрузчика.

ImageFormatError и наследники возникают до открытия порта. DeviceError и
наследники прерывают сессию с устройством; в них хранится, сколько байт
успели подтвердить, и подсказка для пользователя.
"""
from __future__ import annotations


class LoaderError(Exception):
    """Базовая ошибка загрузчика."""

    @property
    def kind(self) -> str:
        return type(self).__name__


# ---- Образ прошивки ----
class ImageFormatError(LoaderError):
    def __init__(self, message: str, line: int | None = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class RecordChecksumError(ImageFormatError):
    pass


class MissingEndRecordError(ImageFormatError):
    pass


class UnsupportedRecordTypeError(ImageFormatError):
    pass


class EmptyImageError(ImageFormatError):
    pass


class UnsupportedFileTypeError(ImageFormatError):
    pass


class OverlappingDataError(ImageFormatError):
    pass


# ---- Устройство / сессия ----
class DeviceError(LoaderError):
    hint = ""

    def __init__(self, message: str, bytes_transferred: int = 0):
        self.bytes_transferred = bytes_transferred
        super().__init__(message)


_MANUAL_RETRY = ("Повтори попытку вручную; если устройство уже в режиме "
                 "загрузчика, запускай без --reboot.")


class PortOpenError(DeviceError):
    hint = "Проверь имя порта и что он не занят другой программой."


class PortBusyError(DeviceError):
    hint = "На этом порту уже идёт сессия прошивки."


class PortReacquisitionError(DeviceError):
    hint = _MANUAL_RETRY


class RebootTimeoutError(DeviceError):
    hint = _MANUAL_RETRY


class BootloaderNotFoundError(DeviceError):
    hint = _MANUAL_RETRY


class TransferAbortedError(DeviceError):
    hint = "Связь нестабильна: проверь кабель/скорость и запусти сессию заново."


class IntegrityMismatchError(DeviceError):
    hint = "Контрольная сумма не сошлась. Нужна новая сессия; образ мог быть повреждён."


class ProtocolError(DeviceError):
    hint = "Загрузчик ответил не по протоколу. Запусти сессию заново."


class LinkError(DeviceError):
    hint = "Ошибка последовательного порта во время обмена."


class SessionCancelledError(LoaderError):
    def __init__(self, message: str = "session cancelled", bytes_transferred: int = 0):
        self.bytes_transferred = bytes_transferred
        super().__init__(message)
