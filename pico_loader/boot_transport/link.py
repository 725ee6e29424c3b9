# boot_transport/link.py
from __future__ import annotations
import os
import threading
from typing import Callable, Optional

import serial

from ..errors import PortOpenError, PortBusyError, PortReacquisitionError, LinkError
from ..retry import Backoff, poll

# порты, занятые сессиями в этом процессе
_claimed: set = set()
_claim_lock = threading.Lock()


def open_serial(port: str, baudrate: int, timeout: float):
    """8N1 без аппаратного/программного управления потоком."""
    kwargs = {}
    if os.name == "posix":
        # блокировка порта от других процессов
        kwargs["exclusive"] = True
    ser = serial.Serial(
        port=port,
        baudrate=baudrate,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        timeout=timeout,
        write_timeout=timeout,
        xonxoff=False,
        rtscts=False,
        dsrdtr=False,
        **kwargs,
    )
    # часть USB-UART адаптеров без DTR/RTS молчит
    ser.dtr = True
    ser.rts = True
    return ser


class SerialLink:
    """
    Владеет портом на всю сессию, включая переподключение после reboot.
    factory(port, baudrate, timeout) возвращает объект с интерфейсом
    serial.Serial: write/read/flush/reset_input_buffer/close.
    """

    def __init__(self, port: str, baudrate: int, timeout: float,
                 factory: Optional[Callable] = None):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.factory = factory or open_serial
        self.ser = None
        self._claimed = False

    # ---- захват/освобождение ----
    def open(self) -> "SerialLink":
        with _claim_lock:
            if self.port in _claimed:
                raise PortBusyError(f"port {self.port} is already in use by another session")
            _claimed.add(self.port)
            self._claimed = True
        try:
            self.ser = self._connect()
        except (serial.SerialException, ValueError) as e:
            # ValueError: pyserial отвергает параметры порта (скорость и т.п.)
            self._release()
            raise PortOpenError(f"cannot open {self.port}: {e}") from e
        except BaseException:
            self._release()
            raise
        return self

    def close(self):
        try:
            self._disconnect()
        finally:
            self._release()

    def _release(self):
        if self._claimed:
            with _claim_lock:
                _claimed.discard(self.port)
            self._claimed = False

    def _connect(self):
        return self.factory(self.port, self.baudrate, self.timeout)

    def _disconnect(self):
        ser, self.ser = self.ser, None
        if ser is not None:
            try:
                ser.close()
            except serial.SerialException:
                # устройство уже пропало с шины — закрывать нечего
                pass

    def reopen(self, timeout: float, backoff: Backoff):
        """Закрыть и дождаться, пока устройство снова появится (re-enumeration)."""
        self._disconnect()
        errors = []

        def attempt():
            try:
                return self._connect()
            except serial.SerialException as e:
                errors.append(e)
                return None

        ser = poll(attempt, backoff, timeout=timeout)
        if ser is None:
            last = f": {errors[-1]}" if errors else ""
            raise PortReacquisitionError(f"port {self.port} did not come back within {timeout:g}s{last}")
        self.ser = ser

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ---- обмен ----
    def _port(self):
        if self.ser is None:
            raise LinkError(f"port {self.port} is not open")
        return self.ser

    def write(self, data: bytes):
        ser = self._port()
        try:
            ser.write(data)
            ser.flush()
        except serial.SerialException as e:
            raise LinkError(f"write to {self.port} failed: {e}") from e

    def read(self, size: int) -> bytes:
        """До size байт; меньше — значит истёк тайм-аут чтения."""
        ser = self._port()
        try:
            return bytes(ser.read(size))
        except serial.SerialException as e:
            raise LinkError(f"read from {self.port} failed: {e}") from e

    def reset_input(self):
        ser = self._port()
        try:
            ser.reset_input_buffer()
        except serial.SerialException as e:
            raise LinkError(f"flush of {self.port} failed: {e}") from e
