from __future__ import annotations
import json
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import typer
from rich import print
from rich.markup import escape
from rich.progress import Progress, BarColumn, DownloadColumn, TimeRemainingColumn
from serial.tools import list_ports

from .config import APP_NAME, DEFAULT_BAUD, LOG_FILE, MAX_CHUNK, LoaderSettings
from .errors import DeviceError, PortOpenError
from .firmware.map import APP_SLOT
from .firmware.simulate import SimBootloader, APP, BOOT
from .updater import run_update

APPS_MAGIC = b"APPS"

app = typer.Typer(add_completion=False, help=f"{APP_NAME}: загрузка прошивки в Pico через загрузчик по UART.")


def _log_event(log_file: Path, kind: str, payload: dict):
    log_file.parent.mkdir(parents=True, exist_ok=True)
    record = {
        "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
        "kind": kind,
        "payload": payload,
    }
    with open(log_file, "a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False) + "\n")


def _warn_about_image(payload: dict, out):
    """Предупреждения по событию "image": не мешают прошивке."""
    if payload["source"].lower().endswith(".bin") and bytes.fromhex(payload["head"]) == APPS_MAGIC:
        out("[yellow]Внимание:[/] файл начинается с магии 'APPS' — похоже, в нём уже есть "
            "метаданные загрузчика. Ожидается сырой бинарь приложения.")
    for address, size in payload["segments"]:
        if APP_SLOT.contains(address, size):
            continue
        out(f"[yellow]Внимание:[/] сегмент 0x{address:08X} ({size} байт) "
            f"вне слота приложения 0x{APP_SLOT.start:08X}..0x{APP_SLOT.end:08X}")


@app.command()
def upload(
    port: str = typer.Argument(..., help="Порт, напр. COM3 или /dev/ttyACM0"),
    file: Path = typer.Argument(..., help="Прошивка .hex или .bin"),
    reboot: bool = typer.Option(False, "--reboot", "-r", help="Сначала отправить приложению 'reboot'"),
    baud: int = typer.Option(DEFAULT_BAUD, "--baud", "-b", min=1, help="Скорость порта"),
    chunk_size: int = typer.Option(MAX_CHUNK, "--chunk-size", "-c", min=1, max=MAX_CHUNK, help="Размер блока"),
    timeout: float = typer.Option(5.0, "--timeout", "-t", min=0.01, help="Тайм-аут ответа на кадр, сек"),
    retries: int = typer.Option(3, "--retries", min=0, help="Повторов на блок"),
    demo: bool = typer.Option(False, help="Демо: симулятор загрузчика вместо железа"),
    log_file: Path = typer.Option(LOG_FILE, help="Журнал событий (JSONL)"),
):
    """Записать прошивку и проверить CRC32."""
    settings = replace(LoaderSettings(), chunk_size=chunk_size, read_timeout=timeout, chunk_retries=retries)

    factory = None
    sim = None
    if demo:
        print("[yellow]Демо-режим: вместо платы используется симулятор загрузчика.[/]")
        sim = SimBootloader(mode=APP if reboot else BOOT)
        factory = sim.open_port

    print(f"[green]Подключение к {escape(port)} @ {baud}...[/]")

    with Progress(
        "[progress.description]{task.description}",
        BarColumn(),
        DownloadColumn(),
        TimeRemainingColumn(),
    ) as progress:
        task = progress.add_task("Загрузка", total=None)

        def on_event(kind: str, payload: dict):
            _log_event(log_file, kind, payload)
            if kind == "image":
                progress.update(task, total=payload["bytes"])
                progress.console.print(
                    f"Образ: {payload['bytes']} байт, сегментов {len(payload['segments'])}, CRC32 {payload['crc32']}")
                _warn_about_image(payload, progress.console.print)
            elif kind == "state":
                progress.update(task, description=payload["state"])
            elif kind == "chunk":
                progress.update(task, completed=payload["done"])
            elif kind == "retry":
                progress.console.print(
                    f"[yellow]Повтор[/] блока 0x{payload['address']:08X} "
                    f"(#{payload['attempt']}, {payload['reason']})")
            elif kind == "bootloader":
                progress.console.print(f"[cyan]Загрузчик найден:[/] {escape(payload['id'])}")

        session = run_update(port, file, baud=baud, reboot=reboot, settings=settings,
                             link_factory=factory, on_event=on_event)

    if sim is not None:
        _log_event(log_file, "sim_device", sim.info())

    if session.ok:
        print(f"[bold green]Готово ({session.state.value}):[/] записано {session.bytes_transferred} байт, "
              f"CRC32 0x{session.checksum:08X}, повторов {session.total_retries}")
        print(f"[dim]Логи записаны в: {escape(str(log_file))}[/]")
        return

    err = session.error
    print(f"[bold red]Сбой ({session.state.value}) {err.kind}:[/] {escape(str(err))}")
    print(f"Передано байт: {session.bytes_transferred}")
    if isinstance(err, DeviceError) and err.hint:
        print(f"[yellow]{err.hint}[/]")
    if isinstance(err, PortOpenError):
        found = list_ports.comports()
        if found:
            print("Доступные порты:")
            for p in found:
                print(f"  [cyan]{p.device}[/] - {p.description}")
        else:
            print("[yellow]Порты не найдены.[/]")
    print(f"[dim]Логи записаны в: {escape(str(log_file))}[/]")
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
