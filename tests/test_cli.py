import json

from typer.testing import CliRunner

from pico_loader.main import app

from conftest import make_record, EOF_RECORD

runner = CliRunner()


def _kinds(log_file):
    return [json.loads(line)["kind"] for line in log_file.read_text(encoding="utf-8").splitlines()]


def test_demo_upload_completes(three_byte_hex, tmp_path):
    log_file = tmp_path / "log.jsonl"
    result = runner.invoke(app, ["SIM", str(three_byte_hex), "--demo", "--log-file", str(log_file)])
    assert result.exit_code == 0, result.output
    assert "completed" in result.output
    kinds = _kinds(log_file)
    assert "completed" in kinds
    assert kinds[-1] == "sim_device"


def test_demo_upload_with_reboot(tmp_path):
    path = tmp_path / "fw.bin"
    path.write_bytes(bytes(range(256)) * 20)
    log_file = tmp_path / "log.jsonl"
    result = runner.invoke(app, ["SIM", str(path), "-r", "-b", "921600", "-c", "1024",
                                 "--demo", "--log-file", str(log_file)])
    assert result.exit_code == 0, result.output
    assert _kinds(log_file).count("chunk") == 5


def test_unsupported_file_type_exits_nonzero(tmp_path):
    path = tmp_path / "fw.elf"
    path.write_bytes(b"\x7fELF")
    log_file = tmp_path / "log.jsonl"
    result = runner.invoke(app, ["SIM", str(path), "--demo", "--log-file", str(log_file)])
    assert result.exit_code == 1
    assert "UnsupportedFileTypeError" in result.output
    assert "sim_device" in _kinds(log_file)


def test_bad_checksum_exits_nonzero(make_hex, tmp_path):
    path = make_hex([make_record(0, 0, b"\x01")[:-2] + "00", EOF_RECORD])
    result = runner.invoke(app, ["SIM", str(path), "--demo", "--log-file", str(tmp_path / "l.jsonl")])
    assert result.exit_code == 1
    assert "RecordChecksumError" in result.output


def test_apps_magic_warning(tmp_path):
    path = tmp_path / "fw.bin"
    path.write_bytes(b"APPS" + bytes(60))
    result = runner.invoke(app, ["SIM", str(path), "--demo", "--log-file", str(tmp_path / "l.jsonl")])
    assert result.exit_code == 0, result.output
    assert "APPS" in result.output


def test_chunk_size_is_bounded(three_byte_hex, tmp_path):
    result = runner.invoke(app, ["SIM", str(three_byte_hex), "--demo", "-c", "8192",
                                 "--log-file", str(tmp_path / "l.jsonl")])
    assert result.exit_code == 2


def test_baud_must_be_positive(three_byte_hex, tmp_path):
    result = runner.invoke(app, ["SIM", str(three_byte_hex), "--demo", "-b", "0",
                                 "--log-file", str(tmp_path / "l.jsonl")])
    assert result.exit_code == 2


def test_image_decoded_once(three_byte_hex, tmp_path, monkeypatch):
    import pico_loader.firmware.image as image_mod

    calls = []
    real = image_mod.decode_hex

    def counting(text):
        calls.append(1)
        return real(text)

    monkeypatch.setattr(image_mod, "decode_hex", counting)
    result = runner.invoke(app, ["SIM", str(three_byte_hex), "--demo", "--log-file", str(tmp_path / "l.jsonl")])
    assert result.exit_code == 0, result.output
    assert len(calls) == 1
    # сегмент по адресу 0 лежит вне слота приложения
    assert "0x00000000" in result.output
