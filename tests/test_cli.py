"""Tests for the CLI commands that do not need a device."""

import io
import json
import tarfile

from typer.testing import CliRunner

from harmony_flasher.cli import app
from harmony_flasher.errors import DeviceNotFoundError, PreconditionError

runner = CliRunner()


def _write_bundle(path) -> None:
    manifest = json.dumps({"os": {"md5sum": "0" * 32}}).encode("utf-8")
    with tarfile.open(path, mode="w") as tar:
        for name, data in (("bin/os.bin", b"old os"), ("version.json", manifest)):
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))


def test_flash_missing_os_file_fails_fast(tmp_path):
    result = runner.invoke(app, ["flash", str(tmp_path / "missing.bin")])
    assert result.exit_code == PreconditionError.exit_code
    assert "does not exist" in result.output


def test_flash_without_device(tmp_path, monkeypatch):
    os_bin = tmp_path / "os.bin"
    os_bin.write_bytes(b"custom")

    def no_device(*args, **kwargs):
        raise DeviceNotFoundError("Could not find Harmony device")

    monkeypatch.setattr("harmony_flasher.core.actions.find_device_port", no_device)
    result = runner.invoke(app, ["flash", str(os_bin)])
    assert result.exit_code == DeviceNotFoundError.exit_code
    assert "Could not find Harmony device" in result.output


def test_patch_command_writes_bundle(tmp_path):
    os_bin = tmp_path / "os.bin"
    os_bin.write_bytes(b"new os image")
    bundle = tmp_path / "update.tar"
    _write_bundle(bundle)
    out = tmp_path / "patched.tar"

    result = runner.invoke(
        app, ["patch", str(os_bin), "--bundle", str(bundle), "--out", str(out), "--json"]
    )

    assert result.exit_code == 0, result.output
    with tarfile.open(out) as tar:
        assert tar.extractfile("bin/os.bin").read() == b"new os image"


def test_patch_command_missing_bundle(tmp_path):
    os_bin = tmp_path / "os.bin"
    os_bin.write_bytes(b"x")
    result = runner.invoke(
        app, ["patch", str(os_bin), "--bundle", str(tmp_path / "nope.tar"), "--out", str(tmp_path / "o.tar")]
    )
    assert result.exit_code == PreconditionError.exit_code


def test_ports_lists_usb_ids(monkeypatch):
    from types import SimpleNamespace

    monkeypatch.setattr(
        "harmony_flasher.cli.list_serial_ports",
        lambda: [SimpleNamespace(device="/dev/ttyACM0", vid=0x3310, pid=0x0300, description="Harmony")],
    )
    result = runner.invoke(app, ["ports"])
    assert result.exit_code == 0
    assert "3310:0300" in result.output


def test_patch_command_bad_output_dir(tmp_path):
    os_bin = tmp_path / "os.bin"
    os_bin.write_bytes(b"x")
    bundle = tmp_path / "update.tar"
    _write_bundle(bundle)
    result = runner.invoke(
        app, ["patch", str(os_bin), "--bundle", str(bundle), "--out", str(tmp_path / "missing" / "o.tar")]
    )
    assert result.exit_code == PreconditionError.exit_code
    assert "Could not write patched bundle" in result.output
