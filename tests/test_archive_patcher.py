"""Tests for update bundle patching."""

import hashlib
import io
import json
import tarfile

import pytest

from harmony_flasher.archive_patcher import (
    MANIFEST_ENTRY,
    OS_ENTRY,
    patch_manifest,
    patch_update_archive,
    read_manifest,
)
from harmony_flasher.errors import ArchivePatchError

LONG_NAME = "assets/" + "very_long_directory_name/" * 5 + "image.bin"


def _add_file(tar: tarfile.TarFile, name: str, data: bytes, mtime: int = 1700000000) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mtime = mtime
    info.mode = 0o644
    tar.addfile(info, io.BytesIO(data))


def _add_dir(tar: tarfile.TarFile, name: str) -> None:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    tar.addfile(info)


def _make_bundle(
    manifest=None,
    include_os=True,
    tar_format=tarfile.PAX_FORMAT,
    long_name=LONG_NAME,
) -> bytes:
    if manifest is None:
        manifest = {
            "os": {"filename": "os.bin", "md5sum": "0" * 32, "version": "2.7.0"},
            "boot": {"filename": "boot.bin", "md5sum": "1" * 32},
            "schemaVersion": "1",
        }
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tar_format) as tar:
        _add_dir(tar, "bin")
        _add_file(tar, "bin/boot.bin", b"\xB0" * 700)
        if include_os:
            _add_file(tar, OS_ENTRY, b"\x01" * 3000)
        _add_file(tar, long_name, b"\x5A" * 513)
        link = tarfile.TarInfo("bin/current")
        link.type = tarfile.SYMTYPE
        link.linkname = "os.bin"
        tar.addfile(link)
        if manifest is not False:
            _add_file(tar, MANIFEST_ENTRY, json.dumps(manifest).encode("utf-8"))
        _add_file(tar, "country-codes.db", b"")
    return buf.getvalue()


def _members(archive: bytes):
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:") as tar:
        out = []
        for member in tar:
            data = tar.extractfile(member).read() if member.isreg() else None
            out.append((member, data))
        return out


def _raw_entries(archive: bytes):
    """Map entry name -> raw bytes of its headers and data blocks."""
    raw = {}
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:") as tar:
        for member in tar:
            raw[member.name] = archive[member.offset:tar.offset]
    return raw


class TestPatchUpdateArchive:

    def test_replaces_os_entry_and_size(self):
        os_bin = b"custom-os" * 1000
        patched = _members(patch_update_archive(_make_bundle(), os_bin))

        entry = next((m, d) for m, d in patched if m.name == OS_ENTRY)
        assert entry[1] == os_bin
        assert entry[0].size == len(os_bin)

    def test_manifest_checksum_is_md5_of_os(self):
        os_bin = b"\xDE\xAD\xBE\xEF" * 257
        patched = patch_update_archive(_make_bundle(), os_bin)

        manifest = read_manifest(patched)
        assert manifest["os"]["md5sum"] == hashlib.md5(os_bin).hexdigest()
        assert manifest["os"]["version"] == "2.7.0"
        assert manifest["boot"] == {"filename": "boot.bin", "md5sum": "1" * 32}

    def test_manifest_written_indented(self):
        patched = _members(patch_update_archive(_make_bundle(), b"x"))
        member, data = next((m, d) for m, d in patched if m.name == MANIFEST_ENTRY)
        assert member.size == len(data)
        assert data.startswith(b'{\n    "boot"')

    def test_entry_order_preserved(self):
        original = _make_bundle()
        patched = patch_update_archive(original, b"new")
        assert [m.name for m, _ in _members(patched)] == [m.name for m, _ in _members(original)]

    @pytest.mark.parametrize("tar_format", [tarfile.USTAR_FORMAT, tarfile.GNU_FORMAT, tarfile.PAX_FORMAT])
    def test_other_entries_byte_identical(self, tar_format):
        # ustar cannot hold the long name
        long_name = "assets/image.bin" if tar_format == tarfile.USTAR_FORMAT else LONG_NAME
        original = _make_bundle(tar_format=tar_format, long_name=long_name)
        patched = patch_update_archive(original, b"replacement" * 50)

        before = _raw_entries(original)
        after = _raw_entries(patched)
        for name in before:
            if name in (OS_ENTRY, MANIFEST_ENTRY):
                continue
            assert after[name] == before[name], name

    def test_ends_with_end_of_archive_marker(self):
        patched = patch_update_archive(_make_bundle(), b"x" * 10)
        assert patched.endswith(b"\0" * 1024)
        assert len(patched) % 512 == 0

    def test_missing_os_key(self):
        bundle = _make_bundle(manifest={"boot": {"md5sum": "x"}})
        with pytest.raises(ArchivePatchError, match="no os"):
            patch_update_archive(bundle, b"x")

    def test_os_not_object(self):
        bundle = _make_bundle(manifest={"os": "2.7.0"})
        with pytest.raises(ArchivePatchError, match="not an object"):
            patch_update_archive(bundle, b"x")

    def test_missing_manifest_entry(self):
        with pytest.raises(ArchivePatchError, match=MANIFEST_ENTRY):
            patch_update_archive(_make_bundle(manifest=False), b"x")

    def test_missing_os_entry(self):
        with pytest.raises(ArchivePatchError, match=OS_ENTRY):
            patch_update_archive(_make_bundle(include_os=False), b"x")

    def test_not_a_tar(self):
        with pytest.raises(ArchivePatchError):
            patch_update_archive(b"definitely not a tar archive" * 40, b"x")


class TestPatchManifest:

    def test_invalid_json(self):
        with pytest.raises(ArchivePatchError):
            patch_manifest(b"{not json", b"x")

    def test_manifest_must_be_object(self):
        with pytest.raises(ArchivePatchError):
            patch_manifest(b"[1, 2]", b"x")

    def test_adds_checksum_when_absent(self):
        out = json.loads(patch_manifest(b'{"os": {}}', b"abc"))
        assert out == {"os": {"md5sum": "900150983cd24fb0d6963f7d28e17f72"}}
