"""
Update bundle patcher.

The vendor update bundle is a tar archive. Patching swaps the OS image entry
for a custom binary and rewrites the manifest so its recorded MD5 matches the
new image. Every other entry, header blocks included, is copied through
byte for byte in its original position.
"""

import hashlib
import io
import json
import logging
import tarfile
from typing import Any, Dict, Optional

from harmony_flasher.errors import ArchivePatchError

logger = logging.getLogger(__name__)

OS_ENTRY = "bin/os.bin"
MANIFEST_ENTRY = "version.json"
MANIFEST_OS_KEY = "os"
MANIFEST_CHECKSUM_KEY = "md5sum"

BLOCKSIZE = tarfile.BLOCKSIZE
END_OF_ARCHIVE = tarfile.NUL * (BLOCKSIZE * 2)


def _padded(size: int) -> int:
    """Round size up to a whole number of tar blocks."""
    blocks, remainder = divmod(size, BLOCKSIZE)
    return (blocks + (1 if remainder else 0)) * BLOCKSIZE


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def patch_manifest(manifest: bytes, os_bin: bytes) -> bytes:
    """
    Set os.md5sum in the manifest to the MD5 of os_bin.

    Raises:
        ArchivePatchError: If the manifest is not an object holding an
            object under "os"
    """
    try:
        version = json.loads(manifest.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ArchivePatchError(f"{MANIFEST_ENTRY} is not valid JSON: {e}")

    if not isinstance(version, dict):
        raise ArchivePatchError(f"{MANIFEST_ENTRY} is not a JSON object")
    if MANIFEST_OS_KEY not in version:
        raise ArchivePatchError(f"no {MANIFEST_OS_KEY} in {MANIFEST_ENTRY}")

    os_info = version[MANIFEST_OS_KEY]
    if not isinstance(os_info, dict):
        raise ArchivePatchError(f"{MANIFEST_OS_KEY} is not an object in {MANIFEST_ENTRY}")

    os_info[MANIFEST_CHECKSUM_KEY] = md5_hex(os_bin)
    logger.info(f"Replacing {OS_ENTRY} (md5 sum: {os_info[MANIFEST_CHECKSUM_KEY]})")

    return json.dumps(version, indent=4, sort_keys=True, ensure_ascii=False).encode("utf-8")


class _ArchiveWriter:
    """Tar stream writer that can mix raw member copies with new members."""

    def __init__(self, tar_format: int = tarfile.PAX_FORMAT, encoding: str = "utf-8"):
        self.buffer = io.BytesIO()
        self.format = tar_format
        self.encoding = encoding
        self.closed = False

    def write_raw(self, raw: bytes) -> None:
        self.buffer.write(raw)

    def add_member(self, member: tarfile.TarInfo, data: bytes) -> None:
        member.size = len(data)
        # A pax size record would override the new size field
        member.pax_headers.pop("size", None)
        self.buffer.write(member.tobuf(self.format, self.encoding, "surrogateescape"))
        self.buffer.write(data)
        self.buffer.write(tarfile.NUL * (_padded(len(data)) - len(data)))

    def close(self) -> bytes:
        if self.closed:
            raise ArchivePatchError("archive writer already closed")
        self.closed = True
        self.buffer.write(END_OF_ARCHIVE)
        return self.buffer.getvalue()


def patch_update_archive(original: bytes, os_bin: bytes) -> bytes:
    """
    Produce an update bundle that installs os_bin.

    Args:
        original: Vendor update bundle (tar)
        os_bin: Replacement OS image

    Returns:
        Patched tar archive bytes

    Raises:
        ArchivePatchError: If the bundle cannot be read, lacks the OS or
            manifest entry, or the manifest has an unexpected shape
    """
    writer = _ArchiveWriter()
    found = set()
    position = 0
    try:
        with tarfile.open(fileobj=io.BytesIO(original), mode="r:") as source:
            for member in source:
                # source.offset is the end of this member's data. Copying from
                # the previous end keeps pax/GNU extension headers (and pax
                # global headers, which no member claims) in place.
                if member.isreg() and member.name == OS_ENTRY:
                    writer.write_raw(original[position:member.offset])
                    writer.add_member(member, os_bin)
                    found.add(OS_ENTRY)
                elif member.isreg() and member.name == MANIFEST_ENTRY:
                    writer.write_raw(original[position:member.offset])
                    manifest = source.extractfile(member).read()
                    writer.add_member(member, patch_manifest(manifest, os_bin))
                    found.add(MANIFEST_ENTRY)
                else:
                    writer.write_raw(original[position:source.offset])
                position = source.offset
    except tarfile.TarError as e:
        raise ArchivePatchError(f"Could not read update bundle: {e}")

    missing = [name for name in (OS_ENTRY, MANIFEST_ENTRY) if name not in found]
    if missing:
        raise ArchivePatchError(f"Update bundle has no {', '.join(missing)} entry")

    return writer.close()


def read_manifest(archive: bytes) -> Optional[Dict[str, Any]]:
    """Return the parsed manifest of a bundle, or None if it has none."""
    try:
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:") as tar:
            try:
                member = tar.getmember(MANIFEST_ENTRY)
            except KeyError:
                return None
            return json.loads(tar.extractfile(member).read().decode("utf-8"))
    except tarfile.TarError as e:
        raise ArchivePatchError(f"Could not read update bundle: {e}")
