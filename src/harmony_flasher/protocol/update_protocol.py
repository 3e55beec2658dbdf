"""
Harmony Update Protocol Implementation

Replaces the device's update file with a patched bundle and asks the device
to install it.

Protocol sequence (every step must answer 2xx before the next is sent):
1. GET  device info (1/1)            -> onboarding must be complete
2. DEL  filesystem (3/4) removeFile  -> stale update file removed
3. free-space check on the host      -> 3 x bundle size must fit
4. PUT  filesystem (3/3) open upload -> device returns chunkSize + txID
5. PUT  filesystem (3/3) chunk 1..N  -> base64 data, strictly sequential
6. POST update (2/2) update+reboot   -> long timeout while image validates

A failed step aborts the whole transfer. There is no resume; a retry starts
again from the upload request.
"""

import base64
import logging
import zlib
from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional, Tuple

from harmony_flasher.config import COMMAND_TIMEOUT, UPDATE_TIMEOUT
from harmony_flasher.core.results import OperationResult
from harmony_flasher.errors import PreconditionError, ResponseDecodeError
from harmony_flasher.protocol.messages import (
    DeviceInformation,
    Endpoint,
    Method,
    UploadTransaction,
)

logger = logging.getLogger(__name__)

MEGABYTE = 1024 * 1024
# The device keeps working copies of the bundle while validating it
SPACE_FACTOR = 3


def crc32_hex(data: bytes) -> str:
    """CRC32 (IEEE) of data as 8 lower-case hex digits."""
    return f"{zlib.crc32(data) & 0xFFFFFFFF:08x}"


def _parse_megabytes(value: str, label: str) -> Decimal:
    try:
        parsed = Decimal(value.strip())
    except (InvalidOperation, AttributeError):
        raise PreconditionError(f"Could not parse {label}: {value!r}")
    if not parsed.is_finite():
        raise PreconditionError(f"Could not parse {label}: {value!r}")
    return parsed


def compute_free_space(info: DeviceInformation) -> int:
    """
    Free space on the device in bytes.

    free = (deviceSpaceTotal - usedUserSpace - systemReservedSpace) * 1 MiB
    """
    total = _parse_megabytes(info.device_space_total, "device space total")
    used = _parse_megabytes(info.used_user_space, "used user space")
    reserved = _parse_megabytes(info.system_reserved_space, "system reserved space")
    return int((total - used - reserved) * MEGABYTE)


def check_free_space(info: DeviceInformation, archive_size: int) -> int:
    """
    Require room for SPACE_FACTOR copies of the archive.

    Returns:
        Free space in bytes

    Raises:
        PreconditionError: If the archive does not fit
    """
    free_space = compute_free_space(info)
    needed = archive_size * SPACE_FACTOR
    if needed > free_space:
        raise PreconditionError(
            f"Not enough free space for update: {needed} > {free_space}"
        )
    return free_space


def chunk_archive(data: bytes, chunk_size: int) -> List[Tuple[int, bytes]]:
    """
    Split archive bytes into (chunk_no, chunk) tuples.

    Chunk numbers start at 1. Every chunk but the last is exactly
    chunk_size bytes long.
    """
    if chunk_size <= 0:
        raise ValueError(f"Chunk size must be positive, got {chunk_size}")
    return [
        (index + 1, data[offset:offset + chunk_size])
        for index, offset in enumerate(range(0, len(data), chunk_size))
    ]


class UpdateUploader:
    """
    Drives the upload/update sequence over an open transport.

    The transport only needs a ``request(endpoint, method, body=None,
    result=None, timeout=...)`` method, see HarmonyTransport.
    """

    def __init__(
        self,
        transport,
        command_timeout: float = COMMAND_TIMEOUT,
        update_timeout: float = UPDATE_TIMEOUT,
    ):
        self.transport = transport
        self.command_timeout = command_timeout
        self.update_timeout = update_timeout

    def get_device_info(self) -> DeviceInformation:
        """Query the device information snapshot."""
        info = self.transport.request(
            Endpoint.DEVICE_INFO,
            Method.GET,
            result=DeviceInformation,
            timeout=self.command_timeout,
        )
        if info is None:
            raise ResponseDecodeError("Device information response has no body")
        return info

    def require_onboarding(self, info: DeviceInformation) -> None:
        if not info.onboarding_complete:
            raise PreconditionError(
                f"Device has not completed onboarding (onboardingState={info.onboarding_state!r})"
            )

    def delete_file(self, path: str) -> None:
        logger.info(f"Removing stale update file {path}")
        self.transport.request(
            Endpoint.FILESYSTEM,
            Method.DELETE,
            body={"removeFile": path},
            timeout=self.command_timeout,
        )

    def open_upload(self, archive: bytes, file_name: str) -> UploadTransaction:
        """Declare size/CRC32 of the archive and open an upload transaction."""
        crc = crc32_hex(archive)
        logger.info(f"Opening upload of {len(archive)} bytes (crc32 {crc}) to {file_name}")
        tx = self.transport.request(
            Endpoint.FILESYSTEM,
            Method.PUT,
            body={
                "fileSize": len(archive),
                "fileCrc32": crc,
                "fileName": file_name,
            },
            result=UploadTransaction,
            timeout=self.command_timeout,
        )
        if tx is None:
            raise ResponseDecodeError("Upload response has no body")
        logger.debug(f"Upload transaction {tx.tx_id}, chunk size {tx.chunk_size}")
        return tx

    def send_chunks(
        self,
        archive: bytes,
        tx: UploadTransaction,
        progress_cb: Optional[Callable[[int, int], None]] = None,
    ) -> int:
        """
        Send the archive chunk by chunk.

        Progress reports attempted bytes: it advances before each chunk is
        sent, not after the device acknowledges it.

        Args:
            archive: Bytes to upload
            tx: Open upload transaction
            progress_cb: Optional callback(bytes_sent, total_bytes)

        Returns:
            Number of chunks sent
        """
        chunks = chunk_archive(archive, tx.chunk_size)
        total = len(archive)
        sent = 0

        logger.info(f"Sending {total} bytes in {len(chunks)} chunks of {tx.chunk_size} bytes...")

        for chunk_no, chunk in chunks:
            sent += len(chunk)
            if progress_cb:
                progress_cb(sent, total)

            self.transport.request(
                Endpoint.FILESYSTEM,
                Method.PUT,
                body={
                    "txID": tx.tx_id,
                    "chunkNo": chunk_no,
                    "data": base64.b64encode(chunk).decode("ascii"),
                },
                timeout=self.command_timeout,
            )
            logger.debug(
                "Chunk %d/%d acknowledged (%d/%d bytes)",
                chunk_no,
                len(chunks),
                sent,
                total,
            )

        return len(chunks)

    def update_and_reboot(self) -> None:
        """Ask the device to validate the uploaded image and reboot into it."""
        logger.info("Validating image, please wait 1-2 minutes...")
        self.transport.request(
            Endpoint.UPDATE,
            Method.POST,
            body={"update": True, "reboot": True},
            timeout=self.update_timeout,
        )

    def upload_update(
        self,
        archive: bytes,
        info: Optional[DeviceInformation] = None,
        progress_cb: Optional[Callable[[int, int], None]] = None,
    ) -> OperationResult:
        """
        Complete update workflow.

        Args:
            archive: Patched update bundle
            info: Device information already queried this session; queried
                here when omitted
            progress_cb: Optional progress callback(bytes_sent, total_bytes)

        Returns:
            OperationResult describing the finished upload
        """
        if info is None:
            info = self.get_device_info()

        self.require_onboarding(info)
        self.delete_file(info.update_file_path)
        free_space = check_free_space(info, len(archive))

        tx = self.open_upload(archive, info.update_file_path)
        chunk_count = self.send_chunks(archive, tx, progress_cb)
        self.update_and_reboot()
        logger.info("Rebooting, please wait for your device to update")

        return OperationResult.success(
            "upload_update",
            target=info.update_file_path,
            bytes_len=len(archive),
            hashes={"crc32": crc32_hex(archive)},
            metadata={
                "chunk_size": tx.chunk_size,
                "chunks": chunk_count,
                "tx_id": tx.tx_id,
                "free_space": free_space,
                "serial_number": info.serial_number,
            },
        )
