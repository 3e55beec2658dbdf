"""
Core workflow actions for Harmony Flasher.

This module exposes the session-level functions the CLI calls. Each one
either returns an OperationResult or raises a FlasherError; nothing is
retried.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from harmony_flasher.archive_patcher import md5_hex, patch_update_archive
from harmony_flasher.config import DEFAULT_CONFIG, FlasherConfig
from harmony_flasher.discovery import find_device_port
from harmony_flasher.errors import PreconditionError, ReleaseError
from harmony_flasher.protocol.messages import DeviceInformation
from harmony_flasher.protocol.serial_transport import HarmonyTransport
from harmony_flasher.protocol.update_protocol import UpdateUploader
from harmony_flasher.release import ReleaseFetcher

from .results import OperationResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, Optional[int]], None]


def read_custom_os(os_path: str) -> bytes:
    """
    Read the replacement OS image.

    Raises:
        PreconditionError: If the file does not exist or cannot be read
    """
    path = Path(os_path)
    if not path.exists():
        raise PreconditionError(f"Custom OS file does not exist: {os_path}")
    try:
        return path.read_bytes()
    except OSError as e:
        raise PreconditionError(f"Could not read custom OS file: {e}")


def open_transport(config: FlasherConfig) -> HarmonyTransport:
    """Build an unopened transport for the configured or discovered port."""
    port = config.port or find_device_port(config.vendor_id, config.product_id)
    return HarmonyTransport(port=port, baudrate=config.baudrate)


def query_device_info(config: FlasherConfig = DEFAULT_CONFIG) -> DeviceInformation:
    """Open the device, read its information snapshot and close it again."""
    with open_transport(config) as transport:
        uploader = UpdateUploader(
            transport,
            command_timeout=config.command_timeout,
            update_timeout=config.update_timeout,
        )
        return uploader.get_device_info()


def build_update_bundle(
    os_bin: bytes,
    config: FlasherConfig,
    fetcher: Optional[ReleaseFetcher] = None,
    progress_cb: Optional[ProgressCallback] = None,
) -> Tuple[bytes, List[str]]:
    """
    Fetch (or reuse) the vendor bundle and patch os_bin into it.

    Returns:
        (patched bundle, warnings for the session result)
    """
    fetcher = fetcher or ReleaseFetcher(config.release_url, timeout=config.http_timeout)
    release = fetcher.latest_release()

    download_cb = None
    if progress_cb:
        def download_cb(done: int, total: Optional[int]) -> None:
            progress_cb("download", done, total)

    warnings = []
    if fetcher.cached_path(release, config.cache_dir).exists():
        warnings.append(
            f"Reused cached {release.file.name} without an integrity check"
        )

    bundle_path = fetcher.ensure_release_file(release, config.cache_dir, download_cb)
    try:
        original = bundle_path.read_bytes()
    except OSError as e:
        raise ReleaseError(f"Could not read update file: {e}")

    logger.info(f"Patching {bundle_path.name} with custom OS ({len(os_bin):,} bytes)")
    return patch_update_archive(original, os_bin), warnings


def flash_custom_os(
    os_path: str,
    config: FlasherConfig = DEFAULT_CONFIG,
    fetcher: Optional[ReleaseFetcher] = None,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Complete flash workflow: device info → fetch → patch → upload → reboot.

    Args:
        os_path: Path to the replacement OS image
        config: Session configuration
        fetcher: Release fetcher (a default one is built from config)
        progress_cb: Optional callback(step_name, done, total); step_name is
            "download" or "upload"

    Returns:
        OperationResult for the finished upload
    """
    os_bin = read_custom_os(os_path)

    with open_transport(config) as transport:
        uploader = UpdateUploader(
            transport,
            command_timeout=config.command_timeout,
            update_timeout=config.update_timeout,
        )
        info = uploader.get_device_info()
        logger.info(
            f"Device {info.serial_number or '?'} running {info.version or '?'} "
            f"(onboarding state {info.onboarding_state})"
        )

        update, warnings = build_update_bundle(os_bin, config, fetcher, progress_cb)

        upload_cb = None
        if progress_cb:
            def upload_cb(done: int, total: int) -> None:
                progress_cb("upload", done, total)

        result = uploader.upload_update(update, info=info, progress_cb=upload_cb)

    result.operation = "flash_custom_os"
    for warning in warnings:
        result.add_warning(warning)
    result.hashes["os_md5"] = md5_hex(os_bin)
    return result


def patch_offline(os_path: str, bundle_path: str, output_path: str) -> OperationResult:
    """
    Patch a custom OS into a local vendor bundle (no device, no network).

    Args:
        os_path: Path to the replacement OS image
        bundle_path: Path to the vendor update bundle
        output_path: Where to write the patched bundle

    Returns:
        OperationResult with patch status
    """
    os_bin = read_custom_os(os_path)

    source = Path(bundle_path)
    if not source.exists():
        raise PreconditionError(f"Update bundle not found: {bundle_path}")
    try:
        original = source.read_bytes()
    except OSError as e:
        raise PreconditionError(f"Could not read update bundle: {e}")

    patched = patch_update_archive(original, os_bin)
    try:
        Path(output_path).write_bytes(patched)
    except OSError as e:
        raise PreconditionError(f"Could not write patched bundle {output_path}: {e}")
    logger.info(f"Wrote patched bundle to {output_path}")

    return OperationResult.success(
        "patch_offline",
        target=str(output_path),
        bytes_len=len(patched),
        hashes={"os_md5": md5_hex(os_bin)},
        metadata={"source": str(source), "source_bytes": len(original)},
    )
