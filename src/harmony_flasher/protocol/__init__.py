"""Device protocol layer - framed transport, messages and update upload."""

from .messages import (
    Endpoint,
    Method,
    Request,
    Response,
    DeviceInformation,
    UploadTransaction,
)
from .serial_transport import (
    HarmonyTransport,
    encode_header,
    decode_header,
    encode_frame,
    HEADER_SIZE,
)
from .update_protocol import (
    UpdateUploader,
    chunk_archive,
    compute_free_space,
    check_free_space,
    crc32_hex,
)

__all__ = [
    # Messages
    "Endpoint",
    "Method",
    "Request",
    "Response",
    "DeviceInformation",
    "UploadTransaction",
    # Transport
    "HarmonyTransport",
    "encode_header",
    "decode_header",
    "encode_frame",
    "HEADER_SIZE",
    # Update protocol
    "UpdateUploader",
    "chunk_archive",
    "compute_free_space",
    "check_free_space",
    "crc32_hex",
]
