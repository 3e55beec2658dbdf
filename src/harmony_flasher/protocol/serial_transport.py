"""
Harmony Serial Transport Layer

Handles framed JSON request/response exchanges with the device over its
USB-serial link.

Frame format (both directions):
    [ '#' | payload length, 9 ASCII digits, zero-padded | JSON payload ]

There is no trailing delimiter, so the receiver must read the 10-byte header
first and then exactly the announced number of payload bytes. Every call is
one write followed by one read; nothing is retried or buffered across calls.
"""

import logging
import time
from typing import Any, Optional, Type, TypeVar

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

from harmony_flasher.config import BAUD_RATE, COMMAND_TIMEOUT
from harmony_flasher.errors import (
    DeviceStatusError,
    FramingError,
    TransportError,
)
from harmony_flasher.protocol.messages import HTTP_NO_CONTENT, Request, Response

logger = logging.getLogger(__name__)

FRAME_MARKER = b"#"
LENGTH_DIGITS = 9
HEADER_SIZE = len(FRAME_MARKER) + LENGTH_DIGITS
MAX_PAYLOAD = 10 ** LENGTH_DIGITS - 1

# Bytes of each frame shown in debug logs
LOG_PREVIEW = 64

T = TypeVar("T")


def encode_header(length: int) -> bytes:
    """
    Build the 10-byte frame header for a payload of ``length`` bytes.

    Raises:
        ValueError: If length is negative or does not fit in 9 digits
    """
    if length < 0 or length > MAX_PAYLOAD:
        raise ValueError(f"Payload length {length} does not fit a {LENGTH_DIGITS}-digit header")
    return FRAME_MARKER + f"{length:0{LENGTH_DIGITS}d}".encode("ascii")


def decode_header(header: bytes) -> int:
    """
    Parse a 10-byte frame header and return the payload length.

    Raises:
        FramingError: If the marker is wrong or the length is not decimal
    """
    if len(header) != HEADER_SIZE:
        raise FramingError(
            f"invalid response header: expected {HEADER_SIZE} bytes, got {len(header)}: {header!r}"
        )
    if header[:1] != FRAME_MARKER:
        raise FramingError(f"invalid response: {header.decode('latin-1')}")

    digits = header[1:]
    if not digits.isdigit():
        raise FramingError(f"invalid response length: {digits.decode('latin-1')}")
    return int(digits)


def encode_frame(payload: bytes) -> bytes:
    """Prefix a JSON payload with its frame header."""
    return encode_header(len(payload)) + payload


def _preview(data: bytes) -> str:
    text = data[:LOG_PREVIEW].decode("utf-8", errors="replace")
    return text + ("..." if len(data) > LOG_PREVIEW else "")


class HarmonyTransport:
    """
    Framed JSON transport for the Harmony device.

    Handles:
    - Serial port management
    - Frame encoding/decoding
    - Per-call read timeouts
    - Status checking and body decoding

    The transport can also wrap an already-open stream (any object with
    ``read``, ``write`` and a settable ``timeout``), which is how tests drive
    it.

    Example:
        with HarmonyTransport(port="/dev/ttyACM0") as transport:
            info = transport.request(1, 1, result=DeviceInformation)
    """

    def __init__(
        self,
        port: str = "",
        baudrate: int = BAUD_RATE,
        stream: Optional[Any] = None,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyACM0", "COM3")
            baudrate: Serial baud rate (default 1200)
            stream: Already-open duplex stream to use instead of opening port
        """
        self.port = port
        self.baudrate = baudrate
        self.ser: Optional[Any] = stream
        self._owns_stream = stream is None

    def open(self) -> None:
        """
        Open serial port.

        Raises:
            TransportError: If port cannot be opened
        """
        if self.ser is not None:
            return
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=8,
                parity='N',
                stopbits=1,
                timeout=COMMAND_TIMEOUT,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()
            logger.debug(f"Opened {self.port} at {self.baudrate} bps")
        except serial.SerialException as e:
            self.ser = None
            raise TransportError(f"Could not open port {self.port}: {e}")

    def close(self) -> None:
        """Close serial port if this transport opened it."""
        if self.ser is None:
            return
        if self._owns_stream and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")
        self.ser = None

    def __enter__(self) -> "HarmonyTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_stream(self) -> Any:
        if self.ser is None:
            raise TransportError("Serial port not open")
        return self.ser

    def send_frame(self, payload: bytes) -> None:
        """
        Write one framed payload.

        Raises:
            TransportError: If write fails
        """
        ser = self._require_stream()
        frame = encode_frame(payload)
        try:
            written = ser.write(frame)
        except serial.SerialException as e:
            raise TransportError(f"Write error: {e}")
        if written is not None and written != len(frame):
            raise TransportError(f"Incomplete write: sent {written}/{len(frame)} bytes")
        logger.debug(f">>> {_preview(payload)}")

    def _read_exact(self, length: int, deadline: float) -> bytes:
        """Read exactly ``length`` bytes before ``deadline`` (monotonic clock)."""
        ser = self._require_stream()
        out = bytearray()
        while len(out) < length:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise FramingError(
                    f"Read timeout: got {len(out)}/{length} bytes"
                )
            ser.timeout = remaining
            try:
                chunk = ser.read(length - len(out))
            except serial.SerialException as e:
                raise TransportError(f"Read error: {e}")
            if chunk:
                out.extend(chunk)
        return bytes(out)

    def recv_frame(self, timeout: float = COMMAND_TIMEOUT) -> bytes:
        """
        Read one framed payload.

        Args:
            timeout: Seconds allowed for the whole frame (header and payload)

        Raises:
            FramingError: On a malformed header or timeout
        """
        deadline = time.monotonic() + timeout
        header = self._read_exact(HEADER_SIZE, deadline)
        length = decode_header(header)
        payload = self._read_exact(length, deadline)
        logger.debug(f"<<< {_preview(payload)}")
        return payload

    def exchange(self, request: Request, timeout: float = COMMAND_TIMEOUT) -> Response:
        """Send one request and return the decoded (unchecked) response."""
        self.send_frame(request.encode())
        return Response.decode(self.recv_frame(timeout))

    def request(
        self,
        endpoint: int,
        method: int,
        body: Optional[Any] = None,
        result: Optional[Type[T]] = None,
        timeout: float = COMMAND_TIMEOUT,
    ) -> Optional[T]:
        """
        Perform one request/response exchange.

        Args:
            endpoint: Device endpoint
            method: Operation code
            body: Optional JSON-serializable request body
            result: Shape with a ``from_body`` classmethod, or None when no
                result is expected
            timeout: Read timeout in seconds

        Returns:
            Decoded body, or None for status 204, an empty body, or when no
            result was requested

        Raises:
            DeviceStatusError: If status is outside 200-299
            ResponseDecodeError: If the body does not match ``result``
            FramingError: If the response frame cannot be read
        """
        response = self.exchange(Request(endpoint, method, body), timeout=timeout)

        if not response.ok:
            raise DeviceStatusError(response.status, endpoint=int(endpoint))
        if response.status == HTTP_NO_CONTENT or result is None or not response.has_body:
            return None
        return result.from_body(response.body)
