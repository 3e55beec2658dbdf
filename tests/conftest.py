"""Shared fakes for protocol tests."""

import json
from typing import Any, List, Optional

import pytest

from harmony_flasher.protocol.serial_transport import HEADER_SIZE, encode_frame


def response_frame(status: int, body: Any = None, endpoint: int = 1, uuid: int = 1) -> bytes:
    """Encode a device response frame."""
    payload = {"endpoint": endpoint, "status": status, "uuid": uuid}
    if body is not None:
        payload["body"] = body
    return encode_frame(json.dumps(payload).encode("utf-8"))


def decode_request_frames(frames: List[bytes]) -> List[dict]:
    """Decode frames written by the transport back into request dicts."""
    requests = []
    for frame in frames:
        assert frame[:1] == b"#"
        length = int(frame[1:HEADER_SIZE])
        payload = frame[HEADER_SIZE:]
        assert len(payload) == length
        requests.append(json.loads(payload))
    return requests


class FakeSerial:
    """
    In-memory duplex stream.

    Each write releases the next scripted reply into the receive buffer, so
    a read before the matching write finds nothing. ``max_read`` limits how
    many bytes one read returns.
    """

    def __init__(self, replies: Optional[List[bytes]] = None, max_read: Optional[int] = None):
        self.replies = list(replies or [])
        self.rx = bytearray()
        self.written: List[bytes] = []
        self.max_read = max_read
        self.timeout = None
        self.timeouts: List[float] = []
        self.is_open = True

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        if self.replies:
            self.rx.extend(self.replies.pop(0))
        return len(data)

    def read(self, size: int) -> bytes:
        self.timeouts.append(self.timeout)
        take = size if self.max_read is None else min(size, self.max_read)
        out = bytes(self.rx[:take])
        del self.rx[:take]
        return out

    def close(self) -> None:
        self.is_open = False


class FakeTransport:
    """Records request() calls and answers them from a handler."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def request(self, endpoint, method, body=None, result=None, timeout=5.0):
        self.calls.append(
            {
                "endpoint": int(endpoint),
                "method": int(method),
                "body": body,
                "timeout": timeout,
            }
        )
        value = self.handler(int(endpoint), int(method), body)
        if value is None or result is None:
            return None
        return result.from_body(value)


DEVICE_INFO_BODY = {
    "backupFilePath": "/user/temp/backup",
    "batteryLevel": "87",
    "batteryState": "1",
    "caseColour": "gray",
    "currentRTCTime": "1700000000",
    "deviceSpaceTotal": "1000",
    "gitBranch": "master",
    "gitRevision": "abc123",
    "mtpPath": "/user/media/app/music_player",
    "onboardingState": "1",
    "recoveryStatusFilePath": "/user/temp/recovery_status.json",
    "serialNumber": "0123456789ABCD",
    "syncFilePath": "/user/temp/sync",
    "systemReservedSpace": "50",
    "updateFilePath": "/user/temp/update.tar",
    "usedUserSpace": "100",
    "version": "2.7.0",
}


@pytest.fixture
def device_info_body():
    return dict(DEVICE_INFO_BODY)
