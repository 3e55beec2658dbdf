"""
Device message types for the Harmony serial protocol.

Requests address a device-side operation with an (endpoint, method) pair,
much like a service/RPC-code pair. Response bodies are plain JSON; the
dataclasses here validate them at the decode boundary so the rest of the
code works with typed values.
"""

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional

from harmony_flasher.errors import ResponseDecodeError


class Endpoint(IntEnum):
    """Device-side channel identifiers."""
    DEVICE_INFO = 1
    UPDATE = 2
    FILESYSTEM = 3


class Method(IntEnum):
    """Operation codes, HTTP-verb style."""
    GET = 1
    POST = 2
    PUT = 3
    DELETE = 4


HTTP_NO_CONTENT = 204

# onboardingState value meaning provisioning is complete
ONBOARDING_COMPLETE = "1"


@dataclass(frozen=True)
class Request:
    """Single request sent to the device."""
    endpoint: int
    method: int
    body: Optional[Any] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "endpoint": int(self.endpoint),
            "method": int(self.method),
        }
        if self.body is not None:
            payload["body"] = self.body
        return payload

    def encode(self) -> bytes:
        """Serialize as compact JSON with sorted keys."""
        return json.dumps(
            self.to_payload(),
            separators=(",", ":"),
            sort_keys=True,
        ).encode("utf-8")


@dataclass(frozen=True)
class Response:
    """Decoded response envelope."""
    status: int
    body: Any = None
    endpoint: int = 0
    uuid: int = 0

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299

    @property
    def has_body(self) -> bool:
        return self.body not in (None, "", {}, [])

    @classmethod
    def decode(cls, payload: bytes) -> "Response":
        """
        Parse a raw inbound JSON payload.

        Raises:
            ResponseDecodeError: If the payload is not a JSON object with an
                integer status
        """
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ResponseDecodeError(f"Invalid response JSON: {e}")

        if not isinstance(data, dict):
            raise ResponseDecodeError(f"Response is not an object: {type(data).__name__}")

        status = data.get("status")
        if not isinstance(status, int) or isinstance(status, bool):
            raise ResponseDecodeError(f"Response has no integer status: {status!r}")

        return cls(
            status=status,
            body=data.get("body"),
            endpoint=_optional_int(data, "endpoint"),
            uuid=_optional_int(data, "uuid"),
        )


def _optional_int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key, 0)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ResponseDecodeError(f"Response field {key!r} is not an integer: {value!r}")
    return value


def _require_object(body: Any, shape: str) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise ResponseDecodeError(
            f"{shape}: expected a JSON object, got {type(body).__name__}"
        )
    return body


# JSON key -> attribute name
_DEVICE_INFO_FIELDS = {
    "backupFilePath": "backup_file_path",
    "batteryLevel": "battery_level",
    "batteryState": "battery_state",
    "caseColour": "case_colour",
    "currentRTCTime": "current_rtc_time",
    "deviceSpaceTotal": "device_space_total",
    "gitBranch": "git_branch",
    "gitRevision": "git_revision",
    "mtpPath": "mtp_path",
    "onboardingState": "onboarding_state",
    "recoveryStatusFilePath": "recovery_status_path",
    "serialNumber": "serial_number",
    "syncFilePath": "sync_file_path",
    "systemReservedSpace": "system_reserved_space",
    "updateFilePath": "update_file_path",
    "usedUserSpace": "used_user_space",
    "version": "version",
}

_DEVICE_INFO_REQUIRED = (
    "deviceSpaceTotal",
    "usedUserSpace",
    "systemReservedSpace",
    "onboardingState",
    "updateFilePath",
)


@dataclass(frozen=True)
class DeviceInformation:
    """
    Device state snapshot returned by the information query.

    Storage sizes are decimal strings in megabytes, exactly as the device
    reports them.
    """
    device_space_total: str
    used_user_space: str
    system_reserved_space: str
    onboarding_state: str
    update_file_path: str
    backup_file_path: str = ""
    battery_level: str = ""
    battery_state: str = ""
    case_colour: str = ""
    current_rtc_time: str = ""
    git_branch: str = ""
    git_revision: str = ""
    mtp_path: str = ""
    recovery_status_path: str = ""
    serial_number: str = ""
    sync_file_path: str = ""
    version: str = ""

    @property
    def onboarding_complete(self) -> bool:
        return self.onboarding_state == ONBOARDING_COMPLETE

    @classmethod
    def from_body(cls, body: Any) -> "DeviceInformation":
        data = _require_object(body, "DeviceInformation")

        missing = [key for key in _DEVICE_INFO_REQUIRED if key not in data]
        if missing:
            raise ResponseDecodeError(
                f"DeviceInformation: missing field(s) {', '.join(missing)}"
            )

        kwargs = {}
        for key, attr in _DEVICE_INFO_FIELDS.items():
            if key not in data:
                continue
            value = data[key]
            if not isinstance(value, str):
                raise ResponseDecodeError(
                    f"DeviceInformation: field {key!r} must be a string, "
                    f"got {type(value).__name__}"
                )
            kwargs[attr] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, str]:
        """Return the wire-format (camelCase) view."""
        return {key: getattr(self, attr) for key, attr in _DEVICE_INFO_FIELDS.items()}


@dataclass(frozen=True)
class UploadTransaction:
    """Upload transaction opened by the device."""
    chunk_size: int
    tx_id: int

    @classmethod
    def from_body(cls, body: Any) -> "UploadTransaction":
        data = _require_object(body, "UploadTransaction")
        chunk_size = data.get("chunkSize")
        tx_id = data.get("txID")
        for key, value in (("chunkSize", chunk_size), ("txID", tx_id)):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ResponseDecodeError(
                    f"UploadTransaction: field {key!r} must be an integer, got {value!r}"
                )
        if chunk_size <= 0:
            raise ResponseDecodeError(f"UploadTransaction: invalid chunk size {chunk_size}")
        return cls(chunk_size=chunk_size, tx_id=tx_id)
