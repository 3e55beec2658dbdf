"""Session configuration shared by the CLI and the core workflow."""

from dataclasses import dataclass, replace
from pathlib import Path

# USB identifiers of the device in its normal (non-recovery) mode
VENDOR_ID = 0x3310
PRODUCT_ID = 0x0300

# The link is USB CDC; the device expects this nominal rate
BAUD_RATE = 1200

COMMAND_TIMEOUT = 5.0
# Image validation before reboot takes one to two minutes on-device
UPDATE_TIMEOUT = 10 * 60.0

RELEASE_URL = (
    "https://api.center.mudita.com/.netlify/functions/v2-get-release"
    "?product=BellHybrid&environment=production&version=latest"
)
HTTP_TIMEOUT = 30.0


@dataclass(frozen=True)
class FlasherConfig:
    """
    Settings for one flashing session.

    Attributes:
        vendor_id: USB vendor ID used to find the device
        product_id: USB product ID used to find the device
        port: Explicit serial port; skips discovery when set
        baudrate: Serial baud rate
        command_timeout: Read timeout (seconds) for ordinary requests
        update_timeout: Read timeout (seconds) for update-and-reboot
        release_url: Vendor release metadata endpoint
        cache_dir: Directory holding the downloaded vendor bundle
        http_timeout: Timeout (seconds) for release HTTP requests
    """
    vendor_id: int = VENDOR_ID
    product_id: int = PRODUCT_ID
    port: str = ""
    baudrate: int = BAUD_RATE
    command_timeout: float = COMMAND_TIMEOUT
    update_timeout: float = UPDATE_TIMEOUT
    release_url: str = RELEASE_URL
    cache_dir: Path = Path(".")
    http_timeout: float = HTTP_TIMEOUT

    def with_overrides(self, **overrides) -> "FlasherConfig":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)


DEFAULT_CONFIG = FlasherConfig()
