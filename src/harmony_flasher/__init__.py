"""
Harmony Flasher - custom OS installer for the Mudita Harmony

Patches the official update bundle with a custom OS image and uploads it over
the device's USB-serial update protocol.
"""

__version__ = "0.1.0"

from harmony_flasher.protocol import HarmonyTransport, UpdateUploader
from harmony_flasher.archive_patcher import patch_update_archive

__all__ = [
    "HarmonyTransport",
    "UpdateUploader",
    "patch_update_archive",
    "__version__",
]
