"""USB serial port discovery for the Harmony device."""

import logging
from typing import List

import serial.tools.list_ports

from harmony_flasher.config import PRODUCT_ID, VENDOR_ID
from harmony_flasher.errors import DeviceNotFoundError

logger = logging.getLogger(__name__)


def list_serial_ports() -> List:
    """Return all serial ports known to pyserial."""
    return list(serial.tools.list_ports.comports())


def find_device_port(vendor_id: int = VENDOR_ID, product_id: int = PRODUCT_ID) -> str:
    """
    Find the serial device path of the connected Harmony.

    Raises:
        DeviceNotFoundError: If no USB port matches vendor_id/product_id
    """
    matches = [
        port for port in list_serial_ports()
        if port.vid == vendor_id and port.pid == product_id
    ]
    if not matches:
        raise DeviceNotFoundError(
            f"Could not find Harmony device (USB {vendor_id:04x}:{product_id:04x})"
        )
    if len(matches) > 1:
        logger.warning(
            f"{len(matches)} matching devices found, using {matches[-1].device}"
        )
    logger.debug(f"Found device on {matches[-1].device}")
    return matches[-1].device
