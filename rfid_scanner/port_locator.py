"""
Serial port discovery: enumerate attached ports and pick the one that looks
like the configured device.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import serial.tools.list_ports

@dataclass(frozen=True)
class PortDescriptor:
    """
    One serial port as reported by the OS

    Attributes:
        path: Device path (/dev/ttyUSB0, COM3, ...)
        vendor_id: USB vendor id as 4-digit lowercase hex, if known
        product_id: USB product id as 4-digit lowercase hex, if known
        manufacturer: USB manufacturer string, if known
        product: USB product string, if known
        description: Human readable description, if known
        serial_number: USB serial number, if known
    """
    path: str
    vendor_id: Optional[str] = None
    product_id: Optional[str] = None
    manufacturer: Optional[str] = None
    product: Optional[str] = None
    description: Optional[str] = None
    serial_number: Optional[str] = None

    @classmethod
    def from_port_info(cls, info) -> "PortDescriptor":
        """Build from a ``serial.tools.list_ports_common.ListPortInfo``"""
        vid = getattr(info, 'vid', None)
        pid = getattr(info, 'pid', None)
        return cls(
            path=info.device,
            vendor_id=f"{vid:04x}" if vid is not None else None,
            product_id=f"{pid:04x}" if pid is not None else None,
            manufacturer=getattr(info, 'manufacturer', None),
            product=getattr(info, 'product', None),
            description=getattr(info, 'description', None),
            serial_number=getattr(info, 'serial_number', None),
        )

@dataclass(frozen=True)
class DeviceProfile:
    """
    Identification heuristics for one device family

    Attributes:
        name: Profile key used in configuration
        baud_rate: Fixed baud rate of the device family
        usb_ids: (vendor_id, product_id) pairs; product_id None accepts any product of the vendor
        tokens: Field name -> substrings that identify the device in that field
    """
    name: str
    baud_rate: int
    usb_ids: Tuple[Tuple[str, Optional[str]], ...] = ()
    tokens: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def matches_ids(self, port: PortDescriptor) -> bool:
        if not port.vendor_id:
            return False
        vendor = port.vendor_id.lower()
        product = (port.product_id or '').lower()
        for vid, pid in self.usb_ids:
            if vid.lower() != vendor:
                continue
            if pid is None or pid.lower() == product:
                return True
        return False

    def matches_tokens(self, port: PortDescriptor) -> bool:
        for field_name, needles in self.tokens.items():
            value = getattr(port, field_name, None)
            if not value:
                continue
            if any(needle in value for needle in needles):
                return True
        return False

RFID_READER = DeviceProfile(
    name='rfid_reader',
    baud_rate=115200,
    usb_ids=(('0403', None),),  # FTDI USB-RS232 bridge
    tokens={
        'manufacturer': ('FTDI',),
        'product': ('RS232',),
    },
)

ARDUINO_LEONARDO = DeviceProfile(
    name='arduino_leonardo',
    baud_rate=9600,
    usb_ids=(('2341', '8036'),),
    tokens={
        'manufacturer': ('Arduino',),
        'product': ('Leonardo',),
        'description': ('Arduino',),
    },
)

DEVICE_PROFILES = {profile.name: profile for profile in (RFID_READER, ARDUINO_LEONARDO)}

def get_profile(name: str) -> DeviceProfile:
    """Look up a device profile by name; raises KeyError for unknown names"""
    try:
        return DEVICE_PROFILES[name]
    except KeyError:
        raise KeyError(f"Unknown device profile '{name}'. Known: {sorted(DEVICE_PROFILES)}") from None

def list_serial_ports() -> List[PortDescriptor]:
    """Enumerate the serial ports currently attached"""
    return [PortDescriptor.from_port_info(info) for info in serial.tools.list_ports.comports()]

def locate(ports: Iterable[PortDescriptor], profile: DeviceProfile) -> Optional[PortDescriptor]:
    """
    Select the port that belongs to the device described by profile.

    USB id matches win over any descriptive-string match, regardless of the
    order the OS lists the ports in.

    Args:
        ports: Snapshot of the OS port list
        profile: Device family to look for

    Returns:
        First matching PortDescriptor, or None
    """
    ports = list(ports)
    for port in ports:
        if profile.matches_ids(port):
            return port
    for port in ports:
        if profile.matches_tokens(port):
            return port
    return None
