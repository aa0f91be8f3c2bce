# Author: Omi Shrestha

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class DeviceDescriptor:
    """A named peripheral found while scanning."""
    identifier: str     # BLE address (stable per peripheral)
    name: str

    def to_dict(self) -> dict:
        return {"identifier": self.identifier, "name": self.name}


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class Connection:
    """Live transport session with one peripheral."""

    def __init__(self, device: DeviceDescriptor, client=None):
        self.device = device                        # Descriptor this session belongs to
        self.client = client                        # Transport handle (BleakClient for BLE)
        self.state = ConnectionState.CONNECTING     # Connection status
        self.services = {}                          # service uuid -> set of characteristic uuids

    @property
    def is_connected(self):
        return self.state is ConnectionState.CONNECTED

    def has_characteristic(self, service_uuid, characteristic_uuid):
        return characteristic_uuid.lower() in self.services.get(service_uuid.lower(), set())

    def __repr__(self):
        return f"Connection({self.device.name!r}, {self.device.identifier}, {self.state.value})"
