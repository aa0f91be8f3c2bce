"""Shared fixtures: an in-memory SensorTransport standing in for bleak."""

import asyncio

import pytest

from ble_device import Connection, ConnectionState, DeviceDescriptor
from ble_utils import (
    HUMID_CHARACTERISTIC_UUID,
    SERVICE_UUID,
    TEMP_CHARACTERISTIC_UUID,
    SensorTransport,
)
from settings import Settings


def payload(raw: int) -> bytes:
    """Build a characteristic buffer carrying raw (hundredths) at bytes 1-2."""
    return bytes([0x00, raw & 0xFF, (raw >> 8) & 0xFF])


async def wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class FakeTransport(SensorTransport):
    """
    Scripted transport.

    payloads maps a characteristic UUID to a list of items returned by
    successive reads; the last item repeats. Exception instances are raised.
    """

    def __init__(self, devices=None, payloads=None):
        self.devices = list(devices or [])
        self.payloads = payloads or {
            TEMP_CHARACTERISTIC_UUID: [payload(2400)],
            HUMID_CHARACTERISTIC_UUID: [payload(5000)],
        }
        self.services = {SERVICE_UUID: {TEMP_CHARACTERISTIC_UUID, HUMID_CHARACTERISTIC_UUID}}
        self.scan_error = None
        self.connect_error = None
        self.read_delay = 0.0

        self.scans_started = 0
        self.scans_stopped = 0
        self.connect_calls = 0
        self.reads = []
        self.active_reads = 0
        self.max_active_reads = 0
        self.disconnected = []
        self.connection = None
        self._disconnected_callback = None

    async def scan(self, service_uuids=None, allow_duplicates=False):
        if self.scan_error is not None:
            raise self.scan_error
        self.scans_started += 1
        try:
            for device in self.devices:
                yield device
            await asyncio.Event().wait()
        finally:
            self.scans_stopped += 1

    async def connect(self, device, disconnected_callback=None):
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        connection = Connection(device, client=object())
        connection.state = ConnectionState.CONNECTED
        self.connection = connection
        self._disconnected_callback = disconnected_callback
        return connection

    async def discover_services(self, connection):
        connection.services = {uuid: set(chars) for uuid, chars in self.services.items()}
        return connection.services

    async def read_characteristic(self, connection, service_uuid, characteristic_uuid):
        self.reads.append(characteristic_uuid)
        self.active_reads += 1
        self.max_active_reads = max(self.max_active_reads, self.active_reads)
        try:
            if self.read_delay:
                await asyncio.sleep(self.read_delay)
            items = self.payloads[characteristic_uuid]
            item = items.pop(0) if len(items) > 1 else items[0]
        finally:
            self.active_reads -= 1
        if isinstance(item, Exception):
            raise item
        return item

    async def disconnect(self, connection):
        self.disconnected.append(connection)
        connection.state = ConnectionState.DISCONNECTED

    def drop_link(self):
        """Simulate the peripheral going away."""
        self.connection.state = ConnectionState.DISCONNECTED
        if self._disconnected_callback is not None:
            self._disconnected_callback(self.connection)


SENSOR = DeviceDescriptor("AA:BB:CC:DD:EE:01", "Dawg Sensor")
OTHER = DeviceDescriptor("AA:BB:CC:DD:EE:02", "Thermo 2")


@pytest.fixture
def transport():
    return FakeTransport(devices=[SENSOR, OTHER])


@pytest.fixture
def settings():
    return Settings(scan_timeout=0.1, poll_interval=60.0)


@pytest.fixture
def fast_settings():
    return Settings(scan_timeout=0.1, poll_interval=0.01)

