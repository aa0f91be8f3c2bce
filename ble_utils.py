# Author: Omi Shrestha

import asyncio
from abc import ABC, abstractmethod

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from ble_device import Connection, ConnectionState, DeviceDescriptor
from errors import (
    SensorConnectionError,
    SensorDiscoveryError,
    SensorReadError,
    SensorScanError,
)

# Environmental sensor service UUIDs
SERVICE_UUID = "12630000-cc25-497d-9854-9b6c02c77054"
TEMP_CHARACTERISTIC_UUID = "12630001-cc25-497d-9854-9b6c02c77054"   # Temperature, 0.01 °C
HUMID_CHARACTERISTIC_UUID = "12630003-cc25-497d-9854-9b6c02c77054"  # Relative humidity, 0.01 %

# Errors bleak and the OS BLE stack may raise for a failed operation
TRANSPORT_ERRORS = (BleakError, OSError, EOFError, asyncio.TimeoutError)


class SensorTransport(ABC):
    """
    Capabilities the acquisition loop needs from a wireless transport.

    Every failure is reported through the errors module taxonomy so the
    caller never has to know which BLE stack is underneath.
    """

    @abstractmethod
    def scan(self, service_uuids=None, allow_duplicates=False):
        """
        Discover devices as they appear.

        Returns an async iterator of DeviceDescriptor that runs until the
        consumer stops iterating. Raises SensorScanError.
        """

    @abstractmethod
    async def connect(self, device: DeviceDescriptor, disconnected_callback=None) -> Connection:
        """
        Open a session. disconnected_callback(connection) is invoked when the
        link drops. Raises SensorConnectionError.
        """

    @abstractmethod
    async def discover_services(self, connection: Connection) -> dict:
        """Return {service uuid: {characteristic uuids}}. Raises SensorDiscoveryError."""

    @abstractmethod
    async def read_characteristic(self, connection: Connection, service_uuid, characteristic_uuid) -> bytes:
        """Read a characteristic value. Raises SensorReadError."""

    @abstractmethod
    async def disconnect(self, connection: Connection):
        """Close the session. Never raises."""


class BleakTransport(SensorTransport):
    """SensorTransport backed by bleak."""

    def __init__(self, connect_timeout=10.0):
        self.connect_timeout = connect_timeout

    async def scan(self, service_uuids=None, allow_duplicates=False):
        """
        Scan for BLE devices until the consumer stops iterating.

        Args:
            service_uuids: Optional list of advertised service UUIDs to filter on
            allow_duplicates: Yield a device again every time it advertises
        """
        queue = asyncio.Queue()
        seen_addresses = set()
        named_addresses = set()

        def detection_callback(device, adv_data):
            """Queue each device as it is detected"""
            name = device.name or adv_data.local_name
            # A name may only arrive later in a scan response; report the device again then
            if not allow_duplicates:
                if device.address in named_addresses:
                    return
                if not name and device.address in seen_addresses:
                    return
            seen_addresses.add(device.address)
            if name:
                named_addresses.add(device.address)
            queue.put_nowait(DeviceDescriptor(device.address, name))

        scanner = BleakScanner(detection_callback=detection_callback, service_uuids=service_uuids)
        try:
            await scanner.start()
        except TRANSPORT_ERRORS as e:
            raise SensorScanError(f"Could not start scan: {e}") from e
        print("[SCAN] Scanning for BLE devices...")

        try:
            while True:
                yield await queue.get()
        finally:
            try:
                await scanner.stop()
            except TRANSPORT_ERRORS as e:
                print(f"[SCAN] Stop error: {e}")
            print("[SCAN] Scan stopped")

    async def connect(self, device: DeviceDescriptor, disconnected_callback=None) -> Connection:
        connection = Connection(device)

        def on_disconnect(client):
            connection.state = ConnectionState.DISCONNECTED
            print(f"[BLE] {device.name} disconnected")
            if disconnected_callback is not None:
                disconnected_callback(connection)

        connection.client = BleakClient(
            device.identifier,
            disconnected_callback=on_disconnect,
            timeout=self.connect_timeout,
        )
        try:
            await connection.client.connect()
        except TRANSPORT_ERRORS as e:
            connection.state = ConnectionState.FAILED
            raise SensorConnectionError(f"Could not connect to {device.name}: {e}") from e

        connection.state = ConnectionState.CONNECTED
        print(f"[BLE] Connected to {device.name} ({device.identifier})")
        return connection

    async def discover_services(self, connection: Connection) -> dict:
        client = connection.client
        try:
            services = client.services
            discovered = {
                service.uuid.lower(): {char.uuid.lower() for char in service.characteristics}
                for service in services
            }
        except (BleakError, AttributeError) as e:
            raise SensorDiscoveryError(f"Service discovery failed: {e}") from e

        if not discovered:
            raise SensorDiscoveryError(f"No services discovered on {connection.device.name}")

        connection.services = discovered
        for service_uuid, characteristics in discovered.items():
            print(f"[BLE]   Service: {service_uuid} ({len(characteristics)} characteristic(s))")
        return discovered

    async def read_characteristic(self, connection: Connection, service_uuid, characteristic_uuid) -> bytes:
        client = connection.client
        if client is None or not client.is_connected:
            raise SensorReadError(f"{connection.device.name} is not connected")

        try:
            service = client.services.get_service(service_uuid)
            characteristic = service.get_characteristic(characteristic_uuid) if service else None
            if characteristic is None:
                raise SensorReadError(f"Characteristic {characteristic_uuid} not found")
            data = await client.read_gatt_char(characteristic)
        except TRANSPORT_ERRORS as e:
            raise SensorReadError(f"Read of {characteristic_uuid} failed: {e}") from e
        return bytes(data)

    async def disconnect(self, connection: Connection):
        """
        Safely disconnect from a BLE device.
        """
        client = connection.client
        if client:
            try:
                if client.is_connected:
                    await client.disconnect()
                    print(f"[BLE] Disconnected from {connection.device.name}.")
            except EOFError:
                # D-Bus connection already closed, ignore
                pass
            except TRANSPORT_ERRORS as e:
                print(f"[BLE] Disconnect error: {e}")
        connection.state = ConnectionState.DISCONNECTED
