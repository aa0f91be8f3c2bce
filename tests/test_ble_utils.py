"""BleakTransport against mocked bleak objects."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bleak.exc import BleakError

from ble_device import Connection, ConnectionState, DeviceDescriptor
from ble_utils import (
    HUMID_CHARACTERISTIC_UUID,
    SERVICE_UUID,
    TEMP_CHARACTERISTIC_UUID,
    BleakTransport,
)
from errors import (
    SensorConnectionError,
    SensorDiscoveryError,
    SensorReadError,
    SensorScanError,
)

SENSOR = DeviceDescriptor("AA:BB:CC:DD:EE:01", "Dawg Sensor")


def _client(connected=True, characteristic=None):
    service = MagicMock()
    service.get_characteristic.return_value = characteristic
    client = MagicMock()
    client.is_connected = connected
    client.services.get_service.return_value = service
    client.read_gatt_char = AsyncMock(return_value=bytearray(b"\x00\x60\x09"))
    client.disconnect = AsyncMock()
    return client


def _connection(client):
    connection = Connection(SENSOR, client=client)
    connection.state = ConnectionState.CONNECTED
    return connection


@pytest.mark.asyncio
async def test_read_characteristic_returns_bytes():
    characteristic = object()
    client = _client(characteristic=characteristic)

    data = await BleakTransport().read_characteristic(
        _connection(client), SERVICE_UUID, TEMP_CHARACTERISTIC_UUID
    )

    assert data == b"\x00\x60\x09"
    assert isinstance(data, bytes)
    client.services.get_service.assert_called_once_with(SERVICE_UUID)
    client.read_gatt_char.assert_awaited_once_with(characteristic)


@pytest.mark.asyncio
async def test_read_wraps_bleak_errors():
    client = _client(characteristic=object())
    client.read_gatt_char.side_effect = BleakError("Not connected")

    with pytest.raises(SensorReadError, match="Not connected"):
        await BleakTransport().read_characteristic(
            _connection(client), SERVICE_UUID, TEMP_CHARACTERISTIC_UUID
        )


@pytest.mark.asyncio
async def test_read_missing_characteristic():
    client = _client(characteristic=None)

    with pytest.raises(SensorReadError, match="not found"):
        await BleakTransport().read_characteristic(
            _connection(client), SERVICE_UUID, HUMID_CHARACTERISTIC_UUID
        )
    client.read_gatt_char.assert_not_awaited()


@pytest.mark.asyncio
async def test_read_when_disconnected():
    client = _client(connected=False, characteristic=object())

    with pytest.raises(SensorReadError):
        await BleakTransport().read_characteristic(
            _connection(client), SERVICE_UUID, TEMP_CHARACTERISTIC_UUID
        )


@pytest.mark.asyncio
async def test_discover_services_maps_lowercase_uuids():
    client = MagicMock()
    client.services = [
        SimpleNamespace(
            uuid=SERVICE_UUID.upper(),
            characteristics=[
                SimpleNamespace(uuid=TEMP_CHARACTERISTIC_UUID.upper()),
                SimpleNamespace(uuid=HUMID_CHARACTERISTIC_UUID),
            ],
        )
    ]
    connection = _connection(client)

    services = await BleakTransport().discover_services(connection)

    assert services == {SERVICE_UUID: {TEMP_CHARACTERISTIC_UUID, HUMID_CHARACTERISTIC_UUID}}
    assert connection.has_characteristic(SERVICE_UUID, TEMP_CHARACTERISTIC_UUID.upper())


@pytest.mark.asyncio
async def test_discover_services_fails_when_empty():
    client = MagicMock()
    client.services = []

    with pytest.raises(SensorDiscoveryError):
        await BleakTransport().discover_services(_connection(client))


@pytest.mark.asyncio
async def test_connect_wraps_failure():
    client = MagicMock()
    client.connect = AsyncMock(side_effect=BleakError("Device not found"))

    with patch("ble_utils.BleakClient", return_value=client):
        with pytest.raises(SensorConnectionError, match="Device not found"):
            await BleakTransport().connect(SENSOR)


@pytest.mark.asyncio
async def test_connect_forwards_disconnect_signal():
    client = MagicMock()
    client.connect = AsyncMock()
    dropped = []

    with patch("ble_utils.BleakClient", return_value=client) as client_cls:
        connection = await BleakTransport().connect(SENSOR, disconnected_callback=dropped.append)

    assert connection.state is ConnectionState.CONNECTED
    assert client_cls.call_args.args == (SENSOR.identifier,)
    on_disconnect = client_cls.call_args.kwargs["disconnected_callback"]

    on_disconnect(client)

    assert dropped == [connection]
    assert connection.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_disconnect_only_when_connected():
    client = _client(connected=False)
    connection = _connection(client)

    await BleakTransport().disconnect(connection)

    client.disconnect.assert_not_awaited()
    assert connection.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_disconnect_swallows_transport_errors():
    client = _client()
    client.disconnect.side_effect = BleakError("already gone")

    await BleakTransport().disconnect(_connection(client))


@pytest.mark.asyncio
async def test_scan_yields_each_device_once_and_stops_scanner():
    advertised = [
        SimpleNamespace(address="AA:01", name="Dawg Sensor"),
        SimpleNamespace(address="AA:01", name="Dawg Sensor"),
        SimpleNamespace(address="AA:02", name=None),
    ]
    scanner = MagicMock()
    scanner.stop = AsyncMock()

    def build_scanner(detection_callback, service_uuids):
        async def start():
            for device in advertised:
                detection_callback(device, SimpleNamespace(local_name="Adv Name"))
        scanner.start = AsyncMock(side_effect=start)
        return scanner

    with patch("ble_utils.BleakScanner", side_effect=build_scanner):
        scan = BleakTransport().scan()
        first = await scan.__anext__()
        second = await scan.__anext__()
        await scan.aclose()

    assert first == DeviceDescriptor("AA:01", "Dawg Sensor")
    assert second == DeviceDescriptor("AA:02", "Adv Name")
    scanner.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_scan_start_failure():
    scanner = MagicMock()
    scanner.start = AsyncMock(side_effect=BleakError("Bluetooth adapter not found"))

    with patch("ble_utils.BleakScanner", return_value=scanner):
        with pytest.raises(SensorScanError):
            await BleakTransport().scan().__anext__()


@pytest.mark.asyncio
async def test_scan_reports_device_again_when_name_arrives_late():
    advertised = [
        (SimpleNamespace(address="AA:BB", name=None), SimpleNamespace(local_name=None)),
        (SimpleNamespace(address="AA:BB", name=None), SimpleNamespace(local_name=None)),
        (SimpleNamespace(address="AA:BB", name="Dawg"), SimpleNamespace(local_name=None)),
        (SimpleNamespace(address="AA:BB", name="Dawg"), SimpleNamespace(local_name=None)),
        (SimpleNamespace(address="AA:CC", name=None), SimpleNamespace(local_name=None)),
    ]
    scanner = MagicMock()
    scanner.stop = AsyncMock()

    def build_scanner(detection_callback, service_uuids):
        async def start():
            for device, adv_data in advertised:
                detection_callback(device, adv_data)
        scanner.start = AsyncMock(side_effect=start)
        return scanner

    with patch("ble_utils.BleakScanner", side_effect=build_scanner):
        scan = BleakTransport().scan()
        found = [await scan.__anext__() for _ in range(3)]
        await scan.aclose()

    assert found == [
        DeviceDescriptor("AA:BB", None),
        DeviceDescriptor("AA:BB", "Dawg"),
        DeviceDescriptor("AA:CC", None),
    ]
