import asyncio

from ble_utils import BleakTransport
from settings import get_settings


async def collect(transport, devices):
    async for device in transport.scan():
        devices.append(device)


async def scan_all():
    timeout = get_settings().scan_timeout
    print(f"Scanning for ALL BLE devices ({timeout:g} seconds)...")

    devices = []
    try:
        await asyncio.wait_for(collect(BleakTransport(), devices), timeout=timeout)
    except asyncio.TimeoutError:
        pass

    print(f"\nFound {len(devices)} devices:\n")
    for d in devices:
        print(f"Name: {d.name or 'Unknown'}")
        print(f"Address: {d.identifier}")
        print("-" * 50)

if __name__ == "__main__":
    asyncio.run(scan_all())
