# Author: Omi Shrestha

import asyncio

from acquisition import AcquisitionState, SensorMonitor
from ble_utils import BleakTransport
from errors import SensorConnectionError
from settings import get_settings
from threshold_alerter import parse_limit_text, temperature_color


async def choose_device(devices):
    """
    Let the user pick one of the scanned devices.

    Returns the selected DeviceDescriptor, or None if the selection was cancelled.
    """
    # If only one device found, use it automatically
    if len(devices) == 1:
        print(f"Found 1 device: {devices[0].name} - MAC: {devices[0].identifier}")
        return devices[0]

    print(f"\nFound {len(devices)} devices:")
    for idx, device in enumerate(devices, 1):
        print(f"  {idx}. {device.name} - MAC: {device.identifier}")

    while True:
        try:
            choice = await asyncio.to_thread(input, f"\nSelect device (1-{len(devices)}): ")
            choice_idx = int(choice) - 1
            if 0 <= choice_idx < len(devices):
                return devices[choice_idx]
            print("Invalid selection. Try again.")
        except ValueError:
            print("Please enter a number.")
        except (EOFError, KeyboardInterrupt):
            print("\nSelection cancelled.")
            return None


def print_data(monitor):
    print("\n[SENSOR DATA]")
    if monitor.temperature is not None:
        value = monitor.temperature.value
        print(f"  Temperature: {value:.1f}°C ({temperature_color(value)})")
    else:
        print("  Temperature: no data received yet")
    if monitor.humidity is not None:
        print(f"  Humidity: {monitor.humidity.value}%")
    alert = monitor.alerter.status()
    print(f"  Alert limit: {alert['limit'] if alert['armed'] else 'not set'}")
    print()


def print_history(monitor, max_labels):
    series = monitor.history.series(max_labels)
    print(f"\n[TEMPERATURE HISTORY] {len(series.values)} reading(s)")
    for label, value in zip(series.labels, series.values):
        if label:
            print(f"  [{label}] {value:.2f}°C")
    print()


async def main():
    """Main application entry point."""
    settings = get_settings()
    monitor = SensorMonitor(BleakTransport(), settings)

    await monitor.start_scan()
    devices = await monitor.wait_for_scan()

    if not devices:
        print("\nNo devices found.")
        return

    device = await choose_device(devices)
    if device is None:
        return

    try:
        await monitor.select_device(device)
    except SensorConnectionError as e:
        print(f"\nConnection failed: {e}")
        return

    print("Connected!")
    print("\n" + "="*50)
    print("POLLING ACTIVE")
    print("Readings are shown below every second")
    print("="*50)

    print("\nCommands:")
    print("  - 'data' to view current readings")
    print("  - 'history' to view temperature history")
    print("  - 'limit <value>' to arm the temperature alert")
    print("  - 'notifications' to view recent notifications")
    print("  - 'quit' to exit")
    print()

    try:
        while monitor.state is AcquisitionState.POLLING:
            try:
                command = await asyncio.to_thread(input, "Enter command: ")
            except (EOFError, KeyboardInterrupt):
                print("\nExiting...")
                break

            command = command.strip()
            if command.lower() == 'quit':
                break

            elif command.lower() == 'data':
                print_data(monitor)

            elif command.lower() == 'history':
                print_history(monitor, settings.max_labels)

            elif command.lower().startswith('limit'):
                limit = parse_limit_text(command[len('limit'):])
                monitor.alerter.set_limit(limit)
                print(f"Alert limit {'set to ' + str(limit) + '°C' if limit is not None else 'cleared'}")

            elif command.lower() == 'notifications':
                print("\n[NOTIFICATIONS]")
                for entry in monitor.notifications.history(limit=20):
                    print(f"  [{entry['timestamp']}] {entry['level']}: {entry['message']}")
                print()

            elif command:
                print(f"Unknown command: {command}")

        if monitor.state is not AcquisitionState.POLLING:
            print("\nConnection lost.")
    finally:
        await monitor.close()


if __name__ == "__main__":
    asyncio.run(main())
