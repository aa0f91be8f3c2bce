"""
Acquisition state machine: scan, connect, poll and dispatch readings.

    IDLE -> SCANNING -> (timeout) IDLE
    IDLE/SCANNING -> CONNECTING -> POLLING -> DISCONNECTED -> (reset) IDLE
    CONNECTING -> DISCONNECTED on connection/discovery failure

The monitor owns the connection and the latest temperature/humidity pair.
Temperature readings feed the history store and the threshold alerter,
both only from the polling path.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ble_device import ConnectionState, DeviceDescriptor
from ble_utils import HUMID_CHARACTERISTIC_UUID, SERVICE_UUID, TEMP_CHARACTERISTIC_UUID
from errors import (
    InvalidStateError,
    PayloadDecodeError,
    SensorConnectionError,
    SensorDiscoveryError,
    SensorReadError,
    SensorScanError,
    UnknownDeviceError,
)
from history_store import HistoryStore
from notification_handler import NotificationLog
from payload_decoder import decode_payload
from readings import Reading, ReadingKind
from settings import get_settings
from threshold_alerter import (
    ThresholdAlerter,
    temperature_band,
    temperature_color,
    temperature_intensity,
)

# Read order within one polling tick
QUANTITY_CHARACTERISTICS = [
    (ReadingKind.TEMPERATURE, TEMP_CHARACTERISTIC_UUID),
    (ReadingKind.HUMIDITY, HUMID_CHARACTERISTIC_UUID),
]


class AcquisitionState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    POLLING = "polling"             # Connected, polling
    DISCONNECTED = "disconnected"


class SensorMonitor:
    """
    Drives one sensor peripheral through its connection lifecycle.

    Args:
        transport: SensorTransport used for every wireless operation
        settings: Settings (timeouts, polling period); defaults to get_settings()
        history: HistoryStore receiving temperature readings
        alerter: ThresholdAlerter observing temperature readings
        notifications: NotificationLog for operator-facing messages
        clock: Callable returning the capture timestamp
    """

    def __init__(self, transport, settings=None, history=None, alerter=None,
                 notifications=None, clock=None):
        self.transport = transport
        self.settings = settings if settings is not None else get_settings()
        self.notifications = notifications if notifications is not None else NotificationLog(
            self.settings.notification_limit
        )
        self.history = history if history is not None else HistoryStore()
        self.alerter = alerter if alerter is not None else ThresholdAlerter(self.notifications)
        self._clock = clock or datetime.now

        self.state = AcquisitionState.IDLE
        self.scan_results: List[DeviceDescriptor] = []
        self.connection = None
        self.temperature: Optional[Reading] = None
        self.humidity: Optional[Reading] = None

        self._scan_task = None
        self._poll_task = None
        self._poll_lock = asyncio.Lock()
        self._last_capture = None
        self._state_listeners = []
        self._reading_listeners = []
        self._error_listeners = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_state_change(self, callback):
        """Register callback(old_state, new_state). Returns an unsubscribe function."""
        return self._subscribe(self._state_listeners, callback)

    def on_reading(self, callback):
        """Register callback(Reading). Returns an unsubscribe function."""
        return self._subscribe(self._reading_listeners, callback)

    def on_error(self, callback):
        """Register callback(exception). Returns an unsubscribe function."""
        return self._subscribe(self._error_listeners, callback)

    @staticmethod
    def _subscribe(listeners, callback):
        listeners.append(callback)

        def unsubscribe():
            if callback in listeners:
                listeners.remove(callback)
        return unsubscribe

    def _emit(self, listeners, *args):
        for callback in list(listeners):
            try:
                callback(*args)
            except Exception as e:
                self.notifications.notify(f"Listener error: {e}", level="error")

    def _set_state(self, new_state):
        old_state = self.state
        if old_state is new_state:
            return
        self.state = new_state
        print(f"[BLE] State: {old_state.value} -> {new_state.value}")
        self._emit(self._state_listeners, old_state, new_state)

    def _report_error(self, error, level="error", context=None):
        message = f"{context}: {error}" if context else str(error)
        self.notifications.notify(message, level=level)
        self._emit(self._error_listeners, error)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def start_scan(self):
        """
        Start a scan session in the background.

        Named devices are collected, unique by identifier, into scan_results.
        The session ends on its own after settings.scan_timeout seconds and
        the state goes back to IDLE.
        """
        if self.state is not AcquisitionState.IDLE:
            raise InvalidStateError(f"Cannot scan while {self.state.value}")

        self.scan_results = []
        self._set_state(AcquisitionState.SCANNING)
        self._scan_task = asyncio.create_task(self._run_scan())
        return self._scan_task

    async def _run_scan(self):
        try:
            await asyncio.wait_for(self._collect_scan_results(), timeout=self.settings.scan_timeout)
        except asyncio.TimeoutError:
            pass
        except SensorScanError as e:
            self._report_error(e)
        finally:
            if self.state is AcquisitionState.SCANNING:
                print(f"[SCAN] Scan finished, {len(self.scan_results)} device(s) found")
                self._set_state(AcquisitionState.IDLE)

    async def _collect_scan_results(self):
        prefix = self.settings.name_prefix
        async for device in self.transport.scan(allow_duplicates=False):
            if not device.name:
                continue
            if prefix and not device.name.startswith(prefix):
                continue
            if any(found.identifier == device.identifier for found in self.scan_results):
                continue
            self.scan_results.append(device)
            print(f"[SCAN] Found {device.name} ({device.identifier})")

    async def wait_for_scan(self) -> List[DeviceDescriptor]:
        """Wait for the current scan session to end and return its results."""
        task = self._scan_task
        if task is not None:
            await asyncio.wait({task})
        return list(self.scan_results)

    async def stop_scan(self):
        """Stop the scan session immediately. No-op when not scanning."""
        task = self._scan_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def _resolve_device(self, device) -> DeviceDescriptor:
        identifier = device.identifier if isinstance(device, DeviceDescriptor) else device
        for found in self.scan_results:
            if found.identifier == identifier:
                return found
        raise UnknownDeviceError(f"Device {identifier} is not in the scan results")

    async def select_device(self, device):
        """
        Connect to a scanned device and start polling it.

        Args:
            device: DeviceDescriptor or identifier from scan_results

        Raises:
            SensorConnectionError: connect or service discovery failed; the
                state is DISCONNECTED and the operator has to reset
        """
        if self.state not in (AcquisitionState.IDLE, AcquisitionState.SCANNING):
            raise InvalidStateError(f"Cannot select a device while {self.state.value}")

        selected = self._resolve_device(device)

        # Claim the state before the first await so a concurrent selection is rejected
        self._set_state(AcquisitionState.CONNECTING)
        self.scan_results = []
        await self.stop_scan()

        # A new connection invalidates any previous one
        previous, self.connection = self.connection, None
        if previous is not None:
            await self.transport.disconnect(previous)

        print(f"[BLE] Connecting to {selected.name} ({selected.identifier})...")

        connection = None
        try:
            connection = await self.transport.connect(
                selected, disconnected_callback=self._on_transport_disconnect
            )
            self.connection = connection
            self._ensure_connecting()
            await self.transport.discover_services(connection)
            self._ensure_connecting()
            self._check_services(connection)
        except SensorConnectionError as e:
            self._set_state(AcquisitionState.DISCONNECTED)
            if connection is not None:
                await self.transport.disconnect(connection)
                connection.state = ConnectionState.FAILED
                self.connection = connection
            self._report_error(e)
            raise

        self._set_state(AcquisitionState.POLLING)
        self.notifications.notify(f"Connected to {selected.name}")
        self._poll_task = asyncio.create_task(self._poll_loop())
        return connection

    def _ensure_connecting(self):
        # An operator disconnect or a link drop may land while connect/discovery is pending
        if self.state is not AcquisitionState.CONNECTING:
            raise SensorConnectionError("Connection cancelled")

    def _check_services(self, connection):
        for kind, characteristic_uuid in QUANTITY_CHARACTERISTICS:
            if not connection.has_characteristic(SERVICE_UUID, characteristic_uuid):
                raise SensorDiscoveryError(
                    f"{connection.device.name} does not expose the {kind.value} characteristic"
                )

    def _on_transport_disconnect(self, connection):
        if connection is not self.connection:
            return
        if self.state not in (AcquisitionState.CONNECTING, AcquisitionState.POLLING):
            return
        self._cancel_polling()
        self._set_state(AcquisitionState.DISCONNECTED)
        self.notifications.notify(f"Lost connection to {connection.device.name}", level="warning")

    async def disconnect(self):
        """Operator disconnect. Stops polling; no automatic reconnection."""
        if self.state not in (AcquisitionState.CONNECTING, AcquisitionState.POLLING):
            raise InvalidStateError(f"Cannot disconnect while {self.state.value}")

        connection = self.connection
        self._set_state(AcquisitionState.DISCONNECTED)
        await self._stop_polling()
        if connection is not None:
            await self.transport.disconnect(connection)
            self.notifications.notify(f"Disconnected from {connection.device.name}")

    async def reset(self):
        """Return to IDLE after a session ended. Readings and history are kept."""
        if self.state is AcquisitionState.IDLE:
            return
        if self.state is not AcquisitionState.DISCONNECTED:
            raise InvalidStateError(f"Cannot reset while {self.state.value}")
        self.connection = None
        self._set_state(AcquisitionState.IDLE)

    async def close(self):
        """Release the scanner, the polling task and the connection."""
        await self.stop_scan()
        if self.state in (AcquisitionState.CONNECTING, AcquisitionState.POLLING):
            await self.disconnect()
        await self._stop_polling()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _cancel_polling(self):
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            return task
        return None

    async def _stop_polling(self):
        task = self._cancel_polling()
        if task is not None:
            await asyncio.wait({task})

    async def _poll_loop(self):
        loop = asyncio.get_running_loop()
        interval = self.settings.poll_interval
        next_tick = loop.time()

        while self.state is AcquisitionState.POLLING:
            await self.poll_once()

            # Fixed rate; an overrunning tick delays the next one instead of overlapping it
            next_tick += interval
            delay = next_tick - loop.time()
            if delay < 0:
                next_tick = loop.time()
                delay = 0
            await asyncio.sleep(delay)

    async def poll_once(self) -> List[Reading]:
        """
        Run one polling tick: read temperature, then humidity.

        A failed read or decode is reported and the previous value for that
        quantity is kept. Returns the readings accepted during this tick.
        """
        if self.state is not AcquisitionState.POLLING:
            raise InvalidStateError(f"Cannot poll while {self.state.value}")

        async with self._poll_lock:
            connection = self.connection
            accepted = []
            for kind, characteristic_uuid in QUANTITY_CHARACTERISTICS:
                if not self._is_current(connection):
                    break
                reading = await self._read_quantity(connection, kind, characteristic_uuid)
                # Results that settle after a disconnect are dropped
                if reading is not None and self._is_current(connection):
                    self._accept(reading)
                    accepted.append(reading)
            return accepted

    def _is_current(self, connection):
        return self.state is AcquisitionState.POLLING and self.connection is connection

    async def _read_quantity(self, connection, kind, characteristic_uuid):
        try:
            data = await self.transport.read_characteristic(connection, SERVICE_UUID, characteristic_uuid)
            value = decode_payload(data)
        except (SensorReadError, PayloadDecodeError) as e:
            if self._is_current(connection):
                self._report_error(e, level="warning", context=f"Error reading {kind.value}")
            return None
        return Reading(kind=kind, value=value, captured_at=self._capture_time())

    def _capture_time(self):
        # Keep capture timestamps non-decreasing even if the wall clock steps back
        now = self._clock()
        if self._last_capture is not None and now < self._last_capture:
            now = self._last_capture
        self._last_capture = now
        return now

    def _accept(self, reading: Reading):
        if reading.kind is ReadingKind.TEMPERATURE:
            self.temperature = reading
            self.history.record(reading)
            self.alerter.observe(reading)
        else:
            self.humidity = reading
        print(f"[POLL] {reading.kind.value.capitalize()}: {reading.value}{reading.kind.unit}")
        self._emit(self._reading_listeners, reading)

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        """Current state for the presentation layer."""
        temperature = self.temperature.value if self.temperature else None
        connection = self.connection
        return {
            "state": self.state.value,
            "device": connection.device.to_dict() if connection else None,
            "connection": connection.state.value if connection else None,
            "temperature": self.temperature.to_dict() if self.temperature else None,
            "humidity": self.humidity.to_dict() if self.humidity else None,
            "intensity": temperature_intensity(temperature),
            "band": temperature_band(temperature),
            "color": temperature_color(temperature),
            "history_length": len(self.history),
            "alert": self.alerter.status(),
        }
