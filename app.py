from flask import Flask, request, jsonify
import asyncio
import threading
from threading import Thread
from typing import Optional

from acquisition import AcquisitionState, SensorMonitor
from ble_utils import BleakTransport
from errors import (
    InvalidStateError,
    SensorConnectionError,
    SensorMonitorError,
)
from settings import get_settings
from threshold_alerter import parse_limit_text

app = Flask(__name__)

# The monitor lives on the event loop thread; Flask handlers reach it through run_async
monitor: Optional[SensorMonitor] = None
monitor_lock = threading.Lock()

# Event loop for async operations
loop = None
loop_thread = None
loop_ready = threading.Event()


def start_event_loop():
    """Start the asyncio event loop in a separate thread"""
    global loop
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    loop.call_soon(loop_ready.set)
    loop.run_forever()


def ensure_event_loop():
    """Start the event loop thread once"""
    global loop_thread
    with monitor_lock:
        if loop_thread is None:
            loop_thread = Thread(target=start_event_loop, daemon=True)
            loop_thread.start()
    loop_ready.wait(timeout=5)


def run_async(coro, timeout=30):
    """Run an async coroutine on the event loop thread from sync context"""
    ensure_event_loop()
    future = asyncio.run_coroutine_threadsafe(coro, loop)
    return future.result(timeout=timeout)


def build_monitor():
    return SensorMonitor(BleakTransport(), get_settings())


async def _create_monitor():
    return build_monitor()


def get_monitor() -> SensorMonitor:
    """Create the monitor on first use, on the event loop thread"""
    global monitor
    if monitor is None:
        created = run_async(_create_monitor())
        with monitor_lock:
            if monitor is None:
                monitor = created
    return monitor


def _read_int_arg(name, default):
    value = request.args.get(name)
    if value is None:
        return default
    parsed = int(value)
    if parsed < 1:
        raise ValueError(f"{name} must be a positive integer")
    return parsed


# ============================================================================
# Error handlers
# ============================================================================

@app.errorhandler(InvalidStateError)
def handle_invalid_state(e):
    return jsonify({"error": str(e), "state": get_monitor().state.value}), 409


@app.errorhandler(SensorConnectionError)
def handle_connection_error(e):
    return jsonify({"error": str(e), "state": get_monitor().state.value}), 502


@app.errorhandler(SensorMonitorError)
def handle_monitor_error(e):
    return jsonify({"error": str(e)}), 500


# ============================================================================
# Endpoints
# ============================================================================

@app.route('/')
def home():
    return jsonify({
        "status": "Sensor monitor API is running",
        "state": get_monitor().state.value,
        "endpoints": {
            "scan": ["/scan", "/scan/results"],
            "connection": ["/connect", "/disconnect", "/reset"],
            "data": ["/readings", "/history"],
            "alert": ["/alert", "/alert/limit", "/notifications"],
        }
    })


@app.route('/scan', methods=['POST'])
def scan():
    """Start a scan session; {"wait": true} blocks until it ends"""
    data = request.get_json(silent=True) or {}
    sensor_monitor = get_monitor()

    run_async(sensor_monitor.start_scan())
    if data.get('wait'):
        timeout = sensor_monitor.settings.scan_timeout + 5
        run_async(sensor_monitor.wait_for_scan(), timeout=timeout)

    return scan_results()


@app.route('/scan/results', methods=['GET'])
def scan_results():
    sensor_monitor = get_monitor()
    devices = [device.to_dict() for device in sensor_monitor.scan_results]
    return jsonify({
        "state": sensor_monitor.state.value,
        "scanning": sensor_monitor.state is AcquisitionState.SCANNING,
        "devices": devices,
        "count": len(devices)
    })


@app.route('/connect', methods=['POST'])
def connect():
    """Connect to a scanned device and start polling"""
    data = request.get_json(silent=True) or {}
    identifier = data.get('identifier')
    if not identifier:
        return jsonify({"error": "identifier required"}), 400

    sensor_monitor = get_monitor()
    run_async(sensor_monitor.select_device(identifier))
    return jsonify(sensor_monitor.snapshot())


@app.route('/disconnect', methods=['POST'])
def disconnect():
    sensor_monitor = get_monitor()
    run_async(sensor_monitor.disconnect())
    return jsonify({"status": "disconnected", "state": sensor_monitor.state.value})


@app.route('/reset', methods=['POST'])
def reset():
    sensor_monitor = get_monitor()
    run_async(sensor_monitor.reset())
    return jsonify({"state": sensor_monitor.state.value})


@app.route('/readings', methods=['GET'])
def readings():
    """Latest temperature/humidity with display intensity and color"""
    return jsonify(get_monitor().snapshot())


@app.route('/history', methods=['GET'])
def history():
    sensor_monitor = get_monitor()
    try:
        max_labels = _read_int_arg('max_labels', sensor_monitor.settings.max_labels)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    series = sensor_monitor.history.series(max_labels)
    return jsonify(series.to_dict())


@app.route('/alert', methods=['GET'])
def alert_status():
    return jsonify(get_monitor().alerter.status())


@app.route('/alert/limit', methods=['POST'])
def set_alert_limit():
    """Arm the alert; the limit is free text, non-digits are stripped"""
    data = request.get_json(silent=True) or {}
    if 'limit' not in data:
        return jsonify({"error": "limit required"}), 400

    limit = parse_limit_text(str(data['limit']) if data['limit'] is not None else '')
    sensor_monitor = get_monitor()

    async def apply_limit():
        sensor_monitor.alerter.set_limit(limit)

    run_async(apply_limit())
    return jsonify(sensor_monitor.alerter.status())


@app.route('/notifications', methods=['GET'])
def notifications():
    try:
        limit = _read_int_arg('limit', 10)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    entries = get_monitor().notifications.history(limit=limit)
    return jsonify({"notifications": entries, "count": len(entries)})


if __name__ == '__main__':
    settings = get_settings()
    print(f"[API] Listening on {settings.api_host}:{settings.api_port}")
    app.run(host=settings.api_host, port=settings.api_port)
