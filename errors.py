"""Exceptions raised by the sensor monitor."""


class SensorMonitorError(Exception):
    """Base exception for the sensor monitor."""


class SensorScanError(SensorMonitorError):
    """Raised when the BLE scanner cannot be started or fails mid-scan."""


class SensorConnectionError(SensorMonitorError):
    """Raised when the peripheral cannot be connected."""


class SensorDiscoveryError(SensorConnectionError):
    """Raised when service/characteristic enumeration is incomplete."""


class SensorReadError(SensorMonitorError):
    """Raised when a characteristic read fails."""


class PayloadDecodeError(SensorMonitorError):
    """Raised when a characteristic payload cannot be decoded."""


class PayloadTooShortError(PayloadDecodeError):
    """Raised when a payload has fewer bytes than the wire format needs."""


class InvalidStateError(SensorMonitorError):
    """Raised when an operator action is not allowed in the current state."""


class UnknownDeviceError(InvalidStateError):
    """Raised when the selected device is not in the scan results."""
