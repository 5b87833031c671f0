"""
Custom exceptions for the RFID scanner service
"""

class RFIDScannerError(Exception):
    """Base exception for RFID scanner operations"""
    pass

class ReaderConnectionError(RFIDScannerError):
    """Raised when the link to the reader cannot be established"""
    pass

class PortNotFoundError(ReaderConnectionError):
    """Raised when no attached serial port matches the device profile"""
    pass

class PortOpenError(ReaderConnectionError):
    """Raised when a matching port exists but cannot be opened (busy, permission)"""
    pass

class InvalidStateTransition(RFIDScannerError):
    """Raised when the connection state machine is asked for an illegal move"""

    def __init__(self, current, requested):
        super().__init__(f"Illegal transition {current.name} -> {requested.name}")
        self.current = current
        self.requested = requested
