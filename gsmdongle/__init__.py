"""Ring and mix buffers, serial port locking, SMS storage and USB port discovery for GSM dongles."""

__version__ = "1.1.0"