"""Decode and verify CWT-based QR code credentials and store verifiable digital credentials."""

__version__ = "0.1.0"