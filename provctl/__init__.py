"""Provision IoT devices: DFU firmware transfer and SoftAP Wi-Fi setup."""

__version__ = "0.1.0"
