"""Yoswit BLE to Homebridge MQTT bridge."""

__version__ = "0.3.0"
