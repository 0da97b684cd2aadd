"""MQTT-driven single-output switch controller."""

__version__ = "0.1.0"
