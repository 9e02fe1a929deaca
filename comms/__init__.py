"""Telemetry transports: persistent WebSocket channel, periodic HTTP batch
channel, and the in-process EventBus."""
