"""Drone telemetry simulator service."""
