"""Sensor data anchoring."""
