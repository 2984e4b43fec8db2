"""Anker Solix cloud -> MQTT bridge.

Polls the Solix cloud on a fixed cadence and republishes the account overview,
per-site scenario info and device schedules under a configurable MQTT prefix.
"""

__version__ = "0.1.0"
