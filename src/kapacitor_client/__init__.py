"""Kapacitor REST API client.

Typed Python client for the Kapacitor HTTP API: templates, tasks, alert
topics and topic handlers.
"""

__version__ = "0.1.0"
