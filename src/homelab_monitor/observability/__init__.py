"""Observability subsystem for homelab-monitor.

logging_setup: structlog configuration driven by ``logging.level``
cycle: collect -> append -> cleanup, and the background collection loop
"""
