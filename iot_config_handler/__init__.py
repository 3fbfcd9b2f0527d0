"""
IOT2050 Telegraf Config Handler
===============================

This package contains the tooling for the IOT2050 Telegraf configuration workflow:
- XML template discovery and parsing (native templates and OPC UA nodesets)
- Telegraf configuration rendering
- SSH transport for config upload, service restart and remote backups
- Command line front end with interactive option resolution
"""

__version__ = "0.4.0"
__author__ = "IOT Config Handler Team"
