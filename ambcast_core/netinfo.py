#!/usr/bin/env python3
"""
LAN address discovery, used only to tell the operator where to point the
browser and the camera sketch.
"""

import logging
import socket

import psutil


def get_local_ip() -> str:
    """Return the first non-loopback IPv4 address, or "localhost"."""
    for _, addresses in psutil.net_if_addrs().items():
        for addr in addresses:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                return addr.address
    return "localhost"


def log_startup_banner(logger: logging.Logger, local_ip: str, http_port: int, control_port: int) -> None:
    logger.info(f"Web server running on http://{local_ip}:{http_port}/stream")
    logger.info(f"Open your browser to http://{local_ip}:{http_port}/stream to view the stream.")
    logger.info(f"Remember to update the camera sketch with this machine's local IP ({local_ip}) "
                f"and TCP port ({control_port}).")
    logger.info(f"Make sure your firewall allows incoming connections on port {http_port} and {control_port}.")
