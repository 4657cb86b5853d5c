#!/usr/bin/env python3
"""
ambcast: camera RTSP to browser HLS bridge

The camera connects to the control port and sends its RTSP URL; ambcast
starts ffmpeg to repackage the stream as a rolling HLS playlist and serves it
together with the viewer pages.

Usage:
    python ambcast.py [--control-port 3000] [--http-port 8080]
"""

import sys

from ambcast_core.app import main

if __name__ == "__main__":
    sys.exit(main())
