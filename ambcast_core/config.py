#!/usr/bin/env python3
"""
Configuration for ambcast

All settings come from environment variables (optionally loaded from a .env
file) with defaults matching the camera firmware's expectations.
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Network
BIND_HOST = os.getenv("BIND_HOST", "0.0.0.0")
CONTROL_PORT = int(os.getenv("CONTROL_PORT", "3000"))  # must match the camera sketch
HTTP_PORT = int(os.getenv("HTTP_PORT", "8080"))

# Directory layout
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
PUBLIC_DIR = os.getenv("PUBLIC_DIR", os.path.join(BASE_DIR, "public"))
HLS_DIR = os.getenv("HLS_DIR", os.path.join(PUBLIC_DIR, "hls"))

# FFmpeg
FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
FFMPEG_LOGLEVEL = os.getenv("FFMPEG_LOGLEVEL", "info")
FFMPEG_INPUT_OPTIONS = os.getenv("FFMPEG_INPUT_OPTIONS", "")
FFMPEG_EXTRA_OPTIONS = os.getenv("FFMPEG_EXTRA_OPTIONS", "")

# HLS output
HLS_SEGMENT_TIME = int(os.getenv("HLS_SEGMENT_TIME", "2"))
HLS_LIST_SIZE = int(os.getenv("HLS_LIST_SIZE", "3"))
HLS_START_NUMBER = int(os.getenv("HLS_START_NUMBER", "1"))

# Audio is always re-encoded; video is passed through
AUDIO_CODEC = os.getenv("AUDIO_CODEC", "aac")
AUDIO_BITRATE = os.getenv("AUDIO_BITRATE", "128k")
AUDIO_CHANNELS = int(os.getenv("AUDIO_CHANNELS", "1"))
AUDIO_SAMPLE_RATE = int(os.getenv("AUDIO_SAMPLE_RATE", "44100"))

# Control channel
CONTROL_IDLE_FLUSH = float(os.getenv("CONTROL_IDLE_FLUSH", "0.5"))  # seconds
CONTROL_MAX_LINE = int(os.getenv("CONTROL_MAX_LINE", "4096"))  # bytes
ACK_REPORTS_LAUNCH_FAILURE = _env_bool("ACK_REPORTS_LAUNCH_FAILURE")

# Lifecycle
SHUTDOWN_TIMEOUT = float(os.getenv("SHUTDOWN_TIMEOUT", "5"))

# Logging
LOG_DIR = os.getenv("LOG_DIR", os.path.expanduser("~/.ambcast/logs"))
CONSOLE_LOG_LEVEL = os.getenv("CONSOLE_LOG_LEVEL", "INFO")
FILE_LOG_LEVEL = os.getenv("FILE_LOG_LEVEL", "DEBUG")
LOG_TO_FILE = _env_bool("LOG_TO_FILE", "1")
JSON_LOGS = _env_bool("JSON_LOGS")
