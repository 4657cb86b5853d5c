"""
ambcast core package.

Stream-session lifecycle for the camera-to-HLS bridge: segment store,
ffmpeg supervisor, session controller, control listener and HTTP delivery.
"""

__version__ = "0.3.0"
