#!/usr/bin/env python3
"""
Segment Store for ambcast

The directory ffmpeg writes its HLS playlist and segments into, and which the
HTTP server exposes under /hls. ffmpeg is the only writer while a session is
live; the store itself only knows how to wipe the directory between sessions
and how to read back the current playlist.
"""

import os
import aiofiles
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ambcast_core.errors import StoreUnavailable
from ambcast_core.logging_config import get_logger

logger = get_logger("store")

MANIFEST_NAME = "stream.m3u8"
SEGMENT_PATTERN = "stream%d.ts"


@dataclass
class SegmentManifest:
    """Parsed view of the rolling HLS media playlist."""
    media_sequence: int = 0
    target_duration: int = 0
    segments: List[Tuple[str, float]] = field(default_factory=list)
    ended: bool = False

    @property
    def segment_uris(self) -> List[str]:
        return [uri for uri, _ in self.segments]

    def to_dict(self) -> dict:
        return {
            "media_sequence": self.media_sequence,
            "target_duration": self.target_duration,
            "segments": [{"uri": uri, "duration": duration} for uri, duration in self.segments],
            "ended": self.ended,
        }


def parse_manifest(text: str) -> SegmentManifest:
    """
    Parse an HLS media playlist.

    Unknown tags are ignored and malformed numeric values fall back to the
    defaults, since the file may be read while ffmpeg is rewriting it.

    Args:
        text: Playlist content

    Returns:
        SegmentManifest: Segments in playlist order plus the media sequence
    """
    manifest = SegmentManifest()
    pending_duration = 0.0

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("#EXT-X-MEDIA-SEQUENCE:"):
            try:
                manifest.media_sequence = int(line.split(":", 1)[1].strip())
            except ValueError:
                logger.debug(f"Ignoring bad media sequence line: {line}")
        elif line.startswith("#EXT-X-TARGETDURATION:"):
            try:
                manifest.target_duration = int(line.split(":", 1)[1].strip())
            except ValueError:
                logger.debug(f"Ignoring bad target duration line: {line}")
        elif line.startswith("#EXTINF:"):
            value = line.split(":", 1)[1].split(",", 1)[0].strip()
            try:
                pending_duration = float(value)
            except ValueError:
                pending_duration = 0.0
        elif line.startswith("#EXT-X-ENDLIST"):
            manifest.ended = True
        elif not line.startswith("#"):
            manifest.segments.append((line, pending_duration))
            pending_duration = 0.0

    return manifest


class SegmentStore:
    """Directory shared by the active transcoder (writer) and viewers (readers)."""

    def __init__(self, path: str):
        self._path = os.path.abspath(path)

    def path(self) -> str:
        """Directory used both as transcoder output and HTTP root for /hls."""
        return self._path

    def manifest_path(self) -> str:
        return os.path.join(self._path, MANIFEST_NAME)

    def reset(self) -> int:
        """
        Ensure the directory exists and remove every regular file in it.

        Sub-directories are left untouched. Calling this twice in a row is
        harmless: the second call finds nothing to remove.

        Returns:
            int: Number of files removed

        Raises:
            StoreUnavailable: If the directory cannot be created, listed or cleaned
        """
        try:
            os.makedirs(self._path, exist_ok=True)
        except OSError as e:
            # FileExistsError here means a non-directory occupies the path
            raise StoreUnavailable(self._path, str(e)) from e

        if not os.path.isdir(self._path):
            raise StoreUnavailable(self._path, "path exists but is not a directory")

        removed = 0
        try:
            with os.scandir(self._path) as entries:
                for entry in entries:
                    if entry.is_file(follow_symlinks=False):
                        os.unlink(entry.path)
                        removed += 1
        except OSError as e:
            raise StoreUnavailable(self._path, str(e)) from e

        logger.info(f"Cleaned {removed} file(s) from segment store {self._path}")
        return removed

    def list_files(self) -> List[str]:
        """Sorted names of the regular files currently in the store."""
        if not os.path.isdir(self._path):
            return []
        with os.scandir(self._path) as entries:
            return sorted(entry.name for entry in entries if entry.is_file(follow_symlinks=False))

    async def read_manifest(self) -> Optional[SegmentManifest]:
        """Parse the current playlist, or None if ffmpeg has not written one yet."""
        try:
            async with aiofiles.open(self.manifest_path(), "r", encoding="utf-8") as f:
                return parse_manifest(await f.read())
        except FileNotFoundError:
            return None
