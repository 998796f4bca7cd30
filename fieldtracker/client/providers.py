"""
Interfaces to device capabilities the client consumes but does not own:
location, camera, connectivity and photo storage.
"""
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol
import asyncio


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CapturedPhoto:
    uri: str
    width: int
    height: int
    file_size_bytes: int
    mime_type: str = "image/jpeg"
    compressed_size_bytes: Optional[int] = None
    exif_gps: Optional[LocationFix] = None


class LocationProvider(Protocol):
    async def get_current_fix(self, high_accuracy: bool = True) -> Optional[LocationFix]:
        ...


class PhotoCaptureProvider(Protocol):
    async def capture(self) -> Optional[CapturedPhoto]:
        ...


class ConnectivityProvider(Protocol):
    async def is_online(self) -> bool:
        ...

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        ...


class PhotoBlobReader(Protocol):
    async def read(self, uri: str) -> bytes:
        ...


class NoLocationProvider:
    """For devices without GPS; every fix is unavailable."""

    async def get_current_fix(self, high_accuracy: bool = True) -> Optional[LocationFix]:
        return None


class FilePhotoBlobReader:
    """Reads photo binaries from the local filesystem."""

    async def read(self, uri: str) -> bytes:
        path = Path(uri.removeprefix("file://"))
        return await asyncio.to_thread(path.read_bytes)
