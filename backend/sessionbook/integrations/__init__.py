"""External service integrations for the session booking engine."""

from .video_room_client import (
    FakeVideoRoomClient,
    VideoRoomClient,
    VideoRoomError,
    VideoRoomProvisioner,
    build_room_provisioner,
)

__all__ = [
    "FakeVideoRoomClient",
    "VideoRoomClient",
    "VideoRoomError",
    "VideoRoomProvisioner",
    "build_room_provisioner",
]
