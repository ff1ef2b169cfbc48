"""Video room integration.

Creates one room per booking on the video platform's REST API and issues
per-participant join tokens. ``VideoRoomProvisioner`` adapts the client to
the booking engine's room-provisioning contract.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional, Union, cast
from urllib.parse import urlencode
import uuid

import httpx
import jwt
from pydantic import SecretStr

from ..core.config import Settings
from ..services.ports import RoomLinks

logger = logging.getLogger(__name__)

MANAGEMENT_TOKEN_TTL_SECONDS = 3600
MANAGEMENT_TOKEN_REFRESH_SECONDS = 50 * 60


class VideoRoomError(RuntimeError):
    """Raised when the video platform responds with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class VideoRoomClient:
    """HTTP client for the video platform REST API."""

    def __init__(
        self,
        *,
        access_key: str,
        app_secret: Union[str, SecretStr],
        base_url: str,
        template_id: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._access_key = access_key
        self._app_secret = (
            app_secret.get_secret_value() if isinstance(app_secret, SecretStr) else app_secret
        )
        self._base_url = base_url.rstrip("/")
        self._template_id = template_id
        self._timeout = timeout
        self._transport = transport
        self._mgmt_token: Optional[str] = None
        self._mgmt_token_refresh_at: float = 0.0

    def _sign(self, payload: dict[str, Any]) -> str:
        token: str = jwt.encode(
            payload,
            self._app_secret,
            algorithm="HS256",
            headers={"alg": "HS256", "typ": "JWT"},
        )
        return token

    def _generate_management_token(self) -> str:
        """HS256 token authorizing server-to-server API calls."""
        now = int(time.time())
        return self._sign(
            {
                "access_key": self._access_key,
                "type": "management",
                "version": 2,
                "jti": str(uuid.uuid4()),
                "iat": now,
                "nbf": now,
                "exp": now + MANAGEMENT_TOKEN_TTL_SECONDS,
            }
        )

    def _get_management_token(self) -> str:
        now = time.monotonic()
        if self._mgmt_token is None or now >= self._mgmt_token_refresh_at:
            self._mgmt_token = self._generate_management_token()
            self._mgmt_token_refresh_at = now + MANAGEMENT_TOKEN_REFRESH_SECONDS
        return self._mgmt_token

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self._get_management_token()}",
            "Content-Type": "application/json",
        }

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.request(method, url, headers=headers, json=json_body)
        except httpx.TransportError as exc:
            logger.error("Video API unreachable for %s %s: %s", method, path, exc)
            raise VideoRoomError(message=f"Video API unreachable: {exc}") from exc

        if response.status_code >= 400:
            try:
                parsed = response.json()
                error_body = parsed if isinstance(parsed, dict) else {"raw": response.text[:500]}
            except ValueError:
                error_body = {"raw": response.text[:500]}

            message = error_body.get("message") or error_body.get("description") or response.text
            logger.error(
                "Video API error %s for %s %s: %s",
                response.status_code,
                method,
                path,
                response.text[:500],
            )
            raise VideoRoomError(
                message=message,
                status_code=response.status_code,
                details=error_body.get("details"),
            )

        return cast(dict[str, Any], response.json())

    def create_room(self, *, name: str, description: Optional[str] = None) -> dict[str, Any]:
        """
        Create a room.

        The platform returns the existing room when the name is already taken,
        so naming rooms after the booking makes retries idempotent.
        """
        body: dict[str, Any] = {"name": name}
        if self._template_id:
            body["template_id"] = self._template_id
        if description:
            body["description"] = description
        return self._request("POST", "rooms", json_body=body)

    def disable_room(self, room_id: str) -> dict[str, Any]:
        return self._request("POST", f"rooms/{room_id}", json_body={"enabled": False})

    def generate_auth_token(
        self,
        *,
        room_id: str,
        user_id: str,
        role: str,
        validity_seconds: int = 3600,
    ) -> str:
        """Per-participant token naming the room, user and role."""
        now = int(time.time())
        return self._sign(
            {
                "access_key": self._access_key,
                "room_id": room_id,
                "user_id": user_id,
                "role": role,
                "type": "app",
                "version": 2,
                "jti": str(uuid.uuid4()),
                "iat": now,
                "nbf": now,
                "exp": now + validity_seconds,
                "metadata": json.dumps({"user_id": user_id}),
            }
        )


class FakeVideoRoomClient:
    """In-memory stand-in for tests and local development."""

    def __init__(self, **kwargs: Any) -> None:
        self.calls: list[dict[str, Any]] = []
        self._errors: dict[str, VideoRoomError] = {}

    def set_error(self, method: str, error: VideoRoomError) -> None:
        """Inject a method-specific error for deterministic failure testing."""
        self._errors[method] = error

    def _raise_if_injected(self, method: str) -> None:
        error = self._errors.get(method)
        if error is not None:
            raise error

    def create_room(self, *, name: str, **kwargs: Any) -> dict[str, Any]:
        self.calls.append({"method": "create_room", "name": name, **kwargs})
        self._raise_if_injected("create_room")
        return {"id": f"fake_room_{name}", "name": name, "enabled": True}

    def disable_room(self, room_id: str) -> dict[str, Any]:
        self.calls.append({"method": "disable_room", "room_id": room_id})
        self._raise_if_injected("disable_room")
        return {"id": room_id, "enabled": False}

    def generate_auth_token(self, *, room_id: str, user_id: str, role: str, **kwargs: Any) -> str:
        self.calls.append(
            {"method": "generate_auth_token", "room_id": room_id, "user_id": user_id, "role": role}
        )
        self._raise_if_injected("generate_auth_token")
        return f"fake_token_{room_id}_{user_id}"


class VideoRoomProvisioner:
    """Room provisioning backed by a video room client."""

    INSTRUCTOR_ROLE = "host"
    STUDENT_ROLE = "guest"

    def __init__(
        self,
        client: Union[VideoRoomClient, FakeVideoRoomClient],
        *,
        join_base_url: str,
        token_validity_seconds: int = 6 * 3600,
    ) -> None:
        self.client = client
        self.join_base_url = join_base_url.rstrip("/")
        self.token_validity_seconds = token_validity_seconds

    @staticmethod
    def room_name_for(booking_id: str) -> str:
        return f"session-{booking_id}"

    def _join_url(self, room_id: str, token: str) -> str:
        return f"{self.join_base_url}/{room_id}?{urlencode({'token': token})}"

    def create_room(self, booking_id: str, instructor_id: str, student_id: str) -> RoomLinks:
        room = self.client.create_room(
            name=self.room_name_for(booking_id),
            description=f"Session {booking_id}",
        )
        room_id = str(room["id"])
        instructor_token = self.client.generate_auth_token(
            room_id=room_id,
            user_id=instructor_id,
            role=self.INSTRUCTOR_ROLE,
            validity_seconds=self.token_validity_seconds,
        )
        student_token = self.client.generate_auth_token(
            room_id=room_id,
            user_id=student_id,
            role=self.STUDENT_ROLE,
            validity_seconds=self.token_validity_seconds,
        )
        logger.info("Provisioned video room %s for booking %s", room_id, booking_id)
        return RoomLinks(
            join_url_instructor=self._join_url(room_id, instructor_token),
            join_url_student=self._join_url(room_id, student_token),
            room_id=room_id,
        )


def build_room_provisioner(config: Settings) -> Optional[VideoRoomProvisioner]:
    """Provisioner for the configured environment, or None when rooms are disabled."""
    if not config.video_room_enabled:
        return None
    if config.is_testing or not config.video_room_access_key:
        client: Union[VideoRoomClient, FakeVideoRoomClient] = FakeVideoRoomClient()
    else:
        client = VideoRoomClient(
            access_key=config.video_room_access_key,
            app_secret=config.video_room_app_secret,
            base_url=config.video_room_api_base_url,
            template_id=config.video_room_template_id,
            timeout=config.external_call_timeout_seconds,
        )
    return VideoRoomProvisioner(
        client,
        join_base_url=config.video_room_join_base_url,
        token_validity_seconds=config.video_room_token_validity_seconds,
    )
