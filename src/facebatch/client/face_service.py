"""Thin async client for the face-recognition REST service.

Only what the retry executor and dispatcher need: requests go out with the
subscription key, successful JSON bodies come back as plain ``dict``/``list``,
and every error response becomes a :class:`RemoteError` carrying the
service's ``code`` and ``message`` unaltered.

Error bodies come in two shapes::

    {"error": {"code": "RateLimitExceeded", "message": "Rate limit is exceeded."}}
    {"code": "Unspecified", "message": "..."}

Anything else maps to ``code="Unknown"``.

Example:
    >>> async with FaceServiceClient(key, endpoint) as client:
    ...     faces = await client.detect(Path("me.jpg").read_bytes())
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import httpx

from facebatch.core.errors import ErrorCode, RemoteError
from facebatch.core.logging import get_logger

if TYPE_CHECKING:
    from facebatch.core.settings import FaceBatchSettings

logger = get_logger(__name__)

SUBSCRIPTION_KEY_HEADER = "Ocp-Apim-Subscription-Key"
JSON_CONTENT_TYPE = "application/json"
STREAM_CONTENT_TYPE = "application/octet-stream"


def error_from_response(response: httpx.Response) -> RemoteError:
    """Build a :class:`RemoteError` from a failed response."""
    status = response.status_code
    content_type = response.headers.get("content-type", "")

    if JSON_CONTENT_TYPE in content_type:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("code"):
                return RemoteError(error["code"], error.get("message", ""), http_status=status)
            if body.get("code"):
                return RemoteError(body["code"], body.get("message", ""), http_status=status)
        return RemoteError(ErrorCode.UNKNOWN, "Unknown Error", http_status=status)

    return RemoteError(
        ErrorCode.UNKNOWN,
        response.reason_phrase or f"HTTP {status}",
        http_status=status,
    )


class FaceServiceClient:
    """Async client for detect / identify / verify and large person groups.

    Parameters
    ----------
    subscription_key : str
        Key sent in the ``Ocp-Apim-Subscription-Key`` header.
    endpoint : str
        API root, e.g. ``https://westus.api.cognitive.microsoft.com/face/v1.0``.
    timeout : float
        Transport timeout per request in seconds.
    transport : httpx.AsyncBaseTransport
        Optional transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        subscription_key: str,
        endpoint: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=endpoint.rstrip("/") + "/",
            headers={SUBSCRIPTION_KEY_HEADER: subscription_key},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: FaceBatchSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> FaceServiceClient:
        return cls(
            settings.require_key(),
            settings.endpoint,
            timeout=settings.request_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> FaceServiceClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # ── Transport ────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
    ) -> Any:
        """Send one request; return the decoded JSON body or ``None``.

        Raises:
            RemoteError: For any non-2xx response
        """
        headers = {"Content-Type": STREAM_CONTENT_TYPE} if content is not None else None
        logger.debug("face_service.request", method=method, path=path)

        response = await self._client.request(
            method,
            path.lstrip("/"),
            params=params,
            json=json,
            content=content,
            headers=headers,
        )

        if response.is_success:
            logger.debug("face_service.response", method=method, path=path, status=response.status_code)
            if not response.content:
                return None
            return response.json()

        error = error_from_response(response)
        logger.info(
            "face_service.error",
            method=method,
            path=path,
            status=response.status_code,
            code=error.code,
            message=error.message,
        )
        raise error

    # ── Faces ────────────────────────────────────────────────────────

    async def detect(
        self,
        image: bytes,
        *,
        return_face_id: bool = True,
        return_landmarks: bool = False,
        attributes: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        params = {
            "returnFaceId": str(return_face_id).lower(),
            "returnFaceLandmarks": str(return_landmarks).lower(),
        }
        if attributes:
            params["returnFaceAttributes"] = ",".join(attributes)
        return await self.request("POST", "detect", params=params, content=image) or []

    async def identify(
        self,
        group_id: str,
        face_ids: Iterable[str],
        *,
        max_candidates: int = 1,
        confidence_threshold: float | None = None,
    ) -> list[dict[str, Any]]:
        body: dict[str, Any] = {
            "largePersonGroupId": group_id,
            "faceIds": list(face_ids),
            "maxNumOfCandidatesReturned": max_candidates,
        }
        if confidence_threshold is not None:
            body["confidenceThreshold"] = confidence_threshold
        return await self.request("POST", "identify", json=body) or []

    async def verify(self, face_id1: str, face_id2: str) -> dict[str, Any]:
        return await self.request("POST", "verify", json={"faceId1": face_id1, "faceId2": face_id2})

    # ── Large person groups ──────────────────────────────────────────

    async def create_large_person_group(self, group_id: str, name: str, user_data: str | None = None) -> None:
        await self.request("PUT", f"largepersongroups/{group_id}", json={"name": name, "userData": user_data})

    async def get_large_person_group(self, group_id: str) -> dict[str, Any]:
        return await self.request("GET", f"largepersongroups/{group_id}")

    async def list_large_person_groups(self, start: str = "", top: int = 1000) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"top": top}
        if start:
            params["start"] = start
        return await self.request("GET", "largepersongroups", params=params) or []

    async def delete_large_person_group(self, group_id: str) -> None:
        await self.request("DELETE", f"largepersongroups/{group_id}")

    async def train_large_person_group(self, group_id: str) -> None:
        await self.request("POST", f"largepersongroups/{group_id}/train")

    async def get_training_status(self, group_id: str) -> dict[str, Any]:
        return await self.request("GET", f"largepersongroups/{group_id}/training")

    # ── Persons ──────────────────────────────────────────────────────

    async def create_person(self, group_id: str, name: str, user_data: str | None = None) -> dict[str, Any]:
        return await self.request(
            "POST",
            f"largepersongroups/{group_id}/persons",
            json={"name": name, "userData": user_data},
        )

    async def add_person_face(
        self,
        group_id: str,
        person_id: str,
        image: bytes,
        user_data: str | None = None,
    ) -> dict[str, Any]:
        params = {"userData": user_data} if user_data else None
        return await self.request(
            "POST",
            f"largepersongroups/{group_id}/persons/{person_id}/persistedfaces",
            params=params,
            content=image,
        )


__all__ = [
    "SUBSCRIPTION_KEY_HEADER",
    "FaceServiceClient",
    "error_from_response",
]
