"""HTTP client for the face-recognition service."""

from facebatch.client.face_service import FaceServiceClient, error_from_response

__all__ = ["FaceServiceClient", "error_from_response"]
