"""File uploads through presigned URLs issued by the storage service."""

from __future__ import annotations

import logging
import mimetypes
import re
import secrets
import time
from pathlib import Path

import requests
from pydantic import ValidationError

from .config import ALLOWED_UPLOAD_TYPES, CORPORATE_EMAIL_DOMAIN, MAX_UPLOAD_BYTES
from .errors import UploadError
from .models import PresignedUpload, TrainingFileRef

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT_S = 60


def is_corporate_email(email: str) -> bool:
    return email.strip().lower().endswith(CORPORATE_EMAIL_DOMAIN)


def validate_upload(file_name: str, file_type: str, size: int):
    """Client-side copy of the presign endpoint's checks."""
    if not file_name or not file_type or not size:
        raise UploadError("Missing required fields: fileName, fileType, fileSize")
    if file_type not in ALLOWED_UPLOAD_TYPES:
        raise UploadError(f"File type {file_type} not allowed")
    if size > MAX_UPLOAD_BYTES:
        raise UploadError(
            f"File size {size} exceeds maximum allowed size of {MAX_UPLOAD_BYTES} bytes"
        )


def guess_type(path: Path) -> str:
    file_type, _ = mimetypes.guess_type(path.name)
    return file_type or "application/octet-stream"


def build_file_key(
    file_name: str,
    user_email: str | None,
    gpt_id: str | None,
    timestamp_ms: int,
    random_id: str,
) -> str:
    """Object key in the same layout the storage service uses."""
    safe_name = re.sub(r"[^a-zA-Z0-9.-]", "_", file_name)
    leaf = f"{timestamp_ms}_{random_id}_{safe_name}"
    if user_email:
        safe_email = re.sub(r"[^a-zA-Z0-9@.-]", "_", user_email)
        if gpt_id:
            return f"users/{safe_email}/gpts/{gpt_id}/{leaf}"
        return f"users/{safe_email}/files/{leaf}"
    return f"general/{leaf}"


def _server_error(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text.strip()[:200] or f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {resp.status_code}"


class PresignClient:
    """Requests presigned URLs and PUTs file bytes to them."""

    def __init__(self, endpoint: str, session: requests.Session | None = None, timeout: float = UPLOAD_TIMEOUT_S):
        if not endpoint:
            raise UploadError("Presigned URL endpoint is not configured")
        self.endpoint = endpoint
        self.session = session or requests.Session()
        self.timeout = timeout

    def request_upload(
        self,
        file_name: str,
        file_type: str,
        size: int,
        user_email: str | None = None,
        gpt_id: str | None = None,
    ) -> PresignedUpload:
        validate_upload(file_name, file_type, size)
        payload = {
            "fileName": file_name,
            "fileType": file_type,
            "fileSize": size,
            "userEmail": user_email,
            "gptId": gpt_id,
        }
        try:
            resp = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise UploadError(f"Could not reach the upload service: {e}") from e

        if not resp.ok:
            raise UploadError(
                f"Could not generate upload URL: {_server_error(resp)}", status=resp.status_code
            )
        try:
            upload = PresignedUpload.model_validate(resp.json())
        except (ValueError, ValidationError):
            raise UploadError("Invalid response from the upload service", status=resp.status_code) from None
        logger.info("Presigned URL generated for %s", upload.file_key)
        return upload

    def put_file(self, upload: PresignedUpload, data: bytes, file_type: str):
        try:
            resp = self.session.put(
                upload.upload_url,
                data=data,
                headers={"Content-Type": file_type},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UploadError(f"Upload failed: {e}") from e
        if not resp.ok:
            raise UploadError(f"Upload failed: {_server_error(resp)}", status=resp.status_code)

    def upload(
        self,
        path: Path,
        user_email: str | None = None,
        gpt_id: str | None = None,
    ) -> TrainingFileRef:
        """Presign, PUT and return a reference to the stored object."""
        file_type = guess_type(path)
        size = path.stat().st_size
        validate_upload(path.name, file_type, size)
        data = path.read_bytes()
        upload = self.request_upload(path.name, file_type, len(data), user_email, gpt_id)
        self.put_file(upload, data, file_type)
        logger.info("Uploaded %s (%d bytes)", path.name, len(data))
        return TrainingFileRef(
            file_name=path.name,
            file_type=file_type,
            file_key=upload.file_key,
            size=len(data),
            access_url=upload.access_url,
        )


def demo_upload(path: Path, user_email: str | None = None, gpt_id: str | None = None) -> TrainingFileRef:
    """Simulated upload used when no presign endpoint is configured."""
    file_type = guess_type(path)
    size = path.stat().st_size
    validate_upload(path.name, file_type, size)
    ms = int(time.time() * 1000)
    key = "mock/" + build_file_key(path.name, user_email, gpt_id, ms, secrets.token_hex(6))
    return TrainingFileRef(file_name=path.name, file_type=file_type, file_key=key, size=size)
