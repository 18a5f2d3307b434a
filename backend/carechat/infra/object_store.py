"""Object-store access through signed, time-limited URLs.

Attachment bytes never pass through this service. Clients receive a signed
upload target when a message is sent and a short-lived signed download URL on
request; the storage edge validates the HMAC token and expiry carried in the
query string (see ``SignedUrlObjectStore.verify``).
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol
from urllib.parse import quote

from carechat.settings import settings


class ObjectStoreError(RuntimeError):
	"""Raised when a signed target cannot be issued."""


@dataclass(slots=True)
class UploadTarget:
	path: str
	signed_url: str
	token: str
	expires_at: datetime


@dataclass(slots=True)
class DownloadTarget:
	path: str
	signed_url: str
	expires_at: datetime


class ObjectStore(Protocol):
	async def create_upload_target(self, path: str) -> UploadTarget:
		...

	async def create_download_target(self, path: str, ttl_seconds: int) -> DownloadTarget:
		...


def _validate_path(path: str) -> str:
	cleaned = (path or "").strip()
	if not cleaned or cleaned.startswith("/"):
		raise ObjectStoreError("invalid_path")
	if any(segment in {"", ".", ".."} for segment in cleaned.split("/")):
		raise ObjectStoreError("invalid_path")
	return cleaned


class SignedUrlObjectStore:
	"""HMAC-signed URLs against a single bucket."""

	def __init__(
		self,
		*,
		base_url: str,
		bucket: str,
		signing_key: str,
		upload_ttl_seconds: int,
		clock: Callable[[], float] | None = None,
	) -> None:
		if not signing_key:
			raise ObjectStoreError("signing_key_missing")
		self._base_url = base_url.rstrip("/")
		self._bucket = bucket
		self._key = signing_key.encode()
		self._upload_ttl = upload_ttl_seconds
		self._clock = clock or time.time

	def _sign(self, action: str, path: str, expires: int) -> str:
		message = f"{action}:{self._bucket}/{path}:{expires}".encode()
		return hmac.new(self._key, message, hashlib.sha256).hexdigest()

	def _url(self, prefix: str, path: str, token: str, expires: int) -> str:
		return f"{self._base_url}/{prefix}/{self._bucket}/{quote(path)}?token={token}&expires={expires}"

	async def create_upload_target(self, path: str) -> UploadTarget:
		path = _validate_path(path)
		expires = int(self._clock()) + self._upload_ttl
		token = self._sign("upload", path, expires)
		return UploadTarget(
			path=path,
			signed_url=self._url("upload/sign", path, token, expires),
			token=token,
			expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
		)

	async def create_download_target(self, path: str, ttl_seconds: int) -> DownloadTarget:
		path = _validate_path(path)
		if ttl_seconds < 1:
			raise ObjectStoreError("invalid_ttl")
		expires = int(self._clock()) + ttl_seconds
		token = self._sign("download", path, expires)
		return DownloadTarget(
			path=path,
			signed_url=self._url("sign", path, token, expires),
			expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
		)

	def verify(self, action: str, path: str, expires: int, token: str, *, now: float | None = None) -> bool:
		current = self._clock() if now is None else now
		if int(expires) < int(current):
			return False
		expected = self._sign(action, path, int(expires))
		return hmac.compare_digest(expected, token)


_store: Optional[ObjectStore] = None


def get_object_store() -> ObjectStore:
	global _store
	if _store is None:
		_store = SignedUrlObjectStore(
			base_url=settings.storage_base_url,
			bucket=settings.storage_bucket,
			signing_key=settings.storage_signing_key,
			upload_ttl_seconds=settings.storage_upload_ttl_seconds,
		)
	return _store


def set_object_store(store: Optional[ObjectStore]) -> None:
	global _store
	_store = store
