"""
API Client

Thin async wrapper over the DreamBoat HTTP API.
"""

import logging
from typing import Any
from uuid import UUID

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, code: str, detail: str):
        self.status_code = status_code
        self.code = code
        self.detail = detail
        super().__init__(f"{status_code} {code}: {detail}")


class DreamboatClient:
    """
    Async API client bound to one user's bearer token.

    Use as an async context manager, or call ``aclose()`` when done.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        api_prefix: str = "/api",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ):
        self.http = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}{api_prefix}",
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self.http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        response = await self.http.request(method, path, **kwargs)
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            detail = body.get("detail", response.text)
            raise ApiError(response.status_code, body.get("error", "http_error"), str(detail))
        return response.json()

    # Photos

    async def request_upload_slot(
        self,
        file_name: str,
        content_type: str,
        size_bytes: int | None = None,
        replaces_photo_id: UUID | str | None = None,
    ) -> dict:
        payload = {"file_name": file_name, "content_type": content_type, "size_bytes": size_bytes}
        if replaces_photo_id is not None:
            payload["replaces_photo_id"] = str(replaces_photo_id)
        return await self._request("POST", "/photos/upload-slots", json=payload)

    async def upload_file(self, slot: dict, data: bytes, content_type: str) -> None:
        """PUT the bytes to the presigned URL (outside the API)."""
        async with httpx.AsyncClient(timeout=self.http.timeout) as raw:
            response = await raw.put(slot["url"], content=data, headers={"Content-Type": content_type})
            response.raise_for_status()

    async def confirm_upload(self, storage_key: str) -> dict:
        return await self._request("POST", "/photos", json={"storage_key": storage_key})

    async def list_photos(self) -> dict:
        return await self._request("GET", "/photos")

    async def validate_photo(self, photo_id: UUID | str) -> dict:
        return await self._request("POST", f"/photos/{photo_id}/validate")

    async def bypass_photo(self, photo_id: UUID | str) -> dict:
        return await self._request("POST", f"/photos/{photo_id}/bypass")

    async def replace_photo(self, photo_id: UUID | str, storage_key: str) -> dict:
        return await self._request(
            "POST", f"/photos/{photo_id}/replace", json={"storage_key": storage_key}
        )

    # Generation

    async def list_scenarios(self) -> dict:
        return await self._request("GET", "/scenarios")

    async def get_samples(self) -> dict:
        return await self._request("GET", "/samples")

    async def check_access(self) -> dict:
        return await self._request("GET", "/payments/access")

    async def validate_purchase(
        self,
        platform: str,
        receipt: str,
        transaction_id: str,
        product_id: str | None = None,
    ) -> dict:
        return await self._request(
            "POST",
            "/payments/iap/validate",
            json={
                "platform": platform,
                "receipt": receipt,
                "transaction_id": transaction_id,
                "product_id": product_id,
            },
        )

    async def start_generation(self, scenarios: list[str], credit_id: UUID | str | None = None) -> dict:
        payload: dict[str, Any] = {"scenarios": scenarios}
        if credit_id is not None:
            payload["credit_id"] = str(credit_id)
        return await self._request("POST", "/generations", json=payload)

    async def generation_status(self) -> dict:
        return await self._request("GET", "/generations/status")

    async def get_batch(self, batch_id: UUID | str) -> dict:
        return await self._request("GET", f"/generations/{batch_id}")

    # Profile

    async def get_profile_photos(self) -> dict:
        return await self._request("GET", "/profile/photos")

    async def set_profile_photos(self, selections: list[tuple[UUID | str, int]]) -> dict:
        return await self._request(
            "PUT",
            "/profile/photos",
            json={"selections": [{"image_id": str(i), "order": o} for i, o in selections]},
        )
