"""Blob storage client for task images, with retry on server errors."""

import asyncio
import logging

import httpx

from src.core.config import constants, settings
from src.core.errors import UpstreamFailureError
from src.models.service_models import ImageUpload, UploadedBlob


logger = logging.getLogger(__name__)


# HTTP status code constants for error handling
HTTP_CLIENT_ERROR_START = 400
HTTP_CLIENT_ERROR_END = 500


def _headers() -> dict[str, str]:
    headers: dict[str, str] = {}
    if settings.blob_storage_api_key:
        headers["X-Api-Key"] = settings.blob_storage_api_key
    return headers


def _parse_upload_response(data: dict) -> UploadedBlob:
    """Accept either ``externalId`` or ``public_id`` as the blob identifier."""
    url = data.get("url") or data.get("secure_url")
    external_id = data.get("externalId") or data.get("public_id")
    if not url or not external_id:
        msg = "Blob storage response is missing url or id"
        raise UpstreamFailureError(msg)
    return UploadedBlob(url=url, external_id=str(external_id))


async def upload_image(
    *,
    image: ImageUpload,
    caption: str = "",
    max_retries: int = 3,
    retry_delay: float = 1.0,
) -> UploadedBlob:
    """Upload one image and return its public URL and external id.

    Raises:
        UpstreamFailureError: If storage rejects the file or stays unavailable
    """
    url = f"{settings.blob_storage_url}/upload"
    files = {"file": (image.filename, image.content, image.content_type)}
    data = {"folder": settings.blob_storage_folder, "caption": caption}

    last_error = "Max retries exceeded"
    for attempt in range(max_retries):
        try:
            async with httpx.AsyncClient(timeout=constants.API_TIMEOUT_SECONDS) as client:
                response = await client.post(url, files=files, data=data, headers=_headers())

                if response.is_success:
                    blob = _parse_upload_response(response.json())
                    logger.info("Uploaded image", extra={"external_id": blob.external_id, "bytes": image.size})
                    return blob

                if HTTP_CLIENT_ERROR_START <= response.status_code < HTTP_CLIENT_ERROR_END:
                    logger.error(
                        "Blob storage rejected upload",
                        extra={"status_code": response.status_code, "image_name": image.filename},
                    )
                    raise UpstreamFailureError(f"Image upload rejected: {response.text[:200]}")

                raise httpx.HTTPStatusError(
                    f"Server error: {response.status_code}", request=response.request, response=response
                )
        except httpx.HTTPError as e:
            last_error = str(e)
            logger.warning("Image upload attempt %d/%d failed: %s", attempt + 1, max_retries, e)
            if attempt < max_retries - 1:
                await asyncio.sleep(retry_delay * (2**attempt))

    raise UpstreamFailureError(f"Image upload failed after retries: {last_error}")


async def delete_image(*, external_id: str) -> bool:
    """Delete a previously uploaded image. Failures are logged, not raised."""
    url = f"{settings.blob_storage_url}/files/{external_id}"
    try:
        async with httpx.AsyncClient(timeout=constants.API_TIMEOUT_SECONDS) as client:
            response = await client.delete(url, headers=_headers())
    except httpx.HTTPError as e:
        logger.warning("Failed to delete image %s: %s", external_id, e)
        return False

    if not response.is_success:
        logger.warning("Failed to delete image %s: HTTP %d", external_id, response.status_code)
        return False

    logger.info("Deleted image", extra={"external_id": external_id})
    return True


async def delete_images(*, external_ids: list[str]) -> None:
    """Best-effort cleanup of several images."""
    await asyncio.gather(*(delete_image(external_id=external_id) for external_id in external_ids))
