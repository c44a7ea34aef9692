"""Tests for the blob storage client using httpx."""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.core.errors import UpstreamFailureError
from src.interface.blob_storage import delete_image, delete_images, upload_image
from src.models.service_models import ImageUpload


@pytest.fixture(autouse=True)
def mock_asyncio_sleep() -> Generator[AsyncMock, None, None]:
    """Mock asyncio.sleep to avoid actual delays in retry tests."""
    with patch("src.interface.blob_storage.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def tree_image() -> ImageUpload:
    return ImageUpload(filename="tree.jpg", content_type="image/jpeg", content=b"\xff\xd8\xff" + b"0" * 32)


def _response(status_code: int, *, json_body: dict | None = None, text: str = "") -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.text = text
    response.request = MagicMock()
    response.json.return_value = json_body or {}
    return response


class TestUploadImage:
    """Test uploading task images."""

    async def test_upload_success(self, tree_image: ImageUpload) -> None:
        """Test a successful upload returns url and external id."""
        body = {"url": "https://blobs.test/trees/abc.jpg", "externalId": "abc"}

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(200, json_body=body)

            blob = await upload_image(image=tree_image, caption="Planting image for Neem")

        assert blob.url == "https://blobs.test/trees/abc.jpg"
        assert blob.external_id == "abc"
        call_kwargs = mock_post.call_args.kwargs
        assert call_kwargs["files"]["file"][0] == "tree.jpg"
        assert call_kwargs["data"]["caption"] == "Planting image for Neem"

    async def test_upload_accepts_public_id(self, tree_image: ImageUpload) -> None:
        """Test the alternative identifier field name is accepted."""
        body = {"secure_url": "https://blobs.test/x.jpg", "public_id": "treeadopt/trees/x"}

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(201, json_body=body)

            blob = await upload_image(image=tree_image)

        assert blob.external_id == "treeadopt/trees/x"

    async def test_client_error_not_retried(self, tree_image: ImageUpload) -> None:
        """Test 4xx responses fail immediately."""
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(415, text="Unsupported media type")

            with pytest.raises(UpstreamFailureError, match="Unsupported media type"):
                await upload_image(image=tree_image)

        assert mock_post.call_count == 1

    async def test_server_error_retried_then_fails(self, tree_image: ImageUpload) -> None:
        """Test 5xx responses are retried and then surface as upstream failure."""
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(503)

            with pytest.raises(UpstreamFailureError, match="after retries"):
                await upload_image(image=tree_image, max_retries=3)

        assert mock_post.call_count == 3

    async def test_network_error_then_success(self, tree_image: ImageUpload) -> None:
        """Test a transient connection error is retried."""
        body = {"url": "https://blobs.test/ok.jpg", "externalId": "ok"}

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = [httpx.ConnectError("refused"), _response(200, json_body=body)]

            blob = await upload_image(image=tree_image)

        assert blob.external_id == "ok"

    async def test_malformed_response(self, tree_image: ImageUpload) -> None:
        """Test a success response without an id is an upstream failure."""
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(200, json_body={"url": "https://blobs.test/x.jpg"})

            with pytest.raises(UpstreamFailureError, match="missing"):
                await upload_image(image=tree_image)


class TestDeleteImage:
    """Test best-effort blob cleanup."""

    async def test_delete_success(self) -> None:
        with patch("httpx.AsyncClient.delete", new_callable=AsyncMock) as mock_delete:
            mock_delete.return_value = _response(204)

            assert await delete_image(external_id="abc") is True

    async def test_delete_failure_is_not_raised(self) -> None:
        with patch("httpx.AsyncClient.delete", new_callable=AsyncMock) as mock_delete:
            mock_delete.side_effect = httpx.ConnectError("refused")

            assert await delete_image(external_id="abc") is False

    async def test_delete_many(self) -> None:
        with patch("httpx.AsyncClient.delete", new_callable=AsyncMock) as mock_delete:
            mock_delete.return_value = _response(404)

            await delete_images(external_ids=["a", "b"])

        assert mock_delete.call_count == 2
