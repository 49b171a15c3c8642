from __future__ import annotations

import base64
from pathlib import Path

import httpx
import pytest

from multimodal_chat.client.attachments import (
    AttachmentLimits,
    encode_image,
    fetch_tabular_url,
    read_tabular_file,
    resolve_attachments,
    tabular_name_from_url,
    validate_tabular_url,
)
from multimodal_chat.errors import AttachmentFetchError, ValidationError


@pytest.fixture
def image_file(tmp_path: Path) -> Path:
    path = tmp_path / "photo.png"
    path.write_bytes(b"\x89PNG data")
    return path


@pytest.fixture
def csv_file(tmp_path: Path) -> Path:
    path = tmp_path / "sales.csv"
    path.write_text("region,total\nnorth,10\n", encoding="utf-8")
    return path


def csv_client(status_code: int = 200, body: str = "a,b\n1,2\n") -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_encode_image_returns_data_url(image_file: Path) -> None:
    data_url = encode_image(image_file)

    assert data_url == "data:image/png;base64," + base64.b64encode(b"\x89PNG data").decode()


def test_encode_image_rejects_non_images(csv_file: Path) -> None:
    with pytest.raises(ValidationError, match="Please select an image file"):
        encode_image(csv_file)


def test_encode_image_rejects_large_files(image_file: Path) -> None:
    with pytest.raises(ValidationError, match="smaller than"):
        encode_image(image_file, AttachmentLimits(image_max_bytes=4))


def test_encode_image_rejects_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="File not found"):
        encode_image(tmp_path / "missing.png")


def test_default_image_limit_message_mentions_5mb(tmp_path: Path) -> None:
    path = tmp_path / "big.jpg"
    path.write_bytes(b"\0" * (5 * 1024 * 1024 + 1))

    with pytest.raises(ValidationError, match="smaller than 5MB"):
        encode_image(path)


def test_read_tabular_file(csv_file: Path) -> None:
    assert read_tabular_file(csv_file) == ("region,total\nnorth,10\n", "sales.csv")


def test_read_tabular_file_requires_csv_suffix(image_file: Path) -> None:
    with pytest.raises(ValidationError, match=r"\.csv"):
        read_tabular_file(image_file)


def test_read_tabular_file_enforces_size(csv_file: Path) -> None:
    with pytest.raises(ValidationError):
        read_tabular_file(csv_file, AttachmentLimits(tabular_max_bytes=3))


@pytest.mark.parametrize("url", ["ftp://example.com/a.csv", "not a url", "https://"])
def test_validate_tabular_url_rejects_malformed(url: str) -> None:
    with pytest.raises(ValidationError):
        validate_tabular_url(url)


def test_tabular_name_from_url() -> None:
    assert tabular_name_from_url("https://example.com/data/sales.csv?x=1") == "sales.csv"
    assert tabular_name_from_url("https://example.com/") == "data.csv"


@pytest.mark.asyncio
async def test_fetch_tabular_url() -> None:
    async with csv_client() as client:
        text, name = await fetch_tabular_url(client, " https://example.com/files/q1.csv ")

    assert text == "a,b\n1,2\n"
    assert name == "q1.csv"


@pytest.mark.asyncio
async def test_fetch_tabular_url_reports_http_failure() -> None:
    async with csv_client(status_code=404) as client:
        with pytest.raises(AttachmentFetchError, match="Could not fetch CSV"):
            await fetch_tabular_url(client, "https://example.com/missing.csv")


@pytest.mark.asyncio
async def test_fetch_tabular_url_reports_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(AttachmentFetchError):
            await fetch_tabular_url(client, "https://example.com/a.csv")


@pytest.mark.asyncio
async def test_resolve_attachments_prefers_local_csv(csv_file: Path, image_file: Path) -> None:
    requested: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request)
        return httpx.Response(200, text="remote")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        resolved = await resolve_attachments(
            client,
            image_path=image_file,
            tabular_path=csv_file,
            tabular_url="https://example.com/remote.csv",
        )

    assert requested == []
    assert resolved.image_data is not None
    assert resolved.image_data.startswith("data:image/png;base64,")
    assert resolved.csv_data == "region,total\nnorth,10\n"
    assert resolved.csv_file_name == "sales.csv"


@pytest.mark.asyncio
async def test_resolve_attachments_empty() -> None:
    async with csv_client() as client:
        resolved = await resolve_attachments(client, tabular_url="   ")

    assert resolved.image_data is None
    assert resolved.csv_data is None
    assert resolved.csv_file_name is None
