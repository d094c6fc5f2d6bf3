import json

import httpx
import pytest

from studychat.api.attachments import AttachmentTransfer, classify_mime_type
from studychat.api.client import ApiClient
from studychat.api.history import MessageHistoryLoader
from studychat.credentials import TokenStore
from studychat.errors import ApiError, DownloadError, NotAuthenticatedError, UploadError
from studychat.schemas import FileDescriptor, MessageType

from conftest import chat_message, mock_transport

BASE_URL = "http://api.example.edu/api"


def api_client(routes, calls=None, tokens=None) -> ApiClient:
    return ApiClient(
        BASE_URL,
        tokens or TokenStore(session_token="test-token"),
        transport=mock_transport(routes, calls),
    )


@pytest.mark.asyncio
async def test_fetch_history_returns_oldest_first():
    calls = []
    newest_first = [chat_message(3, "third"), chat_message(2, "second"), chat_message(1, "first")]
    routes = {
        "GET /api/chat/42/messages": lambda request: httpx.Response(
            200, json={"message": "Messages retrieved successfully", "messages": newest_first}
        )
    }
    loader = MessageHistoryLoader(api_client(routes, calls), page_size=50)

    messages = await loader.fetch_history(42)

    assert [m.content for m in messages] == ["first", "second", "third"]
    request = calls[0]
    assert request.url.params["page"] == "0"
    assert request.url.params["size"] == "50"
    assert request.headers["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_fetch_history_page_and_size_are_forwarded():
    calls = []
    routes = {"GET /api/chat/7/messages": lambda request: httpx.Response(200, json={"messages": []})}
    loader = MessageHistoryLoader(api_client(routes, calls))

    assert await loader.fetch_history(7, page=2, page_size=10) == []
    assert calls[0].url.params["page"] == "2"
    assert calls[0].url.params["size"] == "10"


@pytest.mark.asyncio
async def test_fetch_history_surfaces_server_error():
    routes = {
        "GET /api/chat/42/messages": lambda request: httpx.Response(
            400, json={"error": "You are not a member of this group"}
        )
    }
    loader = MessageHistoryLoader(api_client(routes))

    with pytest.raises(ApiError) as excinfo:
        await loader.fetch_history(42)
    assert excinfo.value.message == "You are not a member of this group"
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_api_error_without_body_uses_status():
    routes = {"GET /api/chat/42/messages": lambda request: httpx.Response(500, text="oops")}
    with pytest.raises(ApiError, match="API error: 500"):
        await MessageHistoryLoader(api_client(routes)).fetch_history(42)


@pytest.mark.asyncio
async def test_requests_require_a_token():
    calls = []
    routes = {"GET /api/chat/42/messages": lambda request: httpx.Response(200, json={"messages": []})}
    loader = MessageHistoryLoader(api_client(routes, calls, tokens=TokenStore()))

    with pytest.raises(NotAuthenticatedError):
        await loader.fetch_history(42)
    assert calls == []


@pytest.mark.asyncio
async def test_share_link_returns_saved_message():
    calls = []
    saved = chat_message(12, "https://example.edu/notes", type="LINK", fileName="Notes")
    routes = {
        "POST /api/chat/42/share-link": lambda request: httpx.Response(
            200, json={"message": "Link shared successfully", "chatMessage": saved}
        )
    }
    loader = MessageHistoryLoader(api_client(routes, calls))

    message = await loader.share_link(42, "https://example.edu/notes", "Notes")

    assert message.type is MessageType.LINK
    assert json.loads(calls[0].content) == {"url": "https://example.edu/notes", "title": "Notes"}


@pytest.mark.asyncio
async def test_upload_posts_multipart_and_returns_descriptor(tmp_path):
    calls = []
    routes = {
        "POST /api/chat/42/upload": lambda request: httpx.Response(
            200,
            json={
                "message": "File uploaded successfully",
                "fileUrl": "/f/1",
                "fileName": "a.pdf",
                "fileType": "application/pdf",
                "fileSize": 1024,
                "caption": "week 3",
            },
        )
    }
    transfer = AttachmentTransfer(api_client(routes, calls), tmp_path)

    descriptor = await transfer.upload(42, b"%PDF-1.4" + b"0" * 1016, "a.pdf", "application/pdf", "week 3")

    assert descriptor == FileDescriptor(
        file_url="/f/1", file_name="a.pdf", file_type="application/pdf", file_size=1024, caption="week 3"
    )
    assert descriptor.message_type is MessageType.PDF
    request = calls[0]
    assert request.headers["content-type"].startswith("multipart/form-data")
    body = request.content
    assert b'name="file"; filename="a.pdf"' in body
    assert b'name="caption"' in body
    assert request.headers["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_upload_rejects_empty_and_oversized_files_locally(tmp_path):
    calls = []
    transfer = AttachmentTransfer(api_client({}, calls), tmp_path, max_upload_bytes=10)

    with pytest.raises(UploadError, match="File is empty"):
        await transfer.upload(1, b"", "empty.txt")
    with pytest.raises(UploadError, match="less than"):
        await transfer.upload(1, b"x" * 11, "big.bin")
    assert calls == []


@pytest.mark.asyncio
async def test_upload_failure_is_reported(tmp_path):
    routes = {"POST /api/chat/42/upload": lambda request: httpx.Response(413)}
    transfer = AttachmentTransfer(api_client(routes), tmp_path)

    with pytest.raises(UploadError, match="Upload failed: 413") as excinfo:
        await transfer.upload(42, b"data", "notes.txt", "text/plain")
    assert excinfo.value.status_code == 413


@pytest.mark.asyncio
async def test_download_saves_file(tmp_path):
    calls = []
    routes = {"GET /api/f/1": lambda request: httpx.Response(200, content=b"pdf-bytes")}
    transfer = AttachmentTransfer(api_client(routes, calls), tmp_path / "downloads")

    content = await transfer.download("/f/1", "../a.pdf")

    assert content == b"pdf-bytes"
    assert (tmp_path / "downloads" / "a.pdf").read_bytes() == b"pdf-bytes"
    assert calls[0].headers["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_download_absolute_url_into_given_directory(tmp_path):
    def handler(request):
        assert request.url.host == "files.example.com"
        return httpx.Response(200, content=b"img")

    api = ApiClient(BASE_URL, TokenStore(session_token="t"), transport=httpx.MockTransport(handler))
    transfer = AttachmentTransfer(api, tmp_path / "unused")

    await transfer.download("https://files.example.com/raw/photo.png", "photo.png", dest_dir=tmp_path)
    assert (tmp_path / "photo.png").read_bytes() == b"img"


@pytest.mark.asyncio
async def test_download_failure(tmp_path):
    transfer = AttachmentTransfer(api_client({}), tmp_path)

    with pytest.raises(DownloadError, match="Download failed: 404"):
        await transfer.download("/f/missing", "missing.pdf")
    assert not (tmp_path / "missing.pdf").exists()


@pytest.mark.parametrize(
    "mime_type, expected",
    [
        ("image/png", MessageType.IMAGE),
        ("IMAGE/JPEG", MessageType.IMAGE),
        ("application/pdf", MessageType.PDF),
        ("application/msword", MessageType.DOCUMENT),
        ("application/vnd.openxmlformats-officedocument.wordprocessingml.document", MessageType.DOCUMENT),
        ("application/vnd.ms-excel", MessageType.EXCEL),
        ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", MessageType.EXCEL),
        ("application/vnd.ms-powerpoint", MessageType.POWERPOINT),
        ("application/vnd.openxmlformats-officedocument.presentationml.presentation", MessageType.POWERPOINT),
        ("application/zip", MessageType.TEXT),
        (None, MessageType.TEXT),
    ],
)
def test_classify_mime_type(mime_type, expected):
    assert classify_mime_type(mime_type) is expected


def test_descriptor_becomes_file_message_request():
    descriptor = FileDescriptor.model_validate(
        {"fileUrl": "/f/1", "fileName": "a.pdf", "fileType": "application/pdf", "fileSize": 1024}
    )
    request = descriptor.to_request(sender_id=7, caption="slides")

    assert request.type is MessageType.PDF
    assert request.model_dump(by_alias=True, exclude_none=True) == {
        "senderId": 7,
        "content": "slides",
        "type": MessageType.PDF,
        "fileUrl": "/f/1",
        "fileName": "a.pdf",
        "fileType": "application/pdf",
        "fileSize": 1024,
    }


def test_unclassified_descriptor_falls_back_to_caption_text():
    descriptor = FileDescriptor(file_url="/f/2", file_name="archive.zip", file_type="application/zip", file_size=5)
    request = descriptor.to_request(sender_id=7)

    assert request.type is MessageType.TEXT
    assert request.content == "archive.zip"
