import requests

from support_bot.schemas.telegram import TelegramMessage
from support_bot.services.telegram import MAX_MESSAGE_LENGTH, TelegramClient


class _Response:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        return self.payload


class _Session:
    def __init__(self, handler):
        self.handler = handler
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        return self.handler(url, json)


def _files_handler(url, payload):
    if url.endswith("/getFile"):
        return _Response({"ok": True, "result": {"file_path": f"docs/{payload['file_id']}.bin"}})
    return _Response({"ok": True, "result": {}})


def _message(**fields) -> TelegramMessage:
    data = {"message_id": 1, "from": {"id": 7, "first_name": "Ana"}, "chat": {"id": 7}}
    data.update(fields)
    return TelegramMessage.model_validate(data)


def test_resolve_document_and_largest_photo() -> None:
    session = _Session(_files_handler)
    client = TelegramClient(token="T0K", api_url="https://tg.example", session=session)
    message = _message(
        document={"file_id": "doc1", "file_name": "report.pdf"},
        photo=[{"file_id": "small", "width": 90, "height": 90}, {"file_id": "big", "width": 800, "height": 800}],
    )

    attachments = client.resolve_attachments(message)

    assert [(a.name, a.url) for a in attachments] == [
        ("report.pdf", "https://tg.example/file/botT0K/docs/doc1.bin"),
        ("photo_big.jpg", "https://tg.example/file/botT0K/docs/big.bin"),
    ]


def test_resolve_attachments_failure_returns_empty_list() -> None:
    def broken(url, payload):
        raise requests.ConnectionError("down")

    client = TelegramClient(token="T0K", session=_Session(broken))

    assert client.resolve_attachments(_message(document={"file_id": "doc1"})) == []


def test_long_replies_are_split() -> None:
    session = _Session(_files_handler)
    client = TelegramClient(token="T0K", api_url="https://tg.example", session=session)

    client.send_message(7, "x" * (MAX_MESSAGE_LENGTH + 10))

    assert [len(payload["text"]) for _, payload in session.posts] == [MAX_MESSAGE_LENGTH, 10]
    assert session.posts[0][0] == "https://tg.example/botT0K/sendMessage"


def test_start_command_detection() -> None:
    assert _message(text="/start").is_start_command
    assert _message(text="/start@car_bot").is_start_command
    assert not _message(text="start a ticket").is_start_command
