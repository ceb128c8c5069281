import dataclasses

from starlette.testclient import TestClient

from media_relay.config import Settings
from media_relay.main import AppRuntime, create_http_app
from media_relay.types import SinkKind

BOT_STDERR = "ERROR: [youtube] abc123: Sign in to confirm you're not a bot. Use --cookies\n"


def _client(settings: Settings) -> TestClient:
    return TestClient(create_http_app(AppRuntime(settings)))


def test_health(settings: Settings) -> None:
    response = _client(settings).get("/healthz")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["sink_kind"] == "buffered"
    assert body["preflight"] is False


def test_buffered_audio_download(settings: Settings, fake_ytdlp) -> None:
    fake_ytdlp.behave(payload="ID3-fake-mp3-bytes")

    response = _client(settings).post(
        "/api/download", json={"url": "https://valid.example/video", "mode": "audio"}
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.headers["content-length"] == str(len(b"ID3-fake-mp3-bytes"))
    assert response.headers["content-disposition"].startswith('attachment; filename="test_audio_')
    assert response.headers["content-disposition"].endswith('.mp3"')
    assert response.content == b"ID3-fake-mp3-bytes"
    assert list(settings.temp_dir.iterdir()) == []


def test_streamed_video_download(settings: Settings, fake_ytdlp) -> None:
    fake_ytdlp.behave(payload="fake-mp4-bytes" * 10)

    response = _client(settings).post(
        "/api/download",
        json={"url": "https://valid.example/video", "quality": "720p", "delivery": "stream"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "video/mp4"
    assert "content-length" not in response.headers
    assert response.content == b"fake-mp4-bytes" * 10
    args = fake_ytdlp.invocations[-1]
    assert args[args.index("-f") + 1] == "bestvideo[height<=720]+bestaudio/best"
    assert args[args.index("-o") + 1] == "-"


def test_empty_url_is_rejected_without_spawning(settings: Settings, fake_ytdlp) -> None:
    response = _client(settings).post("/api/download", json={"url": "", "mode": "video"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "invalid_request"
    assert not fake_ytdlp.spawned


def test_malformed_body_is_rejected(settings: Settings, fake_ytdlp) -> None:
    response = _client(settings).post(
        "/api/download", content=b"not json", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert not fake_ytdlp.spawned


def test_bot_check_is_reported_as_json(settings: Settings, fake_ytdlp) -> None:
    fake_ytdlp.behave(stderr=BOT_STDERR, exit_code=1)

    response = _client(settings).post("/api/download", json={"url": "https://valid.example/video"})

    assert response.status_code == 500
    assert response.headers["content-type"] == "application/json"
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "authentication_required"
    assert body["category"] == "bot_check"
    assert "not a bot" in body["detail"]
    assert list(settings.temp_dir.iterdir()) == []


def test_bot_check_status_follows_policy(settings: Settings, fake_ytdlp) -> None:
    fake_ytdlp.behave(stderr=BOT_STDERR, exit_code=1)
    strict = dataclasses.replace(settings, auth_failure_status=400, sink_kind=SinkKind.STREAMED)

    response = _client(strict).post("/api/download", json={"url": "https://valid.example/video"})

    assert response.status_code == 400
    assert response.json()["error"] == "authentication_required"


def test_zero_length_file_is_empty_artifact(settings: Settings, fake_ytdlp) -> None:
    fake_ytdlp.behave(payload="", exit_code=0)

    response = _client(settings).post("/api/download", json={"url": "https://valid.example/video"})

    assert response.status_code == 500
    assert response.json()["error"] == "empty_artifact"
    assert list(settings.temp_dir.iterdir()) == []


def test_preflight_failure_skips_download(settings: Settings, fake_ytdlp) -> None:
    fake_ytdlp.behave(stderr="ERROR: This video is private. Log in to watch\n", exit_code=1)
    checked = dataclasses.replace(settings, preflight=True)

    response = _client(checked).post("/api/download", json={"url": "https://valid.example/video"})

    assert response.status_code == 500
    body = response.json()
    assert body["category"] == "login_required"
    invocations = fake_ytdlp.invocations
    assert len(invocations) == 1
    assert "--simulate" in invocations[0]


def test_preflight_success_runs_download(settings: Settings, fake_ytdlp) -> None:
    fake_ytdlp.behave(payload="media")
    checked = dataclasses.replace(settings, preflight=True)

    response = _client(checked).post("/api/download", json={"url": "https://valid.example/video"})

    assert response.status_code == 200
    assert response.content == b"media"
    assert len(fake_ytdlp.invocations) == 2


def test_cors_headers(settings: Settings) -> None:
    response = _client(settings).options(
        "/api/download",
        headers={
            "Origin": "https://someone.github.io",
            "Access-Control-Request-Method": "POST",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] in ("*", "https://someone.github.io")
