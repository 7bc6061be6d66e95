import json

import pytest
from fastapi.testclient import TestClient

from inference_module import ModelIdentity
from session_module import SessionConfig
from streaming_module import GatewayConfig, StreamingConfig

from conftest import DummyEngine
from server import create_app, parse_args


def _config(**overrides):
    values = dict(
        session=SessionConfig(max_turns=3),
        streaming=StreamingConfig(channel_capacity=4, keepalive_seconds=5.0, worker_threads=1),
    )
    values.update(overrides)
    return GatewayConfig(**values)


@pytest.fixture
def engine():
    return DummyEngine()


@pytest.fixture
def client(engine):
    app = create_app(_config(), engine=engine)
    with TestClient(app) as client:
        yield client


def _frames(body):
    return [frame for frame in body.split("\n\n") if frame]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "current_model": "llama-3.2-1b-instruct",
        "available_models": ModelIdentity.available_models(),
    }


def test_health_without_loaded_model():
    app = create_app(_config(preload_model=False), engine=DummyEngine())
    with TestClient(app) as client:
        assert client.get("/health").json()["status"] == "model_not_loaded"


def test_stream_generation(client):
    response = client.post("/generate/stream", json={"model_name": "Llama32_1B", "prompt": "Hi"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    frames = _frames(response.text)
    contents = [json.loads(f[len("data: "):])["content"] for f in frames if f.startswith("data: {")]
    assert contents == ["Hello", " there", "!"]
    assert frames[-1] == "data: [DONE]"
    assert frames[-2].startswith("event: session\n")
    session_id = json.loads(frames[-2].split("data: ", 1)[1])["session_id"]

    history = client.get(f"/sessions/{session_id}").json()
    assert history == {
        "session_id": session_id,
        "messages": [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello there!"},
        ],
        "exists": True,
    }


def test_stream_unknown_model_is_rejected(client):
    response = client.post("/generate/stream", json={"model_name": "gpt-4", "prompt": "Hi"})
    assert response.status_code == 400
    body = response.json()
    assert body["model_name"] == "gpt-4"
    assert body["status"] == 400
    assert "error" in body
    assert client.get("/sessions").json() == {"sessions": []}


def test_stream_load_failure_is_503():
    engine = DummyEngine(fail_load={ModelIdentity.LLAMA31_8B})
    app = create_app(_config(), engine=engine)
    with TestClient(app) as client:
        response = client.post("/generate/stream", json={"model_name": "llama3.1-8b", "prompt": "Hi"})
        assert response.status_code == 503
        assert client.get("/health").json()["status"] == "model_not_loaded"


def test_malformed_body_is_400(client):
    response = client.post("/generate/stream", json={"model_name": "llama32-1b"})
    assert response.status_code == 400
    assert response.json()["status"] == 400


def test_invalid_generation_override_is_400(client):
    response = client.post("/generate", json={"model_name": "llama32-1b", "prompt": "Hi", "top_p": 2})
    assert response.status_code == 400


def test_generate(client, engine):
    response = client.post(
        "/generate",
        json={"model_name": "llama-3.2-1b-instruct", "prompt": "Hi", "session_id": "s1", "max_new_tokens": 2},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["text"] == "Hello there"
    assert body["session_id"] == "s1"
    assert body["tokens_generated"] == 2
    assert body["model_used"] == "Llama-3.2-1B-Instruct"
    assert "generation_time_secs" in body


def test_upload_list_and_delete(client):
    uploaded = client.post("/upload", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert uploaded.status_code == 200
    body = uploaded.json()
    assert body["filename"] == "notes.txt"
    assert body["file_size"] == 5
    file_id = body["file_id"]

    assert [f["file_id"] for f in client.get("/files").json()["files"]] == [file_id]

    assert client.delete(f"/files/{file_id}").json() == {"file_id": file_id, "result": True}
    missing = client.delete(f"/files/{file_id}")
    assert missing.status_code == 400
    assert missing.json()["file_id"] == file_id


def test_upload_disallowed_extension(client):
    response = client.post("/upload", files={"file": ("virus.exe", b"MZ", "application/octet-stream")})
    assert response.status_code == 400
    assert response.json()["file_type"] == "exe"
    assert client.get("/files").json() == {"files": []}


def test_uploaded_file_feeds_next_generation(client, engine):
    client.post("/upload", files={"file": ("notes.txt", b"hello", "text/plain")})
    client.post("/generate/stream", json={"model_name": "llama32-1b", "prompt": "Summarise"})

    sent = engine.calls[-1]
    assert "notes.txt" in sent[-2]["content"]
    assert sent[-1]["content"] == "Summarise"
    assert client.get("/files").json() == {"files": []}


def test_missing_session_is_not_an_error(client):
    response = client.get("/sessions/unknown")
    assert response.status_code == 200
    assert response.json() == {"session_id": "unknown", "messages": [], "exists": False}


def test_sync_strips_extra_fields_and_trims(client):
    messages = []
    for i in range(4):
        messages.append({"role": "user", "content": f"Q{i}", "id": i, "timestamp": "now"})
        messages.append({"role": "assistant", "content": f"A{i}", "isStreaming": False})

    response = client.post("/sessions/sync", json={"session_id": "web", "messages": messages})
    assert response.json() == {"session_id": "web", "synced": True, "message_count": 6}

    stored = client.get("/sessions/web").json()["messages"]
    assert stored[0] == {"role": "user", "content": "Q1"}
    assert all(set(m) == {"role", "content"} for m in stored)


def test_sync_rejects_unknown_role(client):
    response = client.post(
        "/sessions/sync",
        json={"session_id": "web", "messages": [{"role": "wizard", "content": "hi"}]},
    )
    assert response.status_code == 400


def test_delete_and_clear_session(client):
    client.post("/sessions/sync", json={"session_id": "s", "messages": [{"role": "user", "content": "hi"}]})

    cleared = client.post("/sessions/s/clear")
    assert cleared.json() == {"session_id": "s", "cleared": True}
    assert client.get("/sessions/s").json()["messages"] == []

    assert client.delete("/sessions/s").json() == {"session_id": "s", "cleared": True}
    missing = client.delete("/sessions/s")
    assert missing.status_code == 400
    assert missing.json()["session_id"] == "s"
    assert client.post("/sessions/s/clear").status_code == 400


def test_list_sessions(client):
    client.post("/generate", json={"model_name": "llama32-1b", "prompt": "Hi", "session_id": "abc"})
    sessions = client.get("/sessions").json()["sessions"]
    assert sessions == [{"session_id": "abc", "message_count": 2, "last_message": "Hello there!"}]


def test_models_and_switch(client, engine):
    models = client.get("/models").json()
    assert models["current_model"] == "llama-3.2-1b-instruct"
    assert [m["name"] for m in models["models"] if m["loaded"]] == ["llama-3.2-1b-instruct"]

    switched = client.post("/models/switch", json={"name": "LLAMA3.2-3B"})
    assert switched.status_code == 200
    assert switched.json()["success"] is True
    assert switched.json()["current_model"] == "llama-3.2-3b-instruct"
    assert engine.unloaded == [ModelIdentity.LLAMA32_1B]

    unknown = client.post("/models/switch", json={"name": "bogus"})
    assert unknown.status_code == 400
    assert client.get("/health").json()["current_model"] == "llama-3.2-3b-instruct"


def test_cli_defaults():
    args = parse_args([])
    assert args.port == 8080
    assert args.engine == "llama_cpp"
    assert args.default_model == "llama-3.2-1b-instruct"
    assert args.max_turns == 10
    assert not args.no_preload
