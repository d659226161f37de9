"""Tests for the Flask HTTP gateway."""

import pytest

from conftest import expected_line
from app import create_app
from line_cache import OffsetCache


@pytest.fixture
def client(make_line_file):
    cache = OffsetCache.from_file(make_line_file(200), capacity=30, seed=1)
    return create_app(cache).test_client()


def test_get_line(client):
    resp = client.get("/lines/123")
    assert resp.status_code == 200
    assert resp.data == expected_line(123)
    assert resp.mimetype == "text/plain"


def test_invalid_line_number(client):
    assert client.get("/lines/abc").status_code == 400


@pytest.mark.parametrize("n", ["0", "-4", "201"])
def test_out_of_range(client, n):
    assert client.get(f"/lines/{n}").status_code == 413


def test_unknown_route(client):
    resp = client.get("/nothing/here")
    assert resp.status_code == 404
    assert resp.data == b"Not Found\n"


def test_io_error(make_line_file):
    path = make_line_file(50)
    cache = OffsetCache.from_file(path, capacity=5)
    with open(path, "wb") as f:
        f.write(b"")
    resp = create_app(cache).test_client().get("/lines/40")
    assert resp.status_code == 500


def test_factory_requires_data_file(monkeypatch, tmp_path):
    monkeypatch.delenv("DATA_FILE_PATH", raising=False)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    with pytest.raises(SystemExit) as exc:
        create_app()
    assert exc.value.code == 1


def test_factory_builds_cache_from_env(monkeypatch, make_line_file, tmp_path):
    monkeypatch.setenv("DATA_FILE_PATH", make_line_file(40))
    monkeypatch.setenv("CACHE_SIZE", "7")
    monkeypatch.setenv("CACHE_SEED", "3")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    app = create_app()
    assert len(app.config["LINE_CACHE"]) == 7
    assert app.test_client().get("/lines/40").data == expected_line(40)


def test_factory_rejects_bad_cache_size(monkeypatch, make_line_file, tmp_path):
    monkeypatch.setenv("DATA_FILE_PATH", make_line_file(40))
    monkeypatch.setenv("CACHE_SIZE", "many")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    with pytest.raises(SystemExit):
        create_app()


@pytest.mark.parametrize("size", ["0", "-2"])
def test_factory_rejects_non_positive_cache_size(monkeypatch, make_line_file, tmp_path, size):
    monkeypatch.setenv("DATA_FILE_PATH", make_line_file(40))
    monkeypatch.setenv("CACHE_SIZE", size)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    with pytest.raises(SystemExit) as exc:
        create_app()
    assert exc.value.code == 1
