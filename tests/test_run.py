"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

from types import SimpleNamespace

from typer.testing import CliRunner

import run
from lecture_notes.services.storage import MemoryStorage


runner = CliRunner()


def _setup_serve(monkeypatch, tmp_path, upload_limit):
    captured = {}

    monkeypatch.setattr(
        run,
        "initialize_app",
        lambda: SimpleNamespace(storage_root=tmp_path),
    )
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "build_storage", lambda config: "storage-chain")

    dummy_app = SimpleNamespace(state=SimpleNamespace())

    def fake_create_app(storage, config, root_path):
        captured["storage"] = storage
        captured["root_path"] = root_path
        return dummy_app

    monkeypatch.setattr(run, "create_app", fake_create_app)

    class DummyConfig:
        def __init__(self, app, *, limit_max_request_size=None, **kwargs):
            captured["app"] = app
            if limit_max_request_size is not None:
                kwargs["limit_max_request_size"] = limit_max_request_size
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)
    monkeypatch.setattr(run, "get_max_upload_bytes", lambda: upload_limit)

    run.serve(host="0.0.0.0", port=9000, root_path="api/")

    captured["app_state_server"] = dummy_app.state.server
    return captured


def test_serve_applies_request_size_limit(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=50 * 1024 * 1024)

    assert captured["config_kwargs"]["limit_max_request_size"] == 50 * 1024 * 1024
    assert captured["app_state_server"] is captured["server_instance"]
    assert captured["server_run"] is True


def test_serve_omits_limit_when_disabled(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=0)

    assert "limit_max_request_size" not in captured["config_kwargs"]


def test_serve_normalizes_root_path(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, upload_limit=0)

    assert captured["storage"] == "storage-chain"
    assert captured["root_path"] == "/api"
    assert captured["config_kwargs"]["root_path"] == "/api"
    assert captured["config_kwargs"]["port"] == 9000


def _patch_environment(monkeypatch, config, storage):
    monkeypatch.setattr(run, "initialize_app", lambda: config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "build_storage", lambda cfg: storage)


def test_console_overview_lists_recordings(monkeypatch, temp_config):
    storage = MemoryStorage()
    recording = storage.create_recording(
        title="Thermodynamics", filename="a.mp3", file_size=2048, file_format="MP3", duration=125
    )
    storage.update_recording_transcribed(recording.id, True)
    _patch_environment(monkeypatch, temp_config, storage)

    result = runner.invoke(run.cli, ["overview", "--style", "console"])

    assert result.exit_code == 0
    assert "Thermodynamics [pending] MP3 2:05 (transcript)" in result.output
    assert "1 recording(s), 2.0 KB" in result.output


def test_console_overview_handles_empty_storage(monkeypatch, temp_config):
    _patch_environment(monkeypatch, temp_config, MemoryStorage())

    result = runner.invoke(run.cli, ["overview", "-s", "console"])

    assert result.exit_code == 0
    assert "(no recordings)" in result.output


def test_transcribe_audio_writes_transcript_next_to_audio(monkeypatch, temp_config, tmp_path, fake_engine):
    audio = tmp_path / "week1.mp3"
    audio.write_bytes(b"ID3")
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "build_transcription_engine", lambda config: fake_engine)

    result = runner.invoke(run.cli, ["transcribe-audio", str(audio)])

    assert result.exit_code == 0
    assert (tmp_path / "week1_transcript.txt").read_text(encoding="utf-8") == fake_engine.text
    assert "Audio duration: 62s" in result.output


def test_transcribe_audio_reports_provider_errors(monkeypatch, temp_config, tmp_path, fake_engine):
    audio = tmp_path / "week1.mp3"
    audio.write_bytes(b"ID3")
    fake_engine.error = run.TranscriptionError("no key")
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "build_transcription_engine", lambda config: fake_engine)

    result = runner.invoke(run.cli, ["transcribe-audio", str(audio)])

    assert result.exit_code == 1
    assert "Transcription failed: no key" in result.output
    assert not (tmp_path / "week1_transcript.txt").exists()


def test_generate_notes_prints_markdown(monkeypatch, temp_config, fake_writer):
    storage = MemoryStorage()
    recording = storage.create_recording(
        title="Optics", filename="optics.mp3", file_size=1, file_format="MP3"
    )
    storage.create_transcript(recording.id, "Light bends.")
    _patch_environment(monkeypatch, temp_config, storage)
    monkeypatch.setattr(run, "build_note_generator", lambda config: fake_writer)

    result = runner.invoke(run.cli, ["generate-notes", str(recording.id)])

    assert result.exit_code == 0
    assert fake_writer.content in result.output
    assert storage.get_recording(recording.id).notes_generated is True


def test_generate_notes_without_transcript_fails(monkeypatch, temp_config, fake_writer):
    storage = MemoryStorage()
    recording = storage.create_recording(
        title="Optics", filename="optics.mp3", file_size=1, file_format="MP3"
    )
    _patch_environment(monkeypatch, temp_config, storage)
    monkeypatch.setattr(run, "build_note_generator", lambda config: fake_writer)

    result = runner.invoke(run.cli, ["generate-notes", str(recording.id)])

    assert result.exit_code == 1
    assert "Please transcribe the recording first" in result.output
