from __future__ import annotations

import sys
import types

import pytest


def test_call_reports_actionable_error_when_voice_backends_missing(monkeypatch) -> None:
    typer_testing = pytest.importorskip("typer.testing")
    from voice_call.main import app

    fake_stt = types.ModuleType("voice_call.voice.stt_speechrecognition")
    fake_speaker = types.ModuleType("voice_call.voice.playback_sounddevice")

    class _MissingBackend:
        def __init__(self, *args, **kwargs) -> None:
            raise RuntimeError("Voice backend missing. Install with: pip install 'voice-call-client[voice]'")

    fake_stt.SpeechRecognitionRecognizer = _MissingBackend
    fake_speaker.SoundDevicePlaybackSink = _MissingBackend

    monkeypatch.setitem(sys.modules, "voice_call.voice.stt_speechrecognition", fake_stt)
    monkeypatch.setitem(sys.modules, "voice_call.voice.playback_sounddevice", fake_speaker)

    result = typer_testing.CliRunner().invoke(app, ["call", "--script-type", "21st_bpo"], catch_exceptions=False)

    output = " ".join(result.stdout.split())
    assert result.exit_code == 1
    assert "Install with: pip install 'voice-call-client[voice]'" in output


def test_call_rejects_a_non_websocket_url() -> None:
    typer_testing = pytest.importorskip("typer.testing")
    from voice_call.main import app

    result = typer_testing.CliRunner().invoke(app, ["call", "--url", "http://agent.test/ws"], catch_exceptions=False)

    output = " ".join(result.stdout.split())
    assert result.exit_code == 1
    assert "isn't a valid URI" in output
