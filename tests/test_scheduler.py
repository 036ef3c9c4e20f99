"""Tests for the push-to-talk transcription scheduler."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pytest

from voice_input.common.models import (
    LanguageMode,
    SchedulerState,
    SessionOutcome,
    TranscriptionOutput,
    TranscriptionPass,
)
from voice_input.core import acceptance
from voice_input.core import diagnostics as events
from voice_input.core.audio_capture import AudioCapture
from voice_input.core.errors import DecodeError, EngineStartError, ModelLoadError
from voice_input.core.scheduler import SchedulerConfig, TranscriptionScheduler
from voice_input.core.stt.engine import InferenceEngine

PARTIAL = TranscriptionPass.PARTIAL
FINAL = TranscriptionPass.FINAL


class _StubRingBuffer:
    def __init__(self, size: int) -> None:
        self.size = size

    def __len__(self) -> int:
        return self.size


class _StubCapture:
    def __init__(self, window_samples: int = 16000, buffered: int = 32000) -> None:
        self.ring_buffer = _StubRingBuffer(buffered)
        self.window = np.full(window_samples, 0.1, dtype=np.float32)
        self.start_error: Exception | None = None
        self.started = 0
        self.stopped = 0

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def snapshot_speech_samples(self) -> np.ndarray:
        return self.window.copy()


class _StubEngine:
    def __init__(self) -> None:
        self.calls: list[tuple[TranscriptionPass, str, LanguageMode, int]] = []
        self.outputs = {
            PARTIAL: TranscriptionOutput("hello", "en", 0.7),
            FINAL: TranscriptionOutput(" hello there friend ", "en", 0.8),
        }
        self.errors: dict[TranscriptionPass, Exception] = {}
        self.partial_gate: threading.Event | None = None
        self.partial_entered = threading.Event()

    def transcribe(self, samples, model_path, language_mode, decode_pass):
        self.calls.append((decode_pass, model_path, language_mode, int(samples.size)))
        if decode_pass is PARTIAL:
            self.partial_entered.set()
            if self.partial_gate is not None:
                self.partial_gate.wait(timeout=5)
        error = self.errors.get(decode_pass)
        if error is not None:
            raise error
        return self.outputs[decode_pass]


class _StubSettings:
    language_mode = LanguageMode.AUTO
    model_id = "small"


class _StubModelStore:
    def model_path(self, model_id: str) -> str:
        return f"/models/{model_id}"


class _StubOutputSink:
    def __init__(self) -> None:
        self.delivered: list[str] = []

    def deliver(self, text: str) -> bool:
        self.delivered.append(text)
        return True


class _StubUsage:
    def __init__(self) -> None:
        self.sessions: list[tuple[float, str]] = []

    def record_session(self, duration: float, text: str) -> None:
        self.sessions.append((duration, text))


class _StubDiagnostics:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@dataclass
class _Harness:
    scheduler: TranscriptionScheduler
    engine: Any
    capture: Any
    clock: _Clock
    sink: _StubOutputSink
    usage: _StubUsage
    diagnostics: _StubDiagnostics
    partials: list[str] = field(default_factory=list)
    partial_seen: threading.Event = field(default_factory=threading.Event)

    def record(self, seconds: float) -> Any:
        self.scheduler.start_recording()
        self.clock.now += seconds
        return self.scheduler.stop_and_transcribe()

    def flush_partials(self) -> None:
        self.scheduler._executor.submit(lambda: None).result(timeout=5)


@pytest.fixture
def make_harness():
    created: list[TranscriptionScheduler] = []

    def _make(engine: Any = None, capture: Any = None, on_state_change: Any = None) -> _Harness:
        clock = _Clock()
        sink = _StubOutputSink()
        usage = _StubUsage()
        diagnostics = _StubDiagnostics()
        partials: list[str] = []
        partial_seen = threading.Event()

        def on_partial(text: str) -> None:
            partials.append(text)
            partial_seen.set()

        scheduler = TranscriptionScheduler(
            engine=engine or _StubEngine(),
            capture=capture or _StubCapture(),
            model_store=_StubModelStore(),
            settings=_StubSettings(),
            output_sink=sink,
            usage_sink=usage,
            diagnostics=diagnostics,
            config=SchedulerConfig(partial_interval=60.0),
            on_partial=on_partial,
            on_state_change=on_state_change,
            clock=clock,
        )
        created.append(scheduler)
        return _Harness(
            scheduler=scheduler,
            engine=scheduler.engine,
            capture=scheduler.capture,
            clock=clock,
            sink=sink,
            usage=usage,
            diagnostics=diagnostics,
            partials=partials,
            partial_seen=partial_seen,
        )

    yield _make

    for scheduler in created:
        scheduler.shutdown()


def test_start_recording_enters_recording_once(make_harness) -> None:
    h = make_harness()

    assert h.scheduler.start_recording() is True
    assert h.scheduler.start_recording() is False

    assert h.scheduler.state is SchedulerState.RECORDING
    assert h.capture.started == 1
    assert h.diagnostics.names() == [events.SESSION_START]


def test_start_failure_leaves_scheduler_idle(make_harness) -> None:
    h = make_harness()
    h.capture.start_error = EngineStartError("no microphone")

    with pytest.raises(EngineStartError):
        h.scheduler.start_recording()

    assert h.scheduler.state is SchedulerState.IDLE
    assert h.scheduler.stop_and_transcribe() is None


def test_short_session_is_no_speech_without_decoding(make_harness) -> None:
    h = make_harness()

    result = h.record(0.10)

    assert result.outcome is SessionOutcome.NO_SPEECH
    assert h.engine.calls == []
    assert h.capture.stopped == 1
    assert h.scheduler.state is SchedulerState.IDLE
    assert events.NO_SPEECH in h.diagnostics.names()


def test_short_speech_window_is_no_speech(make_harness) -> None:
    h = make_harness(capture=_StubCapture(window_samples=1000))

    result = h.record(1.0)

    assert result.outcome is SessionOutcome.NO_SPEECH
    assert result.reason == "window_too_short"
    assert h.engine.calls == []


def test_accepted_transcript_is_delivered_and_recorded(make_harness) -> None:
    h = make_harness()

    result = h.record(2.0)

    assert result.outcome is SessionOutcome.ACCEPTED
    assert result.accepted
    assert result.text == "hello there friend"
    assert result.output.detected_language_code == "en"
    assert h.sink.delivered == ["hello there friend"]
    assert h.usage.sessions == [(2.0, "hello there friend")]
    assert h.engine.calls == [(FINAL, "/models/small", LanguageMode.AUTO, 16000)]
    assert h.diagnostics.names() == [
        events.SESSION_START,
        events.SESSION_STOP,
        events.FINAL_DECODE,
        events.TRANSCRIPT_ACCEPTED,
    ]
    assert h.scheduler.state is SchedulerState.IDLE


def test_implausible_transcript_is_rejected(make_harness) -> None:
    h = make_harness()
    h.engine.outputs[FINAL] = TranscriptionOutput("one two three four five six", "en", 0.9)

    result = h.record(0.5)

    assert result.outcome is SessionOutcome.REJECTED
    assert result.reason == acceptance.SHORT_AUDIO_LONG_TEXT
    assert h.sink.delivered == []
    assert h.usage.sessions == []
    rejected = [f for name, f in h.diagnostics.events if name == events.TRANSCRIPT_REJECTED]
    assert rejected[0]["reason"] == acceptance.SHORT_AUDIO_LONG_TEXT


def test_repeated_short_transcript_is_rejected(make_harness) -> None:
    h = make_harness()
    h.engine.outputs[FINAL] = TranscriptionOutput("Okay.", "en", 0.9)

    first = h.record(0.8)
    second = h.record(0.8)
    third = h.record(1.5)

    assert first.outcome is SessionOutcome.ACCEPTED
    assert second.outcome is SessionOutcome.REJECTED
    assert second.reason == acceptance.REPEATED_TEXT
    assert third.outcome is SessionOutcome.ACCEPTED


@pytest.mark.parametrize(
    "error",
    [DecodeError("decode failed"), ModelLoadError("model missing")],
)
def test_final_decode_failure_is_a_decode_error_outcome(make_harness, error) -> None:
    h = make_harness()
    h.engine.errors[FINAL] = error

    result = h.record(2.0)

    assert result.outcome is SessionOutcome.DECODE_ERROR
    assert result.error == str(error)
    assert h.sink.delivered == []
    assert events.DECODE_ERROR in h.diagnostics.names()
    assert h.scheduler.state is SchedulerState.IDLE


def test_cancel_stops_without_decoding(make_harness) -> None:
    h = make_harness()
    h.scheduler.start_recording()

    assert h.scheduler.cancel() is True

    assert h.scheduler.state is SchedulerState.IDLE
    assert h.capture.stopped == 1
    assert h.engine.calls == []
    assert h.scheduler.cancel() is False


def test_partial_tick_updates_draft(make_harness) -> None:
    h = make_harness()
    h.scheduler.start_recording()

    h.scheduler._partial_tick(h.scheduler._session_id)

    assert h.partial_seen.wait(timeout=5)
    assert h.partials == ["hello"]
    assert h.scheduler.latest_draft == "hello"
    assert h.engine.calls[0][0] is PARTIAL
    assert not h.scheduler.partial_in_flight


def test_partial_tick_skips_when_buffer_is_short(make_harness) -> None:
    capture = _StubCapture(buffered=4799)
    h = make_harness(capture=capture)
    h.scheduler.start_recording()

    h.scheduler._partial_tick(h.scheduler._session_id)
    h.flush_partials()

    assert h.engine.calls == []


def test_partial_tick_skips_while_decode_in_flight(make_harness) -> None:
    h = make_harness()
    h.engine.partial_gate = threading.Event()
    h.scheduler.start_recording()
    session = h.scheduler._session_id

    h.scheduler._partial_tick(session)
    assert h.engine.partial_entered.wait(timeout=5)
    h.scheduler._partial_tick(session)
    h.scheduler._partial_tick(session)

    assert len(h.engine.calls) == 1
    assert h.scheduler.partial_in_flight

    h.engine.partial_gate.set()
    h.flush_partials()
    assert not h.scheduler.partial_in_flight


def test_partial_result_after_session_end_is_discarded(make_harness) -> None:
    h = make_harness()
    h.engine.partial_gate = threading.Event()
    h.scheduler.start_recording()
    h.scheduler._partial_tick(h.scheduler._session_id)
    assert h.engine.partial_entered.wait(timeout=5)

    h.clock.now = 2.0
    result = h.scheduler.stop_and_transcribe()
    h.engine.partial_gate.set()
    h.flush_partials()

    assert result.outcome is SessionOutcome.ACCEPTED
    assert h.partials == []
    assert h.scheduler.latest_draft == ""
    assert events.PARTIAL_DECODE not in h.diagnostics.names()


def test_partial_failure_is_swallowed(make_harness) -> None:
    h = make_harness()
    h.engine.errors[PARTIAL] = DecodeError("partial failed")
    h.scheduler.start_recording()

    h.scheduler._partial_tick(h.scheduler._session_id)
    h.flush_partials()

    assert h.scheduler.state is SchedulerState.RECORDING
    assert not h.scheduler.partial_in_flight
    assert h.partials == []


def test_partial_loop_stops_when_recording_ends(make_harness) -> None:
    h = make_harness()
    h.scheduler.start_recording()
    thread = h.scheduler._loop_thread

    h.clock.now = 1.0
    h.scheduler.stop_and_transcribe()

    assert thread is not None and not thread.is_alive()



def test_state_callback_can_read_scheduler_properties(make_harness) -> None:
    seen: list[tuple[SchedulerState, str, bool]] = []
    holder: dict[str, TranscriptionScheduler] = {}

    def on_state_change(state: SchedulerState) -> None:
        scheduler = holder["scheduler"]
        seen.append((state, scheduler.latest_draft, scheduler.partial_in_flight))

    h = make_harness(on_state_change=on_state_change)
    holder["scheduler"] = h.scheduler

    def _session() -> None:
        h.scheduler.start_recording()
        h.clock.now += 2.0
        h.scheduler.stop_and_transcribe()
        h.scheduler.start_recording()
        h.scheduler.cancel()

    worker = threading.Thread(target=_session, daemon=True)
    worker.start()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert [state for state, _, _ in seen] == [
        SchedulerState.RECORDING,
        SchedulerState.FINALIZING,
        SchedulerState.IDLE,
        SchedulerState.RECORDING,
        SchedulerState.FINALIZING,
        SchedulerState.IDLE,
    ]


def test_stuck_partial_blocks_new_partials_in_later_sessions(make_harness) -> None:
    h = make_harness()
    h.engine.partial_gate = threading.Event()

    h.scheduler.start_recording()
    h.scheduler._partial_tick(h.scheduler._session_id)
    assert h.engine.partial_entered.wait(timeout=5)
    h.scheduler.cancel()

    for _ in range(2):
        h.scheduler.start_recording()
        h.scheduler._partial_tick(h.scheduler._session_id)
        assert h.scheduler.partial_in_flight
        h.scheduler.cancel()

    partial_calls = [call for call in h.engine.calls if call[0] is PARTIAL]
    assert len(partial_calls) == 1

    h.engine.partial_gate.set()
    h.flush_partials()
    assert not h.scheduler.partial_in_flight

    h.scheduler.start_recording()
    h.scheduler._partial_tick(h.scheduler._session_id)
    assert h.partial_seen.wait(timeout=5)
    assert [call[0] for call in h.engine.calls] == [PARTIAL, PARTIAL]
    assert h.partials == ["hello"]

class _StubPyAudio:
    """16 kHz mono input device."""

    def get_default_input_device_info(self) -> dict[str, Any]:
        return {"index": 0, "name": "Stub Mic", "defaultSampleRate": 16000.0, "maxInputChannels": 1}

    def get_format_from_width(self, width: int) -> int:
        return 8

    def is_format_supported(self, *args: Any, **kwargs: Any) -> bool:
        return True

    def open(self, **kwargs: Any) -> Any:
        class _Stream:
            def start_stream(self) -> None:
                pass

            def stop_stream(self) -> None:
                pass

            def close(self) -> None:
                pass

        return _Stream()

    def terminate(self) -> None:
        pass


class _Segment:
    def __init__(self, text: str) -> None:
        self.text = text
        self.avg_logprob = math.log(0.8)
        self.tokens = [1, 2, 3, 4]
        self.words = None


class _Info:
    language = "en"
    language_probability = 0.97


class _StubWhisperModel:
    def __init__(self) -> None:
        self.audio_sizes: list[int] = []

    def transcribe(self, audio: np.ndarray, **kwargs: Any):
        self.audio_sizes.append(int(audio.size))
        return iter([_Segment(" hello world ")]), _Info()


def test_end_to_end_session_trims_decodes_and_accepts(make_harness) -> None:
    model = _StubWhisperModel()
    engine = InferenceEngine(model_factory=lambda path: model)
    capture = AudioCapture(audio_factory=_StubPyAudio)
    h = make_harness(engine=engine, capture=capture)

    h.scheduler.start_recording()

    # 3.5 s in the buffer, speech only in the last 1.8 s
    silence = np.zeros(27200)
    t = np.arange(28800) / 16000.0
    speech = 0.1 * np.sin(2 * np.pi * 220.0 * t)
    pcm = (np.concatenate([silence, speech]) * 32767).astype(np.int16)
    for start in range(0, pcm.size, 1600):
        capture._consume(pcm[start : start + 1600].tobytes())

    h.clock.now = 2.5
    result = h.scheduler.stop_and_transcribe()

    # Leading pad before the speech; the trailing pad is clamped at the end
    assert model.audio_sizes == [28800 + 2880]
    assert result.outcome is SessionOutcome.ACCEPTED
    assert result.text == "hello world"
    assert result.output.confidence == pytest.approx(0.8)
    assert h.usage.sessions == [(2.5, "hello world")]
    assert h.sink.delivered == ["hello world"]
    assert engine.language_state.streak == ("en", 1)
