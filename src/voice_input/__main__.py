#!/usr/bin/env python3
"""
Voice Input console entry point.

Usage:
    python -m voice_input [options]

Options:
    --list-devices           List available audio input devices and exit
    --config PATH            Path to configuration file
    --model ID               Model identifier or path (overrides config)
    --language MODE          auto, russian, english or hebrew (or ru/en/he)
    --quality MODE           fast, balanced or high
    --transcribe-file PATH   Decode an audio file and exit
    --verbose, -v            Enable verbose debug logging
    --help                   Show this help message

Without --transcribe-file an interactive push-to-talk loop runs in the
terminal: press Enter to start recording and Enter again to stop.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from voice_input import __version__
from voice_input.common.config import VoiceInputConfig
from voice_input.common.logging_config import setup_logging
from voice_input.common.model_store import LocalModelStore
from voice_input.common.models import (
    LanguageMode,
    QualityMode,
    SessionOutcome,
    SessionResult,
    TranscriptionPass,
)
from voice_input.common.output import ClipboardOutputSink, ConfigSettings, UsageCounter
from voice_input.core.acceptance import AcceptancePolicy
from voice_input.core.audio_capture import AudioCapture
from voice_input.core.audio_utils import load_audio
from voice_input.core.diagnostics import LoggingDiagnostics
from voice_input.core.errors import EngineStartError, VoiceInputError
from voice_input.core.ring_buffer import RingBuffer
from voice_input.core.scheduler import SchedulerConfig, TranscriptionScheduler
from voice_input.core.speech_preprocessor import (
    SAMPLE_RATE,
    PreprocessorConfig,
    SpeechPreprocessor,
)
from voice_input.core.stt.engine import InferenceEngine
from voice_input.core.stt.language import AdaptiveLanguageState

logger = logging.getLogger(__name__)

console = Console()

_OUTCOME_STYLES = {
    SessionOutcome.ACCEPTED: "bold green",
    SessionOutcome.NO_SPEECH: "yellow",
    SessionOutcome.REJECTED: "yellow",
    SessionOutcome.DECODE_ERROR: "bold red",
}


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Voice Input: push-to-talk local speech-to-text",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List available audio input devices and exit",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--model",
        type=str,
        help="Model identifier or path",
    )
    parser.add_argument(
        "--language",
        type=str,
        help="Language mode: auto, russian, english, hebrew (or ru/en/he)",
    )
    parser.add_argument(
        "--quality",
        type=str,
        choices=[mode.value for mode in QualityMode],
        help="Final pass quality mode",
    )
    parser.add_argument(
        "--transcribe-file",
        type=str,
        metavar="PATH",
        help="Decode an audio file with a final pass and exit",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser.parse_args(argv)


def list_audio_devices() -> None:
    """List available audio input devices."""
    devices = AudioCapture.list_input_devices()
    if not devices:
        console.print("[yellow]No audio input devices found.[/yellow]")
        console.print("Install PyAudio:")
        console.print("  Arch: sudo pacman -S python-pyaudio")
        console.print("  Ubuntu/Debian: sudo apt install python3-pyaudio")
        console.print("  Fedora: sudo dnf install python3-pyaudio")
        return

    table = Table(title="Available Audio Input Devices")
    table.add_column("Index", justify="right")
    table.add_column("Name")
    table.add_column("Channels", justify="right")
    table.add_column("Sample Rate", justify="right")
    for device in devices:
        table.add_row(
            str(device["index"]),
            str(device["name"]),
            str(device["channels"]),
            str(device["sample_rate"]),
        )
    console.print(table)


def apply_overrides(config: VoiceInputConfig, args: argparse.Namespace) -> None:
    """Apply command line overrides on top of file and environment settings."""
    if args.model:
        config.set("engine", "model", value=args.model)
    if args.language:
        mode = LanguageMode.parse(args.language)
        config.set("engine", "language_mode", value=mode.value)
    if args.quality:
        config.set("engine", "quality_mode", value=args.quality)


def build_engine(config: VoiceInputConfig) -> InferenceEngine:
    """Create the inference engine from the engine and adaptive_language sections."""
    engine_cfg = config.section("engine")
    adaptive_cfg = config.section("adaptive_language")
    settings = ConfigSettings(config)
    return InferenceEngine(
        device=str(engine_cfg.get("device") or "auto"),
        compute_type=str(engine_cfg.get("compute_type") or "default"),
        cpu_threads=engine_cfg.get("cpu_threads"),
        download_root=str(config.models_dir),
        supported_languages=engine_cfg.get("supported_languages") or ("ru", "en", "he"),
        quality_mode_source=lambda: settings.quality_mode,
        language_state=AdaptiveLanguageState(
            min_confidence=float(adaptive_cfg.get("min_confidence", 0.55)),
            streak_length=int(adaptive_cfg.get("streak_length", 3)),
        ),
        diagnostics=LoggingDiagnostics(),
    )


def build_scheduler(
    config: VoiceInputConfig,
    engine: InferenceEngine,
    usage: UsageCounter,
) -> TranscriptionScheduler:
    """Wire capture, engine and adapters into a scheduler."""
    audio_cfg = config.section("audio")
    buffer_seconds = float(audio_cfg.get("buffer_seconds", 4.0))
    capture = AudioCapture(
        ring_buffer=RingBuffer(int(SAMPLE_RATE * buffer_seconds)),
        device_index=audio_cfg.get("device_index"),
        chunk_size=int(audio_cfg.get("chunk_size", 2048)),
        preprocessor=SpeechPreprocessor(PreprocessorConfig.from_config(config)),
    )
    output_sink = (
        ClipboardOutputSink() if config.get("output", "auto_copy", default=True) else None
    )
    return TranscriptionScheduler(
        engine=engine,
        capture=capture,
        model_store=LocalModelStore(config.models_dir),
        settings=ConfigSettings(config),
        output_sink=output_sink,
        usage_sink=usage,
        diagnostics=LoggingDiagnostics(),
        policy=AcceptancePolicy.from_config(config),
        config=SchedulerConfig.from_config(config),
        on_partial=lambda text: console.print(f"[dim]… {text}[/dim]") if text else None,
    )


def print_result(result: SessionResult) -> None:
    style = _OUTCOME_STYLES[result.outcome]
    if result.outcome is SessionOutcome.ACCEPTED:
        language = result.output.detected_language_code if result.output else None
        subtitle = f"{result.duration:.1f}s • {language or 'unknown'}"
        if not result.metrics.get("delivered"):
            subtitle += " • not copied"
        console.print(Panel(result.text, title="Transcription", subtitle=subtitle, border_style="green"))
    elif result.outcome is SessionOutcome.NO_SPEECH:
        console.print(f"[{style}]No speech detected[/]")
    elif result.outcome is SessionOutcome.REJECTED:
        console.print(f"[{style}]Discarded likely artifact ({result.reason}):[/] {result.text}")
    else:
        console.print(f"[{style}]Decode error:[/] {result.error}")


def transcribe_file(config: VoiceInputConfig, path: str) -> int:
    """Decode one audio file through the preprocessor and a final pass."""
    try:
        samples, _ = load_audio(path, target_sample_rate=SAMPLE_RATE)
    except (OSError, RuntimeError, ImportError) as e:
        console.print(f"[bold red]Could not read {path}:[/] {e}")
        return 1

    preprocessor = SpeechPreprocessor(PreprocessorConfig.from_config(config))
    window = preprocessor.process(samples)
    model_path = LocalModelStore(config.models_dir).model_path(config.model_id)

    with build_engine(config) as engine:
        try:
            output = engine.transcribe(
                window, model_path, config.language_mode, TranscriptionPass.FINAL
            )
        except VoiceInputError as e:
            console.print(f"[bold red]Decode error:[/] {e}")
            return 1

    if not output.text:
        console.print("[yellow]No speech detected[/yellow]")
        return 0

    console.print(output.text)
    logger.info(
        f"Decoded {Path(path).name}: language={output.detected_language_code or 'unknown'} "
        f"confidence={output.confidence:.2f}"
    )
    if config.get("output", "auto_copy", default=True):
        ClipboardOutputSink().deliver(output.text)
    return 0


def run_interactive(config: VoiceInputConfig) -> int:
    """Console push-to-talk loop: Enter starts, Enter stops, Ctrl+C quits."""
    usage = UsageCounter()
    engine = build_engine(config)
    scheduler = build_scheduler(config, engine, usage)

    if config.get("engine", "warmup", default=True):
        model_path = scheduler.model_store.model_path(config.model_id)
        with console.status(f"Loading model {config.model_id}..."):
            try:
                engine.warmup(model_path)
            except VoiceInputError as e:
                console.print(f"[bold red]Model load failed:[/] {e}")
                return 1

    console.print(
        f"Language: {config.language_mode.display_name} • "
        f"Quality: {config.quality_mode.value} • Model: {config.model_id}"
    )
    try:
        with scheduler:
            while True:
                input("Press Enter to start recording (Ctrl+C to quit)... ")
                try:
                    scheduler.start_recording()
                except EngineStartError as e:
                    console.print(f"[bold red]Could not start recording:[/] {e}")
                    continue

                input("Recording... press Enter to stop. ")
                with console.status("Transcribing..."):
                    result = scheduler.stop_and_transcribe()
                if result is not None:
                    print_result(result)
    except (KeyboardInterrupt, EOFError):
        console.print()
    finally:
        engine.unload()

    stats = usage.stats
    console.print(
        f"{stats.sessions} session(s), {stats.seconds:.1f}s dictated, {stats.words} words"
    )
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.list_devices:
        list_audio_devices()
        return 0

    config = VoiceInputConfig(Path(args.config) if args.config else None)
    try:
        apply_overrides(config, args)
    except ValueError as e:
        console.print(f"[bold red]{e}[/]")
        return 2

    try:
        setup_logging(
            verbose=args.verbose,
            level=str(config.get("logging", "level", default="INFO")),
            wipe_on_startup=bool(config.get("logging", "wipe_on_startup", default=True)),
        )
    except Exception as e:
        print(f"WARNING: Failed to set up logging: {e}", file=sys.stderr)

    logger.info(f"Voice Input v{__version__}, config: {config.config_path}")

    try:
        if args.transcribe_file:
            return transcribe_file(config, args.transcribe_file)
        return run_interactive(config)
    except Exception as e:
        logging.exception(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
