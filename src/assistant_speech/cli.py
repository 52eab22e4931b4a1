"""Command-line entry point.

Usage:
    assistant-speech [--settings FILE] diagnose
    assistant-speech status [LOCALE ...]
    assistant-speech install LOCALE
    assistant-speech uninstall LOCALE
    assistant-speech speak TEXT [--locale LOCALE]
"""

import argparse
import threading
from pathlib import Path

from assistant_speech.audio.speech_output import SpeechOutputOrchestrator, SpeechStatus
from assistant_speech.core.logging_system import setup_logging
from assistant_speech.models.store import Downloading, Failed, ModelStore
from assistant_speech.settings import SpeechSettings
from assistant_speech.version import get_version


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="assistant-speech", description="Voice assistant speech output"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    parser.add_argument("--settings", type=Path, help="Path to settings JSON file")
    parser.add_argument("--log-level", help="Override log level (DEBUG, INFO, ...)")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("diagnose", help="Check speech recognition and synthesis")

    status = commands.add_parser("status", help="Show embedded model install state")
    status.add_argument("locales", nargs="*", help="Locales to show (default: all catalog entries)")

    install = commands.add_parser("install", help="Download the embedded model for a locale")
    install.add_argument("locale")

    uninstall = commands.add_parser("uninstall", help="Remove the embedded model for a locale")
    uninstall.add_argument("locale")

    speak = commands.add_parser("speak", help="Speak text")
    speak.add_argument("text")
    speak.add_argument("--locale", help="Locale hint for text without Latin or Japanese script")
    return parser


def _describe_state(store: ModelStore, locale: str) -> str:
    state = store.state_of(locale)
    if isinstance(state, Downloading):
        return f"downloading ({state.progress:.0%})"
    if isinstance(state, Failed):
        return f"failed: {state.reason}"
    return type(state).__name__


def _cmd_diagnose(speech: SpeechOutputOrchestrator) -> int:
    report = speech.get_diagnostic()
    print(f"Speech recognition: {report.stt_status.value} ({report.stt_engine or '-'})")
    print(f"Speech synthesis:   {report.tts_status.value} ({report.tts_engine or '-'})")
    if report.missing_languages:
        print(f"Missing languages:  {', '.join(report.missing_languages)}")
    for suggestion in report.suggestions:
        action = f" [{suggestion.action_label}]" if suggestion.action_label else ""
        print(f"  - {suggestion.message}{action}")
    return 0 if report.is_ready else 1


def _cmd_status(speech: SpeechOutputOrchestrator, locales: list[str]) -> int:
    store = speech.store
    for locale in locales or store.catalog.languages():
        descriptor = store.descriptor_for(locale)
        print(f"{locale}: {descriptor.storage_folder_name} {_describe_state(store, locale)}")
    return 0


def _cmd_install(speech: SpeechOutputOrchestrator, locale: str) -> int:
    finished = threading.Event()

    def on_progress(fraction: float) -> None:
        print(f"{locale}: {fraction:.0%}")

    def on_complete(ok: bool) -> None:
        finished.set()

    handle = speech.download_model(locale, on_progress=on_progress, on_complete=on_complete)
    try:
        finished.wait()
    except KeyboardInterrupt:
        handle.cancel()
        handle.wait()
    print(f"{locale}: {_describe_state(speech.store, locale)}")
    return 0 if handle.succeeded else 1


def _cmd_speak(speech: SpeechOutputOrchestrator, text: str, locale: str | None) -> int:
    outcome = speech.speak(text, locale).result()
    print(f"{outcome.status.value} via {outcome.backend.value}")
    if outcome.error:
        print(f"  {outcome.error}")
    return 0 if outcome.status in (SpeechStatus.COMPLETED, SpeechStatus.SKIPPED) else 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    settings = SpeechSettings()
    settings.load(args.settings)
    setup_logging(args.log_level or settings.log_level, settings.log_file)

    speech = SpeechOutputOrchestrator.from_settings(settings)
    try:
        if args.command == "diagnose":
            return _cmd_diagnose(speech)
        if args.command == "status":
            return _cmd_status(speech, args.locales)
        if args.command == "install":
            return _cmd_install(speech, args.locale)
        if args.command == "uninstall":
            removed = speech.store.uninstall(args.locale)
            print(f"{args.locale}: {'removed' if removed else 'not installed'}")
            return 0
        if args.command == "speak":
            return _cmd_speak(speech, args.text, args.locale)
    finally:
        speech.shutdown()
    return 2
