"""Terminal front-end: record, list devices and recover preserved recordings."""

from __future__ import annotations

import argparse
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from .common.debug import make_debug
from .common.fs import StorageLayout
from .common.settings import get_settings_path, load_settings
from .engine import TranscriptionEngine, detect_backend
from .errors import CaptureError, SessionError, TalkDraftError
from .events import EventChannel, RecordingDegraded, StateChanged
from .recorder import list_input_devices
from .recording_transcriber import list_recordings, read_draft, transcribe_recording
from .session import RecordingSession, SessionState


def _print_state(events: EventChannel, stop: threading.Event) -> None:
    while not stop.is_set():
        ev = events.get(timeout=0.2)
        if isinstance(ev, StateChanged) and ev.state in (
            SessionState.RECORDING.value,
            SessionState.PROCESSING.value,
        ):
            print(f"[{ev.state}]", file=sys.stderr, flush=True)
        elif isinstance(ev, RecordingDegraded):
            print(f"warning: {ev.message}", file=sys.stderr, flush=True)


def _cancel(session: RecordingSession) -> None:
    if session.state is not SessionState.PROCESSING:
        return
    try:
        session.cancel()
    except SessionError:
        pass  # finished in the meantime


def _cmd_record(_args: argparse.Namespace) -> int:
    settings = load_settings()
    events = EventChannel()
    session = RecordingSession.from_settings(settings, events=events)
    stop_printer = threading.Event()
    printer = threading.Thread(target=_print_state, args=(events, stop_printer), daemon=True)
    printer.start()
    try:
        try:
            session.start()
        except CaptureError as exc:
            print(f"TalkDraft: failed to start capture: {exc}", file=sys.stderr)
            return 1
        try:
            input("Recording... press Enter to stop.\n")
        except KeyboardInterrupt:
            # Keep what was recorded, skip transcription
            session.stop()
            _cancel(session)
            outcome = session.wait()
        else:
            session.stop()
            print("Transcribing... (Ctrl+C to cancel)", file=sys.stderr, flush=True)
            try:
                outcome = session.wait()
            except KeyboardInterrupt:
                _cancel(session)
                outcome = session.wait()
    finally:
        stop_printer.set()
        printer.join(timeout=1.0)

    assert outcome is not None
    if outcome.state is SessionState.CANCELLED:
        print(f"Cancelled. Recording kept at {outcome.recording_path}", file=sys.stderr)
        return 130
    if outcome.text is None:
        print(f"No transcript available: {outcome.error}", file=sys.stderr)
        return 1
    if outcome.degraded:
        print("warning: final transcription failed; using the draft", file=sys.stderr)
    print(outcome.text)
    return 0 if outcome.state is SessionState.COMPLETE else 2


def _cmd_devices(_args: argparse.Namespace) -> int:
    names = list_input_devices()
    if not names:
        print("No input devices found", file=sys.stderr)
        return 1
    for name in names:
        print(name)
    return 0


def _cmd_backend(_args: argparse.Namespace) -> int:
    backend = detect_backend(load_settings())
    print(backend.describe())
    return 0 if backend.available else 1


def _cmd_recordings(_args: argparse.Namespace) -> int:
    layout = StorageLayout.at(load_settings().data_dir)
    for p in list_recordings(layout.data_dir):
        print(p)
    return 0


def _cmd_recover(args: argparse.Namespace) -> int:
    settings = load_settings()
    layout = StorageLayout.at(settings.data_dir)
    path = Path(args.recording)
    if args.draft:
        text = read_draft(path, layout)
        if text is None:
            print(f"No draft for {path.name}", file=sys.stderr)
            return 1
        print(text)
        return 0
    engine = TranscriptionEngine.from_settings(settings, debug=make_debug("recover"))
    result = transcribe_recording(path, engine, layout, overwrite=args.overwrite)
    print(result.transcript)
    if result.output_path is not None:
        print(f"saved to {result.output_path}", file=sys.stderr)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="talkdraft",
        description="Record from the microphone and transcribe, with a live draft as a safety net.",
        epilog=f"Settings file: {get_settings_path()}",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("record", help="record until Enter, then transcribe").set_defaults(func=_cmd_record)
    sub.add_parser("devices", help="list input devices").set_defaults(func=_cmd_devices)
    sub.add_parser("backend", help="show the detected transcription backend").set_defaults(
        func=_cmd_backend
    )
    sub.add_parser("recordings", help="list preserved recordings").set_defaults(func=_cmd_recordings)
    rec = sub.add_parser("recover", help="transcribe a preserved recording")
    rec.add_argument("recording", help="path to a recording (.pcm or .wav)")
    rec.add_argument("--draft", action="store_true", help="print the saved draft instead")
    rec.add_argument("--overwrite", action="store_true", help="replace an existing transcript")
    rec.set_defaults(func=_cmd_recover)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except TalkDraftError as exc:
        print(f"TalkDraft: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
