"""Local transcription engines driven as subprocesses."""

from __future__ import annotations

import json
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from ..errors import TranscriptionError, TranscriptionErrorKind
from .debug import noop_debug


WHISPER_CPP = "whisper-cpp"
WHISPERKIT = "whisperkit"
OPENAI_WHISPER = "openai-whisper"


def ggml_model_candidates(model: str, home: Optional[Path] = None) -> list[Path]:
    home = home or Path.home()
    name = f"ggml-{model}.bin"
    return [
        home / ".local" / "share" / "whisper" / name,
        home / ".cache" / "whisper" / name,
        Path("/usr/local/share/whisper") / name,
        Path("/opt/homebrew/share/whisper") / name,
    ]


def resolve_ggml_model(model: str, model_path: Optional[str] = None) -> Path:
    """Return the whisper.cpp model file to use, or raise MODEL_NOT_FOUND."""
    if model_path:
        p = Path(model_path).expanduser()
        if p.exists():
            return p
        raise TranscriptionError(
            TranscriptionErrorKind.MODEL_NOT_FOUND, f"Whisper model not found at: {p}"
        )
    candidates = ggml_model_candidates(model)
    for p in candidates:
        if p.exists():
            return p
    raise TranscriptionError(
        TranscriptionErrorKind.MODEL_NOT_FOUND,
        f"Whisper model ggml-{model}.bin not found; looked in "
        + ", ".join(str(p.parent) for p in candidates),
    )


def normalize_text(text: str) -> str:
    return text.replace("\r", " ").replace("\n", " ").strip()


def run_cancellable(
    cmd: Sequence[str],
    *,
    cancel_flag: Callable[[], bool] | None = None,
    debug: Callable[[str], None] = noop_debug,
) -> tuple[int, str, str]:
    """Run `cmd`, polling so a cancel request can terminate the child.

    Returns (returncode, stdout, stderr).
    """
    try:
        proc = subprocess.Popen(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise TranscriptionError(
            TranscriptionErrorKind.PROCESS_LAUNCH,
            f"Transcriber command '{cmd[0]}' could not be started: {exc}",
        ) from exc

    # Poll for completion or cancellation
    while proc.poll() is None:
        if cancel_flag and cancel_flag():
            debug(f"{Path(cmd[0]).name}: cancellation requested, terminating process")
            proc.terminate()
            try:
                proc.wait(timeout=2.0)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            proc.communicate()
            raise TranscriptionError(
                TranscriptionErrorKind.CANCELLED, "Transcription cancelled"
            )
        time.sleep(0.1)

    stdout, stderr = proc.communicate()
    return (
        proc.returncode,
        stdout.decode("utf-8", errors="ignore"),
        stderr.decode("utf-8", errors="ignore"),
    )


@dataclass(slots=True)
class LocalTranscriber:
    """Interface to the local whisper.cpp / WhisperKit / openai-whisper CLIs."""

    variant: str
    executable: str
    model: str = "base"
    model_path: Optional[str] = None
    language: Optional[str] = None
    translate: bool = False
    debug: Callable[[str], None] = noop_debug

    def transcribe(
        self, audio_path: str | Path, *, cancel_flag: Callable[[], bool] | None = None
    ) -> str:
        """Return normalized single-line transcript text for a 16 kHz mono WAV."""
        src = Path(audio_path)
        if not src.exists():
            raise TranscriptionError(
                TranscriptionErrorKind.INVALID_AUDIO, f"Audio file '{src}' not found."
            )
        if self.variant == WHISPER_CPP:
            return self._transcribe_whisper_cpp(src, cancel_flag=cancel_flag)
        if self.variant == OPENAI_WHISPER:
            return self._transcribe_openai_whisper(src, cancel_flag=cancel_flag)
        if self.variant == WHISPERKIT:
            return self._transcribe_whisperkit(src, cancel_flag=cancel_flag)
        raise ValueError(f"Unknown local transcriber variant: {self.variant}")

    def _check(self, rc: int, out: str, err: str) -> None:
        name = Path(self.executable).name
        self.debug(f"{name} rc={rc}")
        if rc != 0:
            self.debug(f"{name} stderr: {err.strip()}")
            raise TranscriptionError(
                TranscriptionErrorKind.PROCESS_FAILED,
                f"{name} failed ({rc}): {err.strip() or out.strip()}",
            )

    # ---- whisper.cpp: writes <input>.txt next to the input ----
    def _transcribe_whisper_cpp(
        self, audio_path: Path, *, cancel_flag: Callable[[], bool] | None = None
    ) -> str:
        model_file = resolve_ggml_model(self.model, self.model_path)
        cmd = [
            self.executable,
            "-m",
            str(model_file),
            "-f",
            str(audio_path),
            "--output-txt",
            "--no-timestamps",
        ]
        if self.language:
            cmd.extend(["-l", self.language])
        if self.translate:
            cmd.append("--translate")

        sidecar = Path(str(audio_path) + ".txt")
        try:
            rc, out, err = run_cancellable(cmd, cancel_flag=cancel_flag, debug=self.debug)
            self._check(rc, out, err)
            if sidecar.exists():
                text = sidecar.read_text(encoding="utf-8", errors="ignore")
                self.debug(f"whisper-cpp read {len(text)} chars from {sidecar.name}")
            else:
                text = out
        finally:
            sidecar.unlink(missing_ok=True)
        return normalize_text(text)

    # ---- WhisperKit: transcript on stdout ----
    def _transcribe_whisperkit(
        self, audio_path: Path, *, cancel_flag: Callable[[], bool] | None = None
    ) -> str:
        cmd = [
            self.executable,
            "transcribe",
            "--audio-path",
            str(audio_path),
            "--model",
            self.model,
        ]
        if self.language:
            cmd.extend(["--language", self.language])
        if self.translate:
            cmd.extend(["--task", "translate"])
        rc, out, err = run_cancellable(cmd, cancel_flag=cancel_flag, debug=self.debug)
        self._check(rc, out, err)
        return normalize_text(out)

    # ---- openai-whisper: writes <stem>.txt into --output_dir ----
    def _transcribe_openai_whisper(
        self, audio_path: Path, *, cancel_flag: Callable[[], bool] | None = None
    ) -> str:
        tmpdir = Path(tempfile.mkdtemp(prefix="talkdraft_whisper_"))
        txt_path = tmpdir / (audio_path.stem + ".txt")
        json_path = tmpdir / (audio_path.stem + ".json")
        self.debug(f"whisper tmpdir={tmpdir} expect_txt={txt_path.name}")
        cmd = [self.executable, str(audio_path), "--model", self.model]
        if self.language:
            cmd.extend(["--language", self.language])
        if self.translate:
            cmd.extend(["--task", "translate"])
        cmd.extend(
            [
                "--output_dir",
                str(tmpdir),
                "--output_format",
                "txt",
                "--verbose",
                "False",
            ]
        )
        try:
            rc, out, err = run_cancellable(cmd, cancel_flag=cancel_flag, debug=self.debug)
            self._check(rc, out, err)
            text = ""
            if txt_path.exists():
                text = txt_path.read_text(encoding="utf-8", errors="ignore").strip()
            if not text and json_path.exists():
                text = _segments_text(json_path, self.debug)
            self.debug(
                f"whisper read {len(text)} chars from "
                f"{txt_path.name if txt_path.exists() else 'N/A'}"
            )
        finally:
            for p in tmpdir.glob("*"):
                p.unlink(missing_ok=True)
            tmpdir.rmdir()
        return normalize_text(text)


def _segments_text(json_path: Path, debug: Callable[[str], None]) -> str:
    try:
        payload = json.loads(json_path.read_text(encoding="utf-8", errors="ignore"))
    except (OSError, ValueError) as exc:
        debug(f"whisper json parse failed: {exc}")
        return ""
    segments: Iterable[dict[str, str]] = payload.get("segments", [])
    return " ".join(seg.get("text", "") for seg in segments if seg).strip()
