"""Turn an MP3 into PCM WAV files with the external ``lame`` encoder.

The source is first squeezed to a tiny mono MP3 (16 kbit/s, 8 kHz) and then
decoded, which keeps the WAV small enough to walk quickly. In stereo mode the
encoding runs twice, each time turning the opposite channel down, so every
output file carries one channel.
"""
from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Sequence

logger = logging.getLogger("waveform_builder.transcode")

LAME = "lame"
ENCODE_ARGS = ("-m", "m", "-S", "-f", "-b", "16", "--resample", "8")
# lame rejects a scale of 0
MUTED_SCALE = "0.1"


class TranscodeError(RuntimeError):
    """Raised when ``lame`` is missing or fails."""


def run_lame(args: Sequence[str]) -> None:
    command = [LAME, *args]
    logger.debug("Running %s", " ".join(command))
    try:
        subprocess.run(command, check=True, capture_output=True)
    except FileNotFoundError as exc:
        raise TranscodeError(f"{LAME} encoder not found on PATH") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
        raise TranscodeError(
            f"{LAME} exited with status {exc.returncode}: {stderr}"
        ) from exc


def decode_to_wav(source: Path, target: Path, extra_args: Sequence[str] = ()) -> Path:
    """Re-encode ``source`` to a small mono MP3 and decode it to ``target``."""

    intermediate = target.with_suffix(".mp3")
    run_lame([str(source), *extra_args, *ENCODE_ARGS, str(intermediate)])
    run_lame(["-S", "--decode", str(intermediate), str(target)])
    intermediate.unlink(missing_ok=True)
    return target


def generate_wav_files(source: Path, workdir: Path, stereo: bool) -> List[Path]:
    """Produce the PCM files to draw: one for mono, left and right for stereo."""

    source = Path(source)
    if not source.is_file():
        raise FileNotFoundError(f'The file "{source}" does not exist')
    workdir.mkdir(parents=True, exist_ok=True)

    # work on a copy so the encoder never touches the caller's file
    original = workdir / f"{source.stem}_o.mp3"
    shutil.copyfile(source, original)

    if not stereo:
        return [decode_to_wav(original, workdir / f"{source.stem}.wav")]

    return [
        decode_to_wav(
            original, workdir / f"{source.stem}_l.wav", ("--scale-r", MUTED_SCALE)
        ),
        decode_to_wav(
            original, workdir / f"{source.stem}_r.wav", ("--scale-l", MUTED_SCALE)
        ),
    ]
