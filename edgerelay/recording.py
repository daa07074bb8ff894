"""
Best-effort local recording of device audio.

RecordingSink writes every batch sent upstream into one WAV file per
segment:

    <output_dir>/<session_id>/segment_<n>.wav

When a segment is committed its file is finalized and, if a transcode
command is configured, transcoded in the background. Transcripts are kept
alongside and written to ``metadata.json`` when the sink is closed.

Any write failure abandons the recording for the rest of the session. The
relay itself never stops because of the sink.
"""

import asyncio
import json
import shlex
import wave
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from edgerelay.audio.chunks import AudioBatch
from edgerelay.config.logging_config import configure_logging
from edgerelay.config.models import AudioConfig, RecordingConfig
from edgerelay.errors import RecordingSinkFailure

logger = configure_logging("recording")


@dataclass
class SegmentRecording:
    """One finalized (or in-progress) segment file."""

    index: int
    path: Path
    bytes_written: int = 0
    transcript: Optional[str] = None
    transcoded_path: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "path": str(self.path),
            "bytes_written": self.bytes_written,
            "transcript": self.transcript,
            "transcoded_path": str(self.transcoded_path) if self.transcoded_path else None,
        }


@dataclass
class RecordingMetadata:
    session_id: str
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    segments: List[SegmentRecording] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "segments": [segment.to_dict() for segment in self.segments],
        }


class RecordingSink:
    """Writes a session's audio to per-segment WAV files."""

    def __init__(
        self,
        session_id: str,
        config: Optional[RecordingConfig] = None,
        audio_config: Optional[AudioConfig] = None,
    ):
        self.session_id = session_id
        self.config = config or RecordingConfig()
        self.audio_config = audio_config or AudioConfig()
        self.session_dir = Path(self.config.output_dir) / session_id
        self.metadata = RecordingMetadata(session_id=session_id)

        self.abandoned = False
        self.closed = False
        self._wav: Optional[wave.Wave_write] = None
        self._current: Optional[SegmentRecording] = None
        self._next_index = 0
        self._transcode_tasks: List[asyncio.Task] = []

    @property
    def enabled(self) -> bool:
        return self.config.enabled and not self.abandoned and not self.closed

    def write(self, batch: AudioBatch) -> None:
        """Append a batch to the current segment file.

        Raises:
            RecordingSinkFailure: if the file cannot be written. The sink is
                abandoned and later calls are no-ops.
        """
        if not self.enabled or batch.is_empty:
            return

        try:
            if self._wav is None:
                self._open_segment()
            self._wav.writeframes(batch.data)
        except (OSError, wave.Error) as e:
            self._abandon()
            raise RecordingSinkFailure(f"Could not write recording: {e}") from e

        self._current.bytes_written += batch.byte_length

    def end_segment(self) -> Optional[SegmentRecording]:
        """Finalize the current segment file and schedule its transcode."""
        if self._wav is None or self._current is None:
            return None

        segment = self._current
        try:
            self._wav.close()
        except (OSError, wave.Error) as e:
            self._wav = None
            self._current = None
            self._abandon()
            raise RecordingSinkFailure(f"Could not finalize recording: {e}") from e

        self._wav = None
        self._current = None
        logger.info(
            f"[{self.session_id}] Saved segment {segment.index}: "
            f"{segment.path} ({segment.bytes_written} bytes)"
        )

        if self.config.transcode_command:
            self._transcode_tasks.append(asyncio.create_task(self._transcode(segment)))
        return segment

    def add_transcript(self, text: str) -> None:
        """Attach a transcript to the most recently finalized segment."""
        for segment in reversed(self.metadata.segments):
            if segment is not self._current and segment.transcript is None:
                segment.transcript = text
                return

    async def close(self) -> None:
        """Finalize any open segment, wait for transcodes and save metadata."""
        if self.closed:
            return

        if not self.abandoned:
            try:
                self.end_segment()
            except RecordingSinkFailure as e:
                logger.error(f"[{self.session_id}] {e}")
        self.closed = True

        if self._transcode_tasks:
            await asyncio.gather(*self._transcode_tasks, return_exceptions=True)
            self._transcode_tasks.clear()

        self.metadata.end_time = datetime.now(timezone.utc)
        if self.metadata.segments and not self.abandoned:
            try:
                with open(self.session_dir / "metadata.json", "w", encoding="utf-8") as f:
                    json.dump(self.metadata.to_dict(), f, indent=2)
            except OSError as e:
                logger.error(f"[{self.session_id}] Could not save recording metadata: {e}")

    def get_recording_summary(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "enabled": self.config.enabled,
            "abandoned": self.abandoned,
            "session_dir": str(self.session_dir),
            "segment_count": len(self.metadata.segments),
            "total_bytes": sum(s.bytes_written for s in self.metadata.segments),
            "segments": [s.to_dict() for s in self.metadata.segments],
        }

    def _open_segment(self) -> None:
        self.session_dir.mkdir(parents=True, exist_ok=True)
        index = self._next_index
        self._next_index += 1
        path = self.session_dir / f"segment_{index}.wav"

        wav = wave.open(str(path), "wb")
        wav.setnchannels(self.audio_config.channels)
        wav.setsampwidth(self.audio_config.sample_width)
        wav.setframerate(self.audio_config.sample_rate)

        self._wav = wav
        self._current = SegmentRecording(index=index, path=path)
        self.metadata.segments.append(self._current)
        logger.debug(f"[{self.session_id}] Recording segment {index} to {path}")

    def _abandon(self) -> None:
        self.abandoned = True
        if self._wav is not None:
            try:
                self._wav.close()
            except (OSError, wave.Error) as e:
                logger.debug(f"[{self.session_id}] Error closing abandoned recording: {e}")
            self._wav = None
        self._current = None
        logger.warning(f"[{self.session_id}] Recording abandoned")

    async def _transcode(self, segment: SegmentRecording) -> None:
        output = segment.path.with_suffix(f".{self.config.transcode_extension}")
        args = [
            part.format(input=str(segment.path), output=str(output))
            for part in shlex.split(self.config.transcode_command)
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await process.communicate()
        except OSError as e:
            logger.error(f"[{self.session_id}] Transcode command failed to start: {e}")
            return

        if process.returncode != 0:
            logger.error(
                f"[{self.session_id}] Transcode of {segment.path} exited with "
                f"{process.returncode}: {stderr.decode(errors='replace')[:200]}"
            )
            return

        segment.transcoded_path = output
        logger.info(f"[{self.session_id}] Transcoded {segment.path} -> {output}")
