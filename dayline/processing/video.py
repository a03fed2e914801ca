"""
Batch video preparation
Concatenates recording chunks with ffmpeg and samples JPEG frames for local models
"""

import asyncio
import io
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from PIL import Image

from dayline.core.errors import VideoPreparationError
from dayline.core.logger import get_logger
from dayline.core.models import Frame, PreparedVideo, RecordingChunk
from dayline.core.paths import get_tmp_dir

logger = get_logger(__name__)

MIME_TYPES = {
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
}

MAX_FRAME_WIDTH = 1280
FRAME_JPEG_QUALITY = 70


class VideoPreparer(Protocol):
    async def prepare(self, chunks: Sequence[RecordingChunk]) -> PreparedVideo:
        ...


class FrameSampler(Protocol):
    async def sample(self, data: bytes, mime_type: str, interval: float) -> List[Frame]:
        ...


def run_cmd(cmd: List[str]) -> None:
    p = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    if p.returncode != 0:
        logger.error(f"Command failed ({p.returncode}): {' '.join(cmd)}")
        logger.error(f"Output:\n{p.stdout[-2000:]}")
        raise VideoPreparationError(f"ffmpeg failed ({p.returncode}): {p.stdout[-300:]}")
    logger.debug(f"Command ok: {' '.join(cmd)}")


def mime_type_for(path: Path) -> str:
    return MIME_TYPES.get(path.suffix.lower(), "video/mp4")


def compress_frame(image_bytes: bytes) -> bytes:
    """Downscale to at most MAX_FRAME_WIDTH and re-encode as JPEG"""
    with Image.open(io.BytesIO(image_bytes)) as img:
        img = img.convert("RGB")
        if img.width > MAX_FRAME_WIDTH:
            height = round(img.height * MAX_FRAME_WIDTH / img.width)
            img = img.resize((MAX_FRAME_WIDTH, height), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=FRAME_JPEG_QUALITY, optimize=True)
        return out.getvalue()


class VideoAssembler:
    """Turns a batch's recording chunks into one uploadable payload"""

    def __init__(self, tmp_dir: Optional[Path] = None, ffmpeg: str = "ffmpeg"):
        self.tmp_dir = tmp_dir
        self.ffmpeg = ffmpeg

    async def prepare(self, chunks: Sequence[RecordingChunk]) -> PreparedVideo:
        if not chunks:
            raise VideoPreparationError("Batch has no recording chunks")
        return await asyncio.to_thread(self._prepare_sync, list(chunks))

    def _prepare_sync(self, chunks: List[RecordingChunk]) -> PreparedVideo:
        paths = [Path(chunk.file_url).expanduser() for chunk in chunks]
        missing = [str(p) for p in paths if not p.exists()]
        if missing:
            raise VideoPreparationError(f"Missing chunk files: {', '.join(missing[:3])}")

        duration = float(sum(chunk.duration for chunk in chunks))
        mime_type = mime_type_for(paths[0])

        if len(paths) == 1:
            return PreparedVideo(
                data=paths[0].read_bytes(),
                mime_type=mime_type,
                duration=duration,
                source_paths=[str(paths[0])],
            )

        tmp_root = self.tmp_dir or get_tmp_dir("videos")
        with tempfile.TemporaryDirectory(dir=tmp_root) as workdir:
            list_file = Path(workdir) / "inputs.txt"
            list_file.write_text(
                "".join(f"file '{p.as_posix()}'\n" for p in paths), encoding="utf-8"
            )
            output = Path(workdir) / f"batch{paths[0].suffix or '.mp4'}"
            run_cmd(
                [
                    self.ffmpeg,
                    "-y",
                    "-f",
                    "concat",
                    "-safe",
                    "0",
                    "-i",
                    str(list_file),
                    "-c",
                    "copy",
                    str(output),
                ]
            )
            data = output.read_bytes()

        logger.info(f"Concatenated {len(paths)} chunks into {len(data)} bytes ({duration:.0f}s)")
        return PreparedVideo(
            data=data,
            mime_type=mime_type,
            duration=duration,
            source_paths=[str(p) for p in paths],
        )


class FfmpegFrameSampler:
    """Extracts one frame every `interval` seconds"""

    def __init__(self, tmp_dir: Optional[Path] = None, ffmpeg: str = "ffmpeg"):
        self.tmp_dir = tmp_dir
        self.ffmpeg = ffmpeg

    async def sample(self, data: bytes, mime_type: str, interval: float) -> List[Frame]:
        return await asyncio.to_thread(self._sample_sync, data, mime_type, interval)

    def _sample_sync(self, data: bytes, mime_type: str, interval: float) -> List[Frame]:
        suffix = next((ext for ext, mt in MIME_TYPES.items() if mt == mime_type), ".mp4")
        tmp_root = self.tmp_dir or get_tmp_dir("frames")
        with tempfile.TemporaryDirectory(dir=tmp_root) as workdir:
            source = Path(workdir) / f"input{suffix}"
            source.write_bytes(data)
            run_cmd(
                [
                    self.ffmpeg,
                    "-y",
                    "-i",
                    str(source),
                    "-vf",
                    f"fps=1/{interval:g}",
                    "-q:v",
                    "3",
                    str(Path(workdir) / "frame_%05d.jpg"),
                ]
            )
            frames = [
                Frame(timestamp=index * interval, image=compress_frame(path.read_bytes()))
                for index, path in enumerate(sorted(Path(workdir).glob("frame_*.jpg")))
            ]

        logger.debug(f"Sampled {len(frames)} frames every {interval:g}s")
        return frames
