import io
from pathlib import Path

import pytest
from PIL import Image

from dayline.core.errors import VideoPreparationError
from dayline.core.models import RecordingChunk
from dayline.processing import video
from dayline.processing.video import (
    MAX_FRAME_WIDTH,
    FfmpegFrameSampler,
    VideoAssembler,
    compress_frame,
    mime_type_for,
)


def png_bytes(width, height):
    out = io.BytesIO()
    Image.new("RGBA", (width, height), (10, 20, 30, 255)).save(out, format="PNG")
    return out.getvalue()


def write_chunks(tmp_path, count, suffix=".mp4"):
    chunks = []
    for i in range(count):
        path = tmp_path / f"chunk{i}{suffix}"
        path.write_bytes(f"part{i}".encode())
        chunks.append(RecordingChunk(id=i + 1, start_ts=i * 60, end_ts=(i + 1) * 60, file_url=str(path)))
    return chunks


@pytest.mark.asyncio
async def test_single_chunk_is_used_as_is(tmp_path):
    [chunk] = write_chunks(tmp_path, 1, suffix=".mov")

    prepared = await VideoAssembler(tmp_dir=tmp_path).prepare([chunk])

    assert prepared.data == b"part0"
    assert prepared.mime_type == "video/quicktime"
    assert prepared.duration == 60


@pytest.mark.asyncio
async def test_chunks_are_concatenated(tmp_path, monkeypatch):
    chunks = write_chunks(tmp_path, 3)
    commands = []

    def fake_run(cmd):
        commands.append(cmd)
        listing = Path(cmd[cmd.index("-i") + 1]).read_text(encoding="utf-8")
        Path(cmd[-1]).write_bytes(listing.encode())

    monkeypatch.setattr(video, "run_cmd", fake_run)

    prepared = await VideoAssembler(tmp_dir=tmp_path).prepare(chunks)

    assert commands[0][:4] == ["ffmpeg", "-y", "-f", "concat"]
    assert prepared.data.decode().count("file '") == 3
    assert prepared.duration == 180
    assert len(prepared.source_paths) == 3


@pytest.mark.asyncio
async def test_missing_chunk_file(tmp_path):
    chunk = RecordingChunk(id=1, start_ts=0, end_ts=60, file_url=str(tmp_path / "gone.mp4"))

    with pytest.raises(VideoPreparationError, match="Missing chunk files"):
        await VideoAssembler(tmp_dir=tmp_path).prepare([chunk])


@pytest.mark.asyncio
async def test_no_chunks():
    with pytest.raises(VideoPreparationError):
        await VideoAssembler().prepare([])


def test_ffmpeg_failure_raises(monkeypatch):
    class Failed:
        returncode = 1
        stdout = "Invalid data found when processing input"

    monkeypatch.setattr(video.subprocess, "run", lambda *args, **kwargs: Failed())

    with pytest.raises(VideoPreparationError, match="Invalid data"):
        video.run_cmd(["ffmpeg", "-i", "x"])


def test_compress_frame_downscales_to_jpeg():
    data = compress_frame(png_bytes(2560, 1440))

    with Image.open(io.BytesIO(data)) as img:
        assert img.format == "JPEG"
        assert img.size == (MAX_FRAME_WIDTH, 720)


@pytest.mark.asyncio
async def test_sampler_returns_timestamped_frames(tmp_path, monkeypatch):
    def fake_run(cmd):
        out_dir = Path(cmd[-1]).parent
        for i in range(1, 4):
            (out_dir / f"frame_{i:05d}.jpg").write_bytes(png_bytes(640, 360))

    monkeypatch.setattr(video, "run_cmd", fake_run)

    frames = await FfmpegFrameSampler(tmp_dir=tmp_path).sample(b"mp4", "video/mp4", 30)

    assert [f.timestamp for f in frames] == [0, 30, 60]
    assert all(f.image[:2] == b"\xff\xd8" for f in frames)


def test_mime_type_for():
    assert mime_type_for(Path("a.WEBM")) == "video/webm"
    assert mime_type_for(Path("a.unknown")) == "video/mp4"
