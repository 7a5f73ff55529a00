"""视频流水线测试共享的编解码后端替身."""

import threading
from pathlib import Path
from typing import Callable, Optional

import pytest
from PIL import Image

from poster_studio.models.app_settings import Settings
from poster_studio.services.video_codec import (
    EncoderProfile,
    FrameDecoder,
    FrameEncoder,
    VideoCodecBackend,
    VideoInfo,
)
from poster_studio.utils.exceptions import DecodeError, EncodeError


class FakeDecoder(FrameDecoder):
    """产出纯色帧的解码器."""

    def __init__(self, size, frame_count, color):
        self._frame = Image.new("RGB", size, color).tobytes()
        self._frame_count = frame_count
        self.closed = False

    def __iter__(self):
        for _ in range(self._frame_count):
            yield self._frame

    def close(self):
        self.closed = True


class FakeEncoder(FrameEncoder):
    """记录写入帧的编码器，结束时写出输出文件."""

    def __init__(self, backend, output_path: Path):
        self.backend = backend
        self.output_path = output_path
        self.frames: list[bytes] = []
        self.finished = False
        self.aborted = False
        output_path.write_bytes(b"")

    def write(self, frame: bytes) -> None:
        index = len(self.frames)
        if self.backend.fail_at_frame is not None and index == self.backend.fail_at_frame:
            raise EncodeError(f"编码器在第 {index} 帧崩溃")
        self.frames.append(frame)
        with self.output_path.open("ab") as f:
            f.write(b"F")
        if self.backend.on_frame is not None:
            self.backend.on_frame(index)

    def finish(self) -> None:
        self.finished = True

    def abort(self) -> None:
        self.aborted = True


class FakeCodecBackend(VideoCodecBackend):
    """内存中的编解码后端.

    Attributes:
        frame_count: 源视频帧数
        color: 源视频帧颜色
        supported: 是否支持编码配置
        fail_at_frame: 编码到第几帧时失败
        on_frame: 每写入一帧后调用（在工作线程中）
    """

    def __init__(
        self,
        frame_count: int = 10,
        color=(0, 0, 255),
        has_audio: bool = True,
        supported: bool = True,
    ):
        self.frame_count = frame_count
        self.color = color
        self.has_audio = has_audio
        self.supported = supported
        self.fail_at_frame: Optional[int] = None
        self.on_frame: Optional[Callable[[int], None]] = None
        self.probe_error: Optional[Exception] = None
        self.encoders: list[FakeEncoder] = []
        self.decoders: list[FakeDecoder] = []
        self.encoder_calls: list[dict] = []
        self._lock = threading.Lock()

    def probe(self, path: str) -> VideoInfo:
        if self.probe_error is not None:
            raise self.probe_error
        return VideoInfo(
            width=1920,
            height=1080,
            fps=30.0,
            duration=self.frame_count / 30,
            frame_count=self.frame_count,
            has_audio=self.has_audio,
            codec="h264",
        )

    def supports(self, profile: EncoderProfile) -> bool:
        return self.supported

    def open_decoder(self, path: str, size) -> FrameDecoder:
        decoder = FakeDecoder(size, self.frame_count, self.color)
        self.decoders.append(decoder)
        return decoder

    def open_encoder(self, output_path, size, fps, profile, audio_source=None) -> FrameEncoder:
        with self._lock:
            self.encoder_calls.append({
                "output_path": output_path,
                "size": size,
                "fps": fps,
                "profile": profile,
                "audio_source": audio_source,
            })
            encoder = FakeEncoder(self, Path(output_path))
            self.encoders.append(encoder)
        return encoder

    def read_frame_at(self, path: str, at_time: float, size) -> Image.Image:
        return Image.new("RGB", size, self.color)

    def verify_output(self, path: Path) -> VideoInfo:
        if not path.exists() or path.stat().st_size == 0:
            raise EncodeError(f"输出文件为空: {path}")
        return self.probe(str(path))


# ===================
# Fixtures
# ===================


@pytest.fixture
def fake_codec():
    """创建编解码后端替身."""
    return FakeCodecBackend()


@pytest.fixture
def settings(tmp_path):
    """指向临时目录的应用设置."""
    return Settings(
        output_dir=tmp_path / "exports",
        gallery_dir=tmp_path / "gallery",
        database_path=tmp_path / "exports.db",
        eta_window_frames=5,
    )


@pytest.fixture
def undecodable_error():
    """源视频无法读取的异常."""
    return DecodeError("无法读取视频信息: /videos/source.mp4")
