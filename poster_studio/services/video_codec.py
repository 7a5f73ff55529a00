"""视频编解码后端.

视频流水线通过 ``VideoCodecBackend`` 抽象与编解码器交互：探测源视频、
逐帧解码为 RGB24 原始数据、将合成后的帧送入编码器。默认实现驱动
``ffmpeg`` / ``ffprobe`` 子进程，通过管道传输原始帧。

Features:
    - ffprobe JSON 探测（尺寸、帧率、时长、帧数、音轨）
    - 解码管道：覆盖适配缩放到输出尺寸，输出 rgb24
    - 编码管道：rawvideo 输入 + 源音轨映射，按质量档位设置 crf/preset/码率
    - 编码器可用性检查与输出文件校验
"""

from __future__ import annotations

import json
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from PIL import Image

from poster_studio.models.processing import OutputFormat, ProcessingOptions, VideoQuality
from poster_studio.utils.constants import FFPROBE_TIMEOUT
from poster_studio.utils.exceptions import DecodeError, EncodeError
from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)


# ===================
# 编码配置
# ===================

# 质量档位 -> (crf, preset)
QUALITY_PRESETS: dict[VideoQuality, tuple[int, str]] = {
    VideoQuality.LOW: (28, "fast"),
    VideoQuality.MEDIUM: (23, "medium"),
    VideoQuality.HIGH: (18, "slow"),
    VideoQuality.ULTRA: (15, "veryslow"),
}

# 容器 -> (视频编码器, 音频编码器)
CONTAINER_CODECS: dict[OutputFormat, tuple[str, str]] = {
    OutputFormat.MP4: ("libx264", "aac"),
    OutputFormat.MOV: ("libx264", "aac"),
    OutputFormat.AVI: ("mpeg4", "libmp3lame"),
}

# 解码失败时保留的 stderr 长度
STDERR_TAIL_CHARS = 2000


@dataclass(frozen=True)
class EncoderProfile:
    """编码配置.

    Attributes:
        container: 输出容器
        video_codec: 视频编码器
        audio_codec: 音频编码器
        crf: 恒定质量因子（仅 x264）
        preset: 编码速度预设（仅 x264）
        video_bitrate_kbps: 视频码率
        audio_bitrate_kbps: 音频码率
    """

    container: OutputFormat
    video_codec: str
    audio_codec: str
    crf: int
    preset: str
    video_bitrate_kbps: int
    audio_bitrate_kbps: int

    def describe(self) -> str:
        """简短描述."""
        return (
            f"{self.container.value}({self.video_codec}+{self.audio_codec}, "
            f"{self.video_bitrate_kbps}k/{self.audio_bitrate_kbps}k)"
        )

    def video_args(self) -> list[str]:
        """视频编码参数."""
        args = ["-c:v", self.video_codec]
        if self.video_codec == "libx264":
            args += ["-crf", str(self.crf), "-preset", self.preset]
        args += [
            "-b:v", f"{self.video_bitrate_kbps}k",
            "-maxrate", f"{self.video_bitrate_kbps}k",
            "-bufsize", f"{self.video_bitrate_kbps * 2}k",
            "-pix_fmt", "yuv420p",
        ]
        return args

    def audio_args(self) -> list[str]:
        """音频编码参数."""
        return ["-c:a", self.audio_codec, "-b:a", f"{self.audio_bitrate_kbps}k"]


def build_encoder_profile(options: ProcessingOptions) -> EncoderProfile:
    """根据处理选项生成编码配置.

    Args:
        options: 处理选项

    Returns:
        编码配置
    """
    video_codec, audio_codec = CONTAINER_CODECS[options.output_format]
    crf, preset = QUALITY_PRESETS[options.quality]
    return EncoderProfile(
        container=options.output_format,
        video_codec=video_codec,
        audio_codec=audio_codec,
        crf=crf,
        preset=preset,
        video_bitrate_kbps=options.video_bitrate_kbps,
        audio_bitrate_kbps=options.audio_bitrate_kbps,
    )


@dataclass
class VideoInfo:
    """视频信息.

    Attributes:
        width: 宽度
        height: 高度
        fps: 帧率
        duration: 时长（秒）
        frame_count: 总帧数
        has_audio: 是否有音轨
        codec: 视频编码
    """

    width: int
    height: int
    fps: float
    duration: float
    frame_count: int
    has_audio: bool = False
    codec: str = "unknown"


def parse_frame_rate(value: Optional[str], default: float = 30.0) -> float:
    """解析 ffprobe 的帧率字符串（如 ``30000/1001``）."""
    if not value:
        return default
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            return float(num) / float(den) if float(den) != 0 else default
        return float(value)
    except (ValueError, ZeroDivisionError):
        return default


def parse_probe_output(data: dict) -> VideoInfo:
    """解析 ffprobe JSON 输出.

    Args:
        data: ffprobe 的 JSON 数据

    Returns:
        视频信息

    Raises:
        DecodeError: 没有视频流
    """
    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise DecodeError("源文件中没有视频流")

    avg_rate = video.get("avg_frame_rate")
    fps = parse_frame_rate(avg_rate if avg_rate not in (None, "0/0") else video.get("r_frame_rate"))

    duration = 0.0
    for candidate in (video.get("duration"), (data.get("format") or {}).get("duration")):
        try:
            duration = float(candidate)
            break
        except (TypeError, ValueError):
            continue

    try:
        frame_count = int(video.get("nb_frames") or 0)
    except ValueError:
        frame_count = 0
    if frame_count <= 0:
        frame_count = max(1, round(duration * fps))

    return VideoInfo(
        width=int(video.get("width") or 0),
        height=int(video.get("height") or 0),
        fps=round(fps, 3),
        duration=duration,
        frame_count=frame_count,
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
        codec=video.get("codec_name", "unknown"),
    )


# ===================
# 抽象接口
# ===================


class FrameDecoder(ABC):
    """逐帧解码器（上下文管理器，迭代产出 RGB24 帧数据）."""

    @abstractmethod
    def __iter__(self) -> Iterator[bytes]:
        """迭代帧数据."""

    @abstractmethod
    def close(self) -> None:
        """释放解码器资源."""

    def __enter__(self) -> "FrameDecoder":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class FrameEncoder(ABC):
    """逐帧编码器."""

    @abstractmethod
    def write(self, frame: bytes) -> None:
        """写入一帧 RGB24 数据.

        Raises:
            EncodeError: 编码器异常退出
        """

    @abstractmethod
    def finish(self) -> None:
        """结束编码并写完容器.

        Raises:
            EncodeError: 编码失败
        """

    @abstractmethod
    def abort(self) -> None:
        """中止编码（不保证输出文件可用）."""


class VideoCodecBackend(ABC):
    """视频编解码后端."""

    @abstractmethod
    def probe(self, path: str) -> VideoInfo:
        """探测视频信息.

        Raises:
            DecodeError: 无法读取
        """

    @abstractmethod
    def supports(self, profile: EncoderProfile) -> bool:
        """设备编码器是否支持该配置."""

    @abstractmethod
    def open_decoder(self, path: str, size: tuple[int, int]) -> FrameDecoder:
        """打开解码器，帧被覆盖适配到 size."""

    @abstractmethod
    def open_encoder(
        self,
        output_path: Path,
        size: tuple[int, int],
        fps: float,
        profile: EncoderProfile,
        audio_source: Optional[str] = None,
    ) -> FrameEncoder:
        """打开编码器."""

    @abstractmethod
    def read_frame_at(self, path: str, at_time: float, size: tuple[int, int]) -> Image.Image:
        """读取指定时间的单帧.

        Raises:
            DecodeError: 无法读取
        """

    @abstractmethod
    def verify_output(self, path: Path) -> VideoInfo:
        """校验输出文件非空且文件头有效.

        Raises:
            EncodeError: 输出无效
        """


# ===================
# ffmpeg 实现
# ===================


class _StderrDrain:
    """后台读取子进程 stderr，避免管道写满导致死锁."""

    def __init__(self, stream) -> None:
        self._stream = stream
        self._chunks: list[bytes] = []
        self._thread = threading.Thread(target=self._run, name="ffmpeg-stderr", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while True:
            chunk = self._stream.read(4096)
            if not chunk:
                break
            self._chunks.append(chunk)

    def join(self, timeout: float = 10.0) -> None:
        self._thread.join(timeout=timeout)

    def tail(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")[-STDERR_TAIL_CHARS:]


def _cover_filter(size: tuple[int, int]) -> str:
    """覆盖适配的 ffmpeg 滤镜."""
    width, height = size
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=increase,"
        f"crop={width}:{height},setsar=1"
    )


class FFmpegFrameDecoder(FrameDecoder):
    """基于 ffmpeg 管道的解码器."""

    def __init__(self, cmd: list[str], size: tuple[int, int], source: str) -> None:
        self._frame_size = size[0] * size[1] * 3
        self._source = source
        self._closed = False
        try:
            self._proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise DecodeError(f"无法启动 ffmpeg 解码: {e}") from e
        self._stderr = _StderrDrain(self._proc.stderr)

    def __iter__(self) -> Iterator[bytes]:
        stdout = self._proc.stdout
        while True:
            frame = stdout.read(self._frame_size)
            if len(frame) < self._frame_size:
                break
            yield frame

        returncode = self._proc.wait()
        self._stderr.join()
        if returncode != 0 and not self._closed:
            raise DecodeError(f"视频解码失败: {self._source}, {self._stderr.tail()}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._proc.poll() is None:
            self._proc.kill()
        self._proc.wait()
        if self._proc.stdout:
            self._proc.stdout.close()
        self._stderr.join()


class FFmpegFrameEncoder(FrameEncoder):
    """基于 ffmpeg 管道的编码器."""

    def __init__(self, cmd: list[str], output_path: Path) -> None:
        self._output_path = output_path
        try:
            self._proc = subprocess.Popen(cmd, stdin=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise EncodeError(f"无法启动 ffmpeg 编码: {e}") from e
        self._stderr = _StderrDrain(self._proc.stderr)

    def write(self, frame: bytes) -> None:
        try:
            self._proc.stdin.write(frame)
        except (BrokenPipeError, ValueError) as e:
            self._proc.wait()
            self._stderr.join()
            raise EncodeError(f"编码器已退出: {self._stderr.tail() or e}") from e

    def finish(self) -> None:
        try:
            self._proc.stdin.close()
        except BrokenPipeError:
            pass
        returncode = self._proc.wait()
        self._stderr.join()
        if returncode != 0:
            raise EncodeError(f"视频编码失败 (code {returncode}): {self._stderr.tail()}")

    def abort(self) -> None:
        if self._proc.poll() is None:
            self._proc.kill()
        self._proc.wait()
        if self._proc.stdin and not self._proc.stdin.closed:
            try:
                self._proc.stdin.close()
            except BrokenPipeError:
                pass
        self._stderr.join()


class FFmpegCodecBackend(VideoCodecBackend):
    """ffmpeg / ffprobe 子进程编解码后端.

    Example:
        >>> backend = FFmpegCodecBackend()
        >>> info = backend.probe("input.mp4")
        >>> info.frame_count
        300
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe") -> None:
        """初始化后端.

        Args:
            ffmpeg_path: ffmpeg 可执行文件
            ffprobe_path: ffprobe 可执行文件
        """
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self._encoders: Optional[set[str]] = None

    def probe(self, path: str) -> VideoInfo:
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries",
            "stream=codec_type,codec_name,width,height,r_frame_rate,avg_frame_rate,nb_frames,duration"
            ":format=duration",
            "-of", "json",
            path,
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=FFPROBE_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            raise DecodeError(f"读取视频信息超时: {path}") from e
        except OSError as e:
            raise DecodeError(f"无法启动 ffprobe: {e}") from e

        if result.returncode != 0:
            raise DecodeError(f"无法读取视频信息: {path}, {result.stderr.strip()[-STDERR_TAIL_CHARS:]}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise DecodeError(f"ffprobe 输出解析失败: {e}") from e

        info = parse_probe_output(data)
        logger.debug(
            f"视频信息: {info.width}x{info.height}, {info.codec}, {info.fps}fps, "
            f"{info.frame_count} 帧, 音轨={info.has_audio}"
        )
        return info

    def available_encoders(self) -> set[str]:
        """获取 ffmpeg 可用的编码器名称."""
        if self._encoders is None:
            try:
                result = subprocess.run(
                    [self.ffmpeg_path, "-hide_banner", "-encoders"],
                    capture_output=True,
                    text=True,
                    timeout=FFPROBE_TIMEOUT,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.error(f"无法查询 ffmpeg 编码器: {e}")
                return set()

            encoders: set[str] = set()
            for line in result.stdout.splitlines():
                parts = line.split()
                # 形如 " V....D libx264   H.264 ..."
                if len(parts) >= 2 and len(parts[0]) == 6 and parts[0][0] in "VAS":
                    encoders.add(parts[1])
            self._encoders = encoders
        return self._encoders

    def supports(self, profile: EncoderProfile) -> bool:
        encoders = self.available_encoders()
        return profile.video_codec in encoders and profile.audio_codec in encoders

    def open_decoder(self, path: str, size: tuple[int, int]) -> FrameDecoder:
        cmd = [
            self.ffmpeg_path,
            "-v", "error",
            "-i", path,
            "-map", "0:v:0",
            "-vf", _cover_filter(size),
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "pipe:1",
        ]
        return FFmpegFrameDecoder(cmd, size, path)

    def build_encoder_command(
        self,
        output_path: Path,
        size: tuple[int, int],
        fps: float,
        profile: EncoderProfile,
        audio_source: Optional[str] = None,
    ) -> list[str]:
        """生成编码命令."""
        width, height = size
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-v", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{width}x{height}",
            "-r", f"{fps:g}",
            "-i", "pipe:0",
        ]
        if audio_source:
            cmd += ["-i", audio_source]

        cmd += ["-map", "0:v:0"]
        if audio_source:
            cmd += ["-map", "1:a:0?"]

        cmd += profile.video_args()
        if audio_source:
            cmd += profile.audio_args()
            cmd += ["-shortest"]
        if profile.container in (OutputFormat.MP4, OutputFormat.MOV):
            cmd += ["-movflags", "+faststart"]

        cmd += ["-f", profile.container.value, str(output_path)]
        return cmd

    def open_encoder(
        self,
        output_path: Path,
        size: tuple[int, int],
        fps: float,
        profile: EncoderProfile,
        audio_source: Optional[str] = None,
    ) -> FrameEncoder:
        cmd = self.build_encoder_command(output_path, size, fps, profile, audio_source)
        logger.debug(f"启动编码器: {' '.join(cmd)}")
        return FFmpegFrameEncoder(cmd, output_path)

    def read_frame_at(self, path: str, at_time: float, size: tuple[int, int]) -> Image.Image:
        cmd = [
            self.ffmpeg_path,
            "-v", "error",
            "-ss", f"{max(0.0, at_time):.3f}",
            "-i", path,
            "-frames:v", "1",
            "-vf", _cover_filter(size),
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "pipe:1",
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=FFPROBE_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            raise DecodeError(f"读取视频帧超时: {path}") from e
        except OSError as e:
            raise DecodeError(f"无法启动 ffmpeg: {e}") from e

        expected = size[0] * size[1] * 3
        if result.returncode != 0 or len(result.stdout) < expected:
            stderr = result.stderr.decode("utf-8", errors="replace")[-STDERR_TAIL_CHARS:]
            raise DecodeError(f"无法读取视频帧: {path} @ {at_time}s, {stderr}")

        return Image.frombytes("RGB", size, result.stdout[:expected])

    def verify_output(self, path: Path) -> VideoInfo:
        if not path.exists() or path.stat().st_size == 0:
            raise EncodeError(f"输出文件为空: {path}")
        try:
            info = self.probe(str(path))
        except DecodeError as e:
            raise EncodeError(f"输出文件无效: {path}, {e.message}") from e
        if info.width <= 0 or info.height <= 0:
            raise EncodeError(f"输出文件无效: {path}")
        return info
