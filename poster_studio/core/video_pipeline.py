"""视频叠加流水线.

将画布图层作为固定叠加层烧录到背景视频的每一帧。

处理流程按会话状态机推进：
    IDLE → ACQUIRING_PERMISSION → CAPTURING_OVERLAY → ENCODING → FINALIZING → COMPLETE
任一非终止状态都可能进入 CANCELLED 或 FAILED。

Features:
    - 每个画布同一时间只允许一个处理会话
    - 叠加层只合成一次，所有帧复用
    - 解码/合成/编码在专用线程池中执行，不占用事件循环
    - 进度在事件循环线程上回调，消费者较慢时合并
    - 逐帧之间检查取消标记，取消或失败时删除未完成的输出
    - 编解码错误不做自动重试
"""

from __future__ import annotations

import asyncio
import json
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from PIL import Image

from poster_studio.core.config_manager import get_config
from poster_studio.core.watermark import WatermarkRenderer
from poster_studio.models.app_settings import Settings
from poster_studio.models.canvas import Canvas, VisibilityMap, validate_canvas
from poster_studio.models.processing import (
    ProcessingOptions,
    ProcessingProgress,
    ProcessingSession,
    ProcessingState,
)
from poster_studio.services.compositor import AssetLoader, CompositeWarning, Compositor
from poster_studio.services.providers import FileSystemPermissionProvider, PermissionProvider
from poster_studio.services.video_codec import (
    EncoderProfile,
    FFmpegCodecBackend,
    VideoCodecBackend,
    VideoInfo,
    build_encoder_profile,
)
from poster_studio.utils.error_handler import get_error_kind
from poster_studio.utils.exceptions import (
    AlreadyProcessingError,
    AppException,
    DecodeError,
    InvalidCanvasError,
    OutputIOError,
    PermissionDeniedError,
    ProcessingCancelledError,
    UnsupportedProfileError,
)
from poster_studio.utils.file_utils import (
    ensure_directory,
    partial_path_for,
    replace_file,
    safe_delete,
    sidecar_path_for,
    unique_output_path,
)
from poster_studio.utils.helpers import format_duration, utc_timestamp
from poster_studio.utils.logger import setup_logger

logger = setup_logger(__name__)

# 类型别名
ProgressCallback = Callable[[ProcessingProgress], None]
HandleCallback = Callable[["ProcessingHandle"], None]


# ===================
# 取消与进度
# ===================


class CancellationToken:
    """协作式取消标记，由工作线程在帧之间检查."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """请求取消."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        """是否已请求取消."""
        return self._event.is_set()


class EtaEstimator:
    """基于最近若干帧耗时滑动平均的剩余时间估计."""

    def __init__(self, window: int) -> None:
        self._durations: deque[float] = deque(maxlen=max(1, window))

    def record(self, seconds: float) -> None:
        """记录一帧的处理耗时."""
        self._durations.append(seconds)

    def estimate(self, remaining_frames: int) -> float:
        """估计剩余时间（秒）."""
        if not self._durations or remaining_frames <= 0:
            return 0.0
        return sum(self._durations) / len(self._durations) * remaining_frames


class ProgressReporter:
    """进度上报.

    工作线程调用 ``publish`` 写入最新进度；事件循环线程负责更新会话并回调。
    回调尚未执行时到来的新进度会覆盖旧值（合并）。
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        handle: "ProcessingHandle",
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._loop = loop
        self._handle = handle
        self._on_progress = on_progress
        self._lock = threading.Lock()
        self._pending: Optional[tuple[float, int, float]] = None
        self._scheduled = False

    def publish(self, progress: float, frames_done: int, eta_seconds: float) -> None:
        """上报编码进度（任意线程）."""
        with self._lock:
            self._pending = (progress, frames_done, eta_seconds)
            if self._scheduled:
                return
            self._scheduled = True
        self._loop.call_soon_threadsafe(self._flush)

    def _flush(self) -> None:
        with self._lock:
            pending = self._pending
            self._pending = None
            self._scheduled = False

        session = self._handle.session
        if pending is None or session.is_finished:
            return

        progress, frames_done, eta_seconds = pending
        session.update_progress(progress, frames_done, eta_seconds)
        self.emit()

    def emit(self) -> None:
        """按当前会话状态回调（事件循环线程）."""
        snapshot = self._handle.session.to_progress()
        self._handle._publish(snapshot)
        if self._on_progress is None:
            return
        try:
            self._on_progress(snapshot)
        except Exception:
            logger.exception("进度回调执行失败")


# ===================
# 处理句柄
# ===================


class ProcessingHandle:
    """处理会话句柄.

    由 ``VideoOverlayPipeline.start`` 返回，可等待结果、订阅进度或取消。

    Example:
        >>> handle = pipeline.start(canvas, options)
        >>> async for progress in handle.updates():
        ...     print(progress.progress)
        >>> path = await handle.wait()
    """

    def __init__(self, session: ProcessingSession, token: CancellationToken) -> None:
        self.session = session
        self.token = token
        self.task: Optional[asyncio.Task[Path]] = None
        self._subscribers: list[asyncio.Queue[ProcessingProgress]] = []

    @property
    def session_id(self) -> str:
        """会话ID."""
        return self.session.id

    @property
    def state(self) -> ProcessingState:
        """当前状态."""
        return self.session.state

    def cancel(self) -> bool:
        """请求取消.

        Returns:
            是否接受了取消请求（已结束或正在写出文件时返回 False）
        """
        if self.session.is_finished or self.session.state == ProcessingState.FINALIZING:
            return False
        self.token.cancel()
        return True

    async def wait(self) -> Path:
        """等待处理结束.

        Returns:
            输出文件路径

        Raises:
            AppException: 处理失败或被取消
        """
        return await self.task

    def __await__(self):
        return self.task.__await__()

    def add_done_callback(self, callback: HandleCallback) -> None:
        """注册结束回调（成功、失败或取消时都会调用）."""
        self.task.add_done_callback(lambda _task: callback(self))

    async def updates(self) -> AsyncIterator[ProcessingProgress]:
        """订阅进度，直到会话结束.

        Yields:
            进度快照（消费较慢时只保留最新一条）
        """
        queue: asyncio.Queue[ProcessingProgress] = asyncio.Queue(maxsize=1)
        self._subscribers.append(queue)
        try:
            snapshot = self.session.to_progress()
            yield snapshot
            while not snapshot.is_complete:
                snapshot = await queue.get()
                yield snapshot
        finally:
            self._subscribers.remove(queue)

    def _publish(self, snapshot: ProcessingProgress) -> None:
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(snapshot)


# ===================
# 流水线
# ===================


class VideoOverlayPipeline:
    """视频叠加流水线.

    Attributes:
        compositor: 画布合成器
        codec: 编解码后端
        permission_provider: 存储权限提供者
        watermark_renderer: 水印渲染器

    Example:
        >>> pipeline = VideoOverlayPipeline()
        >>> path = await pipeline.process_video_canvas(canvas, ProcessingOptions())
    """

    def __init__(
        self,
        compositor: Optional[Compositor] = None,
        codec: Optional[VideoCodecBackend] = None,
        permission_provider: Optional[PermissionProvider] = None,
        settings: Optional[Settings] = None,
        watermark_renderer: Optional[WatermarkRenderer] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        """初始化流水线.

        Args:
            compositor: 画布合成器
            codec: 编解码后端，默认使用 ffmpeg
            permission_provider: 存储权限提供者
            settings: 应用设置，默认从配置管理器读取
            watermark_renderer: 水印渲染器
            executor: 工作线程池
        """
        settings = settings or get_config().settings
        self.codec = codec or FFmpegCodecBackend(settings.ffmpeg_path, settings.ffprobe_path)
        self.compositor = compositor or Compositor(
            AssetLoader(timeout=settings.asset_timeout),
            frame_reader=self.codec.read_frame_at,
        )
        self.permission_provider = permission_provider or FileSystemPermissionProvider(settings.output_dir)
        self.watermark_renderer = watermark_renderer or WatermarkRenderer(
            settings.watermark_text,
            settings.viewport,
        )
        self.output_dir = Path(settings.output_dir)
        self._eta_window = settings.eta_window_frames

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.encode_workers,
            thread_name_prefix="video-encode",
        )

        self._lock = threading.Lock()
        self._by_canvas: dict[str, ProcessingHandle] = {}
        self._by_session: dict[str, ProcessingHandle] = {}

    # ===================
    # 公共接口
    # ===================

    def start(
        self,
        canvas: Canvas,
        options: Optional[ProcessingOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        visibility_map: Optional[VisibilityMap] = None,
        output_path: Optional[Path | str] = None,
    ) -> ProcessingHandle:
        """启动处理会话（需在事件循环中调用）.

        Args:
            canvas: 视频背景的画布
            options: 处理选项
            on_progress: 进度回调（在事件循环线程上调用）
            visibility_map: 字段类型 -> 是否显示
            output_path: 输出路径，为空时在输出目录中自动生成

        Returns:
            处理句柄

        Raises:
            AlreadyProcessingError: 该画布已有进行中的会话
        """
        loop = asyncio.get_running_loop()
        options = options or ProcessingOptions()

        with self._lock:
            existing = self._by_canvas.get(canvas.id)
            if existing is not None:
                raise AlreadyProcessingError(canvas.id, existing.session_id)

            session = ProcessingSession(canvas=canvas, options=options)
            handle = ProcessingHandle(session, CancellationToken())
            self._by_canvas[canvas.id] = handle
            self._by_session[session.id] = handle

        logger.info(f"开始视频处理: 会话 {session.id}, 画布 {canvas.id}, {options.describe()}")
        handle.task = loop.create_task(
            self._run(handle, canvas, options, on_progress, visibility_map, output_path),
            name=f"video-overlay-{session.id[:8]}",
        )
        return handle

    async def process_video_canvas(
        self,
        canvas: Canvas,
        options: Optional[ProcessingOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        visibility_map: Optional[VisibilityMap] = None,
        output_path: Optional[Path | str] = None,
    ) -> Path:
        """处理视频画布并等待结果.

        Returns:
            输出文件路径

        Raises:
            AlreadyProcessingError: 该画布已有进行中的会话
            InvalidCanvasError: 画布无效
            PermissionDeniedError: 存储权限被拒绝
            UnsupportedProfileError: 编码配置不受支持
            DecodeError: 源视频无法读取
            EncodeError: 编码失败
            ProcessingCancelledError: 已取消
        """
        handle = self.start(canvas, options, on_progress, visibility_map, output_path)
        return await handle.wait()

    def cancel_processing(self, session_id: str) -> bool:
        """取消处理会话（可在任意线程调用）.

        Args:
            session_id: 会话ID

        Returns:
            是否接受了取消请求
        """
        with self._lock:
            handle = self._by_session.get(session_id)
        if handle is None:
            return False
        accepted = handle.cancel()
        if accepted:
            logger.info(f"请求取消视频处理: {session_id}")
        return accepted

    def get_session(self, session_id: str) -> Optional[ProcessingSession]:
        """获取进行中的会话."""
        with self._lock:
            handle = self._by_session.get(session_id)
        return handle.session if handle else None

    def is_processing(self, canvas_id: str) -> bool:
        """画布是否有进行中的会话."""
        with self._lock:
            return canvas_id in self._by_canvas

    def shutdown(self, wait: bool = True) -> None:
        """取消所有会话并关闭线程池."""
        with self._lock:
            handles = list(self._by_session.values())
        for handle in handles:
            handle.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    # ===================
    # 会话执行
    # ===================

    async def _run(
        self,
        handle: ProcessingHandle,
        canvas: Canvas,
        options: ProcessingOptions,
        on_progress: Optional[ProgressCallback],
        visibility_map: Optional[VisibilityMap],
        output_path: Optional[Path | str],
    ) -> Path:
        loop = asyncio.get_running_loop()
        session = handle.session
        reporter = ProgressReporter(loop, handle, on_progress)
        warnings: list[CompositeWarning] = []
        final_path = Path(output_path) if output_path else None
        partial_path: Optional[Path] = None
        published = threading.Event()
        started = time.perf_counter()

        try:
            errors = validate_canvas(canvas)
            if not canvas.is_video:
                errors.append("画布背景不是视频")
            if errors:
                raise InvalidCanvasError(errors)

            # 1. 存储权限
            self._advance(session, ProcessingState.ACQUIRING_PERMISSION, reporter)
            granted = await self._run_blocking(handle, self.permission_provider.request_storage_permission)
            if not granted:
                raise PermissionDeniedError()

            profile = build_encoder_profile(options)
            supported = await self._run_blocking(handle, self.codec.supports, profile)
            if not supported:
                raise UnsupportedProfileError(profile.describe())
            self._check_cancelled(handle)

            # 2. 捕获叠加层（只合成一次）
            self._advance(session, ProcessingState.CAPTURING_OVERLAY, reporter)
            frame_size = options.output_size(canvas)
            frame_layer = await self._run_blocking(
                handle,
                self._capture_overlay,
                canvas,
                visibility_map,
                frame_size,
                options.watermark,
                warnings,
            )
            info: VideoInfo = await self._run_blocking(handle, self.codec.probe, canvas.background.uri)
            session.total_frames = info.frame_count
            self._check_cancelled(handle)

            if final_path is None:
                final_path = unique_output_path(ensure_directory(self.output_dir), "video", options.extension)
            else:
                ensure_directory(final_path.parent)
            partial_path = partial_path_for(final_path)

            # 3. 逐帧编码
            self._advance(session, ProcessingState.ENCODING, reporter)
            await self._run_blocking(
                handle,
                self._encode,
                handle,
                canvas.background.uri,
                frame_layer,
                frame_size,
                info,
                profile,
                partial_path,
                reporter,
            )
            self._check_cancelled(handle)

            # 4. 校验并写出
            self._advance(session, ProcessingState.FINALIZING, reporter)
            await self._run_blocking(
                handle,
                self._finalize,
                partial_path,
                final_path,
                canvas,
                options,
                session.id,
                warnings,
                published,
            )

            session.mark_complete(str(final_path))
            reporter.emit()
            logger.info(
                f"视频处理完成: {final_path} ({session.frames_done} 帧, "
                f"耗时 {format_duration(time.perf_counter() - started)})"
            )
            return final_path

        except ProcessingCancelledError:
            self._cleanup(partial_path, final_path, published.is_set())
            session.mark_cancelled()
            reporter.emit()
            logger.info(f"视频处理已取消: {session.id}")
            raise

        except asyncio.CancelledError:
            handle.token.cancel()
            self._cleanup(partial_path, final_path, published.is_set())
            session.mark_cancelled()
            reporter.emit()
            logger.info(f"视频处理任务被取消: {session.id}")
            raise

        except AppException as e:
            self._cleanup(partial_path, final_path, published.is_set())
            session.mark_failed(e.message, e.kind)
            reporter.emit()
            logger.error(f"视频处理失败: {session.id}, {e}")
            raise

        except Exception as e:
            self._cleanup(partial_path, final_path, published.is_set())
            session.mark_failed(str(e), get_error_kind(e))
            reporter.emit()
            logger.exception(f"视频处理出现未预期的错误: {session.id}")
            raise

        finally:
            with self._lock:
                self._by_canvas.pop(canvas.id, None)
                self._by_session.pop(session.id, None)

    async def _run_blocking(self, handle: ProcessingHandle, func: Callable, *args):
        """在工作线程池中执行阻塞操作.

        任务被取消时先设置取消标记，并等待工作线程退出后再继续传播取消，
        保证清理时不再有线程写入输出文件。
        """
        future: Future = self._executor.submit(func, *args)
        try:
            return await asyncio.wrap_future(future)
        except asyncio.CancelledError:
            handle.token.cancel()
            if not future.cancelled():
                waiter = asyncio.wrap_future(future)
                await asyncio.wait([waiter])
                if not waiter.cancelled():
                    waiter.exception()
            raise

    def _advance(
        self,
        session: ProcessingSession,
        state: ProcessingState,
        reporter: ProgressReporter,
    ) -> None:
        session.transition_to(state)
        logger.debug(f"会话 {session.id}: {state.value}")
        reporter.emit()

    @staticmethod
    def _check_cancelled(handle: ProcessingHandle) -> None:
        if handle.token.is_cancelled:
            raise ProcessingCancelledError(handle.session_id)

    # ===================
    # 工作线程中的步骤
    # ===================

    def _capture_overlay(
        self,
        canvas: Canvas,
        visibility_map: Optional[VisibilityMap],
        frame_size: tuple[int, int],
        watermark: bool,
        warnings: list[CompositeWarning],
    ) -> Image.Image:
        """合成透明叠加层并预先叠好水印（水印在下，叠加层在上）."""
        result = self.compositor.composite(
            canvas,
            transparent_background=True,
            visibility_map=visibility_map,
        )
        warnings.extend(result.warnings)

        overlay = result.image
        if overlay.size != frame_size:
            overlay = overlay.resize(frame_size, Image.Resampling.LANCZOS)

        frame_layer = Image.new("RGBA", frame_size, (0, 0, 0, 0))
        if watermark:
            frame_layer = Image.alpha_composite(frame_layer, self.watermark_renderer.render(frame_size))
        return Image.alpha_composite(frame_layer, overlay)

    def _encode(
        self,
        handle: ProcessingHandle,
        source: str,
        frame_layer: Image.Image,
        frame_size: tuple[int, int],
        info: VideoInfo,
        profile: EncoderProfile,
        partial_path: Path,
        reporter: ProgressReporter,
    ) -> None:
        """逐帧解码、叠加、编码."""
        token = handle.token
        total = max(1, info.frame_count)
        eta = EtaEstimator(self._eta_window)
        frames_done = 0
        finished = False

        encoder = self.codec.open_encoder(
            partial_path,
            frame_size,
            info.fps,
            profile,
            audio_source=source if info.has_audio else None,
        )
        try:
            with self.codec.open_decoder(source, frame_size) as decoder:
                for raw in decoder:
                    if token.is_cancelled:
                        raise ProcessingCancelledError(handle.session_id)

                    frame_started = time.perf_counter()
                    frame = Image.frombytes("RGB", frame_size, raw).convert("RGBA")
                    frame = Image.alpha_composite(frame, frame_layer)
                    encoder.write(frame.convert("RGB").tobytes())
                    frames_done += 1

                    eta.record(time.perf_counter() - frame_started)
                    reporter.publish(
                        min(100.0, frames_done / total * 100),
                        frames_done,
                        eta.estimate(total - frames_done),
                    )

            if token.is_cancelled:
                raise ProcessingCancelledError(handle.session_id)
            if frames_done == 0:
                raise DecodeError(f"源视频没有可解码的帧: {source}")

            encoder.finish()
            finished = True
            logger.debug(f"编码完成: {frames_done}/{info.frame_count} 帧")
        finally:
            if not finished:
                encoder.abort()

    def _finalize(
        self,
        partial_path: Path,
        final_path: Path,
        canvas: Canvas,
        options: ProcessingOptions,
        session_id: str,
        warnings: list[CompositeWarning],
        published: threading.Event,
    ) -> None:
        """校验输出、写入元数据并替换为最终文件."""
        self.codec.verify_output(partial_path)

        sidecar = sidecar_path_for(final_path)
        metadata = {
            "sourceCanvasId": canvas.id,
            "optionsUsed": options.to_dict(),
            "timestamp": utc_timestamp(),
            "sessionId": session_id,
            "warnings": [asdict(w) for w in warnings],
        }
        try:
            sidecar.write_text(json.dumps(metadata, ensure_ascii=False, indent=2), encoding="utf-8")
            replace_file(partial_path, final_path)
        except OSError as e:
            safe_delete(sidecar)
            raise OutputIOError(f"写出视频文件失败: {final_path}, {e}") from e
        published.set()

    @staticmethod
    def _cleanup(
        partial_path: Optional[Path],
        final_path: Optional[Path],
        published: bool = False,
    ) -> None:
        """删除未完成的输出.

        已写出最终文件但会话未完成时（写出期间任务被取消），最终文件与元数据一并删除。
        """
        if partial_path is not None and partial_path.exists():
            safe_delete(partial_path)
        if final_path is None:
            return
        if published:
            safe_delete(final_path)
        if not final_path.exists():
            sidecar = sidecar_path_for(final_path)
            if sidecar.exists():
                safe_delete(sidecar)
