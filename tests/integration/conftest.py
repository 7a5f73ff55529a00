"""集成测试配置和共享 fixtures."""

import shutil
import subprocess
from pathlib import Path

import pytest

from poster_studio.core.export_service import ExportService
from poster_studio.models.app_settings import Settings
from poster_studio.services.providers import StaticPermissionProvider


@pytest.fixture
def settings(tmp_path) -> Settings:
    """指向临时目录的应用设置."""
    return Settings(
        output_dir=tmp_path / "exports",
        gallery_dir=tmp_path / "gallery",
        database_path=tmp_path / "exports.db",
    )


@pytest.fixture
def export_service(settings):
    """使用真实 ffmpeg 后端的导出服务."""
    service = ExportService(settings=settings, permission_provider=StaticPermissionProvider(True))
    yield service
    service.close()


@pytest.fixture
def requires_ffmpeg():
    """没有安装 ffmpeg 时跳过."""
    if shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None:
        pytest.skip("未安装 ffmpeg")


@pytest.fixture
def source_video(tmp_path, requires_ffmpeg) -> Path:
    """用 ffmpeg 生成 1 秒的测试视频（带音轨）."""
    path = tmp_path / "source.mp4"
    subprocess.run(
        [
            "ffmpeg", "-y", "-v", "error",
            "-f", "lavfi", "-i", "color=c=blue:s=320x180:r=10:d=1",
            "-f", "lavfi", "-i", "sine=frequency=440:duration=1",
            "-c:v", "libx264", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-shortest",
            str(path),
        ],
        check=True,
        timeout=60,
    )
    return path
