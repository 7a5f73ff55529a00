"""Pytest 配置和共享 fixtures."""

import os
import tempfile

# 应用数据目录指向临时目录（必须在导入 poster_studio 之前设置）
os.environ["POSTER_STUDIO_HOME"] = tempfile.mkdtemp(prefix="poster-studio-test-")

from pathlib import Path

import pytest
from PIL import Image

from poster_studio.models.canvas import Background, BackgroundKind, Canvas


# ===================
# Fixtures
# ===================


@pytest.fixture
def make_png(tmp_path):
    """创建纯色 PNG 文件的工厂."""

    def _make(name: str, color=(255, 0, 0, 255), size=(100, 100)) -> Path:
        path = tmp_path / name
        Image.new("RGBA", size, color).save(path)
        return path

    return _make


@pytest.fixture
def blue_background(make_png) -> Path:
    """蓝色背景图."""
    return make_png("background.png", (0, 0, 255, 255), (1080, 1920))


@pytest.fixture
def small_background(make_png) -> Path:
    """小尺寸灰色背景图."""
    return make_png("small_bg.png", (128, 128, 128, 255), (200, 200))


@pytest.fixture
def small_canvas(small_background) -> Canvas:
    """200x200 图片背景画布."""
    return Canvas(
        name="测试画布",
        width=200,
        height=200,
        background=Background(kind=BackgroundKind.IMAGE, uri=str(small_background)),
    )


@pytest.fixture
def video_canvas() -> Canvas:
    """视频背景画布（帧由测试后端生成）."""
    return Canvas(
        name="视频画布",
        width=64,
        height=36,
        background=Background(kind=BackgroundKind.VIDEO, uri="/videos/source.mp4"),
    )
