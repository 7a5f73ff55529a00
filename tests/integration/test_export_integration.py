"""导出流程集成测试."""

from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import pytest
from PIL import Image

from poster_studio.models.canvas import Background, BackgroundKind, Canvas, ImageLayer, TextLayer
from poster_studio.models.palette import get_palette
from poster_studio.models.processing import ProcessingOptions, ProcessingState
from poster_studio.services.video_codec import FFmpegCodecBackend

pytestmark = pytest.mark.integration

BLUE = (0, 0, 255)


def _path(uri: str) -> Path:
    return Path(url2pathname(urlparse(uri).path))


class TestPosterExport:
    """静态海报端到端导出."""

    def test_business_poster(self, export_service, blue_background, settings):
        """蓝色背景 + 公司名 + 模板色页脚."""
        canvas = Canvas(
            name="Acme 海报",
            width=1080,
            height=1920,
            template_id="business",
            background=Background(kind=BackgroundKind.IMAGE, uri=str(blue_background)),
        )
        canvas = canvas.with_layer(
            TextLayer.create("Acme Co.", x=20, y=20, width=400, height=60, font_size=40)
        ).with_layer(TextLayer.create_panel(0, 1800, 1080, 120))

        uri = export_service.export_poster(canvas)

        with Image.open(_path(uri)) as image:
            image = image.convert("RGB")
            assert image.size == (1080, 1920)
            footer = get_palette("business").footer_background_color[:3]
            assert image.getpixel((540, 1860)) == footer
            assert image.getpixel((540, 900)) == BLUE
            text_region = image.crop((20, 20, 420, 80))
            assert any(pixel != BLUE for pixel in text_region.getdata())

        assert (settings.gallery_dir / settings.album_name / _path(uri).name).exists()
        record = export_service.list_exports()[0]
        assert record.uri == uri
        assert record.template_id == "business"

    def test_visibility_map_hides_logo(self, export_service, blue_background, make_png):
        """关闭 logo 字段后输出与背景一致."""
        logo = make_png("logo.png", (255, 0, 0, 255), (100, 100))
        canvas = Canvas(
            width=1080,
            height=1920,
            background=Background(uri=str(blue_background)),
        ).with_layer(ImageLayer.create(str(logo), 100, 100, 200, 200, field_type="logo"))

        uri = export_service.export_poster(canvas, {"logo": False})

        with Image.open(_path(uri)) as image:
            assert image.convert("RGB").getpixel((200, 200)) == BLUE


class TestVideoExport:
    """视频叠加端到端导出（需要 ffmpeg）."""

    @pytest.mark.asyncio
    async def test_overlay_video(self, export_service, source_video, make_png):
        """叠加图片并保留音轨."""
        logo = make_png("logo.png", (255, 0, 0, 255), (50, 50))
        canvas = Canvas(
            width=320,
            height=180,
            background=Background(kind=BackgroundKind.VIDEO, uri=str(source_video)),
        ).with_layer(ImageLayer.create(str(logo), 0, 0, 160, 180, field_type="logo"))
        updates = []

        uri = await export_service.export_video(
            canvas,
            ProcessingOptions(resolution="720p", quality="low"),
            on_progress=updates.append,
        )

        info = FFmpegCodecBackend().probe(str(_path(uri)))
        assert (info.width, info.height) == (1280, 720)
        assert info.has_audio
        assert updates[-1].state == ProcessingState.COMPLETE
