"""画布合成器单元测试."""

import base64
import io

import httpx
import pytest
from PIL import Image

from poster_studio.models.canvas import (
    Background,
    BackgroundKind,
    Canvas,
    ImageLayer,
    LogoLayer,
    TextLayer,
    TextStyle,
)
from poster_studio.services.compositor import (
    AssetLoader,
    Compositor,
    composite_canvas,
    find_font,
    resolve_panel_color,
    resolve_text_color,
)
from poster_studio.utils.exceptions import AssetLoadError, DecodeError

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
GRAY = (128, 128, 128, 255)


# ===================
# Fixtures
# ===================


@pytest.fixture
def compositor():
    """创建合成器实例."""
    return Compositor()


@pytest.fixture
def red_png(make_png):
    return make_png("red.png", RED)


@pytest.fixture
def green_png(make_png):
    return make_png("green.png", GREEN)


@pytest.fixture
def blue_png(make_png):
    return make_png("blue.png", BLUE)


def _png_data_uri(color, size=(10, 10)) -> str:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


# ===================
# 颜色解析测试
# ===================


class TestColorResolution:
    """测试面板与文字颜色解析."""

    def test_panel_uses_template_palette(self):
        """template 标记取模板页脚色."""
        style = TextStyle(background_color="template")
        assert resolve_panel_color(style, "business") == (102, 126, 234, 255)
        assert resolve_panel_color(style, "tech") == (30, 41, 59, 255)

    def test_panel_explicit_color_wins(self):
        """显式颜色优先."""
        style = TextStyle(background_color="#ff0000")
        assert resolve_panel_color(style, "business") == RED

    def test_panel_unknown_template_uses_default(self):
        """未知模板使用默认面板色."""
        style = TextStyle(background_color="template")
        assert resolve_panel_color(style, "missing") == (0, 0, 0, 153)

    def test_text_color_precedence(self):
        """显式颜色 > 页脚字段模板色 > 白色."""
        explicit = TextLayer.create("x", color="#00ff00", field_type="phone")
        footer = TextLayer.create("x", field_type="phone")
        other = TextLayer.create("x", field_type="title")

        assert resolve_text_color(explicit, "wedding") == GREEN
        assert resolve_text_color(footer, "wedding") == (0, 0, 0, 255)
        assert resolve_text_color(footer, "tech") == (0, 255, 0, 255)
        assert resolve_text_color(other, "wedding") == (255, 255, 255, 255)


class TestFindFont:
    """测试字体查找."""

    def test_always_returns_font(self):
        """找不到字体时返回内置字体."""
        font = find_font("NoSuchFontFamily", 24)
        assert font is not None

    def test_bold_and_chinese(self):
        """粗体与中文文本不抛出异常."""
        assert find_font(None, 18, bold=True, text_content="中文标题") is not None


# ===================
# 资源加载测试
# ===================


class TestAssetLoader:
    """测试资源加载器."""

    def test_load_plain_path(self, red_png):
        """加载本地路径."""
        image = AssetLoader().load(str(red_png))
        assert image.mode == "RGBA"
        assert image.getpixel((0, 0)) == RED

    def test_load_file_uri(self, red_png):
        """加载 file:// 地址."""
        image = AssetLoader().load(red_png.as_uri())
        assert image.size == (100, 100)

    def test_load_data_uri(self):
        """加载 data: 地址."""
        image = AssetLoader().load(_png_data_uri(BLUE))
        assert image.getpixel((5, 5)) == BLUE

    def test_load_http(self):
        """通过 HTTP 下载资源."""
        payload = base64.b64decode(_png_data_uri(GREEN).split(",", 1)[1])
        calls = []

        def handler(request):
            calls.append(str(request.url))
            return httpx.Response(200, content=payload)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        loader = AssetLoader(http_client=client)

        image = loader.load("https://cdn.example.com/logo.png")
        loader.load("https://cdn.example.com/logo.png")

        assert image.getpixel((0, 0)) == GREEN
        assert calls == ["https://cdn.example.com/logo.png"]

    def test_cache_evicts_least_recently_used(self):
        """缓存超出容量时淘汰最久未使用的资源."""
        payload = base64.b64decode(_png_data_uri(GREEN).split(",", 1)[1])
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(200, content=payload)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        loader = AssetLoader(http_client=client, cache_size=2)

        loader.load("https://cdn.example.com/a.png")
        loader.load("https://cdn.example.com/b.png")
        loader.load("https://cdn.example.com/a.png")  # a 变为最近使用
        loader.load("https://cdn.example.com/c.png")  # 淘汰 b
        loader.load("https://cdn.example.com/a.png")
        loader.load("https://cdn.example.com/b.png")

        assert calls == ["/a.png", "/b.png", "/c.png", "/b.png"]

    def test_cache_disabled(self, red_png, tmp_path):
        """缓存容量为 0 时每次重新读取."""
        path = tmp_path / "asset.png"
        path.write_bytes(red_png.read_bytes())
        loader = AssetLoader(cache_size=0)
        loader.load(str(path))
        Image.new("RGBA", (10, 10), BLUE).save(path)
        assert loader.load(str(path)).getpixel((0, 0)) == BLUE

    def test_http_error(self):
        """HTTP 错误转换为资源加载异常."""
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        with pytest.raises(AssetLoadError):
            AssetLoader(http_client=client).load("https://cdn.example.com/missing.png")

    def test_missing_file(self, tmp_path):
        """文件不存在."""
        with pytest.raises(AssetLoadError) as exc_info:
            AssetLoader().load(str(tmp_path / "missing.png"))
        assert exc_info.value.uri.endswith("missing.png")

    def test_corrupt_file(self, tmp_path):
        """文件损坏."""
        path = tmp_path / "broken.png"
        path.write_bytes(b"not an image")
        with pytest.raises(AssetLoadError, match="解码失败"):
            AssetLoader().load(str(path))

    def test_cached_image_is_copied(self, red_png):
        """缓存的图片每次返回副本."""
        loader = AssetLoader()
        first = loader.load(str(red_png))
        first.putpixel((0, 0), BLUE)
        assert loader.load(str(red_png)).getpixel((0, 0)) == RED


# ===================
# 合成测试
# ===================


class TestCompositeBackground:
    """测试背景绘制."""

    def test_output_matches_canvas_size(self, compositor, small_canvas):
        """输出尺寸与画布一致."""
        result = compositor.composite(small_canvas)
        assert result.image.size == (200, 200)
        assert result.image.mode == "RGBA"
        assert result.image.getpixel((100, 100)) == GRAY
        assert result.warnings == []

    def test_background_cover_fit(self, compositor, make_png):
        """背景按覆盖方式适配."""
        wide = make_png("wide.png", RED, (400, 100))
        canvas = Canvas(width=100, height=100, background=Background(uri=str(wide)))
        image = compositor.composite(canvas).image
        assert image.getpixel((0, 0)) == RED
        assert image.getpixel((99, 99)) == RED

    def test_missing_background_raises(self, compositor, tmp_path):
        """背景无法读取时抛出解码异常."""
        canvas = Canvas(width=10, height=10, background=Background(uri=str(tmp_path / "none.png")))
        with pytest.raises(DecodeError):
            compositor.composite(canvas)

    def test_video_background_without_reader(self, compositor, video_canvas):
        """视频背景需要帧读取器."""
        with pytest.raises(DecodeError):
            compositor.composite(video_canvas)

    def test_video_background_uses_frame_reader(self, video_canvas):
        """视频背景从帧读取器取帧."""
        calls = []

        def reader(uri, at_time, size):
            calls.append((uri, at_time, size))
            return Image.new("RGB", size, (0, 255, 0))

        image = Compositor(frame_reader=reader).composite(video_canvas, at_time=2.5).image
        assert image.getpixel((0, 0)) == GREEN
        assert calls == [("/videos/source.mp4", 2.5, (64, 36))]

    def test_video_background_defaults_to_first_frame(self, video_canvas):
        """未指定时间时取首帧."""
        times = []

        def reader(uri, at_time, size):
            times.append(at_time)
            return Image.new("RGB", size, (0, 0, 0))

        Compositor(frame_reader=reader).composite(video_canvas)
        assert times == [0.0]

    def test_frame_overlay_drawn_above_background(self, compositor, small_canvas, red_png):
        """相框以固定不透明度绘制在背景之上."""
        canvas = small_canvas.model_copy(update={"frame_overlay": str(red_png)})
        r, g, b, a = compositor.composite(canvas).image.getpixel((50, 50))
        assert a == 255
        assert r > 200 and g < 40 and b < 40

    def test_missing_frame_overlay_is_skipped(self, compositor, small_canvas, tmp_path):
        """相框无法读取时跳过并给出警告."""
        canvas = small_canvas.model_copy(update={"frame_overlay": str(tmp_path / "frame.png")})
        result = compositor.composite(canvas)
        assert result.image.getpixel((50, 50)) == GRAY
        assert len(result.warnings) == 1
        assert result.warnings[0].layer_id is None


class TestCompositeLayers:
    """测试图层绘制."""

    def test_z_order(self, compositor, small_canvas, red_png, green_png, blue_png):
        """z_index 最大的图层在最上面."""
        layers = (
            ImageLayer.create(str(red_png), 0, 0, 100, 100, z_index=3),
            ImageLayer.create(str(green_png), 0, 0, 100, 100, z_index=1),
            ImageLayer.create(str(blue_png), 0, 0, 100, 100, z_index=2),
        )
        canvas = small_canvas.model_copy(update={"layers": layers})
        assert compositor.composite(canvas).image.getpixel((50, 50)) == RED

    def test_equal_z_index_uses_insertion_order(self, compositor, small_canvas, red_png, green_png):
        """相同 z_index 时后插入的在上."""
        layers = (
            ImageLayer.create(str(red_png), 0, 0, 100, 100),
            ImageLayer.create(str(green_png), 0, 0, 100, 100),
        )
        canvas = small_canvas.model_copy(update={"layers": layers})
        assert compositor.composite(canvas).image.getpixel((50, 50)) == GREEN

    def test_visibility_map_hides_field(self, compositor, small_canvas, red_png):
        """关闭的字段类型不绘制."""
        canvas = small_canvas.with_layer(LogoLayer.create(str(red_png), 0, 0, 100, 100))
        assert compositor.composite(canvas).image.getpixel((50, 50)) == RED
        hidden = compositor.composite(canvas, visibility_map={"logo": False}).image
        assert hidden.getpixel((50, 50)) == GRAY

    def test_invisible_layer_not_drawn(self, compositor, small_canvas, red_png):
        """visible=False 的图层不绘制."""
        canvas = small_canvas.with_layer(ImageLayer.create(str(red_png), 0, 0, 100, 100, visible=False))
        assert compositor.composite(canvas).image.getpixel((50, 50)) == GRAY

    def test_panel_uses_template_color(self, compositor, small_canvas):
        """面板像素等于模板页脚色."""
        canvas = small_canvas.with_layer(TextLayer.create_panel(0, 150, 200, 50))
        image = compositor.composite(canvas).image
        assert image.getpixel((100, 175)) == (102, 126, 234, 255)
        assert image.getpixel((100, 100)) == GRAY

    def test_semi_transparent_panel_blends(self, compositor, small_canvas):
        """半透明面板与背景混合."""
        canvas = small_canvas.with_layer(
            TextLayer.create_panel(0, 0, 200, 200, background_color="rgba(0, 0, 0, 0.5)")
        )
        r, g, b, a = compositor.composite(canvas).image.getpixel((100, 100))
        assert a == 255
        assert 60 <= r <= 68 and r == g == b

    def test_text_is_drawn(self, compositor, small_canvas):
        """文字区域出现文字颜色的像素."""
        canvas = small_canvas.with_layer(
            TextLayer.create("Acme Co.", x=10, y=10, width=180, height=60, font_size=32, color="#ff0000")
        )
        region = compositor.composite(canvas).image.crop((10, 10, 190, 70))
        assert any(r > 200 and g < 80 and b < 80 for r, g, b, _ in region.getdata())

    def test_logo_contain_fit_keeps_transparent_margins(self, compositor, small_canvas, make_png):
        """Logo 包含适配，空白处透明."""
        wide_logo = make_png("wide_logo.png", RED, (200, 50))
        canvas = small_canvas.with_layer(LogoLayer.create(str(wide_logo), 0, 0, 100, 100))
        image = compositor.composite(canvas).image
        assert image.getpixel((50, 50)) == RED
        assert image.getpixel((50, 5)) == GRAY

    def test_image_cover_fit_fills_box(self, compositor, small_canvas, make_png):
        """图片覆盖适配，填满图层."""
        wide = make_png("wide_image.png", RED, (200, 50))
        canvas = small_canvas.with_layer(ImageLayer.create(str(wide), 0, 0, 100, 100))
        image = compositor.composite(canvas).image
        assert image.getpixel((50, 5)) == RED
        assert image.getpixel((150, 150)) == GRAY

    def test_rotation_clockwise_about_center(self, compositor, small_canvas, make_png):
        """旋转 90 度后横条变为竖条，中心不变."""
        bar = make_png("bar.png", RED, (100, 20))
        canvas = small_canvas.with_layer(ImageLayer.create(str(bar), 50, 90, 100, 20, rotation=90))
        image = compositor.composite(canvas).image
        assert image.getpixel((100, 60)) == RED
        assert image.getpixel((100, 140)) == RED
        assert image.getpixel((60, 100)) == GRAY
        assert image.getpixel((140, 100)) == GRAY

    def test_layer_opacity(self, compositor, small_canvas, make_png):
        """图层不透明度与背景混合."""
        white = make_png("white.png", (255, 255, 255, 255))
        canvas = small_canvas.with_layer(ImageLayer.create(str(white), 0, 0, 100, 100, opacity=0.5))
        r, _, _, _ = compositor.composite(canvas).image.getpixel((50, 50))
        assert 185 <= r <= 195

    def test_layer_outside_canvas_is_clipped(self, compositor, small_canvas, red_png):
        """超出画布的部分被裁剪."""
        canvas = small_canvas.with_layer(ImageLayer.create(str(red_png), 150, 150, 100, 100))
        image = compositor.composite(canvas).image
        assert image.size == (200, 200)
        assert image.getpixel((199, 199)) == RED

    def test_failed_layer_is_skipped(self, compositor, small_canvas, red_png, tmp_path):
        """资源读取失败的图层被跳过，其余图层照常绘制."""
        broken = ImageLayer.create(str(tmp_path / "gone.png"), 0, 0, 100, 100)
        good = ImageLayer.create(str(red_png), 100, 100, 100, 100)
        canvas = small_canvas.with_layer(broken).with_layer(good)

        result = compositor.composite(canvas)

        assert result.skipped_layer_ids == [broken.id]
        assert result.image.getpixel((50, 50)) == GRAY
        assert result.image.getpixel((150, 150)) == RED


class TestTransparentComposite:
    """测试透明底合成（视频叠加层）."""

    def test_background_pixels_are_transparent(self, compositor, small_canvas, red_png):
        """没有图层覆盖的像素 alpha 为 0."""
        canvas = small_canvas.with_layer(ImageLayer.create(str(red_png), 0, 0, 50, 50))
        image = compositor.composite(canvas, transparent_background=True).image
        assert image.getpixel((10, 10)) == RED
        assert image.getpixel((150, 150))[3] == 0

    def test_frame_overlay_excluded(self, compositor, small_canvas, red_png):
        """透明模式不绘制相框."""
        canvas = small_canvas.model_copy(update={"frame_overlay": str(red_png)})
        image = compositor.composite(canvas, transparent_background=True).image
        assert image.getchannel("A").getextrema() == (0, 0)

    def test_video_background_not_read(self, video_canvas):
        """透明模式不读取视频帧."""

        def reader(uri, at_time, size):
            raise AssertionError("不应读取视频帧")

        image = Compositor(frame_reader=reader).composite(video_canvas, transparent_background=True).image
        assert image.size == (64, 36)


class TestDeterminism:
    """测试合成确定性."""

    def test_same_input_same_pixels(self, small_canvas, red_png):
        """相同输入得到逐像素一致的输出."""
        canvas = (
            small_canvas.with_layer(ImageLayer.create(str(red_png), 10, 10, 80, 40, rotation=30))
            .with_layer(TextLayer.create("Acme", x=20, y=120, width=150, height=40, font_size=24))
            .with_layer(TextLayer.create_panel(0, 170, 200, 30))
        )
        first = composite_canvas(canvas).image.tobytes()
        second = composite_canvas(canvas).image.tobytes()
        assert first == second
