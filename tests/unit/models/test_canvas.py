"""画布与图层数据模型单元测试."""

import json

import pytest
from pydantic import ValidationError

from poster_studio.models.canvas import (
    TEMPLATE_COLOR,
    Background,
    BackgroundKind,
    Canvas,
    ImageLayer,
    LayerType,
    LogoLayer,
    Point,
    Size,
    TextAlign,
    TextLayer,
    TextStyle,
    parse_color,
    validate_canvas,
)


# ===================
# Fixtures
# ===================


@pytest.fixture
def canvas():
    """创建测试画布."""
    return Canvas(
        name="测试画布",
        width=1080,
        height=1920,
        background=Background(uri="/tmp/bg.png"),
    )


# ===================
# 颜色解析测试
# ===================


class TestParseColor:
    """测试颜色解析."""

    def test_should_accept_rgb_tuple(self):
        """RGB 元组应补全 alpha."""
        assert parse_color((10, 20, 30)) == (10, 20, 30, 255)

    def test_should_accept_hex(self):
        """应解析十六进制颜色."""
        assert parse_color("#667eea") == (102, 126, 234, 255)

    def test_should_parse_css_rgba_with_float_alpha(self):
        """rgba() 的 alpha 为 0-1 浮点数."""
        assert parse_color("rgba(0, 0, 0, 0.6)") == (0, 0, 0, 153)
        assert parse_color("rgb(1, 2, 3)") == (1, 2, 3, 255)

    def test_should_parse_transparent(self):
        """transparent 为全透明."""
        assert parse_color("transparent") == (0, 0, 0, 0)

    def test_should_reject_out_of_range(self):
        """应拒绝超出范围的值."""
        with pytest.raises(ValueError, match="0-255"):
            parse_color((256, 0, 0))

    def test_should_reject_unknown_string(self):
        """应拒绝无法识别的颜色."""
        with pytest.raises(ValueError, match="无法解析颜色"):
            parse_color("not-a-color")


# ===================
# 图层测试
# ===================


class TestTextLayer:
    """测试文字图层."""

    def test_create_text_layer(self):
        """测试快速创建文字图层."""
        layer = TextLayer.create("Acme Co.", x=20, y=20, width=300, height=60, font_size=32)
        assert layer.type == LayerType.TEXT
        assert layer.content == "Acme Co."
        assert layer.position == Point(x=20, y=20)
        assert layer.style.font_size == 32
        assert layer.style.color is None
        assert not layer.is_panel

    def test_panel_detection(self):
        """内容为空且有背景色时为面板."""
        panel = TextLayer.create_panel(0, 1800, 1080, 120)
        assert panel.is_panel
        assert panel.style.background_color == TEMPLATE_COLOR
        assert panel.field_type == "footerBackground"

    def test_empty_text_without_background_is_not_panel(self):
        """没有背景色的空文字不是面板."""
        layer = TextLayer.create("")
        assert not layer.is_panel

    def test_center_and_bounds(self):
        """测试中心点与边界框."""
        layer = TextLayer.create("x", x=10, y=20, width=100, height=40)
        assert layer.center == (60, 40)
        assert layer.bounds == (10, 20, 110, 60)

    def test_size_must_be_positive(self):
        """尺寸必须为正数."""
        with pytest.raises(ValidationError):
            Size(width=0, height=10)

    def test_opacity_range(self):
        """不透明度限制在 0-1."""
        with pytest.raises(ValidationError):
            TextLayer.create("x", opacity=1.5)

    def test_font_weight_bold(self):
        """字重 bold 或 >=600 视为粗体."""
        assert TextStyle(font_weight="bold").is_bold
        assert TextStyle(font_weight=700).is_bold
        assert not TextStyle(font_weight="400").is_bold

    def test_text_align_from_string(self):
        """对齐方式可从字符串解析."""
        style = TextStyle(text_align="center")
        assert style.text_align == TextAlign.CENTER


class TestVisibility:
    """测试显示开关."""

    def test_hidden_layer_is_never_visible(self):
        """visible=False 的图层始终不可见."""
        layer = TextLayer.create("x", visible=False)
        assert not layer.is_visible_with(None)
        assert not layer.is_visible_with({"anything": True})

    def test_layer_without_field_type_ignores_map(self):
        """没有字段类型的图层不受显示开关影响."""
        layer = TextLayer.create("x")
        assert layer.is_visible_with({"logo": False})

    def test_field_type_switched_off(self):
        """字段类型被关闭时不可见."""
        logo = LogoLayer.create("/tmp/logo.png")
        assert logo.field_type == "logo"
        assert not logo.is_visible_with({"logo": False})
        assert logo.is_visible_with({"logo": True})
        assert logo.is_visible_with({"phone": False})


# ===================
# 画布测试
# ===================


class TestCanvas:
    """测试画布."""

    def test_default_values(self, canvas):
        """测试默认值."""
        assert canvas.template_id == "business"
        assert canvas.layers == ()
        assert canvas.background.kind == BackgroundKind.IMAGE
        assert canvas.is_portrait
        assert not canvas.is_video

    def test_canvas_is_immutable(self, canvas):
        """画布不可修改."""
        with pytest.raises(ValidationError):
            canvas.width = 10

    def test_with_layer_returns_new_canvas(self, canvas):
        """添加图层返回新画布."""
        layer = TextLayer.create("Acme")
        updated = canvas.with_layer(layer)
        assert len(canvas.layers) == 0
        assert len(updated.layers) == 1
        assert updated.get_layer(layer.id) is not None

    def test_with_layer_auto_z_index(self, canvas):
        """新图层自动放到最上层."""
        first = TextLayer.create("a", z_index=5)
        second = TextLayer.create("b")
        updated = canvas.with_layer(first).with_layer(second)
        assert updated.get_layer(second.id).z_index == 6

    def test_with_layer_rejects_duplicate_id(self, canvas):
        """重复的图层ID应被拒绝."""
        layer = TextLayer.create("a")
        updated = canvas.with_layer(layer)
        with pytest.raises(ValueError, match="图层ID重复"):
            updated.with_layer(layer)

    def test_constructor_rejects_duplicate_id(self):
        """构造时重复的图层ID应被拒绝."""
        layer = TextLayer.create("a")
        with pytest.raises(ValidationError):
            Canvas(width=10, height=10, layers=(layer, layer))

    def test_without_layer(self, canvas):
        """删除图层."""
        layer = TextLayer.create("a")
        updated = canvas.with_layer(layer).without_layer(layer.id)
        assert updated.layers == ()
        with pytest.raises(KeyError):
            canvas.without_layer("missing")

    def test_replace_layer(self, canvas):
        """替换图层保持位置."""
        a = TextLayer.create("a")
        b = TextLayer.create("b")
        updated = canvas.with_layer(a).with_layer(b)
        replaced = updated.replace_layer(a.model_copy(update={"content": "A"}))
        assert [layer.content for layer in replaced.layers] == ["A", "b"]

    def test_draw_order_is_stable(self, canvas):
        """相同 z_index 时按插入顺序绘制."""
        layers = (
            TextLayer.create("z3", z_index=3),
            TextLayer.create("z1-first", z_index=1),
            TextLayer.create("z2", z_index=2),
            TextLayer.create("z1-second", z_index=1),
        )
        ordered = canvas.model_copy(update={"layers": layers}).layers_in_draw_order()
        assert [layer.content for layer in ordered] == ["z1-first", "z1-second", "z2", "z3"]


class TestCanvasSerialization:
    """测试画布序列化."""

    def test_json_uses_camel_case(self, canvas):
        """JSON 使用 camelCase 字段名."""
        updated = canvas.with_layer(TextLayer.create("a", field_type="phone"))
        data = json.loads(updated.to_json())
        assert "templateId" in data
        assert "backgroundColor" in data
        assert data["layers"][0]["fieldType"] == "phone"
        assert data["layers"][0]["zIndex"] == 0

    def test_round_trip_keeps_layer_types(self, canvas):
        """反序列化后图层类型不变."""
        updated = (
            canvas.with_layer(TextLayer.create("a"))
            .with_layer(ImageLayer.create("/tmp/a.png"))
            .with_layer(LogoLayer.create("/tmp/logo.png"))
        )
        restored = Canvas.from_json(updated.to_json())
        assert restored == updated
        assert [type(layer) for layer in restored.layers] == [TextLayer, ImageLayer, LogoLayer]

    def test_accepts_editor_payload(self):
        """接受编辑器格式的 JSON."""
        payload = {
            "width": 390,
            "height": 600,
            "background": {"kind": "video", "uri": "/v.mp4"},
            "templateId": "wedding",
            "layers": [
                {
                    "id": "footer",
                    "type": "text",
                    "content": "",
                    "position": {"x": 0, "y": 500},
                    "size": {"width": 390, "height": 100},
                    "style": {"backgroundColor": "template"},
                    "fieldType": "footerBackground",
                },
                {
                    "id": "name",
                    "type": "text",
                    "content": "Acme",
                    "position": {"x": 10, "y": 510},
                    "size": {"width": 200, "height": 30},
                    "style": {"fontSize": 18, "color": "rgba(255, 0, 0, 0.5)", "fontWeight": "bold"},
                },
            ],
        }
        canvas = Canvas.model_validate(payload)
        assert canvas.is_video
        assert canvas.layers[0].is_panel
        assert canvas.layers[1].style.color == (255, 0, 0, 128)

    def test_save_and_load_file(self, canvas, tmp_path):
        """保存并加载文件."""
        path = tmp_path / "nested" / "canvas.json"
        canvas.save_to_file(path)
        assert Canvas.from_file(path) == canvas


class TestValidateCanvas:
    """测试画布校验."""

    def test_valid_canvas(self, canvas):
        """有效画布没有错误."""
        assert validate_canvas(canvas) == []

    def test_zero_size(self):
        """尺寸为零时报错."""
        canvas = Canvas(width=0, height=100, background=Background(uri="/bg.png"))
        errors = validate_canvas(canvas)
        assert any("尺寸" in e for e in errors)

    def test_missing_background(self):
        """缺少背景时报错."""
        errors = validate_canvas(Canvas(width=10, height=10))
        assert any("背景" in e for e in errors)

    def test_layer_without_uri_is_not_an_error(self, canvas):
        """图层缺少资源地址不影响画布校验（合成时跳过）."""
        updated = canvas.with_layer(ImageLayer.create("")).with_layer(LogoLayer.create(""))
        assert validate_canvas(updated) == []
