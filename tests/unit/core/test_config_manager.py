"""配置管理器单元测试."""

import pytest

from poster_studio.core import config_manager as config_module
from poster_studio.core.config_manager import ConfigManager, get_config
from poster_studio.models.processing import ProcessingOptions, VideoQuality
from poster_studio.utils.exceptions import ConfigError


# ===================
# Fixtures
# ===================


@pytest.fixture
def config(tmp_path, monkeypatch):
    """使用临时配置文件的配置管理器."""
    monkeypatch.setattr(config_module, "DEFAULT_OPTIONS_FILE", tmp_path / "options.json")
    manager = get_config()
    manager.reload()
    yield manager
    manager.reload()


# ===================
# 配置管理器测试
# ===================


class TestConfigManager:
    """测试配置管理器."""

    def test_singleton(self):
        """单例."""
        assert ConfigManager() is get_config()

    def test_settings_from_environment(self, config, monkeypatch):
        """环境变量覆盖设置."""
        monkeypatch.setenv("POSTER_STUDIO_ALBUM_NAME", "TestAlbum")
        monkeypatch.setenv("POSTER_STUDIO_ENCODE_WORKERS", "3")
        config.reload()
        assert config.settings.album_name == "TestAlbum"
        assert config.settings.encode_workers == 3

    def test_invalid_settings(self, config, monkeypatch):
        """无效设置抛出配置异常."""
        monkeypatch.setenv("POSTER_STUDIO_LOG_LEVEL", "LOUD")
        config.reload()
        with pytest.raises(ConfigError):
            _ = config.settings

    def test_default_processing_options(self, config):
        """没有配置文件时使用默认选项."""
        assert config.processing_options == ProcessingOptions()

    def test_save_and_load_processing_options(self, config):
        """保存默认处理选项."""
        options = ProcessingOptions(quality=VideoQuality.HIGH, watermark=False)
        config.save_processing_options(options)
        config.reload()
        assert config.processing_options.quality == VideoQuality.HIGH
        assert config.processing_options.watermark is False

    def test_corrupt_options_file(self, config, tmp_path):
        """配置文件损坏时回退到默认选项."""
        (tmp_path / "options.json").write_text("{broken", encoding="utf-8")
        config.reload()
        assert config.processing_options == ProcessingOptions()

    def test_reset_to_defaults(self, config, tmp_path):
        """重置删除配置文件."""
        config.save_processing_options(ProcessingOptions(quality="low"))
        config.reset_to_defaults()
        assert not (tmp_path / "options.json").exists()
        assert config.processing_options.quality == VideoQuality.MEDIUM
