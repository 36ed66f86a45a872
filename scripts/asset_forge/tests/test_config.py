"""
Tests for configuration loading, discovery, env overrides and validation.
"""

import os
import json
import tempfile
import shutil
import unittest
from pathlib import Path
from unittest.mock import patch

from ..config import (
    ForgeConfig, PresetConfig, ConfigError, BUILTIN_PRESETS,
    find_config, render_default_config,
)


SAMPLE_TOML = """
[project]
name = "space-game"
output = "./dist"
source = "./src-assets"

[presets.mobile]
texture_quality = 60

[presets.console]
texture_max_size = 8192
texture_format = "png"

[rules]
"**/*.png" = { quality = 80 }
"ui/*.png" = { atlas = true, trim = true }
"audio/*.wav" = { format = "ogg", normalize = true }

[cache]
enabled = false
directory = ".cache/forge"
"""


class TestForgeConfig(unittest.TestCase):
    """Test ForgeConfig parsing."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_defaults(self):
        """Test default configuration values."""
        config = ForgeConfig()

        self.assertEqual(config.project.name, "my-game")
        self.assertEqual(config.project.output, "./build/assets")
        self.assertEqual(config.project.source, "./assets")
        self.assertTrue(config.cache.enabled)
        self.assertEqual(config.cache.directory, ".asset-forge-cache")
        self.assertEqual(config.rules, [])
        self.assertIsNone(config.preset)
        self.assertEqual(set(config.presets), {"mobile", "desktop", "web"})

    def test_builtin_presets_are_copied(self):
        """Mutating a config's preset must not leak into the built-ins."""
        config = ForgeConfig()
        config.presets["mobile"].texture_quality = 1

        self.assertEqual(BUILTIN_PRESETS["mobile"].texture_quality, 75)

    def test_from_toml_string(self):
        """Test parsing every section."""
        config = ForgeConfig.from_toml_string(SAMPLE_TOML)

        self.assertEqual(config.project.name, "space-game")
        self.assertEqual(config.project.output, "./dist")
        self.assertFalse(config.cache.enabled)
        self.assertEqual(config.cache.directory, ".cache/forge")

        # Rule order follows the file
        self.assertEqual([r.pattern for r in config.rules], ["**/*.png", "ui/*.png", "audio/*.wav"])
        self.assertEqual(config.rules[1].overrides, {"atlas": True, "trim": True})

    def test_file_presets_override_builtins_per_field(self):
        """Test that a file preset only replaces the fields it names."""
        config = ForgeConfig.from_toml_string(SAMPLE_TOML)

        mobile = config.presets["mobile"]
        self.assertEqual(mobile.texture_quality, 60)
        self.assertEqual(mobile.texture_max_size, BUILTIN_PRESETS["mobile"].texture_max_size)

        console = config.presets["console"]
        self.assertEqual(console.texture_max_size, 8192)
        self.assertEqual(console.audio_format, PresetConfig().audio_format)

    def test_unknown_preset_field(self):
        with self.assertRaises(ConfigError):
            ForgeConfig.from_toml_string('[presets.mobile]\ntexture_colour = "red"\n')

    def test_invalid_toml(self):
        with self.assertRaises(ConfigError):
            ForgeConfig.from_toml_string("[project\nname = ")

    def test_rule_must_be_table(self):
        with self.assertRaises(ConfigError):
            ForgeConfig.from_toml_string('[rules]\n"*.png" = 5\n')

    def test_from_file_sets_root(self):
        """Relative paths resolve against the config file's directory."""
        config_path = self.temp_dir / "asset-forge.toml"
        config_path.write_text(SAMPLE_TOML)

        config = ForgeConfig.from_file(config_path)

        self.assertEqual(config.root, self.temp_dir.resolve())
        self.assertEqual(config.output_dir, self.temp_dir.resolve() / "dist")
        self.assertEqual(config.source_dir, self.temp_dir.resolve() / "src-assets")
        self.assertEqual(config.cache_dir, self.temp_dir.resolve() / ".cache/forge")

    def test_from_json_file(self):
        config_path = self.temp_dir / "asset-forge.json"
        config_path.write_text(json.dumps({
            "project": {"name": "json-game"},
            "rules": {"*.png": {"format": "webp"}},
        }))

        config = ForgeConfig.from_file(config_path)

        self.assertEqual(config.project.name, "json-game")
        self.assertEqual(config.rules[0].overrides, {"format": "webp"})

    def test_missing_and_unsupported_files(self):
        with self.assertRaises(ConfigError):
            ForgeConfig.from_file(self.temp_dir / "missing.toml")

        yaml_path = self.temp_dir / "asset-forge.yaml"
        yaml_path.write_text("project: {}")
        with self.assertRaises(ConfigError):
            ForgeConfig.from_file(yaml_path)

    def test_get_preset(self):
        config = ForgeConfig()

        self.assertIsNone(config.get_preset())
        self.assertEqual(config.get_preset("web").texture_format, "webp")
        with self.assertRaises(ConfigError):
            config.get_preset("switch")

    def test_to_toml_round_trip(self):
        config = ForgeConfig.from_toml_string(SAMPLE_TOML)

        restored = ForgeConfig.from_toml_string(config.to_toml())

        self.assertEqual(restored.to_dict(), config.to_dict())


class TestConfigDiscovery(unittest.TestCase):
    """Test walking up the directory tree for a config file."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp()).resolve()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_find_config_in_parent(self):
        (self.temp_dir / ".asset-forge.toml").write_text('[project]\nname = "hidden"\n')
        nested = self.temp_dir / "a" / "b"
        nested.mkdir(parents=True)

        found = find_config(nested)

        self.assertEqual(found, self.temp_dir / ".asset-forge.toml")

    def test_visible_name_preferred(self):
        (self.temp_dir / ".asset-forge.toml").write_text("")
        (self.temp_dir / "asset-forge.toml").write_text("")

        self.assertEqual(find_config(self.temp_dir).name, "asset-forge.toml")

    def test_load_without_file_uses_start_as_root(self):
        with patch.dict(os.environ, {}, clear=False):
            config = ForgeConfig.load(start=self.temp_dir)

        if config.config_path is None:
            self.assertEqual(config.root, self.temp_dir)
            self.assertEqual(config.source_dir, self.temp_dir / "assets")

    def test_load_discovers_file(self):
        (self.temp_dir / "asset-forge.toml").write_text('[project]\nname = "found"\n')

        config = ForgeConfig.load(start=self.temp_dir)

        self.assertEqual(config.project.name, "found")
        self.assertEqual(config.config_path, self.temp_dir / "asset-forge.toml")


class TestEnvironmentOverrides(unittest.TestCase):
    """Test ASSET_FORGE_* overrides."""

    def test_overrides_applied(self):
        env = {
            "ASSET_FORGE_OUTPUT": "/tmp/out",
            "ASSET_FORGE_SOURCE": "/tmp/src",
            "ASSET_FORGE_PRESET": "web",
            "ASSET_FORGE_JOBS": "3",
            "ASSET_FORGE_CACHE_DIR": "/tmp/cache",
            "ASSET_FORGE_CACHE_ENABLED": "false",
        }
        with patch.dict(os.environ, env):
            config = ForgeConfig.default()

        self.assertEqual(config.project.output, "/tmp/out")
        self.assertEqual(config.project.source, "/tmp/src")
        self.assertEqual(config.preset, "web")
        self.assertEqual(config.jobs, 3)
        self.assertEqual(config.cache.directory, "/tmp/cache")
        self.assertFalse(config.cache.enabled)

    def test_invalid_jobs(self):
        with patch.dict(os.environ, {"ASSET_FORGE_JOBS": "many"}):
            with self.assertRaises(ConfigError):
                ForgeConfig.default()


class TestValidation(unittest.TestCase):
    """Test configuration validation."""

    def test_valid_default(self):
        self.assertEqual(ForgeConfig().validate(), [])

    def test_sample_is_valid(self):
        self.assertEqual(ForgeConfig.from_toml_string(SAMPLE_TOML).validate(), [])

    def test_reports_problems(self):
        config = ForgeConfig.from_toml_string("""
[presets.broken]
texture_quality = 0
texture_format = "tiff"

[rules]
"*.png" = { quality = 150, colour = "red" }
"*.tga" = { atlas_padding = -1 }
""")
        config.preset = "nonexistent"

        errors = config.validate()
        joined = "\n".join(errors)

        self.assertIn("presets.broken.texture_quality", joined)
        self.assertIn("presets.broken.texture_format", joined)
        self.assertIn("unknown field 'colour'", joined)
        self.assertIn("quality must be an integer between 1 and 100", joined)
        self.assertIn("atlas_padding", joined)
        self.assertIn("Unknown preset 'nonexistent'", joined)


class TestDefaultConfigTemplate(unittest.TestCase):
    """Test the init template."""

    def test_render_parses(self):
        content = render_default_config("rendered-game")
        config = ForgeConfig.from_toml_string(content)

        self.assertEqual(config.project.name, "rendered-game")
        self.assertEqual(config.rules, [])
        self.assertEqual(config.presets["mobile"], BUILTIN_PRESETS["mobile"])
        self.assertEqual(config.validate(), [])


if __name__ == "__main__":
    unittest.main()
