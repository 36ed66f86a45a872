"""
Integration tests for the asset-forge CLI.
Tests command-line interface functionality and argument parsing.
"""

import os
import io
import json
import base64
import struct
import logging
import tempfile
import shutil
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest
import soundfile as sf
from PIL import Image
from typer.testing import CliRunner

from .. import cli
from ..cli import app
from ..watch import WatchStats


def write_png(path, size=(16, 16), color=(255, 0, 0, 255)):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new('RGBA', size, color).save(path, format='PNG')


class CLITestCase:
    """Runs every test in a fresh working directory."""

    def setup_method(self):
        """Set up test environment before each test."""
        self.runner = CliRunner()
        self.temp_dir = tempfile.mkdtemp()
        self.original_cwd = os.getcwd()
        os.chdir(self.temp_dir)

        write_png("assets/hero.png", (32, 32))
        write_png("assets/tiles.png", (16, 8), (0, 128, 0, 255))
        Path("assets/readme.txt").write_text("not an asset")

    def teardown_method(self):
        """Clean up test environment after each test."""
        os.chdir(self.original_cwd)
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        # setup_logging binds a handler to the runner's stderr
        logging.getLogger("asset_forge").handlers.clear()

    def invoke(self, *args):
        return self.runner.invoke(app, list(args))


class TestCLIBasics(CLITestCase):

    def test_cli_help(self):
        """Test that CLI help command works."""
        result = self.invoke("--help")
        assert result.exit_code == 0
        assert "Incremental game asset build tool" in result.stdout

    def test_version(self):
        result = self.invoke("version")
        assert result.exit_code == 0
        assert "asset-forge" in result.stdout
        assert "Dependencies" in result.stdout

    def test_invalid_command(self):
        result = self.invoke("invalid-command")
        assert result.exit_code != 0


class TestInitCommand(CLITestCase):

    def test_creates_config(self):
        result = self.invoke("init", "--name", "space-game")

        assert result.exit_code == 0
        content = Path("asset-forge.toml").read_text()
        assert 'name = "space-game"' in content
        assert "[presets.mobile]" in content

    def test_existing_config_is_kept(self):
        Path("asset-forge.toml").write_text("# mine\n")

        result = self.invoke("init")

        assert result.exit_code == 0
        assert "already exists" in result.stdout
        assert Path("asset-forge.toml").read_text() == "# mine\n"

    def test_force_overwrites(self):
        Path("asset-forge.toml").write_text("# mine\n")

        result = self.invoke("init", "--force")

        assert result.exit_code == 0
        assert "[project]" in Path("asset-forge.toml").read_text()


class TestBuildCommand(CLITestCase):

    def test_build_and_rebuild(self):
        result = self.invoke("build", "assets", "-o", "out")

        assert result.exit_code == 0, result.stdout
        assert Path("out/hero.png").exists()
        assert Path("out/tiles.png").exists()
        assert "Total size" in result.stdout
        assert not Path("out/readme.txt").exists()
        assert Path(".asset-forge-cache/manifest.json").exists()

        again = self.invoke("build", "assets", "-o", "out")
        assert again.exit_code == 0
        assert "Cached" in again.stdout
        assert "Total size" not in again.stdout

    def test_failure_exit_code(self):
        Path("assets/broken.png").write_bytes(b"not a png")

        result = self.invoke("build", "assets", "-o", "out")

        assert result.exit_code == 1
        assert "broken.png" in result.stdout
        assert Path("out/hero.png").exists()

    def test_dry_run(self):
        result = self.invoke("build", "assets", "-o", "out", "--dry-run")

        assert result.exit_code == 0
        assert "Would build" in result.stdout
        assert not Path("out").exists()

    def test_missing_directory(self):
        result = self.invoke("build", "missing")

        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_invalid_jobs(self):
        result = self.invoke("build", "assets", "--jobs", "0")

        assert result.exit_code == 1

    def test_unknown_preset(self):
        result = self.invoke("build", "assets", "-p", "switch")

        assert result.exit_code == 1
        assert "Unknown preset" in result.stdout

    def test_preset_from_config(self):
        self.invoke("init")

        result = self.invoke("build", "assets", "-o", "out", "-p", "web")

        assert result.exit_code == 0, result.stdout
        assert Path("out/hero.webp").exists()


class TestWatchCommand(CLITestCase):

    def test_initial_build_then_summary(self):
        stats = WatchStats(events=3, flushes=1, built=1, input_size=2048, output_size=1024)

        with patch.object(cli.WatchService, "run", return_value=stats) as run:
            result = self.invoke("watch", "assets", "-o", "out", "--debounce", "50")

        assert result.exit_code == 0, result.stdout
        run.assert_called_once_with()
        assert Path("out/hero.png").exists()
        assert "Watch Session Summary" in result.stdout
        assert "50.0% reduction" in result.stdout

    def test_missing_directory(self):
        result = self.invoke("watch", "missing")

        assert result.exit_code == 1


class TestAtlasCommand(CLITestCase):

    def setup_method(self):
        super().setup_method()
        write_png("sprites/coin.png", (8, 8), (255, 215, 0, 255))
        write_png("sprites/gem.png", (6, 10), (0, 0, 255, 255))

    def test_pack(self):
        result = self.invoke("atlas", "sprites", "-o", "ui.png", "--padding", "1")

        assert result.exit_code == 0, result.stdout
        metadata = json.loads(Path("ui.json").read_text())
        assert metadata["image"] == "ui.png"
        assert [s["id"] for s in metadata["sprites"]] == ["coin", "gem"]
        assert Image.open("ui.png").size == (metadata["width"], metadata["height"])

    def test_overflow(self):
        result = self.invoke("atlas", "sprites", "--max-width", "4", "--max-height", "4")

        assert result.exit_code == 1
        assert "Atlas overflow" in result.stdout
        assert not Path("atlas.png").exists()

    def test_empty_directory(self):
        os.makedirs("empty")

        result = self.invoke("atlas", "empty")

        assert result.exit_code == 1


class TestSingleAssetCommands(CLITestCase):

    def test_optimize(self):
        result = self.invoke("optimize", "assets/hero.png", "-o", "hero.webp", "--format", "webp")

        assert result.exit_code == 0, result.stdout
        assert Image.open("hero.webp").format == "WEBP"

    def test_optimize_unknown_quality(self):
        result = self.invoke("optimize", "assets/hero.png", "--quality", "extreme")

        assert result.exit_code == 1

    def test_optimize_missing_file(self):
        result = self.invoke("optimize", "nope.png")

        assert result.exit_code == 1
        assert "does not exist" in result.stdout

    def test_info_image(self):
        result = self.invoke("info", "assets/hero.png")

        assert result.exit_code == 0
        assert "Dimensions" in result.stdout
        assert "32×32" in result.stdout

    def test_audio_info(self):
        buffer = io.BytesIO()
        sf.write(buffer, np.zeros((4410, 1)), 44100, format='WAV', subtype='PCM_16')
        Path("beep.wav").write_bytes(buffer.getvalue())

        result = self.invoke("audio", "beep.wav", "--info")

        assert result.exit_code == 0
        assert "44100 Hz" in result.stdout
        assert not Path("beep.ogg").exists()

    def test_model_info(self):
        blob = struct.pack("<9f", 0, 0, 0, 1, 0, 0, 0, 1, 0)
        gltf = {
            "asset": {"version": "2.0"},
            "buffers": [{
                "byteLength": len(blob),
                "uri": "data:application/octet-stream;base64," + base64.b64encode(blob).decode("ascii"),
            }],
            "bufferViews": [{"buffer": 0, "byteLength": len(blob)}],
            "accessors": [{"bufferView": 0, "componentType": 5126, "count": 3, "type": "VEC3"}],
            "meshes": [{"primitives": [{"attributes": {"POSITION": 0}}]}],
        }
        Path("tri.gltf").write_text(json.dumps(gltf))

        result = self.invoke("model", "tri.gltf", "--info")

        assert result.exit_code == 0
        assert "Meshes" in result.stdout

        converted = self.invoke("model", "tri.gltf")
        assert converted.exit_code == 0, converted.stdout
        assert Path("tri_optimized.glb").read_bytes()[:4] == b"glTF"


class TestCleanAndConfig(CLITestCase):

    def test_clean(self):
        self.invoke("build", "assets")
        assert Path(".asset-forge-cache").exists()

        result = self.invoke("clean", "--all")

        assert result.exit_code == 0
        assert not Path(".asset-forge-cache").exists()
        assert not Path("build/assets").exists()

    def test_config_validate_valid(self):
        self.invoke("init")

        result = self.invoke("config", "--validate")

        assert result.exit_code == 0
        assert "valid" in result.stdout

    def test_config_validate_invalid(self):
        Path("asset-forge.toml").write_text("[presets.mobile]\ntexture_quality = 500\n")

        result = self.invoke("config", "--validate")

        assert result.exit_code == 1
        assert "texture_quality" in result.stdout

    def test_config_file_not_found(self):
        result = self.invoke("config", "--show", "-c", "missing.toml")

        assert result.exit_code == 1

    def test_malformed_config(self):
        Path("asset-forge.toml").write_text("[project\nname = ")

        result = self.invoke("build", "assets")

        assert result.exit_code == 1
        assert "Configuration error" in result.stdout

    def test_config_show(self):
        result = self.invoke("config", "--show")

        assert result.exit_code == 0
        assert "Presets" in result.stdout

    def test_env_vars(self):
        result = self.invoke("config", "--env-vars")

        assert result.exit_code == 0
        assert "ASSET_FORGE_PRESET" in result.stdout

    @pytest.mark.parametrize("preset", ["mobile", "web"])
    def test_environment_preset(self, preset, monkeypatch):
        monkeypatch.setenv("ASSET_FORGE_PRESET", preset)

        result = self.invoke("config", "--show")

        assert result.exit_code == 0
        assert preset in result.stdout
