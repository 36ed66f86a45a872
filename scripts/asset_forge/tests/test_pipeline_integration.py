"""
Integration tests for full incremental builds with the bundled processors.
"""

import os
import json
import tempfile
import shutil
import unittest
from pathlib import Path

import numpy as np
import soundfile as sf
from PIL import Image

from ..config import ForgeConfig, ConfigError, RuleConfig
from ..pipeline import AssetPipeline, BuildPlanner, PipelineError
from ..rules import RuleEngine
from ..scheduler import JobStatus


CONFIG = """
[project]
name = "integration"
source = "assets"
output = "build"

[rules]
"sprites/*.png" = { atlas = true, trim = true }
"audio/*.wav" = { format = "wav", normalize = true }

[cache]
directory = ".cache"
"""


def write_png(path, size=(32, 32), color=(255, 0, 0, 255)):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new('RGBA', size, color).save(path, format='PNG')


def write_wav(path, frames=2205):
    path.parent.mkdir(parents=True, exist_ok=True)
    t = np.arange(frames) / 22050.0
    sf.write(str(path), 0.3 * np.sin(2 * np.pi * 220.0 * t), 22050, format='WAV', subtype='PCM_16')


class PipelineTestCase(unittest.TestCase):
    """A small project with textures, an atlas group, audio and an unknown file."""

    def setUp(self):
        self.root = Path(tempfile.mkdtemp()).resolve()
        (self.root / "asset-forge.toml").write_text(CONFIG)
        self.assets = self.root / "assets"
        self.build_dir = self.root / "build"

        write_png(self.assets / "textures" / "wall.png", (64, 64), (120, 120, 120, 255))
        write_png(self.assets / "textures" / "floor.png", (48, 24), (60, 40, 20, 255))
        write_png(self.assets / "sprites" / "coin.png", (16, 16), (255, 215, 0, 255))
        write_png(self.assets / "sprites" / "gem.png", (12, 20), (0, 200, 255, 255))
        write_wav(self.assets / "audio" / "beep.wav")
        (self.assets / "notes.txt").write_text("not an asset")

    def tearDown(self):
        shutil.rmtree(self.root, ignore_errors=True)

    def config(self):
        return ForgeConfig.from_file(self.root / "asset-forge.toml")

    def build(self, **kwargs):
        return AssetPipeline(self.config(), **kwargs).run()

    def snapshot(self):
        """Bytes of every output file plus the manifest."""
        files = {
            p.relative_to(self.root).as_posix(): p.read_bytes()
            for p in sorted(self.build_dir.rglob("*")) if p.is_file()
        }
        files["manifest"] = (self.root / ".cache" / "manifest.json").read_bytes()
        return files


class TestFullBuild(PipelineTestCase):

    def test_first_build(self):
        report = self.build()

        self.assertTrue(report.succeeded, report.failures)
        self.assertEqual(
            sorted(o.label for o in report.built),
            ["atlas:sprites", "audio/beep.wav", "textures/floor.png", "textures/wall.png"],
        )
        self.assertEqual(report.skipped, ["notes.txt"])

        self.assertTrue((self.build_dir / "textures" / "wall.png").exists())
        self.assertTrue((self.build_dir / "audio" / "beep.wav").exists())
        self.assertTrue((self.build_dir / "sprites.png").exists())
        self.assertFalse((self.build_dir / "sprites" / "coin.png").exists())

        manifest = json.loads((self.root / ".cache" / "manifest.json").read_text())
        self.assertEqual(manifest["version"], 1)
        self.assertEqual(len(manifest["entries"]), 4)

    def test_atlas_outputs(self):
        self.build()

        metadata = json.loads((self.build_dir / "sprites.json").read_text())
        atlas = Image.open(self.build_dir / "sprites.png")

        self.assertEqual(metadata["image"], "sprites.png")
        self.assertEqual([s["id"] for s in metadata["sprites"]], ["coin", "gem"])
        self.assertEqual(atlas.size, (metadata["width"], metadata["height"]))

    def test_second_build_is_idempotent(self):
        self.build()
        before = self.snapshot()

        report = self.build()

        self.assertEqual(report.count(JobStatus.CACHED), 4)
        self.assertEqual(report.processor_invocations, 0)
        self.assertEqual(self.snapshot(), before)

    def test_single_change_rebuilds_one_job(self):
        self.build()
        write_png(self.assets / "textures" / "wall.png", (64, 64), (10, 200, 10, 255))

        report = self.build()

        self.assertEqual([o.label for o in report.built], ["textures/wall.png"])
        self.assertEqual(report.count(JobStatus.CACHED), 3)

    def test_atlas_member_change_rebuilds_atlas(self):
        self.build()
        write_png(self.assets / "sprites" / "gem.png", (20, 20), (0, 0, 255, 255))

        report = self.build()

        self.assertEqual([o.label for o in report.built], ["atlas:sprites"])
        metadata = json.loads((self.build_dir / "sprites.json").read_text())
        gem = [s for s in metadata["sprites"] if s["id"] == "gem"][0]
        self.assertEqual((gem["width"], gem["height"]), (20, 20))

    def test_preset_change_rebuilds_textures(self):
        self.build()

        report = self.build(preset="web")

        built = sorted(o.label for o in report.built)
        self.assertIn("textures/wall.png", built)
        self.assertTrue((self.build_dir / "textures" / "wall.webp").exists())

    def test_clean_makes_everything_a_miss(self):
        self.build()
        pipeline = AssetPipeline(self.config())

        freed = pipeline.clean()
        report = pipeline.run()

        self.assertGreater(freed, 0)
        self.assertEqual(report.count(JobStatus.BUILT), 4)
        self.assertEqual(report.count(JobStatus.CACHED), 0)

    def test_clean_all_removes_outputs(self):
        self.build()

        AssetPipeline(self.config()).clean(include_output=True)

        self.assertFalse(self.build_dir.exists())
        self.assertFalse((self.root / ".cache").exists())

    def test_deleted_source_is_pruned(self):
        self.build()
        (self.assets / "textures" / "floor.png").unlink()

        self.build()

        manifest = json.loads((self.root / ".cache" / "manifest.json").read_text())
        sources = sorted(e["source_path"] for e in manifest["entries"])
        self.assertEqual(sources, ["audio/beep.wav", "sprites", "textures/wall.png"])

    def test_dry_run(self):
        report = self.build(dry_run=True)

        self.assertEqual(report.count(JobStatus.WOULD_BUILD), 4)
        self.assertFalse(self.build_dir.exists())
        self.assertFalse((self.root / ".cache" / "manifest.json").exists())

    def test_worker_counts_match(self):
        self.build(jobs=1)
        serial = self.snapshot()
        shutil.rmtree(self.build_dir)
        shutil.rmtree(self.root / ".cache")

        self.build(jobs=4)

        self.assertEqual(self.snapshot(), serial)

    def test_atlas_overflow_is_a_job_failure(self):
        config = self.config()
        config.rules[0].overrides["atlas_max_width"] = 8

        with self.assertLogs("asset_forge", level="ERROR"):
            report = AssetPipeline(config).run()

        self.assertEqual([o.label for o in report.failures], ["atlas:sprites"])
        self.assertIn("atlas is limited to", report.failures[0].message)
        self.assertEqual(report.count(JobStatus.BUILT), 3)
        self.assertEqual(report.exit_code, 1)

    def test_unreadable_source_fails_the_build(self):
        os.symlink("missing.png", self.assets / "textures" / "broken.png")

        with self.assertLogs("asset_forge", level="WARNING"):
            report = self.build()

        self.assertEqual([o.label for o in report.failures], ["textures/broken.png"])
        self.assertIn("Cannot read source", report.failures[0].message)
        self.assertEqual(report.count(JobStatus.BUILT), 4)
        self.assertEqual(report.exit_code, 1)

    def test_size_totals(self):
        report = self.build()

        sources = [
            "textures/wall.png", "textures/floor.png", "sprites/coin.png", "sprites/gem.png", "audio/beep.wav",
        ]
        self.assertEqual(report.input_size, sum((self.assets / rel).stat().st_size for rel in sources))
        self.assertEqual(
            report.output_size,
            sum((self.build_dir / o.output_path).stat().st_size for o in report.built),
        )
        self.assertIsNotNone(report.size_reduction)

    def test_missing_source_dir(self):
        shutil.rmtree(self.assets)

        with self.assertRaises(PipelineError):
            self.build()

    def test_unknown_preset(self):
        with self.assertRaises(ConfigError):
            self.build(preset="switch")


class TestBuildPlanner(PipelineTestCase):

    def planner(self, config=None):
        config = config or self.config()
        return BuildPlanner(RuleEngine(config), config.source_dir, [config.output_dir, config.cache_dir])

    def test_scan_skips_hidden_files(self):
        (self.assets / ".DS_Store").write_bytes(b"")
        (self.assets / ".git").mkdir()
        (self.assets / ".git" / "head.png").write_bytes(b"")

        paths = [p.relative_to(self.assets).as_posix() for p in self.planner().scan()]

        self.assertEqual(paths, sorted(paths))
        self.assertNotIn(".DS_Store", paths)
        self.assertFalse(any(p.startswith(".git") for p in paths))

    def test_output_inside_source_is_ignored(self):
        config = self.config()
        config.project.output = "assets/out"
        write_png(self.assets / "out" / "old.png")

        plan = self.planner(config).plan()

        self.assertFalse(any(job.output_path.startswith("out/") for job in plan.jobs))
        self.assertEqual(len(plan.jobs), 4)

    def test_atlas_group_of(self):
        planner = self.planner()

        self.assertEqual(planner.atlas_group_of("sprites/removed.png"), "sprites")
        self.assertIsNone(planner.atlas_group_of("textures/wall.png"))

    def test_plan_group(self):
        planner = self.planner()

        job = planner.plan_group("sprites")

        self.assertTrue(job.is_atlas)
        self.assertEqual([m.path for m in job.group.members], ["sprites/coin.png", "sprites/gem.png"])
        self.assertEqual(job.output_paths, ("sprites.png", "sprites.json"))
        self.assertIsNone(planner.plan_group("missing"))

    def test_duplicate_outputs_rejected(self):
        config = self.config()
        config.rules.append(RuleConfig("textures/*.png", {"output": "flat.{ext}"}))

        with self.assertRaises(ConfigError):
            self.planner(config).plan()

    def test_relative(self):
        planner = self.planner()

        self.assertEqual(planner.relative(self.assets / "textures" / "wall.png"), "textures/wall.png")
        self.assertIsNone(planner.relative(self.root / "elsewhere.png"))
        self.assertIsNone(planner.relative(self.assets / ".hidden.png"))


if __name__ == "__main__":
    unittest.main()
