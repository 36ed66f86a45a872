"""
Rule resolution: maps a source path to the Pipeline that builds it.

Settings are layered as extension defaults, then the active preset, then every
matching rule in configuration order. Later rules override earlier ones field
by field.
"""

import re
import logging
import posixpath
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Pattern, Tuple

from .config import (
    ForgeConfig, RuleConfig, PresetConfig, ConfigError,
    TEXTURE_FORMATS, MODEL_FORMATS, AUDIO_FORMATS,
)
from .transforms import (
    AssetKind, AtlasSettings, Pipeline, MIP_CAPABLE_FORMATS,
    Resize, Trim, Recompress, GenerateMip, Simplify, BufferCompress,
    Normalize, Resample, Encode,
)


logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_PATTERN = "{dir}/{stem}.{ext}"

_IMAGE_SOURCE_FORMATS = {"png": "png", "jpg": "jpeg", "jpeg": "jpeg", "webp": "webp"}


def glob_to_regex(pattern: str) -> Pattern:
    """
    Translate a glob into a regular expression over POSIX relative paths.

    `*` and `?` never match `/`, `**/` matches zero or more directories and
    `[...]` is a character class (`[!...]` negates).
    """
    i, n = 0, len(pattern)
    out = []
    while i < n:
        c = pattern[i]
        if c == '*':
            if pattern.startswith('**/', i):
                out.append('(?:[^/]*/)*')
                i += 3
                continue
            if pattern.startswith('**', i):
                out.append('.*')
                i += 2
                continue
            out.append('[^/]*')
        elif c == '?':
            out.append('[^/]')
        elif c == '[':
            end = pattern.find(']', i + 2)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body.startswith('!'):
                    body = '^' + body[1:]
                out.append('[' + body.replace('\\', '\\\\') + ']')
                i = end + 1
                continue
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile('^' + ''.join(out) + '$')


class GlobRule:
    """A compiled rule pattern."""

    def __init__(self, rule: RuleConfig):
        self.rule = rule
        pattern = rule.pattern[2:] if rule.pattern.startswith('./') else rule.pattern
        # Patterns without a directory part match the file name anywhere
        self.basename_only = '/' not in pattern
        self.regex = glob_to_regex(pattern)

    def matches(self, path: str) -> bool:
        if self.basename_only:
            return bool(self.regex.match(posixpath.basename(path)))
        return bool(self.regex.match(path))


class RuleEngine:
    """Resolves source-relative paths to Pipelines."""

    def __init__(self, config: ForgeConfig, preset: Optional[str] = None):
        self.config = config
        self.preset_name = preset if preset is not None else config.preset
        self.preset: Optional[PresetConfig] = config.get_preset(self.preset_name)

        for rule in config.rules:
            unknown = rule.unknown_fields()
            if unknown:
                raise ConfigError(
                    f"Rule '{rule.pattern}' references unknown parameter(s): {', '.join(unknown)}"
                )
        self._rules = [GlobRule(rule) for rule in config.rules]

    def matching_rules(self, path: str) -> List[RuleConfig]:
        path = _normalize(path)
        return [compiled.rule for compiled in self._rules if compiled.matches(path)]

    def settings_for(self, path: str) -> Tuple[AssetKind, Dict[str, Any]]:
        """Merge extension defaults, preset and matching rules for one path."""
        path = _normalize(path)
        kind = AssetKind.from_path(path)
        if kind is AssetKind.UNKNOWN:
            return kind, {}

        settings = _kind_defaults(kind, PurePosixPath(path).suffix.lower().lstrip('.'))
        if self.preset is not None:
            settings.update(_preset_defaults(kind, self.preset))
        for rule in self.matching_rules(path):
            settings.update(rule.overrides)
        return kind, settings

    def resolve(self, path: str) -> Pipeline:
        """Resolve the Pipeline for a source-relative path."""
        kind, settings = self.settings_for(path)
        if kind is AssetKind.UNKNOWN:
            return Pipeline.noop()

        builder = {
            AssetKind.IMAGE: _image_pipeline,
            AssetKind.MODEL: _model_pipeline,
            AssetKind.AUDIO: _audio_pipeline,
        }[kind]
        pipeline = builder(path, settings)
        logger.debug(f"Resolved {path}: {pipeline.describe()}")
        return pipeline

    def output_path(self, path: str, pipeline: Pipeline) -> str:
        """Output location for a non-atlas asset, relative to the output root."""
        path = _normalize(path)
        rel = PurePosixPath(path)
        directory = '' if str(rel.parent) == '.' else str(rel.parent)
        pattern = pipeline.output_pattern or DEFAULT_OUTPUT_PATTERN

        try:
            rendered = pattern.format(dir=directory, stem=rel.stem, name=rel.name, ext=pipeline.extension)
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigError(f"Invalid output pattern '{pattern}': {e}")

        normalized = posixpath.normpath(rendered.lstrip('/'))
        if normalized in ('.', '') or normalized.startswith('../') or normalized == '..':
            raise ConfigError(f"Output pattern '{pattern}' escapes the output directory for {path}")
        return normalized


def _normalize(path: str) -> str:
    path = str(path).replace('\\', '/')
    return path[2:] if path.startswith('./') else path


def _kind_defaults(kind: AssetKind, extension: str) -> Dict[str, Any]:
    if kind is AssetKind.IMAGE:
        return {
            "format": _IMAGE_SOURCE_FORMATS.get(extension, "png"),
            "quality": 90,
            "compress": True,
            "max_size": None,
            "trim": False,
            "mipmap": False,
            "atlas": False,
            "atlas_padding": 2,
            "atlas_max_width": 2048,
            "atlas_max_height": 2048,
        }
    if kind is AssetKind.MODEL:
        return {
            "format": "glb" if extension in ("gltf", "glb") else extension,
            "draco": False,
            "meshopt": False,
            "lod": False,
            "lod_ratio": 0.5,
            "lod_count": 3,
        }
    return {
        "format": "ogg",
        "quality": 5,
        "normalize": False,
        "sample_rate": None,
    }


def _preset_defaults(kind: AssetKind, preset: PresetConfig) -> Dict[str, Any]:
    if kind is AssetKind.IMAGE:
        return {
            "format": preset.texture_format,
            "quality": preset.texture_quality,
            "max_size": preset.texture_max_size,
            "mipmap": preset.generate_mipmaps,
            "compress": preset.compress_textures,
        }
    if kind is AssetKind.AUDIO:
        return {
            "format": preset.audio_format,
            "quality": preset.audio_quality,
        }
    return {}


def _check_format(path: str, fmt: str, allowed) -> None:
    if fmt not in allowed:
        raise ConfigError(f"Format '{fmt}' is not valid for {path} (expected one of {', '.join(allowed)})")


def _image_pipeline(path: str, settings: Dict[str, Any]) -> Pipeline:
    fmt = settings["format"]
    _check_format(path, fmt, TEXTURE_FORMATS)
    recompress = Recompress(format=fmt, quality=settings["quality"], compress=bool(settings["compress"]))

    if settings["atlas"]:
        # Members are packed together; trim happens per sprite inside the packer
        atlas = AtlasSettings(
            max_width=settings["atlas_max_width"],
            max_height=settings["atlas_max_height"],
            padding=settings["atlas_padding"],
            trim=bool(settings["trim"]),
        )
        return Pipeline(AssetKind.IMAGE, (recompress,), fmt, settings.get("output"), atlas)

    steps = []
    if settings["trim"]:
        steps.append(Trim())
    if settings["max_size"]:
        steps.append(Resize(max_size=settings["max_size"]))
    if settings["mipmap"] and fmt in MIP_CAPABLE_FORMATS:
        steps.append(GenerateMip())
    steps.append(recompress)
    return Pipeline(AssetKind.IMAGE, tuple(steps), fmt, settings.get("output"))


def _model_pipeline(path: str, settings: Dict[str, Any]) -> Pipeline:
    fmt = settings["format"]
    _check_format(path, fmt, MODEL_FORMATS)

    steps = []
    if settings["lod"]:
        lod_count = max(1, min(4, int(settings["lod_count"])))
        ratio = max(0.1, min(0.9, float(settings["lod_ratio"])))
        steps.append(Simplify(ratio=ratio, lod_count=lod_count))
    if settings["draco"]:
        steps.append(BufferCompress(method="draco"))
    if settings["meshopt"]:
        steps.append(BufferCompress(method="meshopt"))
    steps.append(Encode(format=fmt))
    return Pipeline(AssetKind.MODEL, tuple(steps), fmt, settings.get("output"))


def _audio_pipeline(path: str, settings: Dict[str, Any]) -> Pipeline:
    fmt = settings["format"]
    _check_format(path, fmt, AUDIO_FORMATS)

    steps = []
    if settings["normalize"]:
        steps.append(Normalize())
    if settings["sample_rate"]:
        steps.append(Resample(sample_rate=settings["sample_rate"]))
    steps.append(Encode(format=fmt, quality=settings["quality"]))
    return Pipeline(AssetKind.AUDIO, tuple(steps), fmt, settings.get("output"))
