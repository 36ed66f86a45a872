"""
Configuration management for asset-forge.
Supports TOML and JSON configuration files, config discovery, environment
overrides and validation.
"""

import os
import json
import copy
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, List, Optional, Any, Union

# Handle tomllib import for different Python versions
try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # Python < 3.11 with tomli package

import toml
from jinja2 import Environment, FileSystemLoader


logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = ("asset-forge.toml", ".asset-forge.toml", "asset-forge.json")
ENV_PREFIX = "ASSET_FORGE_"

TEXTURE_FORMATS = ("png", "jpeg", "webp", "ktx2")
MODEL_FORMATS = ("glb", "gltf", "obj", "fbx")
AUDIO_FORMATS = ("ogg", "wav")

# Every key a rule may override
RULE_FIELDS = frozenset({
    "format", "quality", "max_size", "trim", "mipmap",
    "atlas", "atlas_padding", "atlas_max_width", "atlas_max_height",
    "draco", "meshopt", "lod", "lod_ratio", "lod_count",
    "normalize", "sample_rate", "output",
})

TEMPLATE_DIR = Path(__file__).parent / "templates"


class ConfigError(Exception):
    """Raised for malformed configuration, unknown rule fields or unknown presets."""
    pass


@dataclass
class ProjectConfig:
    """Project section: name plus source and output roots."""
    name: str = "my-game"
    output: str = "./build/assets"
    source: str = "./assets"


@dataclass
class PresetConfig:
    """Platform preset with texture and audio defaults."""
    texture_max_size: int = 2048
    texture_format: str = "png"
    texture_quality: int = 85
    audio_format: str = "ogg"
    audio_quality: int = 5
    compress_textures: bool = True
    generate_mipmaps: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["PresetConfig"] = None) -> "PresetConfig":
        preset = copy.copy(base) if base is not None else cls()
        for key, value in data.items():
            if not hasattr(preset, key):
                raise ConfigError(f"Unknown preset field: {key}")
            setattr(preset, key, value)
        return preset


BUILTIN_PRESETS: Dict[str, PresetConfig] = {
    # mobile ships png until a ktx2 encoder is available
    "mobile": PresetConfig(1024, "png", 75, "ogg", 6, True, True),
    "desktop": PresetConfig(4096, "png", 90, "wav", 10, False, True),
    "web": PresetConfig(2048, "webp", 80, "ogg", 7, True, False),
}


@dataclass
class RuleConfig:
    """A glob pattern and the pipeline fields it overrides."""
    pattern: str
    overrides: Dict[str, Any] = field(default_factory=dict)

    def unknown_fields(self) -> List[str]:
        return sorted(key for key in self.overrides if key not in RULE_FIELDS)


@dataclass
class CacheConfig:
    """Build cache settings."""
    enabled: bool = True
    directory: str = ".asset-forge-cache"


@dataclass
class ForgeConfig:
    """Main configuration class for asset-forge."""

    project: ProjectConfig = field(default_factory=ProjectConfig)
    presets: Dict[str, PresetConfig] = field(
        default_factory=lambda: {name: copy.copy(p) for name, p in BUILTIN_PRESETS.items()}
    )
    rules: List[RuleConfig] = field(default_factory=list)
    cache: CacheConfig = field(default_factory=CacheConfig)

    # Runtime selections, normally set from the CLI or environment
    preset: Optional[str] = None
    jobs: Optional[int] = None

    # Directory relative paths are resolved against
    root: Path = field(default_factory=Path.cwd)
    config_path: Optional[Path] = None

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "ForgeConfig":
        """Load configuration from TOML or JSON file."""
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        if config_path.suffix.lower() == '.toml':
            data = cls._read_toml(config_path)
        elif config_path.suffix.lower() == '.json':
            data = cls._read_json(config_path)
        else:
            raise ConfigError(f"Unsupported configuration format: {config_path.suffix}")

        config = cls._from_dict(data)
        config.root = config_path.resolve().parent
        config.config_path = config_path
        return config

    @staticmethod
    def _read_toml(config_path: Path) -> Dict[str, Any]:
        try:
            with open(config_path, 'rb') as f:
                return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}")

    @staticmethod
    def _read_json(config_path: Path) -> Dict[str, Any]:
        try:
            with open(config_path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}")

    @classmethod
    def from_toml_string(cls, content: str) -> "ForgeConfig":
        try:
            data = tomllib.loads(content)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML: {e}")
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "ForgeConfig":
        """Create configuration from dictionary."""
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a table")

        config = cls()

        if 'project' in data:
            project = data['project']
            config.project = ProjectConfig(
                name=project.get('name', 'my-game'),
                output=project.get('output', './build/assets'),
                source=project.get('source', './assets'),
            )

        # File presets override the built-in ones field by field
        for name, values in data.get('presets', {}).items():
            if not isinstance(values, dict):
                raise ConfigError(f"Preset '{name}' must be a table")
            config.presets[name] = PresetConfig.from_dict(values, BUILTIN_PRESETS.get(name))

        # Rule order is significant: later rules win
        for pattern, overrides in data.get('rules', {}).items():
            if not isinstance(overrides, dict):
                raise ConfigError(f"Rule '{pattern}' must be an inline table")
            config.rules.append(RuleConfig(pattern=pattern, overrides=dict(overrides)))

        if 'cache' in data:
            cache = data['cache']
            config.cache = CacheConfig(
                enabled=cache.get('enabled', True),
                directory=cache.get('directory', '.asset-forge-cache'),
            )

        return config

    @classmethod
    def default(cls) -> "ForgeConfig":
        """Create default configuration with environment variable overrides."""
        return cls._apply_env_overrides(cls())

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None,
             start: Optional[Path] = None) -> "ForgeConfig":
        """Load an explicit config file, else the nearest discovered one, else defaults."""
        if config_path is None:
            config_path = find_config(start)
        if config_path is None:
            logger.debug("No configuration file found, using defaults")
            config = cls()
            if start is not None:
                config.root = Path(start).resolve()
        else:
            logger.debug(f"Using configuration: {config_path}")
            config = cls.from_file(config_path)
        return cls._apply_env_overrides(config)

    @classmethod
    def _apply_env_overrides(cls, config: "ForgeConfig") -> "ForgeConfig":
        """Apply environment variable overrides to configuration."""
        if os.getenv('ASSET_FORGE_OUTPUT'):
            config.project.output = os.getenv('ASSET_FORGE_OUTPUT', './build/assets')

        if os.getenv('ASSET_FORGE_SOURCE'):
            config.project.source = os.getenv('ASSET_FORGE_SOURCE', './assets')

        if os.getenv('ASSET_FORGE_PRESET'):
            config.preset = os.getenv('ASSET_FORGE_PRESET')

        if os.getenv('ASSET_FORGE_JOBS'):
            try:
                config.jobs = int(os.getenv('ASSET_FORGE_JOBS', '0'))
            except ValueError:
                raise ConfigError("ASSET_FORGE_JOBS must be an integer")

        if os.getenv('ASSET_FORGE_CACHE_DIR'):
            config.cache.directory = os.getenv('ASSET_FORGE_CACHE_DIR', '.asset-forge-cache')

        if os.getenv('ASSET_FORGE_CACHE_ENABLED'):
            config.cache.enabled = os.getenv('ASSET_FORGE_CACHE_ENABLED', 'true').lower() == 'true'

        return config

    def _resolve(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.root / candidate
        return candidate

    @property
    def source_dir(self) -> Path:
        return self._resolve(self.project.source)

    @property
    def output_dir(self) -> Path:
        return self._resolve(self.project.output)

    @property
    def cache_dir(self) -> Path:
        return self._resolve(self.cache.directory)

    def get_preset(self, name: Optional[str] = None) -> Optional[PresetConfig]:
        """Return the named (or active) preset, None when no preset is active."""
        name = name if name is not None else self.preset
        if name is None:
            return None
        if name not in self.presets:
            available = ", ".join(sorted(self.presets))
            raise ConfigError(f"Unknown preset '{name}' (available: {available})")
        return self.presets[name]

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.project.name:
            errors.append("project.name must not be empty")

        for name, preset in self.presets.items():
            if preset.texture_max_size <= 0:
                errors.append(f"presets.{name}.texture_max_size must be positive")
            if preset.texture_format not in TEXTURE_FORMATS:
                errors.append(f"presets.{name}.texture_format must be one of {', '.join(TEXTURE_FORMATS)}")
            if not 1 <= preset.texture_quality <= 100:
                errors.append(f"presets.{name}.texture_quality must be between 1 and 100")
            if preset.audio_format not in AUDIO_FORMATS:
                errors.append(f"presets.{name}.audio_format must be one of {', '.join(AUDIO_FORMATS)}")
            if not 1 <= preset.audio_quality <= 10:
                errors.append(f"presets.{name}.audio_quality must be between 1 and 10")

        for rule in self.rules:
            for key in rule.unknown_fields():
                errors.append(f"rules.\"{rule.pattern}\" has unknown field '{key}'")
            quality = rule.overrides.get('quality')
            if quality is not None and not (isinstance(quality, int) and 1 <= quality <= 100):
                errors.append(f"rules.\"{rule.pattern}\".quality must be an integer between 1 and 100")
            for key in ('max_size', 'atlas_max_width', 'atlas_max_height', 'sample_rate', 'lod_count'):
                value = rule.overrides.get(key)
                if value is not None and not (isinstance(value, int) and value > 0):
                    errors.append(f"rules.\"{rule.pattern}\".{key} must be a positive integer")
            padding = rule.overrides.get('atlas_padding')
            if padding is not None and not (isinstance(padding, int) and padding >= 0):
                errors.append(f"rules.\"{rule.pattern}\".atlas_padding must be a non-negative integer")

        if self.preset is not None and self.preset not in self.presets:
            errors.append(f"Unknown preset '{self.preset}'")

        if self.jobs is not None and self.jobs <= 0:
            errors.append("jobs must be positive")

        if not self.cache.directory:
            errors.append("cache.directory must not be empty")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project": asdict(self.project),
            "presets": {name: asdict(preset) for name, preset in self.presets.items()},
            "rules": {rule.pattern: dict(rule.overrides) for rule in self.rules},
            "cache": asdict(self.cache),
        }

    def to_toml(self) -> str:
        """Serialize the file-level configuration back to TOML."""
        return toml.dumps(self.to_dict())


def find_config(start: Optional[Path] = None) -> Optional[Path]:
    """Search the start directory and its parents for a config file."""
    current = Path(start or Path.cwd()).resolve()

    for directory in [current, *current.parents]:
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def _template_environment(template_dir: Optional[Path] = None) -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        autoescape=False
    )
    env.filters['format_path'] = lambda path: str(path).replace('\\', '/')
    env.filters['toml_bool'] = lambda value: "true" if value else "false"
    return env


def render_default_config(name: str = "my-game", template_dir: Optional[Path] = None) -> str:
    """Render the starter asset-forge.toml written by `init`."""
    template = _template_environment(template_dir).get_template("asset-forge.toml.j2")
    content = template.render(
        project=ProjectConfig(name=name),
        presets=BUILTIN_PRESETS,
        cache=CacheConfig(),
    )

    # The rendered file must round-trip through a TOML parser
    try:
        toml.loads(content)
    except toml.TomlDecodeError as e:
        raise ConfigError(f"Rendered configuration is not valid TOML: {e}")

    return content
