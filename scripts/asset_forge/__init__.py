"""
asset-forge: incremental build tool for game assets

Turns a tree of source textures, models and audio into platform-tuned outputs,
rebuilding only what changed. Includes a content-addressed cache, glob-based
rules, a parallel job scheduler, a debounced watch mode and an atlas packer.
"""

__version__ = "0.1.0"

from .config import ForgeConfig, ConfigError
from .rules import RuleEngine
from .cache import CacheStore, CacheEntry, CacheCorruption
from .scheduler import Scheduler, BuildReport, JobStatus
from .pipeline import AssetPipeline, BuildPlanner, PipelineError
from .processing.atlas import AtlasPacker, AtlasOverflow
from .watch import WatchService

__all__ = [
    "ForgeConfig",
    "ConfigError",
    "RuleEngine",
    "CacheStore",
    "CacheEntry",
    "CacheCorruption",
    "Scheduler",
    "BuildReport",
    "JobStatus",
    "AssetPipeline",
    "BuildPlanner",
    "PipelineError",
    "AtlasPacker",
    "AtlasOverflow",
    "WatchService",
]
