"""Incremental build engine.

Discovery, dependency extraction, staleness and parallel compilation for a
single application package.
"""

from appmake.build.callbacks import LogCallback, NullCallback, ProgressCallback
from appmake.build.depfile import DependencyRecord, DependencyRecordError
from appmake.build.discovery import SourceFile, SourceKind, SourceSet, discover_sources
from appmake.build.extractor import DependencyExtractor
from appmake.build.models import BuildResult, CompileTask, TaskPhase
from appmake.build.planner import DependencyRecordStore, IncrementalBuildPlanner, ModuleCollisionError
from appmake.build.scheduler import CyclicDependencyError
from appmake.build.staleness import ContentHashOracle, StalenessOracle, TimestampOracle, oracle_for

__all__ = [
    "BuildResult",
    "CompileTask",
    "ContentHashOracle",
    "CyclicDependencyError",
    "DependencyExtractor",
    "DependencyRecord",
    "DependencyRecordError",
    "DependencyRecordStore",
    "IncrementalBuildPlanner",
    "LogCallback",
    "ModuleCollisionError",
    "NullCallback",
    "ProgressCallback",
    "SourceFile",
    "SourceKind",
    "SourceSet",
    "StalenessOracle",
    "TaskPhase",
    "TimestampOracle",
    "discover_sources",
    "oracle_for",
]
