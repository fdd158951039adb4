"""Criteria Engine - rule-driven review findings over source, config and infrastructure code."""

__version__ = "0.1.0"

from criteria_engine.config import EngineConfig, load_config
from criteria_engine.corpus import discover_artifacts
from criteria_engine.engine import FindingEngine, PipelineStage
from criteria_engine.errors import (
    AggregationInvariantError,
    AmbiguousSeverity,
    AmbiguousThreshold,
    ContextError,
    CriteriaEngineError,
    DuplicateId,
    InvalidPattern,
    LoadError,
    RuleSchemaError,
    ScanCancelled,
)
from criteria_engine.loader import RuleSet, RuleSource, load, load_directory
from criteria_engine.models import Artifact, EvaluationContext, Finding, Severity, Summary
from criteria_engine.report import Report

__all__ = [
    # Loading
    "RuleSet",
    "RuleSource",
    "load",
    "load_directory",
    # Running
    "FindingEngine",
    "PipelineStage",
    "EngineConfig",
    "load_config",
    "discover_artifacts",
    # Data model
    "Artifact",
    "EvaluationContext",
    "Finding",
    "Report",
    "Severity",
    "Summary",
    # Errors
    "CriteriaEngineError",
    "LoadError",
    "RuleSchemaError",
    "DuplicateId",
    "InvalidPattern",
    "AmbiguousSeverity",
    "AmbiguousThreshold",
    "ContextError",
    "AggregationInvariantError",
    "ScanCancelled",
]
