"""
Finding engine: the end-to-end pipeline.

A run moves through ``LOADED -> CONTEXT_BOUND -> SCANNED -> AGGREGATED ->
SUMMARIZED``, one way only:

1. Eligible rules are resolved for the context (context errors abort here).
2. Artifacts are scanned by a thread pool, one task per artifact with all of
   its eligible rules. Each task reads its artifact, so unreadable files and
   pattern timeouts degrade to diagnostics for that artifact only.
3. After the join barrier, raw matches are aggregated into findings.
4. The summary is computed single-threaded over the complete finding set.

A run is cancelled cooperatively: every task checks the cancel event before
reading its artifact, and a cancelled run raises ``ScanCancelled`` instead
of returning a partial report.

Example:
    >>> rule_set = load_directory("rules")
    >>> engine = FindingEngine(rule_set, load_config("rules/config.yaml"))
    >>> report = engine.run(discover_artifacts("."), EvaluationContext(project_tier="payment"))
    >>> print(report.summary.worst_severity)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from criteria_engine.aggregator import aggregate
from criteria_engine.applicability import ResolvedRule, eligible_rules, rules_for_artifact
from criteria_engine.config import EngineConfig
from criteria_engine.corpus import discover_artifacts
from criteria_engine.errors import PipelineStateError, ScanCancelled
from criteria_engine.language_detector import LanguageDetector
from criteria_engine.loader import RuleSet
from criteria_engine.matcher import PatternMatcher, ScanResult
from criteria_engine.models import (
    Artifact,
    DiagnosticKind,
    EvaluationContext,
    MatcherDiagnostic,
    Measurement,
    RawMatch,
)
from criteria_engine.normalize import NormalizedText
from criteria_engine.report import Report, build_report
from criteria_engine.rollup import summarize

logger = logging.getLogger(__name__)


# =============================================================================
# Pipeline state
# =============================================================================


class PipelineStage(str, Enum):
    LOADED = "loaded"
    CONTEXT_BOUND = "context_bound"
    SCANNED = "scanned"
    AGGREGATED = "aggregated"
    SUMMARIZED = "summarized"


_STAGE_ORDER: tuple[PipelineStage, ...] = tuple(PipelineStage)


class PipelineState:
    """Tracks one run's stage; only single forward steps are allowed."""

    def __init__(self) -> None:
        self.stage = PipelineStage.LOADED

    def advance(self, stage: PipelineStage) -> None:
        """
        Move to ``stage``.

        Raises:
            PipelineStateError: If ``stage`` is not the immediate successor.
        """
        current = _STAGE_ORDER.index(self.stage)
        if _STAGE_ORDER.index(stage) != current + 1:
            raise PipelineStateError(f"Illegal pipeline transition {self.stage.value} -> {stage.value}")
        self.stage = stage


# =============================================================================
# FindingEngine Class
# =============================================================================


class FindingEngine:
    """
    Runs a RuleSet against a corpus and produces a Report.

    The rule set and configuration are read-only and shared by every worker.
    One engine may serve many runs; each run has its own pipeline state.

    Attributes:
        rule_set: Loaded rule set.
        config: Engine configuration.
        detector: Language / file-kind classifier for artifacts.
        matcher: Pattern matcher shared by the workers.
    """

    def __init__(
        self,
        rule_set: RuleSet,
        config: Optional[EngineConfig] = None,
        detector: Optional[LanguageDetector] = None,
    ):
        self.rule_set = rule_set
        self.config = config or EngineConfig()
        self.detector = detector or LanguageDetector(self.config.extensions, self.config.file_kinds)
        self.matcher = PatternMatcher(rule_set, self.config.pattern_timeout_seconds)

        logger.info(
            "FindingEngine initialized",
            extra={
                "rule_count": len(rule_set),
                "max_workers": self.config.max_workers,
                "pattern_timeout": self.config.pattern_timeout_seconds,
            },
        )

    def run(
        self,
        artifacts: Iterable[Artifact],
        context: Optional[EvaluationContext] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Report:
        """
        Scan artifacts and return the report.

        Args:
            artifacts: Artifacts to scan (content may be read lazily).
            context: Evaluation context; an empty context if omitted.
            cancel: Event that cancels the run when set.

        Returns:
            The complete, canonically ordered Report.

        Raises:
            ContextError: If the context cannot resolve an eligible rule.
            ScanCancelled: If ``cancel`` was set before the scan completed.
            AggregationInvariantError: On an internal attribution failure.
        """
        context = context or EvaluationContext()
        state = PipelineState()

        resolved = eligible_rules(self.rule_set, context)
        state.advance(PipelineStage.CONTEXT_BOUND)

        artifact_list = list(artifacts)
        logger.info(
            f"Scanning {len(artifact_list)} artifacts with {len(resolved)} eligible rules",
            extra={"artifact_count": len(artifact_list), "rules_evaluated": len(resolved)},
        )
        results = self._scan_all(artifact_list, resolved, context, cancel)
        state.advance(PipelineStage.SCANNED)

        matches: list[RawMatch] = []
        measurements: list[Measurement] = []
        diagnostics: list[MatcherDiagnostic] = []
        texts: dict[str, NormalizedText] = {}
        for result in results:
            matches.extend(result.matches)
            measurements.extend(result.measurements)
            diagnostics.extend(result.diagnostics)
            if result.matches and result.text is not None:
                texts[result.artifact_path] = result.text

        findings = aggregate(
            matches,
            {r.id: r for r in resolved},
            overlap_fraction=self.config.overlap_fraction,
            diagnostics=diagnostics,
            texts=texts,
            snippet_context_lines=self.config.snippet_context_lines,
        )
        state.advance(PipelineStage.AGGREGATED)

        summary = summarize(
            findings,
            thresholds=resolved,
            measurements=measurements,
            metrics=context.metrics,
            hotspot_limit=self.config.hotspot_limit,
        )
        state.advance(PipelineStage.SUMMARIZED)

        logger.info(
            "Run complete",
            extra={
                "raw_matches": len(matches),
                "findings": len(findings),
                "diagnostics": len(diagnostics),
                "breaches": len(summary.breaches),
            },
        )
        return build_report(
            findings,
            summary,
            context=context,
            rule_sets=self.rule_set.descriptors,
            files_scanned=len(artifact_list),
            rules_evaluated=len(resolved),
        )

    def scan_directory(
        self,
        directory: str | Path,
        context: Optional[EvaluationContext] = None,
        cancel: Optional[threading.Event] = None,
        use_gitignore: bool = True,
    ) -> Report:
        """Run over every artifact the reference corpus provider finds in ``directory``."""
        artifacts = discover_artifacts(directory, self.config, use_gitignore=use_gitignore)
        return self.run(artifacts, context, cancel)

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def _scan_all(
        self,
        artifacts: list[Artifact],
        resolved: list[ResolvedRule],
        context: EvaluationContext,
        cancel: Optional[threading.Event],
    ) -> list[ScanResult]:
        results: list[Optional[ScanResult]] = [None] * len(artifacts)
        if not artifacts:
            return []

        workers = max(1, min(self.config.max_workers, len(artifacts)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="criteria-scan") as pool:
            futures = {
                pool.submit(self._scan_artifact, artifact, resolved, context, cancel): idx
                for idx, artifact in enumerate(artifacts)
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        completed = [r for r in results if r is not None]
        if cancel is not None and cancel.is_set():
            logger.warning(
                "Scan cancelled",
                extra={"completed": len(completed), "total": len(artifacts)},
            )
            raise ScanCancelled(completed=len(completed), total=len(artifacts))
        return completed

    def _scan_artifact(
        self,
        artifact: Artifact,
        resolved: list[ResolvedRule],
        context: EvaluationContext,
        cancel: Optional[threading.Event],
    ) -> Optional[ScanResult]:
        if cancel is not None and cancel.is_set():
            return None

        try:
            content = artifact.read()
        except (OSError, UnicodeError) as e:
            logger.warning(
                f"Artifact {artifact.path} could not be read: {e}",
                extra={"artifact": artifact.path},
            )
            return ScanResult(
                artifact_path=artifact.path,
                diagnostics=[
                    MatcherDiagnostic(
                        kind=DiagnosticKind.UNREADABLE_ARTIFACT,
                        artifact_path=artifact.path,
                        detail=f"Artifact could not be read: {e}",
                    )
                ],
            )

        language = artifact.language or self.detector.detect_language(artifact.path, content)
        file_kind = artifact.file_kind or self.detector.detect_file_kind(artifact.path, language)
        detailed = artifact.with_details(content=content, language=language, file_kind=file_kind)

        rules = rules_for_artifact(resolved, detailed, context)
        if not rules:
            return ScanResult(artifact_path=artifact.path)

        text = NormalizedText(content, language or context.language)
        return self.matcher.scan(rules, detailed, text)
