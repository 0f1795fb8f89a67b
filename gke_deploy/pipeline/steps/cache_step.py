from __future__ import annotations

from ..pipeline import PipelineContext, PipelineState, StepResult
from ...runtime.cache import CacheKey, DependencyCache
from ...runtime.issues import RuntimeIssue


def _dependency_cache(context: PipelineContext) -> DependencyCache:
    return DependencyCache(
        cache_root=context.config.resolved_cache_dir(),
        target_path=context.config.resolved_cache_path(),
        logger=context.logger,
        max_entries=context.config.cache_max_entries,
    )


class DependencyCacheRestoreStep:
    """Restore the Maven local repository; a miss only means a slower build."""

    name = "cache_restore"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        if not context.config.cache_enabled:
            return StepResult(skipped=True)

        manifests = state.workspace.glob(context.config.cache_manifest_glob)
        if not manifests:
            return StepResult(
                issues=[
                    RuntimeIssue(
                        code="CACHE_NO_MANIFESTS",
                        message=f"No files match {context.config.cache_manifest_glob}; dependency cache disabled",
                        severity="warning",
                    )
                ],
                skipped=True,
            )

        state.cache_key = CacheKey.for_manifests(manifests)
        result = _dependency_cache(context).restore(state.cache_key)
        state.cache_hit = result.exact_hit
        return StepResult(
            issues=result.issues,
            metadata={"key": state.cache_key.key, "matched_key": result.matched_key, "exact_hit": result.exact_hit},
        )


class DependencyCacheSaveStep:
    """Store the local repository under the computed key unless it was an exact hit."""

    name = "cache_save"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        if not context.config.cache_enabled or state.cache_key is None or state.cache_hit:
            return StepResult(skipped=True)

        result = _dependency_cache(context).save(state.cache_key)
        return StepResult(
            issues=result.issues,
            metadata={
                "saved": result.saved,
                "archive": str(result.archive_path) if result.archive_path else None,
                "pruned": [path.name for path in result.pruned],
            },
        )
