from __future__ import annotations

from pathlib import Path
from typing import List

from pydantic import ValidationError

from ..pipeline import PipelineContext, PipelineState, StepResult
from ...core.workspace import SourceWorkspace, WorkspaceError
from ...runtime.issues import RuntimeIssue


class SourceCheckoutStep:
    """Open (or clone) the source tree and resolve the commit the run deploys."""

    name = "checkout"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        config = context.config
        issues: List[RuntimeIssue] = []

        try:
            if config.repo_url:
                workspace = SourceWorkspace.clone(
                    config.repo_url,
                    context.run_context.run_dir / "source",
                    branch=config.default_branch,
                )
            else:
                workspace = SourceWorkspace.open(Path(context.source_dir or "."))
            head_sha = workspace.head_sha()
        except WorkspaceError as exc:
            return StepResult(
                issues=[RuntimeIssue(code="SOURCE_CHECKOUT_FAILED", message=str(exc), subject="source")],
                continue_pipeline=False,
            )

        run_dir = context.run_context.run_dir.resolve()
        exposed_to = [
            path
            for path in (workspace.root, (workspace.root / config.build_context).resolve())
            if run_dir.is_relative_to(path)
        ]
        if exposed_to:
            return StepResult(
                issues=[
                    RuntimeIssue(
                        code="RUN_DIR_INSIDE_SOURCE",
                        message=(
                            f"Run directory {run_dir} is inside {exposed_to[0]}; credentials would land in the "
                            "image build context. Point work_dir outside the checkout."
                        ),
                        subject=str(run_dir),
                    )
                ],
                continue_pipeline=False,
            )

        state.workspace = workspace
        state.branch = workspace.current_branch()
        commit_sha = (context.commit_sha_override or head_sha).strip().lower()

        if context.commit_sha_override and not head_sha.startswith(commit_sha):
            issues.append(
                RuntimeIssue(
                    code="COMMIT_OVERRIDE_MISMATCH",
                    message=f"Deploying as {commit_sha} but the checkout is at {head_sha}",
                    severity="warning",
                    subject=commit_sha,
                )
            )

        try:
            state.image = config.get_image_reference(commit_sha)
        except ValidationError as exc:
            issues.append(
                RuntimeIssue(
                    code="INVALID_COMMIT_SHA",
                    message=f"Cannot tag image with {commit_sha!r}: {exc.errors()[0]['msg']}",
                    subject=commit_sha,
                )
            )
            return StepResult(issues=issues, continue_pipeline=False)
        state.commit_sha = commit_sha

        context.logger.info(
            "Source at %s (commit %s, branch %s)", workspace.root, commit_sha, state.branch or "<detached>"
        )

        if workspace.is_dirty():
            issues.append(
                RuntimeIssue(
                    code="SOURCE_DIRTY",
                    message="Working tree has uncommitted changes; the image will not match its commit tag",
                    severity="warning",
                    subject=str(workspace.root),
                )
            )

        if context.enforce_trigger and state.branch != config.default_branch:
            issues.append(
                RuntimeIssue(
                    code="TRIGGER_BRANCH_MISMATCH",
                    message=(
                        f"Deploys run on pushes to {config.default_branch}; "
                        f"current branch is {state.branch or 'unknown'}"
                    ),
                    severity="warning",
                    subject=state.branch,
                )
            )
            return StepResult(issues=issues, continue_pipeline=False)

        return StepResult(
            issues=issues,
            metadata={"commit_sha": commit_sha, "branch": state.branch, "image": state.image.full_name},
        )
