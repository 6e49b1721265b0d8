"""
Architecture remediation tasks.

Converts validated architecture issues into concrete, selectable tasks.
The issue-type to task-type mapping is fixed, so an issue of a given type
always produces tasks of exactly the same types, in the same order.

Task ids are positional (``task-{issue}-{mapping}``): re-running the
generator on the same analysis yields identical tasks.

Selection helpers return new task lists; tasks are never edited in place.
"""

from dataclasses import replace
import re
from typing import Dict, List, Optional, Sequence, Tuple

from citecheck.core.models import (
    ArchitectureAnalysis,
    ArchitectureIssueType,
    ArchitectureTask,
    Severity,
    TaskDetails,
    TaskLocation,
    TaskType,
)


# Issue type -> ordered (task type, description prefix)
TASK_MAPPINGS: Dict[ArchitectureIssueType, Tuple[Tuple[TaskType, str], ...]] = {
    ArchitectureIssueType.MISPLACED_CONTENT: (
        (TaskType.MOVE_CONTENT, "Move content to appropriate section"),
    ),
    ArchitectureIssueType.REDUNDANCY: (
        (TaskType.REMOVE_REDUNDANCY, "Remove or consolidate redundant content"),
    ),
    ArchitectureIssueType.BROKEN_ATOMICITY: (
        (TaskType.REPLACE_PRONOUN, "Replace pronouns with explicit references"),
        (TaskType.ADD_CONTEXT, "Add context to make chunk self-contained"),
    ),
    ArchitectureIssueType.TOPIC_INCOHERENCE: (
        (TaskType.SPLIT_PARAGRAPH, "Split content into focused sections"),
        (TaskType.ADD_HEADING, "Add heading to separate topics"),
    ),
    ArchitectureIssueType.COVERAGE_GAP: (
        (TaskType.ADD_CONTEXT, "Add content to address coverage gap"),
    ),
    ArchitectureIssueType.ORPHANED_MENTION: (
        (TaskType.ADD_CONTEXT, "Expand orphaned mention into full section"),
    ),
}

# "heading called 'Pricing'", "heading \"Pricing\""
_QUOTED_HEADING_RE = re.compile(
    r"heading\s+(?:[\w-]+\s+){0,3}?[\"“‘']([^\"”’'\n]+)[\"”’']",
    re.IGNORECASE,
)
# "heading: Pricing"
_COLON_HEADING_RE = re.compile(
    r"heading\s*:\s*[\"“‘']?([^\"”’'\n.;]+)",
    re.IGNORECASE,
)


def extract_suggested_heading(recommendation: str) -> Optional[str]:
    """
    Pull a heading suggestion out of free-text recommendation prose.

    Looks for a quoted phrase shortly after the word "heading", then for a
    phrase after "heading:". Returns None when neither is found; callers
    must not invent a heading in that case.
    """
    if not recommendation:
        return None
    for pattern in (_QUOTED_HEADING_RE, _COLON_HEADING_RE):
        match = pattern.search(recommendation)
        if match:
            heading = match.group(1).strip()
            if heading:
                return heading
    return None


def _position_note(chunk_indices: Sequence[int]) -> Optional[str]:
    if len(chunk_indices) <= 1:
        return None
    return "Affects chunks " + ", ".join(str(i + 1) for i in chunk_indices)


def generate_tasks(analysis: ArchitectureAnalysis) -> List[ArchitectureTask]:
    """
    Generate remediation tasks from an architecture analysis.

    For each issue (in order) and each of its mapped task types (in order)
    one task is produced. High-severity tasks start selected.

    Args:
        analysis: Validated architecture analysis

    Returns:
        Tasks in issue order, then mapping order
    """
    tasks: List[ArchitectureTask] = []

    for issue_idx, issue in enumerate(analysis.issues):
        for task_idx, (task_type, description) in enumerate(TASK_MAPPINGS[issue.type]):
            suggested = None
            if task_type == TaskType.ADD_HEADING:
                suggested = extract_suggested_heading(issue.recommendation)

            tasks.append(ArchitectureTask(
                id=f"task-{issue_idx}-{task_idx}",
                type=task_type,
                issue_id=issue.id,
                description=f"{description}: {issue.description}",
                location=TaskLocation(
                    chunk_index=issue.chunk_indices[0],
                    position=_position_note(issue.chunk_indices),
                ),
                priority=issue.severity,
                expected_impact=issue.impact,
                is_selected=(issue.severity == Severity.HIGH),
                details=TaskDetails(suggested_heading=suggested),
            ))

    return tasks


# =============================================================================
# Selection overrides
# =============================================================================

def toggle_task(tasks: Sequence[ArchitectureTask], task_id: str) -> List[ArchitectureTask]:
    """Flip the selection of one task. Unknown ids leave the list as is."""
    return [
        replace(task, is_selected=not task.is_selected) if task.id == task_id else task
        for task in tasks
    ]


def set_task_selected(
    tasks: Sequence[ArchitectureTask],
    task_id: str,
    selected: bool,
) -> List[ArchitectureTask]:
    """Set the selection of one task explicitly (idempotent)."""
    return [
        replace(task, is_selected=selected) if task.id == task_id else task
        for task in tasks
    ]


def select_all(tasks: Sequence[ArchitectureTask]) -> List[ArchitectureTask]:
    return [replace(task, is_selected=True) for task in tasks]


def deselect_all(tasks: Sequence[ArchitectureTask]) -> List[ArchitectureTask]:
    return [replace(task, is_selected=False) for task in tasks]


def select_by_priority(
    tasks: Sequence[ArchitectureTask],
    priority: Severity,
) -> List[ArchitectureTask]:
    """Select exactly the tasks of one priority, deselecting the rest."""
    return [replace(task, is_selected=(task.priority == priority)) for task in tasks]


def selected_tasks(tasks: Sequence[ArchitectureTask]) -> List[ArchitectureTask]:
    return [task for task in tasks if task.is_selected]
