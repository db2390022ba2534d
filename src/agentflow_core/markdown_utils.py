"""Human-readable markdown companions for exported task specs.

The companion is derived from the JSON spec on every write and is never
read back by the pipeline.
"""
import re
from typing import Any, Dict

import yaml


STATUS_EMOJIS = {
    "pending_approval": "🟡",
    "approved": "🟢",
    "in_progress": "🔵",
    "completed": "✅",
    "blocked": "🔴",
    "rejected": "❌",
}


class MarkdownParseError(Exception):
    """Raised when markdown content cannot be parsed."""
    pass


def get_status_emoji(status: str) -> str:
    return STATUS_EMOJIS.get(status, "⚪")


def render_spec_markdown(spec: Dict[str, Any]) -> str:
    """Render a task spec (as produced by ``TaskSpec.to_document``) to markdown.

    Args:
        spec: The spec document with camelCase keys

    Returns:
        Markdown with YAML frontmatter carrying the identity fields
    """
    frontmatter = {
        "id": spec["id"],
        "title": spec["title"],
        "status": spec["status"],
        "priority": spec["priority"],
        "agent": spec["agent"]["role"],
        "created_at": spec["createdAt"],
    }

    lines = [
        "---",
        yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True).strip(),
        "---",
        "",
        f"# Task: {spec['title']}",
        "",
        f"**ID:** {spec['id']}  ",
        f"**Status:** {get_status_emoji(spec['status'])} {spec['status']}  ",
        f"**Agent:** {spec['agent']['role']}  ",
        f"**Persona:** {spec['agent']['persona']}  ",
        f"**Priority:** {spec['priority']}  ",
        f"**Created:** {spec['createdAt']}  ",
        "",
        "---",
        "",
        "## Context Files",
        "",
        "Load these before starting:",
    ]
    context = spec["context"]
    lines += [f"- @{w}" for w in context["workflows"]]
    lines += [f"- @{d}" for d in context["docs"]]
    lines += ["", "## Files to Edit", ""]
    lines += [f"- `{f}`" for f in context["relatedFiles"]]
    lines += ["", "---", ""]

    research = spec.get("research")
    if research:
        lines += [
            "## Background Research",
            "",
            research["summary"],
            "",
            f"**Sources:** {', '.join(research['sources'])}",
            "",
            "---",
            "",
        ]

    implementation = spec["implementation"]
    lines += ["## Implementation Steps", ""]
    for step in implementation["steps"]:
        lines += [f"### Step {step['step']}: {step['action']}", "", f"**File:** `{step['file']}`", ""]
        if step.get("location"):
            lines += [f"**Location:** {step['location']}", ""]
        lines += [f"**Description:** {step['description']}", "", "---", ""]

    validation = implementation["validation"]
    lines += ["## Validation", "", "Run these commands:", "```bash"]
    lines += validation["commands"]
    lines += ["```", "", "**Criteria:**"]
    lines += [f"- ✓ {c}" for c in validation["criteria"]]
    lines.append("")

    if spec.get("notes"):
        lines += ["---", "", "## Notes", "", spec["notes"]]

    return "\n".join(lines) + "\n"


def parse_frontmatter(content: str) -> Dict[str, Any]:
    """Parse the YAML frontmatter of a rendered companion.

    Raises:
        MarkdownParseError: If content has no valid frontmatter
    """
    match = re.match(r'^---\s*\n(.*?)\n---\s*\n', content, re.DOTALL)
    if not match:
        raise MarkdownParseError("Invalid markdown format: missing YAML frontmatter")
    try:
        frontmatter = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise MarkdownParseError(f"Invalid YAML frontmatter: {e}")
    if not isinstance(frontmatter, dict):
        raise MarkdownParseError("Frontmatter must be a mapping")
    return frontmatter
