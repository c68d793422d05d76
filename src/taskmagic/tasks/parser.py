"""Task and plan document parsing: YAML frontmatter plus a sectioned markdown body.

Parsing is two-phase. ``split_frontmatter`` decodes the fenced block into a
loosely typed mapping; ``validate_frontmatter`` then checks and coerces that
mapping field by field. Every violation raises a ``ParseError`` naming the
offending field.
"""

from __future__ import annotations

import dataclasses
import re
from pathlib import Path
from typing import Any

import yaml

from taskmagic.errors import ParseError, ParseErrorKind
from taskmagic.io_utils import read_text
from taskmagic.tasks.model import Plan, PlanKind, Task, TaskPriority, TaskStatus

REQUIRED_FIELDS: tuple[str, ...] = (
    "id",
    "title",
    "status",
    "priority",
    "feature",
    "dependencies",
    "created_at",
)

OPTIONAL_FIELDS: tuple[str, ...] = (
    "assigned_agent",
    "started_at",
    "completed_at",
    "error_log",
)

SECTION_DESCRIPTION = "Description"
SECTION_DETAILS = "Details"
SECTION_TEST_STRATEGY = "Test Strategy"
SECTION_AGENT_NOTES = "Agent Notes"

GLOBAL_PLAN_TITLE = "Global Plan"

_FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n(.*))?\Z",
    re.DOTALL,
)
_HEADING_RE = re.compile(r"^##[ \t]+(.+?)[ \t]*$", re.MULTILINE)
_BULLET_RE = re.compile(r"^- ", re.MULTILINE)


class _FrontmatterLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps as the strings written in the file."""


_FrontmatterLoader.yaml_implicit_resolvers = {
    first: [
        (tag, regexp)
        for tag, regexp in resolvers
        if tag != "tag:yaml.org,2002:timestamp"
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


# ── phase 1: decode ──────────────────────────────────────────────────


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split *text* into (frontmatter mapping, trimmed body)."""
    text = text.lstrip("\ufeff").replace("\r\n", "\n")
    match = _FRONTMATTER_RE.match(text)
    if not match or not match.group(1).strip():
        raise ParseError(ParseErrorKind.MISSING_FRONTMATTER)

    try:
        data = yaml.load(match.group(1), Loader=_FrontmatterLoader)
    except yaml.YAMLError as exc:
        first_line = next(iter(str(exc).splitlines()), "")
        raise ParseError(ParseErrorKind.INVALID_YAML, detail=first_line) from exc
    except RecursionError as exc:
        raise ParseError(ParseErrorKind.INVALID_YAML, detail="nesting too deep") from exc

    if not isinstance(data, dict):
        raise ParseError(ParseErrorKind.INVALID_TYPE, "frontmatter", data)

    body = (match.group(2) or "").strip()
    return data, body


# ── phase 2: validate / coerce ───────────────────────────────────────


def _as_id(value: Any, field: str) -> str:
    if isinstance(value, bool) or value is None:
        raise ParseError(ParseErrorKind.INVALID_TYPE, field, value)
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ParseError(ParseErrorKind.INVALID_TYPE, field, value)


def _as_text(value: Any, field: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ParseError(ParseErrorKind.INVALID_TYPE, field, value)
    return str(value)


def _as_optional_text(value: Any, field: str) -> str | None:
    if value is None:
        return None
    return _as_text(value, field)


def _dedupe_keep_order(values: list[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return tuple(ordered)


def validate_frontmatter(data: dict[str, Any]) -> dict[str, Any]:
    """Check *data* against the task schema and return typed constructor kwargs."""
    for name in REQUIRED_FIELDS:
        if name not in data:
            raise ParseError(ParseErrorKind.MISSING_FIELD, name)

    status = data["status"]
    if not isinstance(status, str) or status not in {s.value for s in TaskStatus}:
        raise ParseError(ParseErrorKind.INVALID_ENUM, "status", status)

    priority = data["priority"]
    if not isinstance(priority, str) or priority not in {p.value for p in TaskPriority}:
        raise ParseError(ParseErrorKind.INVALID_ENUM, "priority", priority)

    deps = data["dependencies"]
    if not isinstance(deps, (list, tuple)):
        raise ParseError(ParseErrorKind.INVALID_TYPE, "dependencies", deps)

    fields: dict[str, Any] = {
        "id": _as_id(data["id"], "id"),
        "title": _as_text(data["title"], "title"),
        "status": TaskStatus(status),
        "priority": TaskPriority(priority),
        "feature": _as_text(data["feature"], "feature"),
        "dependencies": _dedupe_keep_order([_as_id(d, "dependencies") for d in deps]),
        "created_at": _as_optional_text(data["created_at"], "created_at"),
    }
    for name in OPTIONAL_FIELDS:
        fields[name] = _as_optional_text(data.get(name), name)
    return fields


# ── body ─────────────────────────────────────────────────────────────


def split_sections(body: str) -> dict[str, str]:
    """Map each second-level heading to its trimmed content. First heading wins."""
    sections: dict[str, str] = {}
    headings = list(_HEADING_RE.finditer(body))
    for i, m in enumerate(headings):
        end = headings[i + 1].start() if i + 1 < len(headings) else len(body)
        sections.setdefault(m.group(1), body[m.end():end].strip())
    return sections


def split_bullets(text: str) -> tuple[str, ...]:
    """Split a Details section into its ``- `` items, each trimmed."""
    items = (chunk.strip() for chunk in _BULLET_RE.split(text))
    return tuple(item for item in items if item)


def parse_task_body(body: str) -> dict[str, Any]:
    sections = split_sections(body)
    return {
        "description": sections.get(SECTION_DESCRIPTION, ""),
        "details": split_bullets(sections.get(SECTION_DETAILS, "")),
        "test_strategy": sections.get(SECTION_TEST_STRATEGY, ""),
        "agent_notes": sections.get(SECTION_AGENT_NOTES) or None,
    }


# ── public API ───────────────────────────────────────────────────────


def parse_task(text: str) -> Task:
    """Parse a task document. Raises ``ParseError`` on any schema violation."""
    data, body = split_frontmatter(text)
    return Task(**validate_frontmatter(data), **parse_task_body(body))


def parse_task_file(path: Path) -> Task:
    """Read and parse one task file. ``OSError`` propagates to the caller."""
    task = parse_task(read_text(path))
    return dataclasses.replace(task, source_path=path)


def plan_title_from_filename(name: str) -> str:
    stem = name[:-3] if name.endswith(".md") else name
    return stem.replace("_", " ")


def parse_plan(text: str, source_path: Path, kind: PlanKind, title: str | None = None) -> Plan:
    if title is None:
        title = GLOBAL_PLAN_TITLE if kind == PlanKind.GLOBAL else plan_title_from_filename(source_path.name)
    return Plan(title=title, source_path=source_path, content=text, kind=kind)


def render_task(task: Task) -> str:
    """Serialize *task* back into the frontmatter + sections document format."""
    meta: dict[str, Any] = {
        "id": task.id,
        "title": task.title,
        "status": task.status.value,
        "priority": task.priority.value,
        "feature": task.feature,
        "dependencies": list(task.dependencies),
        "assigned_agent": task.assigned_agent,
        "created_at": task.created_at,
        "started_at": task.started_at,
        "completed_at": task.completed_at,
        "error_log": task.error_log,
    }
    front = yaml.safe_dump(meta, sort_keys=False, default_flow_style=False, allow_unicode=True)

    parts = ["---", front.rstrip(), "---", "", f"# Task {task.id}: {task.title}", ""]
    if task.description:
        parts += [f"## {SECTION_DESCRIPTION}", "", task.description, ""]
    if task.details:
        parts += [f"## {SECTION_DETAILS}", ""]
        parts += [f"- {item}" for item in task.details]
        parts.append("")
    if task.test_strategy:
        parts += [f"## {SECTION_TEST_STRATEGY}", "", task.test_strategy, ""]
    if task.agent_notes:
        parts += [f"## {SECTION_AGENT_NOTES}", "", task.agent_notes, ""]
    return "\n".join(parts)
