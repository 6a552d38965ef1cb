"""
Markdown task line classification and Todoist link extraction.
"""

import re
from typing import Iterator, List, Optional, Tuple

from todoist_sync.core.models import TaskStatus


# Regular expressions for parsing tasks
TASK_RE = re.compile(r'^(\s*)[-*+]\s+\[([ xX/?\-])\](?:\s+(.*))?$')
BLOCK_ID_RE = re.compile(r'(?:^|\s)\^([a-zA-Z0-9-]+)\s*$')
INDENT_RE = re.compile(r'^(\s*)')

# Todoist task links. Newer web URLs carry a title slug before the ID
# (``task/buy-milk-6X7rM8997g3RQmvh``); the ID is the last hyphen segment.
TODOIST_LINK_RE = re.compile(r'todoist\.com/(?:app/)?task/([\w-]+)', re.IGNORECASE)
TODOIST_SHOWTASK_RE = re.compile(r'todoist\.com/showTask\?id=([\w-]+)', re.IGNORECASE)
TODOIST_URI_RE = re.compile(r'todoist://task\?id=([\w-]+)', re.IGNORECASE)

_LINK_PATTERNS = (TODOIST_LINK_RE, TODOIST_SHOWTASK_RE, TODOIST_URI_RE)


def is_task_line(line: str) -> bool:
    """True for checkbox list items such as ``- [ ] task`` or ``* [x] done``."""
    return TASK_RE.match(line) is not None


def get_task_status(line: str) -> Optional[TaskStatus]:
    """Return the checkbox state of a task line, or None for non-task lines."""
    match = TASK_RE.match(line)
    if not match:
        return None
    if match.group(2).lower() == 'x':
        return TaskStatus.COMPLETED
    return TaskStatus.OPEN


def is_completed(line: str) -> bool:
    return get_task_status(line) == TaskStatus.COMPLETED


def get_indentation(line: str) -> str:
    """Leading whitespace of a line, tabs expanded to four spaces."""
    return INDENT_RE.match(line).group(1).replace('\t', '    ')


def extract_block_id(line: str) -> Optional[str]:
    """Return the ``^anchor`` at the end of a line, if any."""
    match = BLOCK_ID_RE.search(line.rstrip())
    return match.group(1) if match else None


def _id_from_token(token: str) -> str:
    return token.rsplit('-', 1)[-1]


def find_todoist_id(line: str) -> Optional[str]:
    """Extract a Todoist task ID from any link form on the line."""
    for pattern in _LINK_PATTERNS:
        match = pattern.search(line)
        if match:
            task_id = _id_from_token(match.group(1))
            if task_id:
                return task_id
    return None


def find_linked_task_id(lines: List[str], task_index: int) -> Optional[str]:
    """
    Find the Todoist ID that belongs to the task at ``task_index``.

    An inline link on the task line itself wins. Otherwise the following
    lines are searched while they stay more indented than the task. Blank
    lines are skipped. A non-task line at the same indentation directly
    after the task is still accepted, since links are often written at
    sibling level.
    """
    task_line = lines[task_index]
    inline = find_todoist_id(task_line)
    if inline:
        return inline

    task_indent = len(get_indentation(task_line))
    for index in range(task_index + 1, len(lines)):
        line = lines[index]
        if not line.strip():
            continue

        if len(get_indentation(line)) <= task_indent:
            if index == task_index + 1 and not is_task_line(line):
                return find_todoist_id(line)
            return None

        # A nested task owns its own link
        if is_task_line(line):
            continue

        task_id = find_todoist_id(line)
        if task_id:
            return task_id

    return None


def find_owning_task_index(lines: List[str], link_index: int) -> Optional[int]:
    """
    Walk upwards from a link line to the task line that owns it.

    Inverse of ``find_linked_task_id``: returns the index only if that task
    would resolve the link at ``link_index`` as its own.
    """
    if is_task_line(lines[link_index]):
        return link_index

    for index in range(link_index - 1, -1, -1):
        if not lines[index].strip():
            continue
        if is_task_line(lines[index]):
            expected = find_todoist_id(lines[link_index])
            if expected and find_linked_task_id(lines, index) == expected:
                return index
            return None
        if len(get_indentation(lines[index])) < len(get_indentation(lines[link_index])):
            return None
    return None


def iter_linked_tasks(lines: List[str]) -> Iterator[Tuple[int, str, str]]:
    """Yield ``(line_index, line, todoist_id)`` for every task line with a link."""
    for index, line in enumerate(lines):
        if not is_task_line(line):
            continue
        task_id = find_linked_task_id(lines, index)
        if task_id:
            yield index, line, task_id
