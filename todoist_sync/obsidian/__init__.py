"""Obsidian vault access and task line parsing."""

from .parser import (
    is_task_line,
    get_task_status,
    get_indentation,
    extract_block_id,
    find_todoist_id,
    find_linked_task_id,
    iter_linked_tasks,
)
from .vault import VaultDocumentStore, DocumentHandle, split_frontmatter

__all__ = [
    'is_task_line',
    'get_task_status',
    'get_indentation',
    'extract_block_id',
    'find_todoist_id',
    'find_linked_task_id',
    'iter_linked_tasks',
    'VaultDocumentStore',
    'DocumentHandle',
    'split_frontmatter',
]
