"""
Filesystem-backed access to an Obsidian vault.

Documents are addressed by their vault-relative POSIX path. Front-matter
is parsed with PyYAML so that a note's durable UID survives renames.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from todoist_sync.core.exceptions import VaultNotFoundError


SKIP_DIRS = {'.obsidian', '.trash', '.git', 'node_modules'}


@dataclass
class DocumentHandle:
    """A markdown file in the vault."""

    path: str
    mtime: datetime


def split_frontmatter(text: str) -> Tuple[Dict[str, Any], str]:
    """Split a note into its YAML front-matter mapping and body."""
    if not text.startswith('---'):
        return {}, text

    lines = text.split('\n')
    if lines[0].strip() != '---':
        return {}, text

    for index in range(1, len(lines)):
        if lines[index].strip() in ('---', '...'):
            raw = '\n'.join(lines[1:index])
            body = '\n'.join(lines[index + 1:])
            try:
                data = yaml.safe_load(raw) or {}
            except yaml.YAMLError:
                return {}, text
            if not isinstance(data, dict):
                return {}, text
            return data, body

    return {}, text


class VaultDocumentStore:
    """Lists, reads and indexes the markdown documents of one vault."""

    def __init__(self, vault_path: str, uid_field: str = "uuid", logger: Optional[logging.Logger] = None):
        self.vault_path = Path(os.path.expanduser(vault_path))
        self.uid_field = uid_field
        self.logger = logger or logging.getLogger(__name__)
        # path -> (mtime, uid) so front-matter is only re-read for changed files
        self._uid_cache: Dict[str, Tuple[float, Optional[str]]] = {}

        if not self.vault_path.is_dir():
            raise VaultNotFoundError(f"Vault not found: {self.vault_path}")

    def _relative(self, full_path: Path) -> str:
        return full_path.relative_to(self.vault_path).as_posix()

    def _full_path(self, path: Union[str, DocumentHandle]) -> Path:
        if isinstance(path, DocumentHandle):
            path = path.path
        return self.vault_path / path

    def list_documents(self) -> List[DocumentHandle]:
        """All markdown documents with their modification time."""
        documents = []
        for root, dirs, files in os.walk(self.vault_path):
            dirs[:] = [d for d in dirs if d not in SKIP_DIRS]
            for name in files:
                if not name.endswith('.md'):
                    continue
                full_path = Path(root) / name
                try:
                    mtime = full_path.stat().st_mtime
                except OSError as exc:
                    self.logger.debug(f"Skipping unreadable document {full_path}: {exc}")
                    continue
                documents.append(DocumentHandle(
                    path=self._relative(full_path),
                    mtime=datetime.fromtimestamp(mtime, tz=timezone.utc),
                ))
        documents.sort(key=lambda doc: doc.path)
        return documents

    def get_document(self, path: str) -> Optional[DocumentHandle]:
        full_path = self._full_path(path)
        try:
            mtime = full_path.stat().st_mtime
        except OSError:
            return None
        if not full_path.is_file():
            return None
        return DocumentHandle(path=path, mtime=datetime.fromtimestamp(mtime, tz=timezone.utc))

    def exists(self, path: str) -> bool:
        return self._full_path(path).is_file()

    def read(self, document: Union[str, DocumentHandle]) -> str:
        """Read a document's text. Raises OSError or UnicodeDecodeError when it cannot be read."""
        with open(self._full_path(document), 'r', encoding='utf-8') as handle:
            return handle.read()

    def read_lines(self, document: Union[str, DocumentHandle]) -> List[str]:
        return self.read(document).split('\n')

    def get_frontmatter(self, document: Union[str, DocumentHandle]) -> Dict[str, Any]:
        try:
            data, _ = split_frontmatter(self.read(document))
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.debug(f"Could not read front-matter of {document}: {exc}")
            return {}
        return data

    def get_frontmatter_field(self, document: Union[str, DocumentHandle], key: str) -> Optional[str]:
        value = self.get_frontmatter(document).get(key)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def get_uid(self, document: Union[str, DocumentHandle]) -> Optional[str]:
        """Note UID from front-matter, cached per modification time."""
        path = document.path if isinstance(document, DocumentHandle) else document
        try:
            mtime = self._full_path(path).stat().st_mtime
        except OSError:
            self._uid_cache.pop(path, None)
            return None

        cached = self._uid_cache.get(path)
        if cached and cached[0] == mtime:
            return cached[1]

        uid = self.get_frontmatter_field(path, self.uid_field)
        self._uid_cache[path] = (mtime, uid)
        return uid

    def find_by_uid(self, uid: str) -> Optional[DocumentHandle]:
        """Locate the document whose front-matter carries ``uid``."""
        for document in self.list_documents():
            if self.get_uid(document) == uid:
                return document
        return None
