"""
VaultManager — Centralized I/O for the campaign vault (the document store).

Quests, scenes and users are markdown files with YAML frontmatter. Each
document carries a key-value annotation map under
``flags.<namespace>`` in its frontmatter; the quest-pin services only ever
read and write keys inside their own namespace.

Writes replace the whole file atomically, so a document is last-write-wins
with no silent merge. The manager is synchronous: a flag update runs to
completion between two coroutine suspension points.
"""

import os
import tempfile
import logging
from typing import Dict, Any, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from models.quests import Quest, PinLinkage
from tools.task_markup import decode_objectives, read_label, write_label

logger = logging.getLogger('VaultManager')

FLAG_NAMESPACE = "quest-pins"

# ---------------------------------------------------------------------------
# YAML Frontmatter Helpers
# ---------------------------------------------------------------------------

def parse_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """Parse YAML frontmatter from a markdown file.

    Returns:
        (frontmatter_dict, body_text)
    """
    if not content.startswith('---'):
        return {}, content

    # Find the closing ---
    end_idx = content.find('\n---', 3)
    if end_idx == -1:
        return {}, content

    yaml_str = content[3:end_idx].strip()
    body = content[end_idx + 4:].lstrip('\n')

    try:
        frontmatter = yaml.safe_load(yaml_str) or {}
    except yaml.YAMLError as e:
        logger.error(f"YAML parse error: {e}")
        frontmatter = {}

    return frontmatter, body


def build_frontmatter(frontmatter: Dict[str, Any], body: str) -> str:
    """Reconstruct a markdown file with YAML frontmatter."""
    yaml_str = yaml.safe_dump(frontmatter, default_flow_style=False, allow_unicode=True, sort_keys=False)
    return f"---\n{yaml_str}---\n{body}"


# ---------------------------------------------------------------------------
# VaultManager Class
# ---------------------------------------------------------------------------

class VaultManager:
    """Manages all file I/O for the campaign vault."""

    # Vault subdirectory constants
    QUESTS = "04 - Quests"
    SCENES = "08 - Scenes"
    USERS = "09 - Users"

    def __init__(self, vault_path: str = "campaign_vault", namespace: str = FLAG_NAMESPACE):
        self.vault_path = os.path.abspath(vault_path)
        self.namespace = namespace
        if not os.path.isdir(self.vault_path):
            logger.warning(f"Vault directory not found at {self.vault_path}")

    # ------------------------------------------------------------------
    # Core File Operations
    # ------------------------------------------------------------------

    def _resolve(self, *parts: str) -> str:
        """Resolve a path relative to the vault root."""
        return os.path.join(self.vault_path, *parts)

    def exists(self, relative_path: str) -> bool:
        return os.path.isfile(self._resolve(relative_path))

    def read_file(self, relative_path: str) -> Tuple[Dict[str, Any], str]:
        """Read a vault file and return (frontmatter, body).

        A missing or unreadable file reads as ({}, "").
        """
        full_path = self._resolve(relative_path)
        try:
            with open(full_path, 'r', encoding='utf-8') as f:
                content = f.read()
            return parse_frontmatter(content)
        except FileNotFoundError:
            logger.error(f"Vault file not found: {full_path}")
            return {}, ""
        except OSError as e:
            logger.error(f"Error reading {full_path}: {e}")
            return {}, ""

    def write_file(self, relative_path: str, frontmatter: Dict[str, Any], body: str) -> bool:
        """Write a vault file with YAML frontmatter.

        The content goes to a temp file in the same folder which then replaces
        the target, so readers never see a partial write.

        Returns:
            True on success, False on failure.
        """
        full_path = self._resolve(relative_path)
        try:
            folder = os.path.dirname(full_path)
            os.makedirs(folder, exist_ok=True)
            content = build_frontmatter(frontmatter, body)
            fd, tmp_path = tempfile.mkstemp(dir=folder, suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    f.write(content)
                os.replace(tmp_path, full_path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
            logger.debug(f"Wrote vault file: {relative_path}")
            return True
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error writing {full_path}: {e}")
            return False

    def list_files(self, subfolder: str) -> List[str]:
        """List all .md files in a vault subfolder, as paths relative to the vault root."""
        folder_path = self._resolve(subfolder)
        results = []
        if not os.path.isdir(folder_path):
            return results

        for root, _dirs, files in os.walk(folder_path):
            for fname in files:
                if fname.endswith('.md'):
                    full = os.path.join(root, fname)
                    rel = os.path.relpath(full, self.vault_path)
                    results.append(rel)
        return sorted(results)

    # ------------------------------------------------------------------
    # Flags (namespaced frontmatter annotations)
    # ------------------------------------------------------------------

    def _scoped(self, frontmatter: Dict[str, Any]) -> Dict[str, Any]:
        flags = frontmatter.setdefault('flags', {}) or {}
        frontmatter['flags'] = flags
        scoped = flags.get(self.namespace)
        if not isinstance(scoped, dict):
            scoped = {}
            flags[self.namespace] = scoped
        return scoped

    def get_flags(self, relative_path: str) -> Dict[str, Any]:
        fm, _body = self.read_file(relative_path)
        scoped = (fm.get('flags') or {}).get(self.namespace)
        return dict(scoped) if isinstance(scoped, dict) else {}

    def get_flag(self, relative_path: str, key: str, default: Any = None) -> Any:
        return self.get_flags(relative_path).get(key, default)

    def update_flags(
        self,
        relative_path: str,
        updates: Optional[Dict[str, Any]] = None,
        unset: Optional[List[str]] = None,
    ) -> bool:
        """Set and unset several flag keys in one read-modify-write."""
        if not self.exists(relative_path):
            logger.warning(f"Cannot update flags, document missing: {relative_path}")
            return False
        fm, body = self.read_file(relative_path)
        scoped = self._scoped(fm)
        scoped.update(updates or {})
        for key in unset or []:
            scoped.pop(key, None)
        return self.write_file(relative_path, fm, body)

    def set_flag(self, relative_path: str, key: str, value: Any) -> bool:
        return self.update_flags(relative_path, updates={key: value})

    def unset_flag(self, relative_path: str, key: str) -> bool:
        return self.update_flags(relative_path, unset=[key])

    def update_body(self, relative_path: str, body: str) -> bool:
        """Replace the document text, keeping its frontmatter."""
        if not self.exists(relative_path):
            logger.warning(f"Cannot update body, document missing: {relative_path}")
            return False
        fm, _old = self.read_file(relative_path)
        return self.write_file(relative_path, fm, body)

    def _find_by_id(self, subfolder: str, doc_id: str) -> Optional[str]:
        for fpath in self.list_files(subfolder):
            fm, _body = self.read_file(fpath)
            if str(fm.get('id', '')) == str(doc_id):
                return fpath
        return None

    # ------------------------------------------------------------------
    # Quest Operations
    # ------------------------------------------------------------------

    def find_quest_file(self, quest_id: str) -> Optional[str]:
        return self._find_by_id(self.QUESTS, quest_id)

    def list_quest_ids(self) -> List[str]:
        ids = []
        for fpath in self.list_files(self.QUESTS):
            fm, _body = self.read_file(fpath)
            if fm.get('id'):
                ids.append(str(fm['id']))
        return ids

    def _parse_quest(self, fpath: str, fm: Dict[str, Any], body: str) -> Optional[Quest]:
        flags = (fm.get('flags') or {}).get(self.namespace) or {}
        try:
            return Quest(
                id=str(fm['id']),
                name=fm.get('name') or os.path.splitext(os.path.basename(fpath))[0],
                quest_index=int(fm.get('quest_index') or 0),
                category=read_label(body, 'Category') or fm.get('category') or "",
                status=read_label(body, 'Status'),
                objectives=decode_objectives(body) or [],
                visible=flags.get('visible') is not False,
                original_category=flags.get('originalCategory'),
                linkage=PinLinkage.from_flags(flags),
                path=fpath,
                body=body,
            )
        except (KeyError, ValueError, ValidationError) as e:
            logger.error(f"Invalid quest document {fpath}: {e}")
            return None

    def get_quest(self, quest_id: str) -> Optional[Quest]:
        """Load one quest by id, or None when no such document exists."""
        fpath = self.find_quest_file(quest_id)
        if fpath is None:
            return None
        fm, body = self.read_file(fpath)
        return self._parse_quest(fpath, fm, body)

    def list_quests(self) -> List[Quest]:
        quests = []
        for fpath in self.list_files(self.QUESTS):
            fm, body = self.read_file(fpath)
            if not fm.get('id'):
                continue
            quest = self._parse_quest(fpath, fm, body)
            if quest:
                quests.append(quest)
        return quests

    def save_quest_body(self, quest: Quest, body: str) -> bool:
        path = quest.path or self.find_quest_file(quest.id)
        if path is None:
            return False
        ok = self.update_body(path, body)
        if ok:
            quest.body = body
        return ok

    def save_quest_fields(self, quest: Quest, status: Optional[str] = None,
                          category: Optional[str] = None) -> Optional[str]:
        """Rewrite the Status:/Category: lines. Returns the new body, or None on failure."""
        body = quest.body
        if status is not None:
            body = write_label(body, 'Status', status)
        if category is not None:
            body = write_label(body, 'Category', category)
        if body == quest.body:
            return body
        return body if self.save_quest_body(quest, body) else None

    def save_linkage(self, quest: Quest, linkage: PinLinkage) -> bool:
        path = quest.path or self.find_quest_file(quest.id)
        if path is None:
            return False
        ok = self.update_flags(path, updates=linkage.to_flags())
        if ok:
            quest.linkage = linkage
        return ok

    def set_quest_flag(self, quest: Quest, key: str, value: Any) -> bool:
        path = quest.path or self.find_quest_file(quest.id)
        return bool(path) and self.set_flag(path, key, value)

    def create_quest(self, quest_id: str, name: str, body: str, quest_index: int = 0,
                     flags: Optional[Dict[str, Any]] = None) -> str:
        """Write a new quest document. Returns its vault-relative path."""
        safe_name = "".join(c for c in name if c.isalnum() or c in " -_'").strip() or quest_id
        rel_path = os.path.join(self.QUESTS, f"{safe_name}.md")
        fm = {'id': quest_id, 'name': name, 'quest_index': quest_index,
              'flags': {self.namespace: dict(flags or {})}}
        self.write_file(rel_path, fm, body)
        return rel_path

    # ------------------------------------------------------------------
    # Scene Operations
    # ------------------------------------------------------------------

    def list_scene_files(self) -> List[str]:
        return self.list_files(self.SCENES)

    def find_scene_file(self, scene_id: str) -> Optional[str]:
        return self._find_by_id(self.SCENES, scene_id)

    def get_scene(self, scene_id: str) -> Optional[Dict[str, Any]]:
        """Scene frontmatter (with 'file'), or None."""
        fpath = self.find_scene_file(scene_id)
        if fpath is None:
            return None
        fm, _body = self.read_file(fpath)
        return {**fm, 'file': fpath}

    # ------------------------------------------------------------------
    # User Operations
    # ------------------------------------------------------------------

    def list_users(self) -> List[Dict[str, Any]]:
        users = []
        for fpath in self.list_files(self.USERS):
            fm, _body = self.read_file(fpath)
            if fm.get('id'):
                users.append({**fm, 'file': fpath})
        return users

    def get_privileged_user_ids(self) -> List[str]:
        """Users whose role is 'gm' always own every pin."""
        return sorted(
            str(u['id']) for u in self.list_users()
            if str(u.get('role', '')).lower() == 'gm'
        )

    def user_file(self, user_id: str) -> str:
        """Path of the user's document, created empty if it does not exist yet."""
        existing = self._find_by_id(self.USERS, user_id)
        if existing:
            return existing
        rel_path = os.path.join(self.USERS, f"{user_id}.md")
        self.write_file(rel_path, {'id': user_id, 'name': user_id, 'role': 'player'}, "")
        return rel_path
