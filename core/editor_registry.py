"""
Editor Registry - leases remote editor sessions to jobs.

The registry is a JSON list of ``{"url": ..., "status": "available"|"in-use"}``
records. The whole list is read and rewritten on every change. All status
transitions go through one asyncio.Lock so that two admissions arriving at the
same time can never both lease the same editor.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Union

from .error_handler import NoResourceAvailable, RegistryError, ResourceUnavailable
from .models import Editor, EditorStatus

logger = logging.getLogger(__name__)

EditorRef = Union[Editor, str]


class EditorRegistry:
    """
    File-backed registry of editor URLs.

    Usage:
        registry = EditorRegistry(Path("editors.json"))
        editor = await registry.admit()
        try:
            ...
        finally:
            await registry.release(editor)
    """

    def __init__(self, store_path: Path):
        self.store_path = Path(store_path)
        self._lock = asyncio.Lock()

    # --- store ---

    def _read(self) -> List[Editor]:
        if not self.store_path.exists():
            return []
        try:
            data = json.loads(self.store_path.read_text(encoding="utf-8") or "[]")
        except json.JSONDecodeError as e:
            raise RegistryError(f"Editor store {self.store_path} is not valid JSON: {e}") from e
        return [Editor.from_dict(item) for item in data]

    def _write(self, editors: List[Editor]):
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([e.to_dict() for e in editors], indent=4)
        fd, tmp = tempfile.mkstemp(dir=self.store_path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.store_path)
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise RegistryError(f"Could not write editor store: {e}") from e

    # --- queries ---

    def all(self) -> List[Editor]:
        return self._read()

    def list_available(self) -> List[Editor]:
        """Available editors in registration order."""
        return [e for e in self._read() if e.available]

    def counts(self) -> Dict[str, int]:
        editors = self._read()
        available = sum(1 for e in editors if e.available)
        return {
            "available": available,
            "in_use": len(editors) - available,
            "total": len(editors),
        }

    # --- transitions ---

    async def _set_status(self, ref: EditorRef, expected: EditorStatus, new: EditorStatus) -> bool:
        url = ref.url if isinstance(ref, Editor) else ref
        async with self._lock:
            editors = self._read()
            for editor in editors:
                if editor.url != url:
                    continue
                if editor.status != expected:
                    return False
                editor.status = new
                self._write(editors)
                logger.info(f"Editor {_short(url)} -> {new.value}")
                return True
        raise ResourceUnavailable(f"Unknown editor: {url}")

    async def lease(self, ref: EditorRef) -> Editor:
        """Mark an editor in-use; fails if it is already leased."""
        url = ref.url if isinstance(ref, Editor) else ref
        if not await self._set_status(url, EditorStatus.AVAILABLE, EditorStatus.IN_USE):
            raise ResourceUnavailable(f"Editor already in use: {url}")
        return Editor(url=url, status=EditorStatus.IN_USE)

    async def release(self, ref: EditorRef):
        """Mark an editor available. Releasing an available editor is a no-op."""
        url = ref.url if isinstance(ref, Editor) else ref
        try:
            await self._set_status(url, EditorStatus.IN_USE, EditorStatus.AVAILABLE)
        except ResourceUnavailable:
            logger.warning(f"Release of unknown editor ignored: {_short(url)}")

    async def admit(self) -> Editor:
        """Atomically lease the first available editor."""
        async with self._lock:
            editors = self._read()
            for editor in editors:
                if editor.available:
                    editor.status = EditorStatus.IN_USE
                    self._write(editors)
                    available = sum(1 for e in editors if e.available)
                    logger.info(
                        f"Admitted editor {_short(editor.url)} "
                        f"({available}/{len(editors)} still available)"
                    )
                    return Editor(url=editor.url, status=EditorStatus.IN_USE)
        in_use = len(editors)
        raise NoResourceAvailable(
            f"No editors available for automation. All {in_use} editors are currently in-use."
        )

    async def recover(self) -> int:
        """Return every in-use editor to available (process start after a crash)."""
        async with self._lock:
            editors = self._read()
            stale = [e for e in editors if not e.available]
            for editor in stale:
                editor.status = EditorStatus.AVAILABLE
            if stale:
                self._write(editors)
                logger.warning(f"Recovered {len(stale)} editor(s) left in-use by a previous run")
            return len(stale)

    async def register(self, url: str) -> Editor:
        async with self._lock:
            editors = self._read()
            for editor in editors:
                if editor.url == url:
                    return editor
            editor = Editor(url=url)
            editors.append(editor)
            self._write(editors)
            return editor


def _short(url: str, length: int = 50) -> str:
    return url if len(url) <= length else url[:length] + "..."
