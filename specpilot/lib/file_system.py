# specpilot/lib/file_system.py
# SpecPilot - Generated-project file operations
# Rooted at a caller-supplied path; listing skips build artifacts and binaries.

import asyncio
import re
import shutil
import aiofiles
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel

from specpilot.core.config import FileStoreSettings, settings
from specpilot.core.exceptions import PhaseTimeoutError, WriteFailureError
from specpilot.core.logging import log
from specpilot.models.spec import CamelModel

# ================================================================
# MODELS
# ================================================================

class GeneratedFile(BaseModel):
    """Represents a file to be written to disk"""
    path: str
    content: str


class FileView(CamelModel):
    """A generated file as exposed to callers"""
    path: str
    content: str
    detected_language: str


LANGUAGES = {
    ".py": "python",
    ".toml": "toml",
    ".md": "markdown",
    ".json": "json",
    ".xml": "xml",
    ".ini": "ini",
    ".cfg": "ini",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".txt": "text",
    ".html": "html",
}


def detect_language(path: str) -> str:
    return LANGUAGES.get(Path(path).suffix.lower(), "text")

# ================================================================
# PATH SAFETY FUNCTIONS
# ================================================================

def sanitize_name(name: str) -> str:
    """
    Normalize a name for safe filesystem use.
    Replaces any character not in [a-zA-Z0-9._-] with underscore.
    """
    cleaned = re.sub(r'[^a-zA-Z0-9._-]', '_', name).strip("._")
    return cleaned or "suite"


def within_root(root: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


def normalize_relative(rel: str) -> str:
    return rel.replace("\\", "/").lstrip("/")

# ================================================================
# FILE STORE
# ================================================================

class FileStore:
    """
    Async recursive read/write under a root directory.

    Every write runs under the configured timeout; expiry raises
    PhaseTimeoutError instead of hanging the run.
    """

    def __init__(self, config: Optional[FileStoreSettings] = None):
        self.config = config or settings.files
        self.ignored_dirs = set(self.config.ignored_dirs)
        self.binary_extensions = {ext.lower() for ext in self.config.binary_extensions}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def write_file(self, root: Path, rel: str, content: str) -> str:
        rel = normalize_relative(rel)
        target = root / rel
        if not rel or not within_root(root, target):
            raise WriteFailureError(str(target), "path escapes the project root")
        try:
            await asyncio.wait_for(self._write(target, content), timeout=self.config.write_timeout)
        except asyncio.TimeoutError:
            raise PhaseTimeoutError(f"write {rel}", self.config.write_timeout)
        except OSError as e:
            raise WriteFailureError(str(target), str(e))
        log("FILES", f"✏️ Wrote {rel} ({len(content)} chars)")
        return rel

    async def _write(self, target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        # newline="" keeps output byte-identical across platforms
        async with aiofiles.open(target, "w", encoding="utf-8", newline="") as f:
            await f.write(content)

    async def write_tree(self, root: Path, files: List[GeneratedFile]) -> List[str]:
        """Write a batch of files relative to root. Returns written relative paths."""
        written: List[str] = []
        for gf in files:
            written.append(await self.write_file(root, gf.path, gf.content))
        return written

    async def delete_file(self, root: Path, rel: str) -> None:
        target = root / normalize_relative(rel)
        if within_root(root, target) and target.is_file():
            target.unlink()

    async def reset(self, root: Path, marker: str) -> None:
        """
        Empty a managed directory before regenerating it.

        Only directories that are empty or carry `marker` are cleared; anything
        else is not ours to delete.
        """
        if not root.exists():
            root.mkdir(parents=True, exist_ok=True)
            return
        if not root.is_dir():
            raise WriteFailureError(str(root), "target exists and is not a directory")
        if any(root.iterdir()) and not (root / marker).exists():
            raise WriteFailureError(str(root), "refusing to overwrite a directory this tool did not generate")
        try:
            await asyncio.to_thread(shutil.rmtree, root)
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteFailureError(str(root), str(e))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read_file(self, root: Path, rel: str) -> Optional[str]:
        target = root / normalize_relative(rel)
        if not within_root(root, target) or not target.is_file():
            return None
        async with aiofiles.open(target, "r", encoding="utf-8", newline="") as f:
            return await f.read()

    def _is_listed(self, rel_parts) -> bool:
        for part in rel_parts[:-1]:
            if part in self.ignored_dirs or part.startswith("."):
                return False
        name = rel_parts[-1]
        if name.startswith("."):
            return False
        return Path(name).suffix.lower() not in self.binary_extensions

    def list_paths(self, root: Path) -> List[str]:
        """Sorted relative paths of listable files under root."""
        if not root.is_dir():
            return []
        paths: List[str] = []
        for item in sorted(root.rglob("*")):
            if not item.is_file():
                continue
            rel_parts = item.relative_to(root).parts
            if self._is_listed(rel_parts):
                paths.append("/".join(rel_parts))
        return paths

    async def read_tree(self, root: Path, suffix: Optional[str] = None) -> Dict[str, str]:
        """Content of every listable file, optionally filtered by suffix."""
        tree: Dict[str, str] = {}
        for rel in self.list_paths(root):
            if suffix and not rel.endswith(suffix):
                continue
            try:
                content = await self.read_file(root, rel)
            except UnicodeDecodeError:
                log("FILES", f"Skipping non-text file {rel}")
                continue
            if content is not None:
                tree[rel] = content
        return tree

    async def list_files(self, root: Path) -> List[FileView]:
        return [
            FileView(path=rel, content=content, detected_language=detect_language(rel))
            for rel, content in (await self.read_tree(root)).items()
        ]
