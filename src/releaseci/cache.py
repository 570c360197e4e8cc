# cache.py
from __future__ import annotations

import fnmatch
import hashlib
import io
import json
import os
import tarfile
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import CacheIOError
from .model import CacheSpec, JobInstance

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Content-addressed, append-only job caches:
#   key = "<platform>-<variant>-<purpose>-" + sha256(
#       declared input descriptors,
#       (relative path, sha256(content)) of every matched file, sorted by path
#   )
#
# Entry:
#   a tar.gz of the CacheSpec's declared paths. Entries are created once and
#   never overwritten; a second writer for the same key gets ALREADY_EXISTS.
#
# Layout:
#   root/<key>.tar.gz
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".releaseci/cache"
# any path with one of these directories in it is left out of keys and archives
EXCLUDED_DIRS = {".git", ".releaseci", "__pycache__"}
EXCLUDED_FILES = ["*.pyc", ".DS_Store"]
HOME_ARC_PREFIX = "__home__"
KEY_FORMAT_VERSION = 1


class PutResult(str, Enum):
    OK = "ok"
    ALREADY_EXISTS = "already-exists"


@dataclass(frozen=True)
class CacheKey:
    value: str
    scope: str
    manifest: Dict

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _excluded(rel: str) -> bool:
    parts = rel.split("/")
    if any(part in EXCLUDED_DIRS for part in parts[:-1]):
        return True
    return any(fnmatch.fnmatch(parts[-1], g) for g in EXCLUDED_FILES)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def resolve_patterns(root: Path, patterns: List[str]) -> List[Path]:
    """
    Expand path descriptors into concrete paths under `root`.
    Supports:
      - file path: "Cargo.lock"
      - dir path:  "target"
      - glob:      "deps/*", "packages/Weylus*.deb"
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = root / pat
        if p.exists():
            out.append(p)
            continue
        out.extend(m for m in sorted(root.glob(pat)) if m.exists())

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq


def _fingerprint_inputs(root: Path, inputs: List[str]) -> List[Tuple[str, str]]:
    files: List[Tuple[str, str]] = []
    for p in resolve_patterns(root, inputs):
        candidates = [p] if p.is_file() else list(_iter_files_under(p))
        for f in candidates:
            rel = _relpath(f, root)
            if _excluded(rel):
                continue
            files.append((rel, _hash_file_contents(f)))
    files.sort(key=lambda t: t[0])  # stable ordering by relpath
    return files


def cache_scope(instance: JobInstance, spec: CacheSpec) -> str:
    return f"{instance.variant.platform}-{instance.variant.name}-{spec.purpose}"


def derive_cache_key(inputs: List[str], scope: str, repo_root: str | Path = ".") -> CacheKey:
    """
    Deterministic content key for `inputs` within `scope`.

    Changes when any matched file's content or path changes, or when the
    matched set itself changes. An empty matched set is a valid key.
    """
    root = Path(repo_root).resolve()
    files = _fingerprint_inputs(root, inputs)
    payload = {
        "v": KEY_FORMAT_VERSION,  # bump this if you change hashing format
        "inputs": list(inputs),
        "files": files,
    }
    digest = _sha256_str(_json_dumps_stable(payload))
    return CacheKey(value=f"{scope}-{digest}", scope=scope, manifest=payload)


# ---------------------------------------------------------------------
# Archiving
# ---------------------------------------------------------------------

def _split_home(entry: str) -> Tuple[bool, str]:
    if entry == "~" or entry.startswith("~/"):
        return True, entry[2:]
    return False, entry


def _archive_paths(workspace: Path, paths: List[str]) -> bytes:
    home = Path.home()
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for entry in paths:
            in_home, rel = _split_home(entry)
            base = home if in_home else workspace
            prefix = HOME_ARC_PREFIX if in_home else ""
            for src in resolve_patterns(base, [rel or "."]):
                files = [src] if src.is_file() else list(_iter_files_under(src))
                for f in files:
                    rel_f = _relpath(f, base)
                    if _excluded(rel_f):
                        continue
                    arcname = f"{prefix}/{rel_f}" if prefix else rel_f
                    tar.add(str(f), arcname=arcname, recursive=False)
    return buf.getvalue()


def _extract(blob: bytes, workspace: Path) -> None:
    home = Path.home()
    with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
        for member in tar.getmembers():
            if not member.isfile():
                continue
            name = member.name
            if name.startswith(HOME_ARC_PREFIX + "/"):
                dest_root, rel = home, name[len(HOME_ARC_PREFIX) + 1:]
            else:
                dest_root, rel = workspace, name
            dest = (dest_root / rel).resolve()
            if not dest.is_relative_to(dest_root.resolve()):
                raise CacheIOError(f"refusing to extract outside destination: {name}")
            dest.parent.mkdir(parents=True, exist_ok=True)
            src = tar.extractfile(member)
            if src is None:
                continue
            with src, dest.open("wb") as out:
                out.write(src.read())


# ---------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------

class CacheStore:
    """
    File-based, append-only blob store:
      root/
        <key>.tar.gz
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def entry_path(self, key: str) -> Path:
        return self.root / f"{key}.tar.gz"

    def exists(self, key: str) -> bool:
        return self.entry_path(key).exists()

    def get(self, key: str) -> Optional[bytes]:
        path = self.entry_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheIOError(f"cache read failed: {e}", key=key) from e

    def put(self, key: str, blob: bytes) -> PutResult:
        """
        Create the entry if absent. The blob is written to a temp file and
        published with a hard link, which fails instead of replacing, so a
        concurrent writer of the same key loses cleanly.
        """
        final = self.entry_path(key)
        if final.exists():
            return PutResult.ALREADY_EXISTS
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{key[:32]}.", suffix=".tmp")
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno())
            os.link(tmp, final)
            return PutResult.OK
        except FileExistsError:
            return PutResult.ALREADY_EXISTS
        except OSError as e:
            raise CacheIOError(f"cache write failed: {e}", key=key) from e
        finally:
            tmp.unlink(missing_ok=True)

    def restore(self, key: CacheKey, workspace: str | Path) -> CacheHit:
        """Extract the entry for `key` into `workspace`. Missing entries are a plain miss."""
        blob = self.get(key.value)
        if blob is None:
            return CacheHit(hit=False, key=key.value, reason="cache miss")
        try:
            _extract(blob, Path(workspace).resolve())
        except (tarfile.TarError, OSError, EOFError) as e:
            raise CacheIOError(f"cache exists but restore failed: {e}", key=key.value) from e
        return CacheHit(hit=True, key=key.value, reason="cache hit: restored")

    def save(self, key: CacheKey, spec: CacheSpec, workspace: str | Path) -> PutResult:
        if self.exists(key.value):
            return PutResult.ALREADY_EXISTS
        try:
            blob = _archive_paths(Path(workspace).resolve(), list(spec.paths))
        except (tarfile.TarError, OSError) as e:
            raise CacheIOError(f"cache archive failed: {e}", key=key.value) from e
        return self.put(key.value, blob)

    def prune(self, scope: str, keep: int = 3) -> None:
        """
        Keep only the newest N entries for a scope.
        Uses file mtime as "newest".
        """
        entries = sorted(
            self.root.glob(f"{scope}-" + "?" * 64 + ".tar.gz"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        for p in entries[keep:]:
            p.unlink(missing_ok=True)
