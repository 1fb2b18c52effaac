"""
Content digests for layers and directory trees.

Digests are `sha256:<hex>` strings, the same shape container engines use for
image ids, so ids from every runner read alike in reports.
"""
import hashlib
import os
import stat
from pathlib import Path
from typing import Dict, Iterable, List


def sha256_of(*parts: str) -> str:
    h = hashlib.sha256()
    for part in parts:
        h.update(part.encode('utf-8'))
        h.update(b'\0')
    return f"sha256:{h.hexdigest()}"


def file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            h.update(chunk)
    return h.hexdigest()


def scan_tree(root: Path) -> Dict[str, str]:
    """
    Map every entry below `root` (relative posix path) to a fingerprint of
    its type, mode and content. Symlinks are recorded by target, not followed.
    """
    manifest: Dict[str, str] = {}
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(dirnames + filenames):
            full = Path(dirpath) / name
            rel = full.relative_to(root).as_posix()
            st = full.lstat()
            mode = stat.S_IMODE(st.st_mode)
            if stat.S_ISLNK(st.st_mode):
                manifest[rel] = f"l:{mode:o}:{os.readlink(full)}"
            elif stat.S_ISDIR(st.st_mode):
                manifest[rel] = f"d:{mode:o}"
            else:
                manifest[rel] = f"f:{mode:o}:{file_digest(full)}"
    return manifest


def tree_digest(manifest: Dict[str, str]) -> str:
    return sha256_of(*(f"{path}={fp}" for path, fp in sorted(manifest.items())))


def diff_manifests(before: Dict[str, str], after: Dict[str, str]) -> List[str]:
    """Changed paths as `A path`, `M path` or `D path`, sorted by path."""
    changes = []
    for path in sorted(set(before) | set(after)):
        if path not in before:
            changes.append(f"A {path}")
        elif path not in after:
            changes.append(f"D {path}")
        elif before[path] != after[path]:
            changes.append(f"M {path}")
    return changes


def layer_digest(parent: str, command: Iterable[str], changes: Iterable[str]) -> str:
    return sha256_of(parent, *command, "--", *changes)
