from __future__ import annotations

import hashlib
import hmac
import os
import shutil
import tempfile
import uuid
import zipfile
from typing import Optional

from wkpm.core.errors import IntegrityError, ModuleError


def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def checksum_matches(content: bytes, expected: Optional[str]) -> bool:
    """
    True when no checksum is declared or the digest matches; raises
    IntegrityError otherwise. Comparison is constant-time.
    """
    if not expected:
        return True
    want = str(expected).strip().lower()
    got = sha256_bytes(content)
    if not hmac.compare_digest(got.encode("ascii"), want.encode("ascii", errors="replace")):
        raise IntegrityError(f"Checksum mismatch. Expected: {want}, Got: {got}", expected=want, actual=got)
    return True


def parse_checksum_file(text: str) -> Optional[str]:
    # sha256sum format: "<hex>  <filename>"
    for line in (text or "").splitlines():
        parts = line.strip().split()
        if parts:
            return parts[0].lower()
    return None


def _safe_members(zf: zipfile.ZipFile, target_dir: str) -> None:
    root = os.path.abspath(target_dir)
    for info in zf.infolist():
        name = info.filename.replace("\\", "/")
        if name.startswith("/") or (len(name) > 1 and name[1] == ":"):
            raise ModuleError(f"Archive member has an absolute path: {info.filename}")
        dest = os.path.abspath(os.path.join(root, name))
        if dest != root and not dest.startswith(root + os.sep):
            raise ModuleError(f"Archive member escapes the target directory: {info.filename}")


def extract_zip(content: bytes, target_dir: str) -> None:
    fd, tmp = tempfile.mkstemp(prefix="wk_module_", suffix=".zip")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        os.makedirs(target_dir, exist_ok=True)
        try:
            with zipfile.ZipFile(tmp, "r") as zf:
                _safe_members(zf, target_dir)
                zf.extractall(target_dir)
        except zipfile.BadZipFile as e:
            raise ModuleError(f"Invalid archive: {e}") from e
    finally:
        try:
            os.remove(tmp)
        except OSError:
            pass


def flatten_single_root(target_dir: str) -> bool:
    """
    Host-generated zipballs wrap everything in one "<repo>-<sha>/" folder.
    When the extracted tree is exactly one directory, move its contents up and
    drop the wrapper. Returns True when flattened.
    """
    entries = os.listdir(target_dir)
    if len(entries) != 1:
        return False
    wrapper = os.path.join(target_dir, entries[0])
    if not os.path.isdir(wrapper) or os.path.islink(wrapper):
        return False

    # rename aside first: a child may share the wrapper's name
    aside = os.path.join(target_dir, f".flatten-{uuid.uuid4().hex[:12]}")
    os.replace(wrapper, aside)
    for name in os.listdir(aside):
        shutil.move(os.path.join(aside, name), os.path.join(target_dir, name))
    os.rmdir(aside)
    return True


def extract_archive(content: bytes, target_dir: str) -> None:
    extract_zip(content, target_dir)
    flatten_single_root(target_dir)
