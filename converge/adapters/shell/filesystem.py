"""
Filesystem helpers — atomic writes, symlinks and checksums.

Files are always staged next to their destination and renamed into
place, so a reader never sees a partially written file. When the
destination directory is not writable by the current user (``/etc``,
``/usr/local/bin``), staging happens in a private temp directory and
``sudo install`` + ``sudo mv`` perform the privileged part.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path

from converge.adapters.shell.command import CommandRunner
from converge.core.errors import ExecutionError, IntegrityError

logger = logging.getLogger(__name__)

_STAGING_PREFIX = ".converge-"

_CRC24_INIT = 0xB704CE
_CRC24_POLY = 0x1864CFB


def expand_path(raw: str) -> Path:
    """Expand ``~`` and ``$VARS`` in a manifest path."""
    return Path(os.path.expandvars(os.path.expanduser(raw)))


def sha256_file(path: Path) -> str:
    """Hex SHA-256 of a file's content."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def split_checksum(expected: str) -> tuple[str, str]:
    """Parse ``algo:hex`` (bare hex means sha256)."""
    if ":" in expected:
        algo, digest = expected.split(":", 1)
    else:
        algo, digest = "sha256", expected
    algo = algo.strip().lower()
    if algo not in hashlib.algorithms_available:
        raise ValueError(f"Unsupported checksum algorithm: {algo}")
    return algo, digest.strip().lower()


def digest_bytes(data: bytes, algo: str = "sha256") -> str:
    h = hashlib.new(algo)
    h.update(data)
    return h.hexdigest()


def needs_privilege(path: Path) -> bool:
    """Whether creating ``path`` requires root.

    Walks up to the nearest existing ancestor and checks write access.
    """
    current = path.parent
    while not current.exists() and current != current.parent:
        current = current.parent
    return not os.access(current, os.W_OK)


def write_atomic(
    dest: Path,
    data: bytes,
    mode: int | None = None,
    runner: CommandRunner | None = None,
) -> None:
    """Write ``data`` to ``dest`` via a staged file and a rename.

    Raises:
        ExecutionError: If the privileged install step fails.
    """
    if needs_privilege(dest):
        _write_privileged(dest, data, mode, runner)
        return

    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=_STAGING_PREFIX)
    tmp = Path(tmp_name)
    try:
        with open(fd, "wb") as f:
            f.write(data)
        if mode is not None:
            tmp.chmod(mode)
        tmp.replace(dest)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    logger.debug("Wrote %d bytes to %s", len(data), dest)


def _write_privileged(
    dest: Path,
    data: bytes,
    mode: int | None,
    runner: CommandRunner | None,
) -> None:
    if runner is None:
        raise ExecutionError(f"Permission denied writing {dest}")

    with tempfile.TemporaryDirectory(prefix=_STAGING_PREFIX) as workdir:
        staged = Path(workdir) / dest.name
        staged.write_bytes(data)
        part = dest.with_name(f"{_STAGING_PREFIX}{dest.name}")
        mode_arg = f"{mode:o}" if mode is not None else "644"

        result = runner.run(
            ["install", "-D", "-m", mode_arg, str(staged), str(part)],
            privileged=True,
        )
        if not result.ok:
            raise ExecutionError(result.summary())

        result = runner.run(["mv", "-f", str(part), str(dest)], privileged=True)
        if not result.ok:
            runner.run(["rm", "-f", str(part)], privileged=True)
            raise ExecutionError(result.summary())
    logger.debug("Installed %d bytes to %s (privileged)", len(data), dest)


def remove_file(path: Path, runner: CommandRunner | None = None) -> None:
    """Delete ``path`` if it exists, through ``sudo rm`` where needed."""
    if not needs_privilege(path):
        path.unlink(missing_ok=True)
        return
    if runner is None:
        raise ExecutionError(f"Permission denied removing {path}")
    result = runner.run(["rm", "-f", str(path)], privileged=True)
    if not result.ok:
        raise ExecutionError(result.summary())


def symlink_atomic(link: Path, target: str, runner: CommandRunner | None = None) -> None:
    """Point ``link`` at ``target``, replacing an existing symlink atomically."""
    if needs_privilege(link):
        if runner is None:
            raise ExecutionError(f"Permission denied creating {link}")
        result = runner.run(["ln", "-sfn", target, str(link)], privileged=True)
        if not result.ok:
            raise ExecutionError(result.summary())
        return

    link.parent.mkdir(parents=True, exist_ok=True)
    tmp = link.with_name(f"{_STAGING_PREFIX}{link.name}.{os.getpid()}")
    tmp.unlink(missing_ok=True)
    os.symlink(target, tmp)
    try:
        os.replace(tmp, link)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def replace_tree(staged: Path, dest: Path) -> None:
    """Move a staged directory into place, discarding any previous tree."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    previous = None
    if dest.exists():
        previous = dest.with_name(f"{_STAGING_PREFIX}old-{dest.name}")
        if previous.exists():
            shutil.rmtree(previous)
        dest.rename(previous)
    staged.rename(dest)
    if previous is not None:
        shutil.rmtree(previous, ignore_errors=True)


def dearmor(data: bytes) -> bytes:
    """Convert an ASCII-armored OpenPGP key to binary (``gpg --dearmor``).

    Binary input is returned unchanged. When the armor carries a CRC-24
    line the decoded key must match it.

    Raises:
        ExecutionError: The armor does not decode.
        IntegrityError: The decoded key fails its CRC-24.
    """
    text = data.decode("ascii", errors="ignore")
    if "-----BEGIN PGP" not in text:
        return data

    body: list[str] = []
    checksum = ""
    in_body = False
    headers_done = False
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("-----BEGIN PGP"):
            in_body = True
            continue
        if line.startswith("-----END PGP"):
            break
        if not in_body:
            continue
        if not headers_done:
            # Armor headers ("Version: ...") end at the first blank line
            if not line:
                headers_done = True
            elif ":" not in line:
                headers_done = True
                body.append(line)
            continue
        if line.startswith("="):
            checksum = line[1:]
            continue
        body.append(line)

    try:
        key = base64.b64decode("".join(body), validate=True)
        expected = int.from_bytes(base64.b64decode(checksum, validate=True), "big") if checksum else None
    except ValueError as e:
        raise ExecutionError(f"Malformed armored key: {e}") from e

    if expected is not None:
        actual = crc24(key)
        if actual != expected:
            raise IntegrityError(f"Armored key checksum mismatch (expected {expected:06x}, got {actual:06x})")
    return key


def crc24(data: bytes) -> int:
    """OpenPGP armor checksum (RFC 4880 section 6.1)."""
    crc = _CRC24_INIT
    for byte in data:
        crc ^= byte << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= _CRC24_POLY
    return crc & 0xFFFFFF
