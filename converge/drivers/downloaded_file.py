"""
Downloaded file driver — fetch a URL into a path, optionally verified
and unpacked.

Parameters:
    url: Source URL (required).
    path: Destination; defaults to the resource name.
    checksum: ``algo:hex`` (bare hex means sha256). When present the
        content is verified before anything reaches ``path``.
    mode: Octal permissions for the installed file (e.g. ``755``).
    unpack: ``zip``, ``tar`` or ``auto``: extract the archive into the
        destination directory instead of writing the file itself.

The final path only ever holds complete content: files are staged and
renamed into place, archives are extracted into a staging directory
that replaces the destination in one rename.
"""

from __future__ import annotations

import io
import logging
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path

from converge.adapters.network.fetch import Fetcher
from converge.adapters.shell.command import CommandRunner
from converge.adapters.shell.filesystem import (
    digest_bytes,
    expand_path,
    needs_privilege,
    replace_tree,
    split_checksum,
    write_atomic,
)
from converge.core.errors import ExecutionError, IntegrityError
from converge.core.models.action import Verb
from converge.core.models.record import ProbeResult
from converge.core.models.resource import ResourceDeclaration
from converge.drivers.base import Driver

logger = logging.getLogger(__name__)

# Written inside unpacked trees: "<url>\n<algo>:<archive digest>\n"
ORIGIN_MARKER = ".converge-origin"

UNPACK_FORMATS = ("zip", "tar", "auto")


class DownloadedFileDriver(Driver):
    """Fetch files and archives from the network."""

    network = True
    required = ("url",)

    def __init__(self, fetcher: Fetcher, runner: CommandRunner):
        self._fetcher = fetcher
        self._runner = runner

    @property
    def kind(self) -> str:
        return "downloaded-file"

    def validate(self, decl: ResourceDeclaration) -> list[str]:
        errors = super().validate(decl)
        checksum = decl.param("checksum")
        if checksum:
            try:
                split_checksum(checksum)
            except ValueError as e:
                errors.append(f"{decl.id}: {e}")
        mode = decl.param("mode")
        if mode:
            try:
                int(mode, 8)
            except ValueError:
                errors.append(f"{decl.id}: 'mode' must be octal, got '{mode}'")
        unpack = decl.param("unpack")
        if unpack and unpack not in UNPACK_FORMATS:
            errors.append(f"{decl.id}: 'unpack' must be one of {', '.join(UNPACK_FORMATS)}")
        return errors

    # ── Probe ────────────────────────────────────────────────────

    def inspect(self, decl: ResourceDeclaration) -> ProbeResult:
        dest = self._dest(decl)

        if decl.param("unpack"):
            marker = dest / ORIGIN_MARKER
            if not dest.is_dir():
                return self.absent(decl, f"{dest} missing")
            if not marker.is_file():
                return self.present(decl, detail="unpacked without origin marker")
            url, _, recorded = marker.read_text().partition("\n")
            algo, _, digest = recorded.strip().rpartition(":")
            if (algo or "sha256") != self._algo(decl):
                # A digest under another algorithm can never match.
                return self.present(decl, observed=recorded.strip(), detail=url)
            return self.present(decl, observed=digest, detail=url)

        if not dest.is_file():
            return self.absent(decl, f"{dest} missing")
        algo = self._algo(decl)
        return self.present(decl, observed=digest_bytes(dest.read_bytes(), algo))

    def plan_action(self, decl: ResourceDeclaration, current: ProbeResult) -> tuple[Verb, str]:
        if not current.present:
            return Verb.CREATE, current.detail or "missing"

        checksum = decl.param("checksum")
        if checksum:
            _, expected = split_checksum(checksum)
            if current.observed and current.observed != expected:
                return Verb.UPDATE, "checksum differs"

        if decl.param("unpack"):
            if current.detail and current.detail != decl.param("url"):
                return Verb.UPDATE, "unpacked from a different url"
            return Verb.SKIP, "unpacked"

        mode = decl.param("mode")
        if mode and (self._dest(decl).stat().st_mode & 0o777) != int(mode, 8):
            return Verb.UPDATE, f"mode differs from {mode}"
        return Verb.SKIP, "present"

    # ── Apply ────────────────────────────────────────────────────

    def converge(self, decl: ResourceDeclaration, verb: Verb, current: ProbeResult) -> str:
        url = decl.param("url")
        data = self._fetcher.fetch(url)
        self._verify(decl, data)

        dest = self._dest(decl)
        mode = int(decl.param("mode"), 8) if decl.param("mode") else None

        if decl.param("unpack"):
            self._unpack(decl, data, dest)
            return f"unpacked {len(data)} bytes into {dest}"

        write_atomic(dest, data, mode, self._runner)
        return f"wrote {len(data)} bytes to {dest}"

    # ── Helpers ──────────────────────────────────────────────────

    @staticmethod
    def _dest(decl: ResourceDeclaration) -> Path:
        return expand_path(decl.param("path") or decl.name)

    @staticmethod
    def _algo(decl: ResourceDeclaration) -> str:
        checksum = decl.param("checksum")
        if not checksum:
            return "sha256"
        return split_checksum(checksum)[0]

    @staticmethod
    def _verify(decl: ResourceDeclaration, data: bytes) -> None:
        checksum = decl.param("checksum")
        if not checksum:
            return
        algo, expected = split_checksum(checksum)
        actual = digest_bytes(data, algo)
        if actual != expected:
            raise IntegrityError(
                f"{decl.param('url')}: {algo} mismatch (expected {expected}, got {actual})"
            )

    def _unpack(self, decl: ResourceDeclaration, data: bytes, dest: Path) -> None:
        privileged = needs_privilege(dest)
        staging_root = None if privileged else dest.parent
        if staging_root is not None:
            staging_root.mkdir(parents=True, exist_ok=True)

        workdir = Path(tempfile.mkdtemp(prefix=".converge-", dir=staging_root))
        try:
            staged = workdir / dest.name
            staged.mkdir()
            _extract(data, decl.param("unpack"), staged)
            algo = self._algo(decl)
            (staged / ORIGIN_MARKER).write_text(f"{decl.param('url')}\n{algo}:{digest_bytes(data, algo)}\n")

            if privileged:
                self._install_tree(staged, dest)
            else:
                replace_tree(staged, dest)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def _install_tree(self, staged: Path, dest: Path) -> None:
        part = dest.with_name(f".converge-{dest.name}")
        steps = [
            ["mkdir", "-p", str(dest.parent)],
            ["rm", "-rf", str(part)],
            ["cp", "-a", str(staged), str(part)],
            ["rm", "-rf", str(dest)],
            ["mv", str(part), str(dest)],
        ]
        for cmd in steps:
            result = self._runner.run(cmd, privileged=True)
            if not result.ok:
                raise ExecutionError(result.summary())


def _extract(data: bytes, fmt: str, into: Path) -> None:
    if fmt == "auto":
        fmt = "zip" if data[:4] == b"PK\x03\x04" else "tar"

    try:
        if fmt == "zip":
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                archive.extractall(into)
        else:
            with tarfile.open(fileobj=io.BytesIO(data)) as archive:
                archive.extractall(into, filter="data")
    except (zipfile.BadZipFile, tarfile.TarError) as e:
        raise ExecutionError(f"Cannot unpack {fmt} archive: {e}") from e
    logger.debug("Extracted %s archive into %s", fmt, into)
