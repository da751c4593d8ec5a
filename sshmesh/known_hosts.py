"""The operator's SSH trust store (known_hosts).

KnownHostsStore is the only writer of the operator's known_hosts file. Every
mutation is a read-modify-write performed under an asyncio lock (concurrent
node bootstraps in this process) and an exclusive flock on the ~/.ssh
directory (other processes), and lands atomically through os.replace.
"""

from __future__ import annotations

import asyncio
import contextlib
import fcntl
import os
import re
import shutil
import tempfile
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from sshmesh import constants
from sshmesh.config import Settings
from sshmesh.types import TrustBinding

log = logger.bind(component="known_hosts")

type PrincipalMatcher = Callable[[str], bool]


@dataclass(frozen=True, slots=True)
class KnownHostsLine:
    """One known_hosts line. ``hosts`` is empty for comments, blanks and
    hashed entries, which are carried through untouched."""

    raw: str
    marker: str | None = None
    hosts: tuple[str, ...] = ()
    key: str = ""

    @classmethod
    def parse(cls, raw: str) -> KnownHostsLine:
        text = raw.strip()
        if not text or text.startswith("#"):
            return cls(raw)
        parts = text.split()
        marker = None
        if parts[0].startswith("@"):
            marker, parts = parts[0], parts[1:]
        if len(parts) < 3 or parts[0].startswith("|"):
            return cls(raw)
        return cls(raw, marker, tuple(parts[0].split(",")), f"{parts[1]} {parts[2]}")

    def without(self, matches: PrincipalMatcher) -> KnownHostsLine | None:
        """This line minus the hosts ``matches`` selects; None if none remain."""
        if not self.hosts:
            return self
        kept = tuple(h for h in self.hosts if not matches(h))
        if len(kept) == len(self.hosts):
            return self
        if not kept:
            return None
        prefix = f"{self.marker} " if self.marker else ""
        return KnownHostsLine(f"{prefix}{','.join(kept)} {self.key}", self.marker, kept, self.key)


def parse_known_hosts(text: str) -> list[KnownHostsLine]:
    return [KnownHostsLine.parse(line) for line in text.splitlines()]


def render_known_hosts(lines: Iterable[KnownHostsLine]) -> str:
    return "".join(f"{line.raw}\n" for line in lines)


def without_principals(
    lines: Iterable[KnownHostsLine], matches: PrincipalMatcher,
) -> list[KnownHostsLine]:
    return [kept for line in lines if (kept := line.without(matches)) is not None]


def cluster_principal_matcher(settings: Settings) -> PrincipalMatcher:
    """Match every principal form a provisioning run may have written:
    node name, ordinal alias, node address and ``[localhost]:port``."""
    names = re.compile(
        rf"(?:{re.escape(settings.node_prefix)}|{re.escape(constants.ALIAS_PREFIX)})\d+"
    )
    addresses = re.compile(rf"{re.escape(settings.subnet_prefix)}\.0\.(\d+)")
    localhost = re.compile(r"\[localhost\]:(\d+)")
    first_octet = constants.HOST_OCTET_OFFSET + 1
    first_port, last_port = settings.base_port + 1, settings.base_port + constants.MAX_NODES

    def matches(principal: str) -> bool:
        if names.fullmatch(principal):
            return True
        if m := addresses.fullmatch(principal):
            return first_octet <= int(m[1]) <= 254
        if m := localhost.fullmatch(principal):
            return first_port <= int(m[1]) <= last_port
        return False

    return matches


class KnownHostsStore:
    """Single-writer service over one known_hosts file."""

    def __init__(self, path: Path, backup_path: Path | None = None) -> None:
        self.path = path
        self.backup_path = backup_path or path.with_name(path.name + constants.BACKUP_SUFFIX)
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> KnownHostsStore:
        return cls(settings.known_hosts_path, settings.backup_path)

    async def lines(self) -> list[KnownHostsLine]:
        return await asyncio.to_thread(self._read)

    async def backup(self, matches: PrincipalMatcher | None = None) -> bool:
        """Snapshot the store once, before the first fleet mutates it.

        Principals selected by ``matches`` are left out of the snapshot, so
        pins from an earlier run never come back on restore. A missing store
        is recorded as an empty backup. An existing backup is never
        overwritten.
        """
        async with self._lock:
            return await asyncio.to_thread(self._backup, matches)

    async def replace(self, bindings: Iterable[TrustBinding]) -> None:
        """Drop every existing entry for the bindings' principals, then append them."""
        new = list(bindings)
        principals = {b.principal for b in new}

        def mutate(lines: list[KnownHostsLine]) -> list[KnownHostsLine]:
            stripped = (line.without(principals.__contains__) for line in lines)
            kept = [line for line in stripped if line is not None]
            return [*kept, *(KnownHostsLine.parse(b.render()) for b in new)]

        async with self._lock:
            await asyncio.to_thread(self._modify, mutate)

    async def strip(self, matches: PrincipalMatcher) -> int:
        """Remove matching principals, leaving unrelated entries untouched.

        Returns:
            Number of principals removed.
        """
        removed = 0

        def mutate(lines: list[KnownHostsLine]) -> list[KnownHostsLine]:
            nonlocal removed
            result = []
            for line in lines:
                removed += sum(1 for h in line.hosts if matches(h))
                if (kept := line.without(matches)) is not None:
                    result.append(kept)
            return result

        async with self._lock:
            if await asyncio.to_thread(self.path.exists):
                await asyncio.to_thread(self._modify, mutate)
        return removed

    async def restore_backup(self, matches: PrincipalMatcher | None = None) -> bool:
        """Put the backup back verbatim and delete it. False if there is none.

        An empty backup stands for a store that did not exist: the store
        then only loses the principals ``matches`` selects, and is deleted
        if nothing else is left in it.
        """
        async with self._lock:
            return await asyncio.to_thread(self._restore, matches)

    def _read(self) -> list[KnownHostsLine]:
        if not self.path.exists():
            return []
        # undecodable bytes in unrelated entries must survive a rewrite
        return parse_known_hosts(self.path.read_text(errors="surrogateescape"))

    def _backup(self, matches: PrincipalMatcher | None) -> bool:
        if self.backup_path.exists():
            return False
        with self._flock():
            if not self.path.exists():
                self._write("", self.backup_path)
            else:
                lines = self._read()
                kept = lines
                if matches is not None:
                    kept = without_principals(lines, matches)
                if kept == lines:
                    shutil.copy2(self.path, self.backup_path)
                else:
                    self._write(render_known_hosts(kept), self.backup_path)
        log.info("Backed up {path} to {backup}", path=self.path, backup=self.backup_path)
        return True

    def _restore(self, matches: PrincipalMatcher | None) -> bool:
        if not self.backup_path.exists():
            return False
        with self._flock():
            if self.backup_path.stat().st_size > 0:
                os.replace(self.backup_path, self.path)
            else:
                self.backup_path.unlink()
                self._clear(matches)
        log.info("Restored {path} from {backup}", path=self.path, backup=self.backup_path)
        return True

    def _clear(self, matches: PrincipalMatcher | None) -> None:
        if not self.path.exists():
            return
        lines = self._read()
        if matches is not None:
            lines = without_principals(lines, matches)
        if any(line.raw.strip() for line in lines):
            self._write(render_known_hosts(lines), self.path)
        else:
            self.path.unlink()

    def _modify(self, mutate: Callable[[list[KnownHostsLine]], list[KnownHostsLine]]) -> None:
        with self._flock():
            self._write(render_known_hosts(mutate(self._read())), self.path)

    def _write(self, content: str, target: Path) -> None:
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "w", errors="surrogateescape") as f:
                f.write(content)
            os.chmod(tmp, 0o600)
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    @contextlib.contextmanager
    def _flock(self) -> Iterator[None]:
        directory = self.path.parent
        if not directory.exists():
            directory.mkdir(mode=0o700, parents=True)
        fd = os.open(directory, os.O_RDONLY)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
