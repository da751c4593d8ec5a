"""Fleet keypair management.

One RSA keypair is shared by every node and by the operator. It is
generated once with ssh-keygen and reused on later runs until teardown
deletes it.
"""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from sshmesh.config import Settings
from sshmesh.runtime.cli import run
from sshmesh.types import CredentialPair

log = logger.bind(component="credentials")


def parse_public_key(text: str) -> str:
    """Return ``"<type> <base64>"`` from an OpenSSH public key line.

    >>> parse_public_key("ssh-rsa AAAAB3Nza comment@host")
    'ssh-rsa AAAAB3Nza'

    Raises:
        ValueError: If the text is not an OpenSSH public key.
    """
    parts = text.strip().split()
    if len(parts) < 2 or not (parts[0].startswith("ssh-") or parts[0].startswith("ecdsa-")):
        raise ValueError(f"Invalid SSH public key format: {text[:50]!r}")
    return f"{parts[0]} {parts[1]}"


async def ensure_credential_pair(settings: Settings) -> CredentialPair:
    """Generate the fleet keypair, or reuse the one already on disk.

    A private key without its ``.pub`` companion gets the public half
    re-derived. The private key is always left with mode 600.
    """
    private_path = settings.private_key_path
    public_path = settings.public_key_path
    private_path.parent.mkdir(parents=True, exist_ok=True)

    if not private_path.exists():
        log.info("Generating {bits}-bit RSA keypair at {path}", bits=settings.key_bits, path=private_path)
        public_path.unlink(missing_ok=True)
        await run(
            "ssh-keygen", "-q",
            "-t", "rsa",
            "-b", str(settings.key_bits),
            "-f", str(private_path),
            "-N", "",
            "-C", settings.key_comment,
            timeout=settings.command_timeout,
        )
    elif not public_path.exists():
        log.info("Deriving missing public key for {path}", path=private_path)
        derived = await run("ssh-keygen", "-y", "-f", str(private_path), timeout=settings.command_timeout)
        public_path.write_text(f"{derived} {settings.key_comment}\n")
    else:
        log.debug("Reusing keypair at {path}", path=private_path)

    os.chmod(private_path, 0o600)
    public_key = public_path.read_text().strip()
    parse_public_key(public_key)
    return CredentialPair(private_path=private_path, public_path=public_path, public_key=public_key)


def remove_credential_pair(settings: Settings) -> list[Path]:
    """Delete the keypair files. Returns the paths that existed."""
    removed: list[Path] = []
    for path in (settings.private_key_path, settings.public_key_path):
        if path.exists():
            path.unlink()
            removed.append(path)
    return removed
