"""Generated node-image descriptor.

The Dockerfile is regenerated on every provisioning run into the work
directory and deleted at teardown.
"""

from __future__ import annotations

from pathlib import Path

from sshmesh.config import Settings

_DOCKERFILE = (
    "FROM {base}\n"
    "\n"
    "ENV DEBIAN_FRONTEND=noninteractive\n"
    "\n"
    "RUN apt-get update && \\\n"
    "    apt-get install -y openssh-server sudo pssh && \\\n"
    "    mkdir -p /var/run/sshd && \\\n"
    "    rm -rf /var/lib/apt/lists/*\n"
    "\n"
    "RUN useradd -m -s /bin/bash {user} && \\\n"
    "    mkdir -p /home/{user}/.ssh && \\\n"
    "    chmod 700 /home/{user}/.ssh && \\\n"
    "    chown -R {user}:{user} /home/{user}\n"
    "\n"
    "EXPOSE 22\n"
    "\n"
    'CMD ["/usr/sbin/sshd", "-D"]\n'
)


def render_descriptor(settings: Settings) -> str:
    return _DOCKERFILE.format(base=settings.base_image, user=settings.ssh_user)


def write_descriptor(settings: Settings) -> Path:
    path = settings.descriptor_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_descriptor(settings))
    return path


def remove_descriptor(settings: Settings) -> bool:
    path = settings.descriptor_path
    if not path.exists():
        return False
    path.unlink()
    return True
