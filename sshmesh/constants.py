"""Fleet defaults. Addressing values are part of the node contract."""

from __future__ import annotations

from pathlib import Path

IMAGE_NAME = "linux-ssh-server"
BASE_IMAGE = "ubuntu:22.04"
NETWORK_NAME = "cluster-network"
SUBNET_PREFIX = "172.20"

# node i lives at {prefix}.0.{HOST_OCTET_OFFSET + i} and is published on BASE_PORT + i
HOST_OCTET_OFFSET = 10
BASE_PORT = 2221
MAX_NODES = 254 - HOST_OCTET_OFFSET

NODE_PREFIX = "comp"
ALIAS_PREFIX = "comp"

SSH_USER = "student"
KEY_NAME = "id_rsa_cluster"
KEY_BITS = 4096
KEY_COMMENT = "cluster-ssh-key"
HOST_KEY_PATH = "/etc/ssh/ssh_host_rsa_key"

DESCRIPTOR_NAME = "Dockerfile"
HARVEST_ARTIFACT_NAME = "cluster_known_hosts"

OPERATOR_KNOWN_HOSTS = Path.home() / ".ssh" / "known_hosts"
BACKUP_SUFFIX = ".sshmesh.bak"

DEFAULT_MAX_WORKERS = 8
DEFAULT_COMMAND_TIMEOUT = 120.0
DEFAULT_BUILD_TIMEOUT = 1800.0
DEFAULT_READY_TIMEOUT = 60.0
DEFAULT_READY_INTERVAL = 0.5
