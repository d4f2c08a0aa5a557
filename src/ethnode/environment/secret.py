"""
Shared JWT secret provisioning.

Execution and consensus clients authenticate the engine API with a shared
32-byte secret. It is delivered through a volume that every client mounts
read-only. A short-lived helper container writes it there.

Why a helper container? The engine may run on another host, so the
supervisor cannot write into the volume directly. Running the helper to
completion also guarantees the bytes are on the volume before any client
container that mounts it is created.
"""

from __future__ import annotations

import logging
import re
import secrets
from pathlib import PurePosixPath
from typing import Final

from ethnode.engine import ContainerEngine, ContainerSpec
from ethnode.types import ContainerError, ResourceNotFoundError

logger = logging.getLogger(__name__)

HELPER_IMAGE: Final = "alpine:latest"
"""Image used for helper containers."""

HELPER_LABEL: Final = "ethnode.helper"
"""Label that marks helper containers."""

SECRET_MOUNT: Final = "/secret"
"""Where the helper mounts the secret volume."""

SECRET_PRESENT_EXIT: Final = 3
"""Helper exit status meaning the secret file already exists."""

_JWT_SECRET: Final = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")

# The secret reaches the script through the environment, never through the
# command line, so it is neither shell-interpolated nor visible in inspect
# output of the command.
_WRITE_SECRET_SCRIPT: Final = f"""\
set -eu
target="{SECRET_MOUNT}/$ETHNODE_SECRET_FILE"
if [ -s "$target" ] && [ "$ETHNODE_SECRET_OVERWRITE" != "1" ]; then
  echo "secret already present"
  exit {SECRET_PRESENT_EXIT}
fi
printf '%s' "$ETHNODE_SECRET" > "$target.tmp"
chmod 644 "$target.tmp"
mv "$target.tmp" "$target"
sync
test -s "$target"
echo "secret written"
"""


def generate_jwt_secret() -> str:
    """Generate a random 32-byte secret, hex encoded."""
    return secrets.token_bytes(32).hex()


def validate_jwt_secret(value: str) -> str:
    """
    Check a secret is 32 bytes of hex, with or without a 0x prefix.

    Raises:
        ValueError: If the value is malformed.
    """
    if not _JWT_SECRET.match(value):
        raise ValueError("JWT secret must be 32 bytes of hex (64 characters).")
    return value


async def run_helper(
    engine: ContainerEngine,
    spec: ContainerSpec,
    *,
    ok_codes: tuple[int, ...] = (0,),
) -> int:
    """
    Run a short-lived container to completion and remove it.

    The helper is removed even when starting or waiting fails.

    Args:
        engine: Container engine.
        spec: Helper container spec.
        ok_codes: Exit codes that count as success.

    Returns:
        The helper's exit code.

    Raises:
        ContainerError: If the exit code is not in ok_codes.
    """
    if not await engine.image_exists(spec.image):
        logger.info("Pulling helper image %s", spec.image)
        await engine.pull_image(spec.image)

    container_id = await engine.create_container(spec)
    try:
        await engine.start_container(container_id)
        exit_code = await engine.wait_container(container_id)

        for line in await engine.container_logs(container_id):
            logger.debug("helper %s: %s", container_id[:12], line.message)
    finally:
        try:
            await engine.remove_container(container_id, force=True)
        except ResourceNotFoundError:
            logger.debug("Helper %s already removed", container_id[:12])

    if exit_code not in ok_codes:
        raise ContainerError(f"Helper container {spec.image} exited with code {exit_code}")
    return exit_code


async def write_secret(
    engine: ContainerEngine,
    volume: str,
    path: str,
    value: str,
    *,
    overwrite: bool = False,
    helper_image: str = HELPER_IMAGE,
) -> bool:
    """
    Write the secret into a volume unless it is already there.

    Args:
        engine: Container engine.
        volume: Volume clients mount at the secret's directory.
        path: Secret path as clients see it; only the file name matters here.
        value: Hex-encoded secret.
        overwrite: Replace an existing secret.
        helper_image: Image with a POSIX shell.

    Returns:
        True if the secret was written, False if it already existed.
    """
    validate_jwt_secret(value)
    file_name = PurePosixPath(path).name

    spec = ContainerSpec(
        image=helper_image,
        command=("sh", "-c", _WRITE_SECRET_SCRIPT),
        environment={
            "ETHNODE_SECRET": value,
            "ETHNODE_SECRET_FILE": file_name,
            "ETHNODE_SECRET_OVERWRITE": "1" if overwrite else "0",
        },
        binds=(f"{volume}:{SECRET_MOUNT}",),
        labels={HELPER_LABEL: "secret"},
    )

    exit_code = await run_helper(engine, spec, ok_codes=(0, SECRET_PRESENT_EXIT))
    if exit_code == SECRET_PRESENT_EXIT:
        logger.info("JWT secret already present in volume %s", volume)
        return False

    logger.info("Wrote JWT secret to volume %s as %s", volume, file_name)
    return True
