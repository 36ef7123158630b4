# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/jobs/commands.py

"""
Shell scripts executed by host jobs.

A script is a chain of steps joined with ``&&`` so the first failing step
aborts the job, and it always ends with ``echo ok`` so a successful run is
visible in the job log. Driver supplied fragments are steps like any other;
empty fragments are dropped instead of leaving a dangling ``&&``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

# run a command on the host, inside the init process' mount namespace
HOST = "chroot /host nsenter --target 1 --mount"

GLOBAL_MOUNT = "/var/lib/kubelet/plugins/kubernetes.io/csi/pv/${PV_NAME}/globalmount"

SUCCESS_MARKER = "echo ok"

CONTAINER_PID = (
    "PID=$(docker inspect -f '{{.State.Pid}}' ${CONTAINER_ID} "
    "|| crictl inspect --output go-template --template '{{.info.pid}}' ${CONTAINER_ID})"
)


@dataclass(frozen=True)
class CommandPipeline:
    steps: Tuple[str, ...] = ()

    def then(self, *steps: Optional[str]) -> "CommandPipeline":
        kept = tuple(s.strip() for s in steps if s and s.strip())
        return CommandPipeline(self.steps + kept)

    def render(self) -> str:
        return " &&\n".join(self.steps + (SUCCESS_MARKER,))

    def __len__(self) -> int:
        return len(self.steps)


class MountStrategy(str, Enum):
    # create the device node inside every target container and mount it there
    MKNOD = "mknod"
    # bind mount the global mount into the container's namespace
    BIND = "bind"

    @classmethod
    def for_host_pid(cls, host_pid: bool) -> "MountStrategy":
        return cls.BIND if host_pid else cls.MKNOD


class FileSystem(str, Enum):
    EXT3 = "ext3"
    EXT4 = "ext4"
    XFS = "xfs"
    BTRFS = "btrfs"

    @property
    def growth_command(self) -> str:
        return _GROWTH_COMMANDS[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["FileSystem"]:
        try:
            return cls((value or "").lower())
        except ValueError:
            return None


_GROWTH_COMMANDS: Dict[FileSystem, str] = {
    FileSystem.EXT3: f"{HOST} resize2fs ${{DEV}}",
    FileSystem.EXT4: f"{HOST} resize2fs ${{DEV}}",
    FileSystem.XFS: f"{HOST} xfs_growfs -d ${{DEV}}",
    FileSystem.BTRFS: f"{HOST} btrfs filesystem resize max ${{DEV}}",
}


def _mknod_block() -> str:
    return "\n".join([
        f"DEV_NUMBERS=$({HOST} cat /proc/self/mountinfo | grep ${{DEV}} | awk '{{print $3}}' | head -n 1) &&",
        "DEV_MAJOR=${DEV_NUMBERS%%:*} &&",
        "DEV_MINOR=${DEV_NUMBERS##*:} &&",
        "for CONTAINER_ID in ${CONTAINER_IDS}; do",
        f"  {CONTAINER_PID} &&",
        "  chroot /host nsenter --target ${PID} --mount mkdir -p /dev ${MOUNT_POINT} &&",
        "  chroot /host nsenter --target ${PID} --pid --mount mknod ${DEV} b ${DEV_MAJOR} ${DEV_MINOR} &&",
        "  chroot /host nsenter --target ${PID} --mount mount ${DEV} ${MOUNT_POINT} || exit 1",
        "done",
    ])


def _bind_block() -> str:
    return "\n".join([
        "for CONTAINER_ID in ${CONTAINER_IDS}; do",
        f"  {CONTAINER_PID} &&",
        "  chroot /host nsenter --target ${PID} --mount mkdir -p ${MOUNT_POINT} &&",
        f"  chroot /host nsenter --target ${{PID}} --mount mount -o bind {GLOBAL_MOUNT} ${{MOUNT_POINT}} || exit 1",
        "done",
    ])


_STRATEGY_BLOCKS = {
    MountStrategy.MKNOD: _mknod_block,
    MountStrategy.BIND: _bind_block,
}


def growth_case() -> str:
    """``case`` over ${FS}; unknown file systems are reported, not failed."""
    groups: Dict[str, List[str]] = {}
    for fs, cmd in _GROWTH_COMMANDS.items():
        groups.setdefault(cmd, []).append(fs.value)

    lines = ['case "${FS}" in']
    for cmd, names in groups.items():
        lines.append(f"  {'|'.join(names)}) {cmd} ;;")
    lines.append('  *) echo "unsupported file-system ${FS}" ;;')
    lines.append("esac")
    return "\n".join(lines)


def mount_pipeline(pre_mount_command: str, strategy: MountStrategy) -> CommandPipeline:
    return CommandPipeline().then(
        pre_mount_command,
        f"{HOST} mkdir -p {GLOBAL_MOUNT}",
        f"{HOST} mount ${{DEV}} {GLOBAL_MOUNT}",
        _STRATEGY_BLOCKS[strategy](),
    )


def resize_pipeline(pre_resize_command: str) -> CommandPipeline:
    return CommandPipeline().then(pre_resize_command, growth_case())
