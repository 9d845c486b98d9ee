"""Helpers for locating BPF objects and the bpffs, and for process limits."""

from __future__ import annotations

import errno
import os
import re
import resource
from enum import Enum, IntEnum
from typing import Iterable, Optional

from .log import LogLevel, logging_print, pr_debug, pr_warn

__all__ = [
    "PATH_MAX",
    "BPF_DIR_MNT",
    "BPF_OBJECT_PATH",
    "XdpAction",
    "XdpMode",
    "action2str",
    "make_dir_subdir",
    "find_bpf_file",
    "find_bpf_mount",
    "get_bpf_root_dir",
    "set_rlimit",
    "double_rlimit",
    "check_bpf_environ",
]

PATH_MAX = 4096
BPF_DIR_MNT = "/sys/fs/bpf"
BPF_OBJECT_PATH = "/usr/lib/bpf"
_BPF_KNOWN_MOUNTS = (BPF_DIR_MNT, "/bpf")


class XdpAction(IntEnum):
    """XDP program return codes."""

    ABORTED = 0
    DROP = 1
    PASS = 2
    TX = 3
    REDIRECT = 4
    UNKNOWN = 5


XDP_ACTION_MAX = len(XdpAction)


class XdpMode(Enum):
    """XDP attach modes, valued by their user-facing names."""

    NATIVE = "native"
    SKB = "skb"
    HW = "hw"
    UNSPEC = "unspecified"


def action2str(action: int) -> Optional[str]:
    """Return the XDP_* name of *action*, or None when out of range."""
    if 0 <= action < XDP_ACTION_MAX:
        return "XDP_" + XdpAction(action).name
    return None


def _join_path(*parts: str) -> str:
    path = "/".join(parts)
    if len(path) >= PATH_MAX:
        raise OSError(errno.ENAMETOOLONG, os.strerror(errno.ENAMETOOLONG), path)
    return path


def make_dir_subdir(parent: str, subdir: str) -> str:
    """Create *parent* and *parent*/*subdir* (mode 0700) if missing; return the latter."""
    path = _join_path(os.fspath(parent), subdir)
    for directory in (os.fspath(parent), path):
        try:
            os.mkdir(directory, 0o700)
        except FileExistsError:
            pass
    return path


def find_bpf_file(progname: str, search_paths: Optional[Iterable[str]] = None) -> str:
    """Return the path of the first *progname* found in *search_paths*."""
    paths = (BPF_OBJECT_PATH,) if search_paths is None else search_paths
    for directory in paths:
        candidate = _join_path(os.fspath(directory), progname)
        pr_debug("Looking for '%s'\n", candidate)
        try:
            os.stat(candidate)
        except OSError:
            continue
        return candidate

    pr_warn("Couldn't find a BPF file with name %s\n", progname)
    raise FileNotFoundError(
        errno.ENOENT, f"Couldn't find a BPF file with name {progname}"
    )


_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


def _unescape_mount_field(field: str) -> str:
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


def find_bpf_mount(mounts_file: str = "/proc/mounts", fstype: str = "bpf") -> Optional[str]:
    """Return the mount point of a *fstype* filesystem listed in *mounts_file*.

    Well-known bpffs locations are preferred; otherwise the first matching
    entry is used. Returns None if none is found or the file is unreadable.
    """
    try:
        with open(mounts_file, encoding="utf-8", errors="replace") as fp:
            entries = [line.split() for line in fp]
    except OSError:
        return None

    mounts = [
        _unescape_mount_field(fields[1])
        for fields in entries
        if len(fields) >= 3 and fields[2] == fstype
    ]
    for known in _BPF_KNOWN_MOUNTS:
        if known in mounts:
            return known
    return mounts[0] if mounts else None


def get_bpf_root_dir(
    subdir: Optional[str] = None,
    fatal: bool = False,
    mounts_file: str = "/proc/mounts",
) -> str:
    """Return the bpffs directory, optionally joined with *subdir*."""
    bpf_dir = find_bpf_mount(mounts_file)
    if bpf_dir is None:
        logging_print(
            LogLevel.WARN if fatal else LogLevel.DEBUG,
            "Could not find BPF working dir - bpffs not mounted?\n",
        )
        raise FileNotFoundError(
            errno.ENOENT, "Could not find BPF working dir - bpffs not mounted?"
        )
    return _join_path(bpf_dir, subdir) if subdir else _join_path(bpf_dir)


def set_rlimit(min_limit: int) -> int:
    """Raise RLIMIT_MEMLOCK to at least *min_limit*, or double it when 0.

    Returns the resulting soft limit.
    """
    try:
        soft, hard = resource.getrlimit(resource.RLIMIT_MEMLOCK)
    except OSError:
        pr_warn("Couldn't get current rlimit\n")
        raise

    if soft == resource.RLIM_INFINITY or soft == 0:
        pr_debug("Current rlimit is infinity or 0. Not raising\n")
        raise OSError(errno.ENOMEM, "Current rlimit is infinity or 0")

    if min_limit:
        if soft >= min_limit:
            pr_debug("Current rlimit %d already >= minimum %d\n", soft, min_limit)
            return soft
        pr_debug("Setting rlimit to minimum %d\n", min_limit)
        soft = min_limit
    else:
        pr_debug("Doubling current rlimit of %d\n", soft)
        soft <<= 1

    if hard != resource.RLIM_INFINITY:
        hard = max(soft, hard)

    try:
        resource.setrlimit(resource.RLIMIT_MEMLOCK, (soft, hard))
    except (OSError, ValueError) as exc:
        pr_warn("Couldn't raise rlimit: %s\n", exc)
        raise
    return soft


def double_rlimit() -> int:
    """Double RLIMIT_MEMLOCK after a permission failure; return the new limit."""
    pr_debug(
        "Permission denied when loading eBPF object; raising rlimit and retrying\n"
    )
    return set_rlimit(0)


def check_bpf_environ() -> None:
    """Require root and try to raise RLIMIT_MEMLOCK to 1 MiB."""
    if os.geteuid() != 0:
        pr_warn("This program must be run as root.\n")
        raise PermissionError(errno.EPERM, "This program must be run as root.")

    try:
        set_rlimit(1024 * 1024)
    except (OSError, ValueError):
        pass