"""Command-line option tables, parsing and sub-command dispatch."""

from __future__ import annotations

import copy
import errno
import getopt
import os
import re
import socket
import sys
from collections import Counter
from dataclasses import dataclass, field
from enum import IntEnum
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .lock import ProgLock
from .log import increase_log_level, pr_warn
from .util import check_bpf_environ, get_bpf_root_dir

__all__ = [
    "TOOLS_VERSION",
    "EXIT_FAILURE",
    "OptionType",
    "ProgOption",
    "FlagVal",
    "EnumVal",
    "Iface",
    "IpAddr",
    "MacAddr",
    "ProgCommand",
    "UsageError",
    "parse_mac",
    "format_flags",
    "format_enum_vals",
    "get_enum_name",
    "is_prefix",
    "usage",
    "parse_cmdline_args",
    "dispatch_commands",
]

TOOLS_VERSION = "1.2.2"
EXIT_FAILURE = 1

_FIRST_PRINTABLE = 65  # ord('A')
_BUFSIZE = 30
_USAGE_BUFSIZE = 100
_ETH_ALEN = 6


class OptionType(IntEnum):
    """How an option's argument is interpreted."""

    NONE = 0
    BOOL = 1
    FLAGS = 2
    STRING = 3
    U16 = 4
    U32 = 5
    U32_MULTI = 6
    MACADDR = 7
    IFNAME = 8
    IFNAME_MULTI = 9
    IPADDR = 10
    ENUM = 11
    MULTISTRING = 12


_MULTI_TYPES = frozenset(
    {OptionType.MULTISTRING, OptionType.IFNAME_MULTI, OptionType.U32_MULTI}
)


class UsageError(Exception):
    """The command line could not be used; usage has already been shown."""


class _OptionFailed(Exception):
    pass


@dataclass(frozen=True)
class FlagVal:
    """One named bit of a flags option."""

    flagstring: str
    flagval: int


@dataclass(frozen=True)
class EnumVal:
    """One named value of an enum option."""

    name: str
    value: Any


@dataclass(frozen=True)
class Iface:
    """A network interface given by name, with its index."""

    ifname: str
    ifindex: int


@dataclass(frozen=True)
class IpAddr:
    """An IPv4 or IPv6 address in packed form."""

    af: int
    addr: bytes

    def __str__(self) -> str:
        return socket.inet_ntop(self.af, self.addr)


@dataclass(frozen=True)
class MacAddr:
    """A six-byte Ethernet address."""

    addr: bytes

    def __post_init__(self) -> None:
        if len(self.addr) != _ETH_ALEN:
            raise ValueError("MAC address must be 6 bytes")

    def __str__(self) -> str:
        return ":".join(f"{octet:02x}" for octet in self.addr)


@dataclass(eq=False)
class ProgOption:
    """Description of one option and the config attribute it fills."""

    name: str
    type: OptionType
    member: Optional[str] = None
    short_opt: Optional[str] = None
    help: Optional[str] = None
    metavar: Optional[str] = None
    typearg: Optional[Sequence[Any]] = None
    required: bool = False
    positional: bool = False
    min_num: int = 0
    max_num: int = 0

    def __post_init__(self) -> None:
        if self.member is None:
            self.member = self.name.replace("-", "_")

    @property
    def needs_arg(self) -> bool:
        return self.type > OptionType.BOOL and not self.positional

    @property
    def is_multi(self) -> bool:
        return self.type in _MULTI_TYPES

    @property
    def display_name(self) -> str:
        return self.metavar or self.name


@dataclass
class ProgCommand:
    """A sub-command: its options, defaults and the function that runs it."""

    name: str
    func: Callable[[Any, Optional[str]], int]
    options: List[ProgOption] = field(default_factory=list)
    default_cfg: Any = None
    doc: str = ""
    no_cfg: bool = False
    cfg_factory: Callable[[], Any] = SimpleNamespace


def _os_error(code: int) -> OSError:
    return OSError(code, os.strerror(code))


_MAC_PART = r"\s*([+-]?)(?:0[xX])?([0-9a-fA-F]+)"
_MAC_RE = re.compile(":".join([_MAC_PART] * _ETH_ALEN))


def parse_mac(text: str) -> MacAddr:
    """Parse six colon-separated hex octets; trailing text is ignored."""
    match = _MAC_RE.match(text)
    if match is None:
        raise ValueError(f"Invalid MAC address: {text}")
    groups = match.groups()
    octets = []
    for sign, digits in zip(groups[::2], groups[1::2]):
        value = int(digits, 16)
        if (sign == "-" and value) or value > 0xFF:
            raise ValueError(f"Invalid MAC address: {text}")
        octets.append(value)
    return MacAddr(bytes(octets))


def format_flags(flags: Iterable[FlagVal], flags_set: int) -> str:
    """Comma-separated names of the flags whose bits are in *flags_set*."""
    return ",".join(flag.flagstring for flag in flags if flag.flagval & flags_set)


def format_enum_vals(vals: Iterable[EnumVal]) -> str:
    """Comma-separated names of all enum values."""
    return ",".join(val.name for val in vals)


def get_enum_name(vals: Iterable[EnumVal], value: Any) -> Optional[str]:
    """Name of the first entry with *value*, or None."""
    return next((val.name for val in vals if val.value == value), None)


def is_prefix(pfx: Optional[str], string: str) -> bool:
    """Whether *string* starts with *pfx*; False when *pfx* is None."""
    if pfx is None:
        return False
    return string.startswith(pfx)


_STRTOUL_RE = re.compile(r"\s*([+-]?)([0-9]*)")


def _parse_uint(text: str, limit: int) -> int:
    sign, digits = _STRTOUL_RE.match(text).groups()
    value = int(digits) if digits else 0
    if (sign == "-" and value) or value > limit:
        raise _os_error(errno.EINVAL)
    return value


def _handle_bool(text: str, opt: ProgOption) -> bool:
    return True


def _handle_string(text: str, opt: ProgOption) -> str:
    return text


def _handle_u16(text: str, opt: ProgOption) -> int:
    return _parse_uint(text, 0xFFFF)


def _handle_u32(text: str, opt: ProgOption) -> int:
    return _parse_uint(text, 0xFFFFFFFF)


def _handle_flags(text: str, opt: ProgOption) -> int:
    if opt.typearg is None:
        raise _os_error(errno.EINVAL)
    if not text:
        return 0
    parts = text.split(",")
    if parts[-1] == "":
        parts.pop()
    value = 0
    for part in parts:
        flag = next((f for f in opt.typearg if f.flagstring == part), None)
        if flag is None:
            raise _os_error(errno.EINVAL)
        value |= flag.flagval
    return value


def _handle_macaddr(text: str, opt: ProgOption) -> MacAddr:
    try:
        return parse_mac(text)
    except ValueError:
        pr_warn("Invalid MAC address: %s\n", text)
        raise _os_error(errno.EINVAL) from None


def _handle_ifname(text: str, opt: ProgOption) -> Iface:
    try:
        ifindex = socket.if_nametoindex(text)
    except (OSError, ValueError):
        ifindex = 0
    if not ifindex:
        pr_warn("Couldn't find network interface '%s'.\n", text)
        raise _os_error(errno.ENOENT)
    return Iface(text, ifindex)


def _handle_ipaddr(text: str, opt: ProgOption) -> IpAddr:
    af = socket.AF_INET6 if ":" in text else socket.AF_INET
    try:
        packed = socket.inet_pton(af, text)
    except (OSError, ValueError):
        pr_warn("Invalid IP address: %s\n", text)
        raise _os_error(errno.ENOENT) from None
    return IpAddr(af, packed)


def _handle_enum(text: str, opt: ProgOption) -> Any:
    if opt.typearg is None:
        raise _os_error(errno.EINVAL)
    val = next((v for v in opt.typearg if v.name == text), None)
    if val is None:
        raise _os_error(errno.EINVAL)
    return val.value


_PARSERS: Dict[OptionType, Callable[[str, ProgOption], Any]] = {
    OptionType.BOOL: _handle_bool,
    OptionType.FLAGS: _handle_flags,
    OptionType.STRING: _handle_string,
    OptionType.U16: _handle_u16,
    OptionType.U32: _handle_u32,
    OptionType.U32_MULTI: _handle_u32,
    OptionType.MACADDR: _handle_macaddr,
    OptionType.IFNAME: _handle_ifname,
    OptionType.IFNAME_MULTI: _handle_ifname,
    OptionType.IPADDR: _handle_ipaddr,
    OptionType.ENUM: _handle_enum,
    OptionType.MULTISTRING: _handle_string,
}


def _help_text(opt: ProgOption) -> str:
    if opt.type in (OptionType.FLAGS, OptionType.ENUM):
        if opt.typearg is None:
            pr_warn("Missing typearg for opt %s\n", opt.name)
            values = ""
        elif opt.type == OptionType.FLAGS:
            values = format_flags(opt.typearg, -1)
        else:
            values = format_enum_vals(opt.typearg)
        return f"  {opt.help} (valid values: {values})"
    return f"  {opt.help}" if opt.help else ""


def _format_options(options: Sequence[ProgOption], required: bool) -> str:
    out: List[str] = []
    for opt in options:
        if opt.required != required:
            continue
        if opt.positional:
            line = f"  {opt.display_name:<30}"
        else:
            if opt.short_opt and ord(opt.short_opt) >= _FIRST_PRINTABLE:
                prefix = f" -{opt.short_opt},"
            else:
                prefix = "    "
            buf = f" --{opt.name}"
            if len(buf) >= _BUFSIZE:
                pr_warn("opt name too long: %s\n", opt.name)
                out.append(prefix)
                continue
            if opt.metavar:
                buf = (buf + f" {opt.metavar}")[: _BUFSIZE - 1]
            line = prefix + f"{buf:<28}"
        out.append(line + _help_text(opt) + "\n")
    return "".join(out)


def usage(
    prog_name: str, doc: str, options: Sequence[ProgOption], full: bool = True
) -> None:
    """Write the usage summary (or the full option list) to standard output."""
    positional = "".join(f" {opt.display_name}" for opt in options if opt.positional)
    out = [f"\nUsage: {prog_name} [options]{positional}\n"]

    if not full:
        out.append("Use --help (or -h) to see full option list.\n")
        sys.stdout.write("".join(out))
        return

    out.append(f"\n {doc}\n\n")
    if any(opt.required for opt in options):
        out.append("Required parameters:\n")
        out.append(_format_options(options, True))
        out.append("\n")
    out.append("Options:\n")
    out.append(_format_options(options, False))
    out.append(
        " -v, --verbose                    Enable verbose logging (-vv: more verbose)\n"
    )
    out.append("     --version                    Display version information\n")
    out.append(" -h, --help                       Show this help\n")
    out.append("\n")
    sys.stdout.write("".join(out))


def _build_getopt(
    options: Sequence[ProgOption],
) -> Tuple[str, List[str], Dict[str, ProgOption]]:
    shortopts = ["h", "v"]
    longopts = ["help", "verbose", "version"]
    lookup: Dict[str, ProgOption] = {}
    unnamed = 0

    for opt in options:
        if opt.type == OptionType.NONE:
            raise ValueError(f"Option {opt.name} has no type")
        if opt.positional:
            continue
        if opt.short_opt:
            shortopts.append(opt.short_opt + (":" if opt.needs_arg else ""))
            lookup["-" + opt.short_opt] = opt
        else:
            if unnamed + 1 >= _FIRST_PRINTABLE:
                pr_warn("Too many options with no short opt\n")
                raise ValueError("Too many options with no short opt")
            unnamed += 1
        longopts.append(opt.name + ("=" if opt.needs_arg else ""))
        lookup["--" + opt.name] = opt

    return "".join(shortopts), longopts, lookup


def _set_opt(cfg: Any, opt: ProgOption, text: str, counts: Counter) -> None:
    if opt.max_num and counts[opt] + 1 > opt.max_num:
        pr_warn("Too many parameters for %s (max %d)\n", opt.display_name, opt.max_num)
        raise _OptionFailed

    try:
        value = _PARSERS[opt.type](text, opt)
    except OSError as exc:
        if exc.errno != errno.ENOENT:
            pr_warn("Couldn't parse option %s: %s.\n", opt.name, os.strerror(exc.errno))
        raise _OptionFailed from exc

    if opt.is_multi:
        if counts[opt]:
            getattr(cfg, opt.member).append(value)
        else:
            setattr(cfg, opt.member, [value])
    else:
        setattr(cfg, opt.member, value)
    counts[opt] += 1


def parse_cmdline_args(
    argv: Sequence[str],
    options: Sequence[ProgOption],
    cfg: Any,
    prog: str,
    usage_cmd: str,
    doc: str,
    defaults: Any = None,
) -> None:
    """Fill attributes of *cfg* from *argv* (arguments without the program name).

    Options left unset take their value from *defaults* when given.
    Raises UsageError after showing usage, help or version text.
    """
    shortopts, longopts, lookup = _build_getopt(options)
    counts: Counter = Counter()

    try:
        parsed, rest = getopt.gnu_getopt(list(argv), shortopts, longopts)
    except getopt.GetoptError as exc:
        sys.stderr.write(f"{prog}: {exc}\n")
        usage(prog, doc, options, False)
        raise UsageError(str(exc)) from None

    for flag, value in parsed:
        if flag in ("-h", "--help"):
            usage(usage_cmd, doc, options, True)
            raise UsageError("help requested")
        if flag in ("-v", "--verbose"):
            increase_log_level()
            continue
        if flag == "--version":
            sys.stdout.write(f"{prog} version {TOOLS_VERSION}\n")
            raise UsageError("version requested")
        try:
            _set_opt(cfg, lookup[flag], value, counts)
        except _OptionFailed:
            usage(prog, doc, options, False)
            raise UsageError(f"Invalid value for {flag}") from None

    for arg in rest:
        opt = next(
            (o for o in options if o.positional and (not counts[o] or o.is_multi)),
            None,
        )
        if opt is None:
            usage(usage_cmd, doc, options, False)
            raise UsageError(f"Unexpected argument '{arg}'")
        try:
            _set_opt(cfg, opt, arg, counts)
        except _OptionFailed:
            usage(usage_cmd, doc, options, False)
            raise UsageError(f"Invalid value for {opt.display_name}") from None

    for opt in options:
        num_set = counts[opt]
        if num_set and (not opt.min_num or num_set >= opt.min_num):
            continue
        if opt.required:
            if opt.positional:
                pr_warn("Missing required parameter %s\n", opt.display_name)
            else:
                pr_warn("Missing required option '--%s'\n", opt.name)
            usage(prog, doc, options, False)
            raise UsageError(f"Missing required parameter {opt.display_name}")
        if defaults is not None:
            setattr(cfg, opt.member, copy.copy(getattr(defaults, opt.member)))


def dispatch_commands(
    argv0: Optional[str],
    argv: Sequence[str],
    cmds: Sequence[ProgCommand],
    prog_name: str,
    needs_bpffs: bool = False,
) -> int:
    """Run the first command whose name starts with *argv0*; return its exit code.

    *argv* holds the arguments that follow the command name.
    """
    cmd = next((c for c in cmds if is_prefix(argv0, c.name)), None)
    if cmd is None:
        pr_warn("Command '%s' is unknown, try '%s help'.\n", argv0, prog_name)
        return EXIT_FAILURE

    if cmd.no_cfg:
        return cmd.func(None, None)

    cfg = cmd.cfg_factory()
    usage_cmd = f"{prog_name} {cmd.name}"
    if len(usage_cmd) >= _USAGE_BUFSIZE:
        return EXIT_FAILURE

    try:
        parse_cmdline_args(
            argv, cmd.options, cfg, prog_name, usage_cmd, cmd.doc, cmd.default_cfg
        )
    except (UsageError, ValueError):
        return EXIT_FAILURE

    try:
        pin_root_path: Optional[str] = get_bpf_root_dir(prog_name, needs_bpffs)
    except OSError:
        if needs_bpffs:
            return EXIT_FAILURE
        pin_root_path = None

    try:
        check_bpf_environ()
    except OSError:
        return EXIT_FAILURE

    try:
        lock = ProgLock(prog_name)
        lock.acquire()
    except (OSError, RuntimeError):
        return EXIT_FAILURE

    try:
        return cmd.func(cfg, pin_root_path)
    finally:
        lock.release()