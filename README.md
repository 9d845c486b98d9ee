# xdputil

Shared building blocks for XDP command-line tools. It provides levelled
logging to standard error, a sub-command and option parser, text reports of
per-action packet statistics, a per-program lock file and a writer for PcapNG
capture files. It has no dependencies outside the standard library.

## Installing

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Modules

### `xdputil.log`

`LogLevel` has four levels: `WARN`, `INFO`, `DEBUG` and `VERBOSE`. The current
level starts at `INFO`. `logging_print(level, fmt, *args)` formats with `%`
and writes to standard error only when `level` is at or below the current
level, and returns the number of characters written. `pr_warn`, `pr_info`
and `pr_debug` are shortcuts for the three levels. `set_log_level` returns
the previous level, `get_log_level` returns the current one, and
`increase_log_level` steps up by one, stopping at `VERBOSE`.

### `xdputil.util`

- `XdpAction` (`ABORTED`, `DROP`, `PASS`, `TX`, `REDIRECT`, `UNKNOWN`) and
  `action2str(action)`, which returns names such as `"XDP_PASS"`, or `None`
  when out of range.
- `XdpMode` (`NATIVE`, `SKB`, `HW`, `UNSPEC`), valued by the names
  `"native"`, `"skb"`, `"hw"` and `"unspecified"`.
- `make_dir_subdir(parent, subdir)` creates both directories with mode 0700
  when missing and returns the sub-directory path.
- `find_bpf_file(progname, search_paths=None)` returns the first existing
  `<dir>/<progname>` (default search path `/usr/lib/bpf`) or raises
  `FileNotFoundError`.
- `find_bpf_mount(mounts_file="/proc/mounts", fstype="bpf")` returns the mount
  point of a bpffs, preferring `/sys/fs/bpf` and `/bpf`, or `None`.
- `get_bpf_root_dir(subdir=None, fatal=False, mounts_file="/proc/mounts")`
  returns that mount point, joined with `subdir` if given, or raises
  `FileNotFoundError`.
- `set_rlimit(min_limit)` raises `RLIMIT_MEMLOCK` to at least `min_limit`, or
  doubles it when `min_limit` is 0, and returns the new soft limit.
  `double_rlimit()` is `set_rlimit(0)`.
- `check_bpf_environ()` raises `PermissionError` unless run as root, then
  tries to raise the memlock limit to 1 MiB.

### `xdputil.lock`

`ProgLock(progname, lock_dir="/run")` manages `<lock_dir>/<progname>.lck`.
`acquire()` creates the file exclusively and writes the process ID into it;
if the file already exists, `LockHeldError` is raised with the holder's
`pid`. `release()` removes the file. While the lock is held, SIGHUP, SIGINT
and SIGTERM release it before the signal is delivered again. The lock works as
a context manager:

```python
from xdputil.lock import ProgLock

with ProgLock("my-tool", "/tmp") as lock:
    print(lock.path, lock.held)
```

### `xdputil.stats`

`DataRec` holds `rx_packets` and `rx_bytes`. `Record` adds a nanosecond
`timestamp` and an `enabled` flag. `StatsRecord` holds one `Record` per
`XdpAction`, and `enable(action)` switches one on. `calc_period(rec, prev)`
gives the seconds between two readings. `format_stats_one(stats_rec)` returns
the totals of each enabled action. `format_stats(stats_rec, stats_prev,
now=None)` returns totals with packets per second and Mbit/s since the
previous reading.

### `xdputil.params`

Options are described by `ProgOption(name, type, member=None, short_opt=None,
help=None, metavar=None, typearg=None, required=False, positional=False,
min_num=0, max_num=0)`. `type` is an `OptionType`: `BOOL`, `FLAGS`, `STRING`,
`U16`, `U32`, `U32_MULTI`, `MACADDR`, `IFNAME`, `IFNAME_MULTI`, `IPADDR`,
`ENUM` or `MULTISTRING`. For `FLAGS` and `ENUM` options, `typearg` is a
sequence of `FlagVal` or `EnumVal`. Parsed values are set as attributes of a
config object. The attribute name is `member`, which defaults to the option
name with `-` replaced by `_`. Multi-valued options collect lists. Interface
names become `Iface`, addresses become `IpAddr` and MAC addresses become
`MacAddr`.

- `parse_cmdline_args(argv, options, cfg, prog, usage_cmd, doc,
  defaults=None)` handles `-h/--help`, `-v/--verbose` and `--version`, fills
  `cfg`, and copies unset options from `defaults`. On help, version or any
  error it prints the relevant text and raises `UsageError`.
- `usage(prog_name, doc, options, full=True)` prints the help text.
- `dispatch_commands(argv0, argv, cmds, prog_name, needs_bpffs=False)` picks
  the first `ProgCommand` whose name starts with `argv0`. It parses the
  command's options, looks up the bpffs directory, checks for root, and holds
  a `ProgLock` named after the program while it calls `func(cfg,
  pin_root_path)`. It returns the exit code.
- Helpers: `parse_mac`, `format_flags`, `format_enum_vals`, `get_enum_name`
  and `is_prefix`.

```python
from types import SimpleNamespace
from xdputil.params import OptionType, ProgOption, parse_cmdline_args

options = [
    ProgOption("count", OptionType.U32, short_opt="c", metavar="<n>"),
    ProgOption("name", OptionType.STRING, positional=True, required=True),
]
cfg = SimpleNamespace()
parse_cmdline_args(["-c", "3", "demo"], options, cfg, "tool", "tool run", "Demo.",
                   SimpleNamespace(count=1, name=""))
# cfg.count == 3, cfg.name == "demo"
```

### `xdputil.pcapng`

`PcapngDumper(file, comment=None, hardware=None, os_name=None,
user_application=None)` writes a section header block to `file`, or to
standard output for `"-"`. `add_interface(...)` writes an interface
description block and returns its id. `dump_enhanced_pkt(ifid, pkt,
length=None, caplen=None, timestamp=0, options=None)` writes an enhanced
packet block and returns its size. `EpbOptions` carries `flags` (`EpbFlags`),
`dropcount`, `packetid`, `queue`, `xdp_verdict` and `comment`. Call `flush()`
to fsync and `close()` to close the output; the dumper is also a context
manager.

```python
from xdputil.pcapng import EpbFlags, EpbOptions, PcapngDumper

with PcapngDumper("capture.pcapng", None, None, None, "my-tool") as dumper:
    ifid = dumper.add_interface(65535, "eth0", None, None, 0, 9, None)
    frame = bytes(60)
    dumper.dump_enhanced_pkt(
        ifid, frame, len(frame), len(frame), 0,
        EpbOptions(flags=EpbFlags.INBOUND),
    )
```

## What it does not do

This is a library with no command of its own. It does not load, attach,
detach or pin XDP programs, and it does not read BPF maps. The statistics
module only formats records that the caller fills in. It does not capture
packets; the PcapNG writer stores packets that the caller supplies.