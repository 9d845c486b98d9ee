"""Minimal PcapNG writer for captured packets."""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Optional, Union

__all__ = [
    "EpbFlags",
    "EpbOptions",
    "PcapngDumper",
    "PCAPNG_BYTE_ORDER_MAGIC",
]

PCAPNG_BYTE_ORDER_MAGIC = 0x1A2B3C4D
PCAPNG_MAJOR_VERSION = 1
PCAPNG_MINOR_VERSION = 0

_STDOUT_FILENO = 1
_UINT64_MAX = (1 << 64) - 1
_LINKTYPE_ETHERNET = 1
_DEFAULT_TS_RESOLUTION = 6


class _BlockType(IntEnum):
    SECTION = 0x0A0D0D0A
    INTERFACE = 1
    PACKET = 2
    SIMPLE_PACKET = 3
    NAME_RESOLUTION = 4
    INTERFACE_STATS = 5
    ENHANCED_PACKET = 6


class _Opt(IntEnum):
    END = 0
    COMMENT = 1


class _ShbOpt(IntEnum):
    HARDWARE = 2
    OS = 3
    USERAPPL = 4


class _IdbOpt(IntEnum):
    IF_NAME = 2
    IF_DESCRIPTION = 3
    IF_IPV4_ADDR = 4
    IF_IPV6_ADDR = 5
    IF_MAC_ADDR = 6
    IF_EUI_ADDR = 7
    IF_SPEED = 8
    IF_TSRESOL = 9
    IF_TZONE = 10
    IF_FILTER = 11
    IF_OS = 12
    IF_FCSLEN = 13
    IF_TOFFSET = 14
    IF_HARDWARE = 15


class _EpbOpt(IntEnum):
    FLAGS = 2
    HASH = 3
    DROPCOUNT = 4
    PACKETID = 5
    QUEUE = 6
    VERDICT = 7


class _VerdictType(IntEnum):
    HARDWARE = 0
    EBPF_TC = 1
    EBPF_XDP = 2


class EpbFlags(IntFlag):
    """Direction flags of an enhanced packet block."""

    NONE = 0
    INBOUND = 0x1
    OUTBOUND = 0x2


@dataclass
class EpbOptions:
    """Optional fields of an enhanced packet block.

    ``flags`` and ``dropcount`` are written when non-zero; ``packetid``,
    ``queue``, ``xdp_verdict`` and ``comment`` whenever they are not None.
    """

    flags: int = 0
    dropcount: int = 0
    packetid: Optional[int] = None
    queue: Optional[int] = None
    xdp_verdict: Optional[int] = None
    comment: Optional[str] = None


def _option(code: int, data: bytes) -> bytes:
    if len(data) > 0xFFFF:
        raise ValueError("option value longer than 65535 bytes")
    return struct.pack("=HH", code, len(data)) + data + b"\0" * (-len(data) % 4)


_END_OPTION = _option(_Opt.END, b"")


def _block(block_type: int, body: bytes) -> bytes:
    total = 8 + len(body) + 4
    return struct.pack("=II", block_type, total) + body + struct.pack("=I", total)


def _text(value: str) -> bytes:
    return value.encode("utf-8")


class PcapngDumper:
    """Writes a PcapNG section to a file, or to standard output for ``"-"``."""

    def __init__(
        self,
        file: Union[str, os.PathLike],
        comment: Optional[str] = None,
        hardware: Optional[str] = None,
        os_name: Optional[str] = None,
        user_application: Optional[str] = None,
    ) -> None:
        if file is None:
            raise ValueError("no output file given")
        self._interfaces = 0
        self._fd: Optional[int] = None
        path = os.fspath(file)
        if path == "-":
            self._fd = _STDOUT_FILENO
        else:
            self._fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            self._write_shb(comment, hardware, os_name, user_application)
        except BaseException:
            self.close()
            raise

    @property
    def closed(self) -> bool:
        """Whether the dumper has been closed."""
        return self._fd is None

    def _require_open(self) -> int:
        if self._fd is None:
            raise ValueError("I/O operation on closed dumper")
        return self._fd

    def _write(self, data: bytes) -> int:
        fd = self._require_open()
        view = memoryview(data)
        while view:
            written = os.write(fd, view)
            view = view[written:]
        return len(data)

    def _write_shb(
        self,
        comment: Optional[str],
        hardware: Optional[str],
        os_name: Optional[str],
        user_application: Optional[str],
    ) -> None:
        options = b"".join(
            _option(code, _text(value))
            for code, value in (
                (_Opt.COMMENT, comment),
                (_ShbOpt.HARDWARE, hardware),
                (_ShbOpt.OS, os_name),
                (_ShbOpt.USERAPPL, user_application),
            )
            if value is not None
        )
        body = struct.pack(
            "=IHHQ",
            PCAPNG_BYTE_ORDER_MAGIC,
            PCAPNG_MAJOR_VERSION,
            PCAPNG_MINOR_VERSION,
            _UINT64_MAX,
        )
        self._write(_block(_BlockType.SECTION, body + options + _END_OPTION))

    def add_interface(
        self,
        snap_len: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        mac: Optional[bytes] = None,
        speed: int = 0,
        ts_resolution: int = _DEFAULT_TS_RESOLUTION,
        hardware: Optional[str] = None,
    ) -> int:
        """Write an interface description block and return its interface id."""
        self._require_open()
        if not 0 <= snap_len <= 0xFFFF:
            raise ValueError("snap_len must fit in 16 bits")
        if not 0 <= ts_resolution <= 0xFF:
            raise ValueError("ts_resolution must fit in 8 bits")

        parts = []
        if name is not None:
            parts.append(_option(_IdbOpt.IF_NAME, _text(name)))
        if description is not None:
            parts.append(_option(_IdbOpt.IF_DESCRIPTION, _text(description)))
        if mac is not None:
            mac_bytes = bytes(mac)
            if len(mac_bytes) != 6:
                raise ValueError("MAC address must be 6 bytes")
            parts.append(_option(_IdbOpt.IF_MAC_ADDR, mac_bytes))
        if speed:
            try:
                parts.append(_option(_IdbOpt.IF_SPEED, struct.pack("=Q", speed)))
            except struct.error as exc:
                raise ValueError(f"invalid speed: {speed}") from exc
        if ts_resolution not in (0, _DEFAULT_TS_RESOLUTION):
            parts.append(_option(_IdbOpt.IF_TSRESOL, bytes([ts_resolution])))
        if hardware is not None:
            parts.append(_option(_IdbOpt.IF_HARDWARE, _text(hardware)))

        body = struct.pack("=HHI", _LINKTYPE_ETHERNET, 0, snap_len)
        self._write(_block(_BlockType.INTERFACE, body + b"".join(parts) + _END_OPTION))
        ifid = self._interfaces
        self._interfaces += 1
        return ifid

    def dump_enhanced_pkt(
        self,
        ifid: int,
        pkt: bytes,
        length: Optional[int] = None,
        caplen: Optional[int] = None,
        timestamp: int = 0,
        options: Optional[EpbOptions] = None,
    ) -> int:
        """Write an enhanced packet block; return the number of bytes written.

        *length* is the original packet length and *caplen* the number of
        bytes of *pkt* stored; both default to ``len(pkt)``.
        """
        self._require_open()
        data = bytes(pkt)
        if caplen is None:
            caplen = len(data)
        if length is None:
            length = len(data)
        if caplen < 0 or caplen > len(data):
            raise ValueError("caplen exceeds the packet data supplied")
        opts = options if options is not None else EpbOptions()

        try:
            header = struct.pack(
                "=IIIII",
                ifid,
                (timestamp >> 32) & 0xFFFFFFFF,
                timestamp & 0xFFFFFFFF,
                caplen,
                length,
            )
            parts = []
            if opts.comment is not None:
                parts.append(_option(_Opt.COMMENT, _text(opts.comment)))
            if opts.flags:
                parts.append(_option(_EpbOpt.FLAGS, struct.pack("=I", int(opts.flags))))
            if opts.dropcount:
                parts.append(_option(_EpbOpt.DROPCOUNT, struct.pack("=Q", opts.dropcount)))
            if opts.packetid is not None:
                parts.append(_option(_EpbOpt.PACKETID, struct.pack("=Q", opts.packetid)))
            if opts.queue is not None:
                parts.append(_option(_EpbOpt.QUEUE, struct.pack("=I", opts.queue)))
            if opts.xdp_verdict is not None:
                parts.append(
                    _option(
                        _EpbOpt.VERDICT,
                        struct.pack("=Bq", _VerdictType.EBPF_XDP, opts.xdp_verdict),
                    )
                )
        except struct.error as exc:
            raise ValueError(f"value out of range: {exc}") from exc

        packet = data[:caplen] + b"\0" * (-caplen % 4)
        block = _block(
            _BlockType.ENHANCED_PACKET,
            header + packet + b"".join(parts) + _END_OPTION,
        )
        return self._write(block)

    def flush(self) -> None:
        """Force written data to stable storage."""
        os.fsync(self._require_open())

    def close(self) -> None:
        """Close the output; standard output is left open."""
        fd, self._fd = self._fd, None
        if fd is not None and fd != _STDOUT_FILENO:
            os.close(fd)

    def __enter__(self) -> "PcapngDumper":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()