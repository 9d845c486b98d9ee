import pytest

from xdputil.stats import (
    NANOSEC_PER_SEC,
    DataRec,
    Record,
    StatsRecord,
    calc_period,
    format_stats,
    format_stats_one,
)
from xdputil.util import XdpAction


def _record(drop=(0, 0), pass_=(0, 0), ts=0):
    rec = StatsRecord()
    rec.enable(XdpAction.DROP)
    rec.enable(XdpAction.PASS)
    rec.stats[XdpAction.DROP] = Record(ts, True, DataRec(*drop))
    rec.stats[XdpAction.PASS] = Record(ts, True, DataRec(*pass_))
    return rec


def test_calc_period_zero_when_equal():
    assert calc_period(Record(timestamp=5), Record(timestamp=5)) == 0.0


def test_calc_period_seconds():
    rec = Record(timestamp=3 * NANOSEC_PER_SEC)
    prev = Record(timestamp=NANOSEC_PER_SEC)
    assert calc_period(rec, prev) == 2.0


def test_enable_sets_flag_only_for_action():
    rec = StatsRecord()
    rec.enable(XdpAction.TX)
    assert [r.enabled for r in rec.stats].count(True) == 1
    assert rec.stats[XdpAction.TX].enabled


def test_enable_rejects_unknown_action():
    with pytest.raises(ValueError):
        StatsRecord().enable(99)


def test_format_stats_one_only_enabled_in_order():
    rec = _record(drop=(10, 10240), pass_=(1234567, 0))
    text = format_stats_one(rec)
    lines = text.splitlines()
    assert len(lines) == 2
    assert "XDP_DROP" in lines[0]
    assert "XDP_PASS" in lines[1]
    assert "1,234,567 pkts" in lines[1]
    assert lines[0].rstrip().endswith("10 KiB")


def test_format_stats_one_empty():
    assert format_stats_one(StatsRecord()) == ""


def test_format_stats_zero_period_stops():
    prev = _record(ts=NANOSEC_PER_SEC)
    cur = _record(drop=(5, 500), ts=NANOSEC_PER_SEC)
    assert format_stats(cur, prev, now=1.0) == ""


def test_format_stats_header_and_lines():
    prev = _record(ts=0)
    cur = _record(drop=(100, 1024), pass_=(50, 2048), ts=NANOSEC_PER_SEC)
    text = format_stats(cur, prev, now=100.5)
    lines = text.split("\n")
    assert lines[0] == "Period of 1.000000s ending at 100.500000"
    assert lines[1].startswith("XDP_DROP")
    assert "(       100 pps)" in lines[1]
    assert lines[2].startswith("XDP_PASS")
    assert text.endswith("\n\n")


def test_format_stats_no_enabled_is_blank_line():
    assert format_stats(StatsRecord(), StatsRecord(), now=1.0) == "\n"