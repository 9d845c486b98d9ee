import errno
import os
import resource
from unittest import mock

import pytest

from xdputil.log import LogLevel, set_log_level
from xdputil.util import (
    BPF_DIR_MNT,
    PATH_MAX,
    XdpAction,
    XdpMode,
    action2str,
    check_bpf_environ,
    double_rlimit,
    find_bpf_file,
    find_bpf_mount,
    get_bpf_root_dir,
    make_dir_subdir,
    set_rlimit,
)


@pytest.fixture(autouse=True)
def info_level():
    old = set_log_level(LogLevel.INFO)
    yield
    set_log_level(old)


def _write_mounts(path, lines):
    path.write_text("".join(line + "\n" for line in lines))
    return str(path)


def test_action2str_names():
    assert action2str(XdpAction.DROP) == "XDP_DROP"
    assert action2str(2) == "XDP_PASS"
    assert action2str(XdpAction.UNKNOWN) == "XDP_UNKNOWN"
    assert action2str(0) == "XDP_ABORTED"


def test_action2str_out_of_range():
    assert action2str(len(XdpAction)) is None
    assert action2str(-1) is None


def test_xdp_mode_names():
    assert XdpMode("native") is XdpMode.NATIVE
    assert XdpMode.UNSPEC.value == "unspecified"


def test_make_dir_subdir_creates_both(tmp_path):
    parent = tmp_path / "root"
    path = make_dir_subdir(str(parent), "programs")
    assert path == str(parent / "programs")
    assert (parent / "programs").is_dir()
    assert make_dir_subdir(str(parent), "programs") == path


def test_make_dir_subdir_missing_grandparent(tmp_path):
    with pytest.raises(FileNotFoundError):
        make_dir_subdir(str(tmp_path / "a" / "b"), "c")


def test_find_bpf_file_first_match(tmp_path):
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()
    (second / "prog.o").write_bytes(b"x")
    assert find_bpf_file("prog.o", [str(first), str(second)]) == str(second / "prog.o")
    (first / "prog.o").write_bytes(b"y")
    assert find_bpf_file("prog.o", [str(first), str(second)]) == str(first / "prog.o")


def test_find_bpf_file_missing(tmp_path, capsys):
    with pytest.raises(FileNotFoundError):
        find_bpf_file("absent.o", [str(tmp_path)])
    assert "absent.o" in capsys.readouterr().err


def test_find_bpf_file_name_too_long(tmp_path):
    with pytest.raises(OSError) as info:
        find_bpf_file("x" * PATH_MAX, [str(tmp_path)])
    assert info.value.errno == errno.ENAMETOOLONG


def test_find_bpf_mount_prefers_known(tmp_path):
    mounts = _write_mounts(
        tmp_path / "mounts",
        [
            "proc /proc proc rw 0 0",
            "bpf /mnt/other bpf rw 0 0",
            "bpf /sys/fs/bpf bpf rw,nosuid 0 0",
        ],
    )
    assert find_bpf_mount(mounts) == BPF_DIR_MNT


def test_find_bpf_mount_other_location(tmp_path):
    mounts = _write_mounts(
        tmp_path / "mounts",
        ["sysfs /sys sysfs rw 0 0", "none /mnt/my\\040bpf bpf rw 0 0"],
    )
    assert find_bpf_mount(mounts) == "/mnt/my bpf"


def test_find_bpf_mount_none(tmp_path):
    mounts = _write_mounts(tmp_path / "mounts", ["proc /proc proc rw 0 0"])
    assert find_bpf_mount(mounts) is None
    assert find_bpf_mount(str(tmp_path / "missing")) is None


def test_get_bpf_root_dir_with_subdir(tmp_path):
    mounts = _write_mounts(tmp_path / "mounts", ["bpf /sys/fs/bpf bpf rw 0 0"])
    assert get_bpf_root_dir("xdp-filter", mounts_file=mounts) == BPF_DIR_MNT + "/xdp-filter"
    assert get_bpf_root_dir(mounts_file=mounts) == BPF_DIR_MNT


def test_get_bpf_root_dir_missing_fatal_warns(tmp_path, capsys):
    mounts = _write_mounts(tmp_path / "mounts", [])
    with pytest.raises(FileNotFoundError):
        get_bpf_root_dir("x", fatal=True, mounts_file=mounts)
    assert "bpffs not mounted" in capsys.readouterr().err


def test_get_bpf_root_dir_missing_nonfatal_quiet(tmp_path, capsys):
    mounts = _write_mounts(tmp_path / "mounts", [])
    with pytest.raises(FileNotFoundError):
        get_bpf_root_dir("x", fatal=False, mounts_file=mounts)
    assert capsys.readouterr().err == ""


def test_set_rlimit_already_sufficient():
    with mock.patch("resource.getrlimit", return_value=(4096, 8192)), mock.patch(
        "resource.setrlimit"
    ) as setter:
        assert set_rlimit(1024) == 4096
    setter.assert_not_called()


def test_set_rlimit_raises_to_minimum_and_hard():
    with mock.patch("resource.getrlimit", return_value=(1024, 2048)), mock.patch(
        "resource.setrlimit"
    ) as setter:
        assert set_rlimit(4096) == 4096
    setter.assert_called_once_with(resource.RLIMIT_MEMLOCK, (4096, 4096))


def test_double_rlimit_keeps_infinite_hard():
    soft = 65536
    with mock.patch(
        "resource.getrlimit", return_value=(soft, resource.RLIM_INFINITY)
    ), mock.patch("resource.setrlimit") as setter:
        assert double_rlimit() == soft * 2
    setter.assert_called_once_with(
        resource.RLIMIT_MEMLOCK, (soft * 2, resource.RLIM_INFINITY)
    )


@pytest.mark.parametrize("soft", [0, resource.RLIM_INFINITY])
def test_set_rlimit_refuses_infinite_or_zero(soft):
    with mock.patch("resource.getrlimit", return_value=(soft, soft)):
        with pytest.raises(OSError) as info:
            set_rlimit(0)
    assert info.value.errno == errno.ENOMEM


def test_set_rlimit_setrlimit_failure(capsys):
    with mock.patch("resource.getrlimit", return_value=(1024, 1024)), mock.patch(
        "resource.setrlimit", side_effect=OSError(errno.EPERM, "denied")
    ):
        with pytest.raises(OSError) as info:
            set_rlimit(0)
    assert info.value.errno == errno.EPERM
    assert "Couldn't raise rlimit" in capsys.readouterr().err


def test_check_bpf_environ_requires_root(capsys):
    with mock.patch("os.geteuid", return_value=1000):
        with pytest.raises(PermissionError):
            check_bpf_environ()
    assert "must be run as root" in capsys.readouterr().err


def test_check_bpf_environ_raises_limit_as_root(capsys):
    with mock.patch("os.geteuid", return_value=0), mock.patch(
        "resource.getrlimit", return_value=(65536, resource.RLIM_INFINITY)
    ), mock.patch("resource.setrlimit") as setter:
        result = check_bpf_environ()
    assert result is None
    setter.assert_called_once_with(
        resource.RLIMIT_MEMLOCK, (1024 * 1024, resource.RLIM_INFINITY)
    )
    assert "must be run as root" not in capsys.readouterr().err


def test_check_bpf_environ_ignores_rlimit_errors():
    with mock.patch("os.geteuid", return_value=0), mock.patch(
        "resource.getrlimit", return_value=(0, 0)
    ), mock.patch("resource.setrlimit") as setter:
        assert check_bpf_environ() is None
    setter.assert_not_called()


def test_os_module_untouched_by_make_dir_mode(tmp_path):
    path = make_dir_subdir(str(tmp_path / "p"), "s")
    assert os.stat(path).st_mode & 0o077 == 0