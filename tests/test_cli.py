"""Tests for the ``cli`` module."""

import pytest

from gptresize import __version__
from gptresize.cli import main
from gptresize.gpt import Header


def read_primary(path):
    return Header.from_bytes(path.read_bytes()[512 : 512 + 92])


def test_main(gpt_image, capsys):
    path = gpt_image()
    assert main(["--entries", "9", str(path)]) == 0
    assert read_primary(path).partition_entries_count == 9
    assert capsys.readouterr().out == ""


def test_main_short_options(gpt_image):
    path = gpt_image(lss=4096)
    assert main(["-n", "132", "-s", "4096", str(path)]) == 0


def test_main_dry_run(gpt_image, capsys):
    path = gpt_image()
    before = path.read_bytes()

    assert main(["-n", "9", "--dry-run", str(path)]) == 0

    assert path.read_bytes() == before
    out = capsys.readouterr().out
    assert "primary: LBA 1, array LBA 2, 9 entries" in out
    assert "backup:" in out


@pytest.mark.parametrize(
    "args",
    [
        [],
        ["-n", "9"],
        ["-n", "nine", "disk.img"],
        ["disk.img"],
        ["-n", "0", "disk.img"],
        ["-n", "129", "disk.img"],
    ],
)
def test_main_fail_usage(args, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(args)
    assert exc_info.value.code == 2
    assert "usage:" in capsys.readouterr().err


def test_main_fail_checksum(gpt_image, capsys):
    path = gpt_image()
    with path.open("r+b") as f:
        f.seek(512 + 56)
        f.write(b"\xFF")

    assert main(["-n", "9", str(path)]) == 1
    err = capsys.readouterr().err
    assert "gptresize: error: primary GPT header: CRC32 does not match" in err


def test_main_fail_backup_lba_overflow(gpt_image, capsys):
    path = gpt_image()
    with path.open("r+b") as f:
        f.seek(512 + 32)
        f.write((2**64 - 1).to_bytes(8, "little"))

    assert main(["-n", "9", str(path)]) == 1
    err = capsys.readouterr().err
    assert "gptresize: error:" in err
    assert "exceeds image size" in err


def test_main_fail_missing(tempdir, capsys):
    assert main(["-n", "9", str(tempdir / "missing.img")]) == 1
    assert "gptresize: error:" in capsys.readouterr().err


def test_main_version(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])
    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out
