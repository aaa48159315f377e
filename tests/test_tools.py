"""Tests for kickvm.tools module."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from kickvm.exceptions import ToolError
from kickvm.tools import IsoTools, parse_volume_id

ISOINFO_OUTPUT = """\
CD-ROM is in ISO 9660 format
System id: LINUX
Volume id: RHEL-9-4-0-BaseOS-x86_64
Volume set id:
Publisher id:
"""


class TestParseVolumeId:
    def test_found(self):
        assert parse_volume_id(ISOINFO_OUTPUT) == "RHEL-9-4-0-BaseOS-x86_64"

    def test_blank_value(self):
        assert parse_volume_id("Volume id:   \n") is None

    def test_missing(self):
        assert parse_volume_id("System id: LINUX\n") is None


class TestExtract:
    @patch("kickvm.tools.run")
    def test_command(self, mock_run, tmp_path):
        IsoTools().extract(tmp_path / "src.iso", tmp_path / "work")
        cmd = mock_run.call_args[0][0]
        assert cmd == [
            "xorriso", "-osirrox", "on", "-indev", str(tmp_path / "src.iso"), "-extract", "/", str(tmp_path / "work"),
        ]

    @patch("kickvm.tools.run")
    def test_failure_raises_tool_error(self, mock_run, tmp_path):
        mock_run.side_effect = subprocess.CalledProcessError(5, ["xorriso"], stderr="line1\nlibisofs: FAILURE\n")
        with pytest.raises(ToolError, match="libisofs: FAILURE"):
            IsoTools().extract(tmp_path / "src.iso", tmp_path / "work")

    @patch("kickvm.tools.run", side_effect=FileNotFoundError("xorriso"))
    def test_missing_binary(self, mock_run, tmp_path):
        with pytest.raises(ToolError, match="not found"):
            IsoTools().extract(tmp_path / "src.iso", tmp_path / "work")


class TestMountCopy:
    @patch("kickvm.tools.run")
    def test_copies_and_unmounts(self, mock_run, tmp_path):
        def fake_run(cmd, **kwargs):
            if cmd[1] == "mount":
                mountpoint = cmd[-1]
                with open(f"{mountpoint}/.treeinfo", "w") as handle:
                    handle.write("[general]\n")
            return MagicMock(returncode=0, stderr="")

        mock_run.side_effect = fake_run
        dest = tmp_path / "work"
        dest.mkdir()

        IsoTools().mount_copy(tmp_path / "src.iso", dest)

        assert (dest / ".treeinfo").read_text() == "[general]\n"
        commands = [c[0][0][:2] for c in mock_run.call_args_list]
        assert commands == [["sudo", "mount"], ["sudo", "umount"]]

    @patch("kickvm.tools.run")
    def test_mount_failure(self, mock_run, tmp_path):
        mock_run.side_effect = subprocess.CalledProcessError(32, ["sudo", "mount"])
        with pytest.raises(ToolError, match="Loop mount"):
            IsoTools().mount_copy(tmp_path / "src.iso", tmp_path / "work")


class TestReadVolumeId:
    @patch("kickvm.tools.run")
    def test_success(self, mock_run, tmp_path):
        mock_run.return_value = MagicMock(stdout=ISOINFO_OUTPUT)
        assert IsoTools().read_volume_id(tmp_path / "src.iso") == "RHEL-9-4-0-BaseOS-x86_64"
        assert mock_run.call_args[0][0] == ["isoinfo", "-d", "-i", str(tmp_path / "src.iso")]

    @patch("kickvm.tools.run", side_effect=subprocess.CalledProcessError(1, ["isoinfo"]))
    def test_failure_returns_none(self, mock_run, tmp_path):
        assert IsoTools().read_volume_id(tmp_path / "src.iso") is None


class TestMaster:
    @patch("kickvm.tools.run")
    def test_passes_args_through(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stderr="")
        result = IsoTools().master(["-V", "VOL", "-o", "/tmp/out.iso", "/tmp/tree"])
        assert result.returncode == 0
        assert mock_run.call_args[0][0] == ["xorriso", "-as", "mkisofs", "-V", "VOL", "-o", "/tmp/out.iso", "/tmp/tree"]
        assert mock_run.call_args[1]["check"] is False

    @patch("kickvm.tools.run")
    def test_failure_returned_not_raised(self, mock_run):
        mock_run.return_value = MagicMock(returncode=32, stderr="a\nb\nc\nd\ne\nf\ng\n")
        result = IsoTools().master(["-o", "x", "y"])
        assert result.returncode == 32
        assert result.stderr == "c\nd\ne\nf\ng"

    @patch("kickvm.tools.run", side_effect=FileNotFoundError("xorriso"))
    def test_missing_binary(self, mock_run):
        assert IsoTools().master(["-o", "x", "y"]).returncode == 127


class TestImplantChecksum:
    @patch("kickvm.tools.run")
    def test_success(self, mock_run, tmp_path):
        assert IsoTools().implant_checksum(tmp_path / "out.iso") is True
        assert mock_run.call_args[0][0] == ["implantisomd5", str(tmp_path / "out.iso")]

    @patch("kickvm.tools.log")
    @patch("kickvm.tools.run", side_effect=subprocess.CalledProcessError(1, ["implantisomd5"]))
    def test_failure_warns(self, mock_run, mock_log, tmp_path):
        assert IsoTools().implant_checksum(tmp_path / "out.iso") is False
        assert mock_log.call_args[0][0] == "WARN"
