#!/usr/bin/env python3
"""
Unit tests for rclone.py module.
"""

import pytest

from backupsync import rclone
from backupsync.rclone import (
    rclone_cat,
    rclone_copyto,
    rclone_deletefile,
    rclone_listremotes,
    rclone_lsjson,
    rclone_mkdir,
    rclone_moveto,
    set_rclone_defaults,
)


@pytest.fixture(autouse=True)
def default_rclone_base():
    set_rclone_defaults()
    yield
    set_rclone_defaults()


class TestSetRcloneDefaults:
    """Tests for set_rclone_defaults function."""

    def test_set_rclone_defaults(self):
        set_rclone_defaults(log_level="DEBUG", timeout=12)
        assert rclone.RCLONE_BASE == ["rclone", "--log-level=DEBUG"]
        assert rclone.RCLONE_TIMEOUT == 12


class TestRunRclone:
    """Tests for the low-level _run_rclone helper."""

    def test_builds_command_with_base(self, mock_rclone):
        rclone_copyto("/tmp/a.gz", "remote:dir/a.gz")

        args, kwargs = mock_rclone.call_args
        assert args == ("rclone", "--log-level=NOTICE", "copyto", "/tmp/a.gz", "remote:dir/a.gz")
        assert kwargs["check"] is False
        assert kwargs["text"] is True
        assert kwargs["timeout"] == 300

    def test_cat_reads_binary(self, mock_rclone):
        rclone_cat("remote:dir/a.gz")
        assert mock_rclone.call_args.kwargs["text"] is False


class TestCommandWrappers:
    @pytest.mark.parametrize("fn,args,verb", [
        (rclone_mkdir, ("remote:dir",), "mkdir"),
        (rclone_moveto, ("remote:a.tmp", "remote:a"), "moveto"),
        (rclone_deletefile, ("remote:a",), "deletefile"),
        (rclone_lsjson, ("remote:dir", "--files-only"), "lsjson"),
        (rclone_listremotes, (), "listremotes"),
    ])
    def test_wrapper_verbs(self, mock_rclone, fn, args, verb):
        fn(*args)
        called = mock_rclone.call_args.args
        assert called[2] == verb
        assert list(called[3:]) == list(args)
