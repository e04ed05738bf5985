"""
Tests for destructive and privileged command classification.

Only the defined pattern set is asserted here; the classifier is a
heuristic and makes no general safety claim.
"""

import pytest

from killer.safety import CommandPolicy, default_policy


class TestDestructivePatterns:
    """Each pattern in the set is detected."""

    @pytest.mark.parametrize("command", [
        "rm -rf /tmp/x",
        "rm file.txt",
        "rmdir build",
        "unlink old.log",
        "shred -u secrets.txt",
        "dd if=/dev/zero of=/dev/sda bs=1M",
        "mkfs.ext4 /dev/sdb1",
        "fdisk /dev/sda",
        "parted /dev/sda mklabel gpt",
        "echo hi > /dev/sda",
        "truncate -s 0 data.db",
        "cd /tmp && rm -r cache",
    ])
    def test_destructive(self, command: str) -> None:
        assert default_policy.is_destructive(command)

    @pytest.mark.parametrize("command", [
        "ls -la",
        "cat README.md",
        "echo hello > out.txt",
        "dd if=/dev/zero bs=1M count=1",
        "truncate -s 100 data.db",
        "git status",
        "python3 -m pytest",
    ])
    def test_not_in_pattern_set(self, command: str) -> None:
        assert not default_policy.is_destructive(command)

    def test_word_boundary(self) -> None:
        # "rm" inside another word is not a match
        assert not default_policy.is_destructive("npm install")
        assert not default_policy.is_destructive("echo firmware")


class TestCommandPolicy:
    """Test classification results."""

    def test_classify_reports_matched_patterns(self) -> None:
        result = default_policy.classify("rm -rf /tmp/x && shred y")

        assert result.is_destructive
        assert r"\brm\b" in result.matched_patterns
        assert r"\bshred\b" in result.matched_patterns

    def test_ordinary_command(self) -> None:
        result = default_policy.classify("ls")

        assert not result.is_destructive
        assert result.matched_patterns == []

    def test_privileged_detection(self) -> None:
        assert default_policy.classify("sudo apt update").privileged
        assert default_policy.classify("  sudo ls").privileged
        assert not default_policy.classify("echo sudo").privileged

    def test_request_sudo_forces_privileged(self) -> None:
        assert default_policy.classify("apt update", request_sudo=True).privileged

    def test_custom_pattern_set(self) -> None:
        policy = CommandPolicy([r"\bgit\s+push\b"])

        assert policy.is_destructive("git push --force")
        assert not policy.is_destructive("rm -rf /")
