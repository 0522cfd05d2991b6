"""Tests for command extraction from AI responses."""

from __future__ import annotations

from sentinel.services.command_extractor import MARKER, extract


class TestExtract:
    def test_single_command(self):
        result = extract("Let me check disk usage.\nRUN: df -h")
        assert result.commands == ["df -h"]
        assert result.narrative == "Let me check disk usage."

    def test_marker_constant_drives_parsing(self):
        result = extract(f"Checking.\n{MARKER} uptime\n  - {MARKER} `w`")
        assert result.commands == ["uptime", "w"]
        assert result.narrative == "Checking."

    def test_commands_in_order(self):
        text = "First memory, then disk.\nRUN: free -h\nSome text\nRUN: df -h"
        result = extract(text)
        assert result.commands == ["free -h", "df -h"]
        assert "Some text" in result.narrative
        assert "RUN:" not in result.narrative

    def test_no_marker_returns_text_unchanged(self):
        text = "  Everything looks healthy.\n\nNo action needed.  "
        result = extract(text)
        assert result.commands == []
        assert result.narrative == text

    def test_inline_formatting_stripped(self):
        assert extract("RUN: <code>uptime</code>").commands == ["uptime"]
        assert extract("RUN: `systemctl status nginx`").commands == [
            "systemctl status nginx",
        ]
        assert extract("RUN: <b>ls -la /var/log</b>").commands == ["ls -la /var/log"]

    def test_leading_whitespace_and_bullets(self):
        text = "Checks:\n   RUN: uptime\n - RUN: hostname"
        assert extract(text).commands == ["uptime", "hostname"]

    def test_marker_must_start_the_line(self):
        text = "You could RUN: rm -rf / but please don't."
        result = extract(text)
        assert result.commands == []
        assert result.narrative == text

    def test_marker_inside_code_fence_is_still_a_command(self):
        text = "```\nRUN: journalctl -u nginx -n 50\n```"
        assert extract(text).commands == ["journalctl -u nginx -n 50"]

    def test_empty_marker_is_ambiguous_narrative(self):
        text = "I would run something.\nRUN:"
        result = extract(text)
        assert result.commands == []
        assert result.ambiguous == ["RUN:"]
        assert result.narrative == text

    def test_empty_marker_alongside_real_command(self):
        result = extract("RUN:\nRUN: uptime")
        assert result.commands == ["uptime"]
        assert result.ambiguous == ["RUN:"]
        assert "RUN:" in result.narrative

    def test_shell_syntax_is_preserved(self):
        cmd = "ps aux --sort=-%mem | head -n 5 && echo 'done'"
        assert extract(f"RUN: {cmd}").commands == [cmd]

    def test_lowercase_marker_is_not_a_command(self):
        assert extract("run: uptime").commands == []
