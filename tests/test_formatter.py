"""Tests for Telegram message formatting."""

from sentinel.bot.formatter import (
    format_auto_resume,
    format_notification,
    format_session_line,
    format_trigger_line,
    format_variables,
)
from sentinel.db.models import (
    MATCH_PLAIN_TEXT,
    AutoResumeContext,
    SessionInfo,
    TriggerRule,
)


class TestFormatNotification:
    def test_title_and_body(self):
        assert format_notification("vim", "port 8080") == "🔔 <b>vim</b>\nport 8080"

    def test_empty_body(self):
        assert format_notification("vim", "") == "🔔 <b>vim</b>"

    def test_escapes_html(self):
        text = format_notification("<b>", "a < b & c")
        assert "<b>&lt;b&gt;</b>" in text
        assert "a &lt; b &amp; c" in text

    def test_severity_emoji(self):
        assert format_notification("x", "", "error").startswith("🔴")
        assert format_notification("x", "", "unknown").startswith("🔔")


class TestFormatTriggerLine:
    def test_enabled_rule(self):
        rule = TriggerRule(id=3, name="Ask", pattern="a|b", match_mode=MATCH_PLAIN_TEXT, hit_count=2)
        line = format_trigger_line(rule)
        assert line.startswith("✅ #3 <b>Ask</b>")
        assert "<code>a|b</code>" in line
        assert "(plain_text, 2 hits)" in line

    def test_disabled_scoped_rule(self):
        rule = TriggerRule(id=1, name="r", pattern="x", enabled=False, workspaces=["dev", "ops"])
        line = format_trigger_line(rule)
        assert line.startswith("⏸")
        assert line.endswith("[dev, ops]")


class TestFormatSessionLine:
    def test_with_state(self):
        info = SessionInfo(id="%2", name="editor", workspace_id="dev")
        assert format_session_line(info, "question") == "<code>%2</code> editor (dev) ❓"

    def test_without_workspace(self):
        info = SessionInfo(id="%2")
        assert format_session_line(info) == "<code>%2</code> Terminal (-)"


class TestFormatVariables:
    def test_sorted(self):
        text = format_variables("shell", {"b": "2", "a": "1"})
        assert text.index("%a") < text.index("%b")

    def test_empty(self):
        assert "No variables" in format_variables("shell", {})


class TestFormatAutoResume:
    def test_remote_session(self):
        ctx = AutoResumeContext(
            cwd="/srv/app", ssh_command="ssh -p 2222 dev@box", command="claude --resume abc"
        )
        text = format_auto_resume("%3", ctx)
        assert "ssh -p 2222 dev@box" in text
        assert "/srv/app" in text
        assert "claude --resume abc" in text

    def test_local_session_has_no_remote_line(self):
        text = format_auto_resume("%3", AutoResumeContext(cwd="/srv"))
        assert "Remote" not in text

    def test_nothing_recorded(self):
        assert "No auto-resume" in format_auto_resume("%3", None)
