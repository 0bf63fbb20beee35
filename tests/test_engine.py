"""Tests for TriggerEngine — the per-chunk pipeline end to end."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from sentinel.db import database as db_module
from sentinel.db import queries
from sentinel.db.database import close_database, init_database
from sentinel.db.models import (
    ACTION_AUTO_RESUME,
    ACTION_NOTIFY,
    ACTION_SEND_TEXT,
    ACTION_SET_STATE,
    MATCH_PLAIN_TEXT,
    MATCH_REGEX,
    MATCH_VARIABLE,
    AutoResumeContext,
    SessionInfo,
    TriggerAction,
    TriggerRule,
    VariableMapping,
)
from sentinel.triggers.engine import TriggerEngine

SID = "%1"


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _rule(rule_id=1, pattern="error|fail", **kwargs) -> TriggerRule:
    defaults = dict(id=rule_id, name=f"rule-{rule_id}", pattern=pattern, match_mode=MATCH_REGEX)
    defaults.update(kwargs)
    return TriggerRule(**defaults)


def _make_registry(workspace="ws", custom_name=False):
    registry = MagicMock()
    registry.workspace_of.return_value = workspace
    registry.describe.return_value = SessionInfo(
        id=SID, name="shell", workspace_id=workspace, title="vim", custom_name=custom_name
    )
    registry.write.return_value = True
    registry.get_context.return_value = {"cwd": "/home/u", "command": "ssh -p 2222 dev@box"}
    return registry


def _make_engine(rules, clock=None, **kwargs) -> TriggerEngine:
    defaults = dict(
        registry=_make_registry(),
        notifier=AsyncMock(),
        on_persist=AsyncMock(),
        on_auto_resume=AsyncMock(),
        on_fire=AsyncMock(),
        error_handler=AsyncMock(),
        clock=clock or FakeClock(),
    )
    defaults.update(kwargs)
    return TriggerEngine(rules=lambda: rules, **defaults)


def _fired(engine: TriggerEngine, rule_id=None) -> int:
    calls = engine.on_fire.await_args_list
    return sum(1 for c in calls if rule_id is None or c.args[0].id == rule_id)


class TestTextMatching:
    async def test_match_fires_and_consumes_span(self):
        engine = _make_engine([_rule(cooldown=5.0)])
        match = engine.patterns.compile("error|fail", MATCH_REGEX).search("build failed")
        assert match.start() == 6

        engine.on_session_output(SID, b"build failed")
        await engine.drain()

        assert _fired(engine) == 1
        assert engine.buffers.get(SID) == "ed"

    async def test_identical_chunk_inside_cooldown_does_not_refire(self):
        clock = FakeClock()
        engine = _make_engine([_rule(cooldown=5.0)], clock)
        engine.on_session_output(SID, b"build failed")
        clock.advance(1)
        engine.on_session_output(SID, b"build failed")
        await engine.drain()
        assert _fired(engine) == 1

    async def test_fires_again_once_cooldown_elapsed(self):
        clock = FakeClock()
        engine = _make_engine([_rule(cooldown=5.0)], clock)
        engine.on_session_output(SID, b"build failed")
        clock.advance(4)
        engine.on_session_output(SID, b"error one")
        clock.advance(1)
        engine.on_session_output(SID, b"error two")
        await engine.drain()
        assert _fired(engine) == 2

    async def test_duplicate_match_inside_window_fires_once(self):
        clock = FakeClock()
        engine = _make_engine([_rule()], clock)
        engine.on_session_output(SID, b"fail")
        clock.advance(1)
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        assert _fired(engine) == 1

        clock.advance(10)
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        assert _fired(engine) == 2

    async def test_different_text_is_not_duplicate(self):
        engine = _make_engine([_rule()])
        engine.on_session_output(SID, b"error")
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        assert _fired(engine) == 2

    async def test_suppressed_match_is_still_consumed(self):
        clock = FakeClock()
        engine = _make_engine([_rule(cooldown=5.0)], clock)
        engine.on_session_output(SID, b"fail")
        clock.advance(1)
        engine.on_session_output(SID, b"fail")
        assert engine.buffers.get(SID) == ""

        clock.advance(5)
        engine.on_session_output(SID, b"\n")
        await engine.drain()
        assert _fired(engine) == 1

    async def test_plain_text_tolerates_spacing(self):
        rule = _rule(
            pattern="Would you like to (proceed|continue)?", match_mode=MATCH_PLAIN_TEXT
        )
        engine = _make_engine([rule])
        engine.on_session_output(SID, b"Would you  like   to proceed?")
        await engine.drain()
        assert _fired(engine) == 1

    async def test_buffer_never_exceeds_cap(self):
        engine = _make_engine([_rule(pattern="zzz")], buffer_cap=16)
        for chunk in (b"0123456789", b"abcdefghijklmnop", b"q" * 40):
            engine.on_session_output(SID, chunk)
            assert len(engine.buffers.get(SID)) <= 16

    async def test_redraw_chunk_replaces_buffer(self):
        engine = _make_engine([_rule(pattern="zzz")])
        engine.on_session_output(SID, b"earlier output ")
        engine.on_session_output(SID, b"\x1b[2J\x1b[Hrepainted")
        assert engine.buffers.get(SID) == "repainted"

    async def test_invalid_pattern_skipped_others_still_fire(self):
        engine = _make_engine([_rule(1, pattern="(broken"), _rule(2)])
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        assert _fired(engine, 1) == 0
        assert _fired(engine, 2) == 1

    async def test_zero_length_match_ignored(self):
        engine = _make_engine([_rule(pattern="x*")])
        engine.on_session_output(SID, b"abc")
        await engine.drain()
        assert _fired(engine) == 0

    async def test_disabled_rule_ignored(self):
        engine = _make_engine([_rule(enabled=False)])
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        assert _fired(engine) == 0

    async def test_rules_read_fresh_each_chunk(self):
        rules = []
        engine = _make_engine(rules)
        engine.on_session_output(SID, b"fail")
        rules.append(_rule())
        engine.on_session_output(SID, b"error")
        await engine.drain()
        assert _fired(engine) == 1

    async def test_rule_source_failure_is_contained(self):
        engine = TriggerEngine(rules=MagicMock(side_effect=RuntimeError("db gone")))
        engine.on_session_output(SID, b"fail")
        assert engine.buffers.get(SID) == ""


class TestWorkspaceScope:
    async def test_rule_for_other_workspace_skipped(self):
        engine = _make_engine([_rule(workspaces=["other"])])
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        assert _fired(engine) == 0

    async def test_rule_for_own_workspace_fires(self):
        engine = _make_engine([_rule(workspaces=["ws"])])
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        assert _fired(engine) == 1

    async def test_unknown_workspace_applies_scoped_rules(self):
        engine = _make_engine([_rule(workspaces=["ws"])], registry=_make_registry(None))
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        assert _fired(engine) == 1


class TestVariableExtraction:
    def _port_rule(self, **kwargs):
        return _rule(
            pattern=r"port (\d+)", variables=[VariableMapping("port", 1)], **kwargs
        )

    async def test_captures_stored_and_persisted(self):
        engine = _make_engine([self._port_rule()])
        engine.on_session_output(SID, b"listening on port 8080\n")
        await engine.drain()
        assert engine.get_variables(SID) == {"port": "8080"}
        engine.on_persist.assert_awaited_once_with(SID, {"port": "8080"})

    async def test_extraction_runs_inside_cooldown(self):
        clock = FakeClock()
        engine = _make_engine([self._port_rule(cooldown=5.0)], clock)
        engine.on_session_output(SID, b"port 1\n")
        clock.advance(1)
        engine.on_session_output(SID, b"port 2\n")
        await engine.drain()
        assert _fired(engine) == 1
        assert engine.get_variables(SID) == {"port": "2"}

    async def test_unchanged_value_not_persisted_again(self):
        clock = FakeClock()
        engine = _make_engine([self._port_rule()], clock)
        engine.on_session_output(SID, b"port 1\n")
        clock.advance(1)
        engine.on_session_output(SID, b"port 1\n")
        await engine.drain()
        assert engine.on_persist.await_count == 1

    async def test_template_applied(self):
        rule = _rule(
            pattern=r"port (\d+)", variables=[VariableMapping("url", 1, "http://localhost:%/")]
        )
        engine = _make_engine([rule])
        engine.on_session_output(SID, b"port 3000\n")
        await engine.drain()
        assert engine.get_variables(SID) == {"url": "http://localhost:3000/"}

    async def test_resolved_tokens_leave_no_marker(self):
        engine = _make_engine([self._port_rule()])
        engine.on_session_output(SID, b"port 8080\n")
        await engine.drain()
        assert "%" not in engine.interpolate(SID, "curl localhost:%port")

    async def test_clear_variables_persists_empty_map(self):
        engine = _make_engine([self._port_rule()])
        engine.on_session_output(SID, b"port 8080\n")
        engine.clear_variables(SID)
        await engine.drain()
        assert engine.get_variables(SID) == {}
        engine.on_persist.assert_awaited_with(SID, {})


class TestVariableMode:
    def _rules(self, cooldown=0.0, condition="sid"):
        capture = _rule(1, pattern=r"session (\w+)", variables=[VariableMapping("sid", 1)])
        watcher = _rule(2, pattern=condition, match_mode=MATCH_VARIABLE, cooldown=cooldown)
        return [capture, watcher]

    async def test_sees_same_chunk_extraction(self):
        engine = _make_engine(self._rules())
        engine.on_session_output(SID, b"session abc\n")
        await engine.drain()
        assert _fired(engine, 2) == 1

    async def test_steady_true_does_not_refire(self):
        engine = _make_engine(self._rules())
        engine.on_session_output(SID, b"session abc\n")
        engine.on_session_output(SID, b"noise\n")
        engine.on_session_output(SID, b"more noise\n")
        await engine.drain()
        assert _fired(engine, 2) == 1

    async def test_value_change_while_true_fires(self):
        engine = _make_engine(self._rules())
        engine.on_session_output(SID, b"session abc\n")
        engine.on_session_output(SID, b"session def\n")
        await engine.drain()
        assert _fired(engine, 2) == 2

    async def test_true_at_load_does_not_fire(self):
        engine = _make_engine(self._rules())
        engine.on_session_load(SID, {"sid": "abc"})
        engine.on_session_output(SID, b"noise\n")
        await engine.drain()
        assert _fired(engine, 2) == 0

        engine.on_session_output(SID, b"session xyz\n")
        await engine.drain()
        assert _fired(engine, 2) == 1

    async def test_false_condition_never_fires(self):
        engine = _make_engine(self._rules(condition='sid == "wanted"'))
        engine.on_session_output(SID, b"session other\n")
        await engine.drain()
        assert _fired(engine, 2) == 0

    async def test_transition_blocked_by_cooldown_fires_later(self):
        clock = FakeClock()
        engine = _make_engine(self._rules(cooldown=5.0), clock)
        engine.on_session_output(SID, b"session a\n")
        clock.advance(1)
        engine.on_session_output(SID, b"session b\n")
        await engine.drain()
        assert _fired(engine, 2) == 1

        clock.advance(5)
        engine.on_session_output(SID, b"noise\n")
        await engine.drain()
        assert _fired(engine, 2) == 2

    async def test_invalid_condition_skipped(self):
        engine = _make_engine(self._rules(condition="sid ||"))
        engine.on_session_output(SID, b"session abc\n")
        await engine.drain()
        assert _fired(engine, 1) == 1
        assert _fired(engine, 2) == 0


class TestSuppression:
    async def test_suppressed_session_extracts_but_runs_nothing(self):
        rule = _rule(
            pattern=r"port (\d+)",
            variables=[VariableMapping("port", 1)],
            actions=[TriggerAction(ACTION_NOTIFY, message="up")],
        )
        engine = _make_engine([rule])
        with engine.suppressed(SID):
            assert engine.is_suppressed(SID)
            engine.on_session_output(SID, b"port 8080\n")
        await engine.drain()

        assert not engine.is_suppressed(SID)
        assert engine.get_variables(SID) == {"port": "8080"}
        engine.executor.notifier.dispatch.assert_not_awaited()
        engine.on_fire.assert_not_awaited()

    async def test_suppressed_firing_still_starts_cooldown(self):
        clock = FakeClock()
        engine = _make_engine([_rule(cooldown=5.0)], clock)
        engine.set_suppressed(SID, True)
        engine.on_session_output(SID, b"fail")
        engine.set_suppressed(SID, False)
        clock.advance(1)
        engine.on_session_output(SID, b"error")
        await engine.drain()
        assert _fired(engine) == 0


class TestActions:
    async def test_send_text_interpolates_and_appends_newline(self):
        rule = _rule(
            pattern=r"port (\d+)",
            variables=[VariableMapping("port", 1)],
            actions=[TriggerAction(ACTION_SEND_TEXT, command="open :%port %missing")],
        )
        engine = _make_engine([rule])
        engine.on_session_output(SID, b"port 8080\n")
        await engine.drain()
        engine.registry.write.assert_called_once_with(SID, b"open :8080 %missing\n")

    async def test_send_text_keeps_literal_percent(self):
        rule = _rule(
            actions=[TriggerAction(ACTION_SEND_TEXT, command="printf '%d items\\n' 3")]
        )
        engine = _make_engine([rule])
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        engine.registry.write.assert_called_once_with(SID, b"printf '%d items\\n' 3\n")

    async def test_notify_resolves_reserved_tokens(self):
        rule = _rule(
            pattern=r"port (\d+)",
            variables=[VariableMapping("port", 1)],
            actions=[TriggerAction(ACTION_NOTIFY, message="%port on %session (%title)")],
        )
        engine = _make_engine([rule])
        engine.on_session_output(SID, b"port 8080\n")
        await engine.drain()
        engine.executor.notifier.dispatch.assert_awaited_once_with(
            "vim", "8080 on shell (vim)", "info", SID
        )

    async def test_custom_display_name(self):
        registry = _make_registry(custom_name=True)
        registry.describe.return_value.name = "%title @ %host"
        rule = _rule(
            pattern=r"host (\w+)",
            variables=[VariableMapping("host", 1)],
            actions=[TriggerAction(ACTION_NOTIFY, title="%display", message="")],
        )
        engine = _make_engine([rule], registry=registry)
        engine.on_session_output(SID, b"host prod\n")
        await engine.drain()
        engine.executor.notifier.dispatch.assert_awaited_once_with("vim @ prod", "", "info", SID)

    async def test_set_state_defaults_to_alert(self):
        rule = _rule(
            actions=[
                TriggerAction(ACTION_SET_STATE),
                TriggerAction(ACTION_SET_STATE, state="question"),
            ]
        )
        engine = _make_engine([rule])
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        states = [c.args for c in engine.registry.set_state.call_args_list]
        assert states == [(SID, "alert"), (SID, "question")]

    async def test_auto_resume_records_context(self):
        rule = _rule(
            pattern=r"session (\w+)",
            variables=[VariableMapping("sid", 1)],
            actions=[TriggerAction(ACTION_AUTO_RESUME, command="claude --resume %sid")],
        )
        engine = _make_engine([rule])
        engine.on_session_output(SID, b"session abc\n")
        await engine.drain()
        engine.executor.on_auto_resume.assert_awaited_once_with(
            SID,
            AutoResumeContext(
                cwd="/home/u", ssh_command="ssh -p 2222 dev@box", command="claude --resume abc"
            ),
        )

    async def test_local_session_has_no_ssh_command(self):
        registry = _make_registry()
        registry.get_context.return_value = {"cwd": "/srv", "command": "zsh"}
        rule = _rule(actions=[TriggerAction(ACTION_AUTO_RESUME)])
        engine = _make_engine([rule], registry=registry)
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        engine.executor.on_auto_resume.assert_awaited_once_with(
            SID, AutoResumeContext(cwd="/srv", ssh_command=None, command=None)
        )

    async def test_ssh_by_absolute_path_is_remote(self):
        registry = _make_registry()
        registry.get_context.return_value = {"cwd": "/srv", "command": "/usr/bin/ssh dev@box"}
        rule = _rule(actions=[TriggerAction(ACTION_AUTO_RESUME)])
        engine = _make_engine([rule], registry=registry)
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        resume = engine.executor.on_auto_resume.await_args.args[1]
        assert resume.ssh_command == "/usr/bin/ssh dev@box"

    async def test_failing_action_does_not_stop_the_rest(self):
        registry = _make_registry()
        registry.write.side_effect = RuntimeError("pane gone")
        rule = _rule(
            actions=[
                TriggerAction(ACTION_SEND_TEXT, command="retry"),
                TriggerAction(ACTION_NOTIFY, message="failed"),
            ]
        )
        engine = _make_engine([rule], registry=registry)
        engine.on_session_output(SID, b"fail")
        await engine.drain()

        engine.executor.notifier.dispatch.assert_awaited_once()
        engine.executor.error_handler.handle.assert_awaited_once()
        error, context = engine.executor.error_handler.handle.await_args.args
        assert isinstance(error, RuntimeError)
        assert "send_text" in context

    async def test_failing_rule_does_not_block_next_rule(self):
        notifier = AsyncMock()
        notifier.dispatch.side_effect = [ConnectionError("offline"), None]
        rules = [
            _rule(1, pattern="fail", actions=[TriggerAction(ACTION_NOTIFY, message="a")]),
            _rule(2, pattern="oops", actions=[TriggerAction(ACTION_NOTIFY, message="b")]),
        ]
        engine = _make_engine(rules, notifier=notifier)
        engine.on_session_output(SID, b"fail oops")
        await engine.drain()
        assert notifier.dispatch.await_count == 2

    async def test_missing_collaborators_skip_actions(self):
        rule = _rule(
            actions=[
                TriggerAction(ACTION_SEND_TEXT, command="x"),
                TriggerAction(ACTION_NOTIFY, message="y"),
            ]
        )
        engine = TriggerEngine(rules=lambda: [rule], clock=FakeClock())
        engine.on_session_output(SID, b"fail")
        await engine.drain()
        assert engine.buffers.get(SID) == ""


class TestTeardown:
    async def test_purges_all_session_state(self):
        rules = [
            _rule(1, pattern=r"session (\w+)", variables=[VariableMapping("sid", 1)], cooldown=5.0),
            _rule(2, pattern="sid", match_mode=MATCH_VARIABLE),
        ]
        engine = _make_engine(rules)
        engine.set_suppressed(SID, True)
        engine.on_session_output(SID, b"session abc trailing")
        engine.on_session_output("%2", b"session zzz")

        engine.on_session_teardown(SID)
        await engine.drain()

        assert SID not in engine.buffers
        assert engine.get_variables(SID) == {}
        assert not engine.is_suppressed(SID)
        for table in (engine.cooldowns, engine.dedup, engine.transitions):
            assert SID not in table.sessions()
            assert "%2" in table.sessions()

    async def test_engines_do_not_share_state(self):
        first = _make_engine([_rule(pattern=r"session (\w+)", variables=[VariableMapping("sid", 1)])])
        second = _make_engine([])
        first.on_session_output(SID, b"session abc")
        await first.drain()
        assert second.get_variables(SID) == {}
        assert SID not in second.buffers


class TestWithoutEventLoop:
    def test_actions_run_to_completion(self):
        notifier = AsyncMock()
        rule = _rule(actions=[TriggerAction(ACTION_NOTIFY, message="m")])
        engine = TriggerEngine(
            rules=lambda: [rule], registry=_make_registry(), notifier=notifier
        )
        engine.on_session_output(SID, b"fail")
        notifier.dispatch.assert_awaited_once_with("vim", "m", "info", SID)


@pytest.fixture
async def db(tmp_path):
    db_module._db = None
    conn = await init_database(str(tmp_path / "test.db"))
    yield conn
    await close_database()
    db_module._db = None


class TestPersistence:
    def _rules(self):
        return [
            _rule(1, pattern=r"A=(\w+)", variables=[VariableMapping("a", 1)]),
            _rule(2, pattern=r"B=(\w+)", variables=[VariableMapping("b", 1)]),
        ]

    async def test_two_captures_in_one_chunk_both_stored(self, db):
        engine = _make_engine(self._rules(), on_persist=queries.save_variables)
        engine.on_session_output(SID, b"A=one B=two\n")
        await engine.drain()
        assert await queries.load_variables(SID) == {"a": "one", "b": "two"}

    async def test_latest_values_win_across_chunks(self, db):
        clock = FakeClock()
        engine = _make_engine(self._rules(), clock, on_persist=queries.save_variables)
        engine.on_session_output(SID, b"A=one B=two\n")
        clock.advance(1)
        engine.on_session_output(SID, b"A=three\n")
        engine.clear_variables(SID)
        clock.advance(1)
        engine.on_session_output(SID, b"B=four\n")
        await engine.drain()
        assert await queries.load_variables(SID) == {"b": "four"}

    async def test_changes_in_one_chunk_write_once(self):
        on_persist = AsyncMock()
        engine = _make_engine(self._rules(), on_persist=on_persist)
        engine.on_session_output(SID, b"A=one B=two\n")
        await engine.drain()
        on_persist.assert_awaited_once_with(SID, {"a": "one", "b": "two"})

    async def test_writes_for_one_session_never_overlap(self):
        running = 0
        overlaps = 0

        async def slow_persist(session_id, values):
            nonlocal running, overlaps
            running += 1
            overlaps += running > 1
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            running -= 1

        clock = FakeClock()
        engine = _make_engine(self._rules(), clock, on_persist=slow_persist)
        engine.on_session_output(SID, b"A=one\n")
        await asyncio.sleep(0)
        clock.advance(1)
        engine.on_session_output(SID, b"B=two\n")
        clock.advance(1)
        engine.on_session_output(SID, b"A=three\n")
        await engine.drain()
        assert overlaps == 0
