import json

import pytest

from conftest import wait_until
from jarvis_voice.runtime.pomodoro import PomodoroPhase, PomodoroSession, PomodoroStore, snapshot_dict
from jarvis_voice.services.schemas import PomodoroSync


def _session(tmp_path, **kwargs):
    store = PomodoroStore(tmp_path / "pomodoro.json")
    return PomodoroSession(store, **kwargs), store


def test_work_rolls_into_break_then_prompt(tmp_path):
    session, store = _session(tmp_path)
    completed: list[PomodoroPhase] = []
    prompts: list[int] = []
    session.on_phase_complete = completed.append
    session.on_change = lambda snapshot: prompts.append(1) if snapshot.show_continue_prompt else None

    session.start_timer(25)
    for _ in range(1500):
        session.tick()
    assert session.phase is PomodoroPhase.BREAK
    assert session.time_left == 300
    assert session.is_running
    assert completed == [PomodoroPhase.WORK]

    for _ in range(300):
        session.tick()
    assert session.phase is PomodoroPhase.IDLE
    assert session.show_continue_prompt
    assert not session.is_running
    assert completed == [PomodoroPhase.WORK, PomodoroPhase.BREAK]
    assert prompts == [1]
    assert store.load() is None


def test_formatted_time_and_progress(tmp_path):
    session, _ = _session(tmp_path)
    session.start_timer(1)
    for _ in range(15):
        session.tick()
    assert session.formatted_time == "00:45"
    assert session.progress == pytest.approx(25.0)


def test_pause_and_resume_keep_phase(tmp_path):
    session, store = _session(tmp_path)
    session.start_break_timer(5)
    session.tick()
    session.pause()
    assert session.phase is PomodoroPhase.PAUSED
    assert not session.is_running
    session.tick()
    assert session.time_left == 299
    assert store.load()["resumePhase"] == "break"

    session.resume()
    assert session.phase is PomodoroPhase.BREAK
    assert session.is_running


def test_restore_brings_back_saved_phase_stopped(tmp_path):
    first, _ = _session(tmp_path)
    first.start_timer(25)
    for _ in range(60):
        first.tick()

    second, _ = _session(tmp_path)
    assert second.restore()
    assert second.phase is PomodoroPhase.WORK
    assert second.time_left == 1440
    assert not second.is_running


def test_restore_ignores_garbage(tmp_path):
    (tmp_path / "pomodoro.json").write_text("{not json", encoding="utf-8")
    session, _ = _session(tmp_path)
    assert not session.restore()
    assert session.phase is PomodoroPhase.IDLE


def test_sync_actions(tmp_path):
    session, store = _session(tmp_path)
    session.apply_sync(PomodoroSync(action="start_work", duration=50))
    assert session.phase is PomodoroPhase.WORK
    assert session.total_time == 3000

    session.apply_sync(PomodoroSync(action="start_break", duration=10))
    assert session.phase is PomodoroPhase.BREAK
    assert session.time_left == 600

    session.apply_sync(PomodoroSync(action="reset_to_work"))
    assert session.phase is PomodoroPhase.IDLE
    assert session.time_left == 1500

    session.start_timer()
    session.apply_sync(PomodoroSync(action="stop"))
    assert session.phase is PomodoroPhase.IDLE
    assert not (tmp_path / "pomodoro.json").exists()


def test_sync_payload_validation():
    assert PomodoroSync.from_payload({"action": "explode"}) is None
    sync = PomodoroSync.from_payload({"action": "start_work", "duration": "25", "phase": "work"})
    assert sync == PomodoroSync(action="start_work", duration=25, phase="work")


def test_legacy_commands(tmp_path):
    session, _ = _session(tmp_path)
    session.apply_command("start")
    assert session.phase is PomodoroPhase.WORK
    session.apply_command("stop")
    assert session.phase is PomodoroPhase.PAUSED
    session.apply_command("reset")
    assert session.phase is PomodoroPhase.IDLE
    session.apply_command("dance")
    assert session.phase is PomodoroPhase.IDLE


def test_continue_and_dismiss_prompt(tmp_path):
    session, _ = _session(tmp_path)
    session.show_continue_prompt = True

    session.continue_session()
    assert session.phase is PomodoroPhase.WORK
    assert session.is_running
    assert not session.show_continue_prompt

    session.show_continue_prompt = True
    session.dismiss_prompt()
    assert session.phase is PomodoroPhase.IDLE
    assert not session.show_continue_prompt


def test_snapshot_dict_is_plain(tmp_path):
    session, _ = _session(tmp_path)
    session.start_timer(1)
    data = snapshot_dict(session.snapshot())
    assert data["phase"] == "work"
    json.dumps(data)


@pytest.mark.asyncio
async def test_ticker_runs_on_the_loop(tmp_path):
    session, _ = _session(tmp_path, work_minutes=1, tick_interval=0.001)
    session.start_timer()
    await wait_until(lambda: session.time_left <= 55)
    session.pause()
    session.close()
