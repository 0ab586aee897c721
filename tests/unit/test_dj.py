"""Unit tests for the DJ commentary scheduler."""

import asyncio
import random
from unittest.mock import MagicMock

import pytest
from conductor.dj import DJPhase, DJScheduler, parse_script
from conductor.errors import ProviderAuthError
from conductor.models import Track

SCRIPT = "Midnight FM: That was a quiet one.\nMorning Drive: And now we pick it up!"
PERSONAS = ("Midnight FM", "Morning Drive")


def track(n: int) -> Track:
    return Track(id=f"t{n}", title=f"Song {n}", artist="Band", album="Album")


def play(dj, *numbers):
    """Feed start events; returns the scripts produced."""

    async def run():
        return [await dj.on_track_started(track(n)) for n in numbers]

    return asyncio.run(run())


@pytest.fixture
def make_dj(scripted, make_gateway, mock_speech):
    def factory(responses=None, window=(2, 2), enabled=True, **kwargs):
        llm = scripted(responses if responses is not None else [scripted.say(SCRIPT)] * 10)
        dj = DJScheduler(
            make_gateway(llm),
            speech=mock_speech,
            window=window,
            rng=random.Random(0),
            enabled=enabled,
            **kwargs,
        )
        return dj, llm

    return factory


class TestParseScript:
    def test_two_speakers(self):
        script = parse_script(SCRIPT, PERSONAS)
        assert [line.speaker for line in script.lines] == ["Midnight FM", "Morning Drive"]
        assert script.lines[1].text == "And now we pick it up!"

    def test_host_numbers_and_markdown_names(self):
        text = "**Host 1:** Hello.\nhost 2: Hi!\n\n(continues) with more\nMORNING DRIVE: It's 3:00 somewhere."
        script = parse_script(text, PERSONAS)
        assert [line.speaker for line in script.lines] == ["Midnight FM", "Morning Drive", "Morning Drive"]
        assert script.lines[1].text == "Hi! (continues) with more"
        assert script.lines[2].text == "It's 3:00 somewhere."

    @pytest.mark.parametrize("text", ["", "Just some prose.", "Midnight FM: Talking to myself."])
    def test_rejects_one_sided_scripts(self, text):
        with pytest.raises(ValueError, match="both hosts"):
            parse_script(text, PERSONAS)


class TestScheduling:
    def test_triggers_at_threshold(self, make_dj, mock_speech):
        dj, llm = make_dj()
        scripts = play(dj, 1, 2)
        assert scripts[0] is None
        assert scripts[1] is not None
        assert len(llm.calls) == 1
        assert dj.state.counter == 0
        assert dj.state.last_triggered_id == "t2"
        assert len(mock_speech.spoken) == 1
        assert mock_speech.spoken[0][1] == "Midnight FM"

    def test_disabled_by_default(self, make_dj):
        dj, llm = make_dj(enabled=False)
        play(dj, 1, 2, 3)
        assert dj.state.counter == 0
        assert dj.phase is DJPhase.DORMANT
        assert llm.calls == []

    def test_duplicate_start_events_are_ignored(self, make_dj):
        dj, llm = make_dj()
        play(dj, 1, 1, 1)
        assert dj.state.counter == 1
        assert dj.phase is DJPhase.ARMED
        assert llm.calls == []

    def test_disable_prevents_trigger_above_threshold(self, make_dj):
        dj, llm = make_dj(window=(3, 3))
        play(dj, 1, 2)
        dj.state.threshold = 1
        dj.disable()
        play(dj, 3, 4)
        assert llm.calls == []
        assert dj.state.counter == 2

    def test_reenable_resumes_from_current_counter(self, make_dj):
        dj, llm = make_dj(window=(3, 3))
        play(dj, 1, 2)
        dj.disable()
        play(dj, 3)
        dj.enable()
        assert dj.state.counter == 2
        scripts = play(dj, 4)
        assert scripts[0] is not None
        assert len(llm.calls) == 1

    def test_threshold_redrawn_within_window(self, make_dj):
        dj, _ = make_dj(window=(4, 5))
        seen = set()
        for n in range(60):
            play(dj, n)
            seen.add(dj.state.threshold)
        assert seen <= {4, 5}

    def test_invalid_window(self, make_dj):
        with pytest.raises(ValueError):
            make_dj(window=(5, 4))
        with pytest.raises(ValueError):
            make_dj(window=(0, 2))

    def test_commentary_is_restricted(self, make_dj):
        dj, llm = make_dj(max_tokens=200)
        play(dj, 1, 2)
        call = llm.calls[0]
        assert call["tools"] is None
        assert call["max_tokens"] == 200
        assert "Midnight FM" in call["system"]
        assert "Song 2 by Band" in call["messages"][-1].content


class TestFailures:
    def test_provider_failure_keeps_counter(self, make_dj, scripted, mock_speech):
        dj, llm = make_dj(responses=[ProviderAuthError("bad key"), scripted.say(SCRIPT)])
        scripts = play(dj, 1, 2)
        assert scripts == [None, None]
        assert dj.state.counter == 2
        assert mock_speech.spoken == []
        scripts = play(dj, 3)
        assert scripts[0] is not None
        assert dj.state.counter == 0

    def test_unusable_script_keeps_counter(self, make_dj, scripted):
        dj, _ = make_dj(responses=[scripted.say("I am a lone DJ.")])
        play(dj, 1, 2)
        assert dj.state.counter == 2

    def test_speech_failure_is_swallowed(self, make_dj):
        dj, _ = make_dj()

        async def broken(script, persona):
            raise RuntimeError("no audio device")

        dj.speech = MagicMock(speak=broken)
        scripts = play(dj, 1, 2)
        assert scripts[1] is not None
        assert dj.state.counter == 0


class TestReentrancy:
    def test_events_during_cycle_are_held(self, make_dj, scripted, mock_speech):
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return scripted.say(SCRIPT)

        dj, llm = make_dj(responses=[slow, scripted.say(SCRIPT)], window=(1, 1))

        async def scenario():
            first = asyncio.ensure_future(dj.on_track_started(track(1)))
            await asyncio.sleep(0)
            assert dj.phase is DJPhase.TRIGGERING
            second = await dj.on_track_started(track(2))
            third = await dj.on_track_started(track(3))
            assert len(llm.calls) == 1
            release.set()
            return await first, second, third

        first, second, third = asyncio.run(scenario())
        assert second is None and third is None
        assert first is not None
        # only the latest held event is processed after the cycle
        assert len(llm.calls) == 2
        assert dj.state.last_track_id == "t3"
        assert len(mock_speech.spoken) == 2
        assert dj.phase is DJPhase.DORMANT

    def test_disable_during_cycle_skips_speech(self, make_dj, scripted, mock_speech):
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return scripted.say(SCRIPT)

        dj, _ = make_dj(responses=[slow], window=(1, 1))

        async def scenario():
            pending = asyncio.ensure_future(dj.on_track_started(track(1)))
            await asyncio.sleep(0)
            dj.disable()
            release.set()
            return await pending

        assert asyncio.run(scenario()) is None
        assert mock_speech.spoken == []
        assert dj.state.counter == 0
