"""
Tests for the Tools pillar implementations.

The registry has a clearly defined contract: validation is a pure function
of (name, raw arguments), and execution never raises.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from conductor.errors import ToolValidationError, UnknownModelError
from conductor.models import ModelInfo, PlaylistCriteria, PlaylistResult, ToolCall, ToolResult, Track
from conductor.tools import TOOL_SPECS, MusicTools, NoTool, Tool


@pytest.fixture
def sample_tool_call() -> ToolCall:
    """Fixture for a sample valid ToolCall."""
    return ToolCall(id="call_123", function_name="set_volume", function_args='{"volume": 40}')


@pytest.fixture
def registry(player) -> MusicTools:
    return MusicTools(player)


def run(coro):
    return asyncio.run(coro)


class TestToolContract:
    """Test that all Tool implementations follow the same contract."""

    @pytest.fixture(params=["none", "music"])
    def tool_implementation(self, request, player):
        return NoTool() if request.param == "none" else MusicTools(player)

    def test_tool_implements_interface(self, tool_implementation):
        assert isinstance(tool_implementation, Tool)

    def test_get_tools_returns_list(self, tool_implementation):
        tools = tool_implementation.get_tools()
        assert isinstance(tools, list)
        assert all(isinstance(tool, dict) for tool in tools)

    def test_execute_tool_call_returns_result(self, tool_implementation, sample_tool_call):
        result = run(tool_implementation.execute_tool_call(sample_tool_call))
        assert isinstance(result, ToolResult)
        assert result.tool_call_id == "call_123"


class TestNoTool:
    def test_get_tools_returns_empty_list(self):
        assert NoTool().get_tools() == []

    def test_execute_tool_call_returns_error(self, sample_tool_call):
        result = run(NoTool().execute_tool_call(sample_tool_call))
        assert result.is_error is True
        assert "NoTool handler is active" in result.content


class TestSchemas:
    def test_tool_set_is_fixed(self, registry):
        assert registry.names == [
            "search_music",
            "play_music",
            "queue_music",
            "control_playback",
            "seek",
            "set_volume",
            "toggle_setting",
            "get_queue",
            "clear_queue",
            "generate_playlist",
            "list_models",
            "set_model",
            "enable_dj_mode",
            "disable_dj_mode",
            "toggle_lyrics",
        ]

    def test_schema_shape(self, registry):
        by_name = {t["function"]["name"]: t for t in registry.get_tools()}
        volume = by_name["set_volume"]["function"]["parameters"]
        assert volume["required"] == ["volume"]
        assert volume["properties"]["volume"]["minimum"] == 0
        assert volume["properties"]["volume"]["maximum"] == 100
        assert by_name["queue_music"]["function"]["parameters"]["properties"]["position"]["enum"] == ["end", "next"]
        assert by_name["list_models"]["function"]["parameters"]["properties"] == {}

    def test_every_spec_has_an_executor(self, registry):
        for spec in TOOL_SPECS:
            assert callable(getattr(registry, f"_run_{spec.name}"))


class TestValidation:
    @pytest.mark.parametrize("volume", [0, 50, 100])
    def test_volume_in_range_passes(self, registry, volume):
        assert registry.validate("set_volume", {"volume": volume}) == {"volume": volume}

    @pytest.mark.parametrize("volume", [-1, 101, 150])
    def test_volume_out_of_range_rejected(self, registry, volume):
        with pytest.raises(ToolValidationError, match="between 0 and 100") as info:
            registry.validate("set_volume", {"volume": volume})
        assert info.value.tool_name == "set_volume"

    def test_json_string_arguments(self, registry):
        assert registry.validate("set_volume", '{"volume": 30}') == {"volume": 30}

    def test_unparseable_arguments(self, registry):
        with pytest.raises(ToolValidationError, match="Failed to parse arguments"):
            registry.validate("set_volume", "{volume: thirty")

    def test_non_object_arguments(self, registry):
        with pytest.raises(ToolValidationError, match="JSON object"):
            registry.validate("set_volume", "[30]")

    def test_missing_required(self, registry):
        with pytest.raises(ToolValidationError, match="Missing required argument 'volume'"):
            registry.validate("set_volume", {})

    def test_unknown_tool(self, registry):
        with pytest.raises(ToolValidationError, match="Tool 'self_destruct' not found"):
            registry.validate("self_destruct", {})

    def test_unexpected_argument(self, registry):
        with pytest.raises(ToolValidationError, match="Unexpected argument"):
            registry.validate("set_volume", {"volume": 10, "fade": True})

    def test_type_checks(self, registry):
        with pytest.raises(ToolValidationError, match="must be an integer"):
            registry.validate("set_volume", {"volume": "loud"})
        with pytest.raises(ToolValidationError, match="must be an integer"):
            registry.validate("set_volume", {"volume": True})
        with pytest.raises(ToolValidationError, match="must be true or false"):
            registry.validate("clear_queue", {"confirm": "yes"})

    def test_integral_floats_are_accepted(self, registry):
        assert registry.validate("set_volume", {"volume": 40.0}) == {"volume": 40}
        with pytest.raises(ToolValidationError):
            registry.validate("set_volume", {"volume": 40.5})

    @pytest.mark.parametrize("raw", ['{"seconds": NaN}', '{"seconds": Infinity}', '{"seconds": -Infinity}'])
    def test_non_finite_numbers_rejected(self, registry, raw):
        with pytest.raises(ToolValidationError, match="finite"):
            registry.validate("seek", raw)

    def test_non_finite_integers_rejected(self, registry):
        with pytest.raises(ToolValidationError, match="must be an integer"):
            registry.validate("set_volume", '{"volume": NaN}')

    def test_enum(self, registry):
        with pytest.raises(ToolValidationError, match="must be one of"):
            registry.validate("control_playback", {"action": "rewind"})

    def test_defaults_are_filled(self, registry):
        assert registry.validate("search_music", {"query": "jazz"}) == {"query": "jazz", "type": "any", "limit": 20}
        assert registry.validate("generate_playlist", {"category": "chill"}) == {
            "category": "chill",
            "length": 20,
            "shuffle": False,
        }

    def test_playlist_length_must_be_positive(self, registry):
        with pytest.raises(ToolValidationError):
            registry.validate("generate_playlist", {"category": "chill", "length": 0})

    def test_blank_required_string(self, registry):
        with pytest.raises(ToolValidationError, match="must not be empty"):
            registry.validate("search_music", {"query": "   "})

    def test_validation_is_pure(self, registry, player):
        registry.validate("set_volume", {"volume": 10})
        assert run(player.status()).volume == 50


class TestExecution:
    def test_invalid_call_becomes_error_result(self, registry, player):
        call = ToolCall(id="c1", function_name="set_volume", function_args={"volume": 150})
        result = run(registry.execute_tool_call(call))
        assert result.is_error
        assert result.tool_call_id == "c1"
        assert result.content.startswith("Invalid arguments: ")
        assert run(player.status()).volume == 50

    def test_set_volume(self, registry, player):
        result = run(registry.execute_tool_call(ToolCall(function_name="set_volume", function_args={"volume": 70})))
        assert not result.is_error
        assert run(player.status()).volume == 70

    def test_search_limits_results(self, registry):
        result = run(registry.execute("search_music", {"query": "miles", "type": "artist", "limit": 1}))
        data = json.loads(result.content)
        assert data["count"] == 2
        assert [t["title"] for t in data["results"]] == ["So What"]

    def test_play_music_by_query_replaces_queue(self, registry, player):
        run(registry.execute("queue_music", {"query": "nirvana", "position": "end"}))
        result = run(registry.execute("play_music", {"query": "take five"}))
        assert "Take Five" in result.content
        queue = run(player.queue())
        assert [t.title for t in queue] == ["Take Five"]
        assert run(player.status()).state == "play"

    def test_play_music_no_match(self, registry):
        result = run(registry.execute("play_music", {"query": "polka"}))
        assert not result.is_error
        assert "No tracks matched" in result.content

    def test_queue_next_inserts_after_current(self, registry, player):
        run(registry.execute("queue_music", {"query": "nirvana", "position": "end"}))
        run(player.play(0))
        run(registry.execute("queue_music", {"query": "take five", "position": "next"}))
        titles = [t.title for t in run(player.queue())]
        assert titles == ["Smells Like Teen Spirit", "Take Five", "Come as You Are"]

    def test_toggle_flips_play_and_pause(self, registry, player):
        run(registry.execute("queue_music", {"query": "jazz", "position": "end"}))
        run(player.play(0))
        run(registry.execute("control_playback", {"action": "toggle"}))
        assert run(player.status()).state == "pause"
        run(registry.execute("control_playback", {"action": "toggle"}))
        assert run(player.status()).state == "play"

    def test_toggle_setting(self, registry):
        result = run(registry.execute("toggle_setting", {"setting": "repeat"}))
        assert result.content == "Repeat is now on"

    def test_get_queue_and_clear(self, registry, player):
        run(registry.execute("queue_music", {"query": "miles", "position": "end"}))
        data = json.loads(run(registry.execute("get_queue", {"limit": 1})).content)
        assert data["length"] == 2
        assert len(data["tracks"]) == 1
        assert run(registry.execute("clear_queue", {"confirm": False})).content == "Queue left unchanged"
        run(registry.execute("clear_queue", {"confirm": True}))
        assert run(player.queue()) == []

    def test_collaborator_failures_are_wrapped(self, registry):
        result = run(registry.execute("seek", {"seconds": 30}))
        assert result.is_error
        assert result.content == "seek failed: Nothing is playing"

    def test_unreachable_player(self, registry, player):
        player.connected = False
        result = run(registry.execute_tool_call(ToolCall(function_name="control_playback", function_args={"action": "stop"})))
        assert result.is_error
        assert "not reachable" in result.content

    def test_unexpected_exceptions_are_wrapped(self, player):
        player.set_volume = AsyncMock(side_effect=RuntimeError("kaboom"))
        result = run(MusicTools(player).execute("set_volume", {"volume": 5}))
        assert result.is_error
        assert "kaboom" in result.content
        assert "Traceback" not in result.content

    def test_missing_component(self, registry):
        result = run(registry.execute("enable_dj_mode", {}))
        assert result.is_error
        assert "DJ mode is not available" in result.content


class TestComponentTools:
    def test_generate_playlist_queues_tracks(self, player, library):
        playlist = MagicMock()
        criteria = PlaylistCriteria(category="jazz", target_length=2)
        playlist.generate = AsyncMock(
            return_value=PlaylistResult(criteria=criteria, kind="genre", tracks=library[:2], status="ok")
        )
        registry = MusicTools(player, playlist=playlist)
        result = run(registry.execute("generate_playlist", {"category": "jazz", "length": 2, "shuffle": False}))
        assert not result.is_error
        assert json.loads(result.content)["status"] == "ok"
        assert [t.id for t in run(player.queue())] == [t.id for t in library[:2]]
        passed = playlist.generate.call_args.args[0]
        assert (passed.category, passed.target_length, passed.shuffle) == ("jazz", 2, False)

    def test_no_candidates_is_not_an_error(self, player):
        playlist = MagicMock()
        playlist.generate = AsyncMock(
            return_value=PlaylistResult(
                criteria=PlaylistCriteria(category="polka"), kind="genre", status="no_candidates"
            )
        )
        result = run(MusicTools(player, playlist=playlist).execute("generate_playlist", {"category": "polka", "length": 20, "shuffle": False}))
        assert not result.is_error
        assert result.content == "No matching tracks found for 'polka'."
        assert run(player.queue()) == []

    def test_model_tools(self, player):
        catalog = MagicMock()
        catalog.list_models = AsyncMock(return_value=[ModelInfo(id="m1", name="Model One")])
        catalog.get_current_model.return_value = "m1"
        catalog.set_model = AsyncMock(side_effect=UnknownModelError("Model 'zz' is not available"))
        registry = MusicTools(player, catalog=catalog)
        listing = json.loads(run(registry.execute("list_models", {})).content)
        assert listing == {"current": "m1", "models": [{"id": "m1", "name": "Model One"}]}
        result = run(registry.execute("set_model", {"model_id": "zz"}))
        assert result.is_error
        assert "not available" in result.content

    def test_dj_and_lyrics_tools(self, player):
        dj, lyrics = MagicMock(), MagicMock()
        lyrics.toggle.return_value = False
        registry = MusicTools(player, dj=dj, lyrics=lyrics)
        assert run(registry.execute("enable_dj_mode", {})).content == "DJ mode enabled"
        dj.enable.assert_called_once()
        run(registry.execute("disable_dj_mode", {}))
        dj.disable.assert_called_once()
        assert run(registry.execute("toggle_lyrics", {})).content == "Lyrics display off"
