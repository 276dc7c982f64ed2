"""Unit tests for the model registry and system instructions."""

from datetime import datetime, timezone

from chatstream.services.model_registry import (
    SUPPORTED_MODELS,
    ProviderKind,
    format_user_time,
    get_model,
    is_supported_model,
    render_instructions,
    resolve_model,
)


class TestModelRegistry:
    """Test model lookup and fallback."""

    def test_supported_models(self):
        assert [m.id for m in SUPPORTED_MODELS] == [
            "gpt-4.1",
            "o4-mini",
            "o3",
            "o3-pro",
            "google/gemini-2.0-flash-001",
            "x-ai/grok-3-mini-beta",
        ]

    def test_capabilities(self):
        """Test the capability flags that drive tool and provider selection."""
        gpt = get_model("gpt-4.1")
        grok = get_model("x-ai/grok-3-mini-beta")

        assert gpt.capabilities.web_search and gpt.capabilities.file_search
        assert not gpt.capabilities.thinking
        assert grok.capabilities.thinking
        assert grok.provider == ProviderKind.OPENROUTER
        assert get_model("o3").provider == ProviderKind.OPENAI

    def test_unknown_model(self):
        assert get_model("gpt-2") is None
        assert is_supported_model(None) is False
        assert is_supported_model("o4-mini") is True

    def test_resolve_model_falls_back_to_default(self):
        """Test that unknown and missing IDs resolve to the default model."""
        assert resolve_model("retired").id == "gpt-4.1"
        assert resolve_model(None).id == "gpt-4.1"
        assert resolve_model("o3").id == "o3"


class TestInstructions:
    """Test system instruction rendering."""

    def test_format_user_time_with_offset(self):
        now = datetime(2025, 1, 15, 18, 30, tzinfo=timezone.utc)

        assert format_user_time("America/New_York", now) == "01/15/2025, 01:30:00 PM GMT-05:00"

    def test_unknown_timezone_uses_utc(self):
        now = datetime(2025, 1, 15, 18, 30, tzinfo=timezone.utc)

        assert format_user_time("Mars/Olympus", now) == "01/15/2025, 06:30:00 PM GMT+00:00"
        assert format_user_time(None, now) == "01/15/2025, 06:30:00 PM GMT+00:00"

    def test_render_instructions_fills_placeholders(self):
        now = datetime(2025, 1, 15, 18, 30, tzinfo=timezone.utc)

        instructions = render_instructions(get_model("o3"), "Europe/Paris", now)

        assert "powered by the o3" in instructions
        assert "01/15/2025, 07:30:00 PM GMT+01:00" in instructions
        assert "{model-name}" not in instructions
        assert "{user-time-with-timezone}" not in instructions
