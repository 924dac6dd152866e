"""Tests for configuration loading."""

from voicebridge.config import Config, get_config, reload_config
from voicebridge.config import defaults, loader


class TestConfig:
    def test_defaults_without_user_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = Config(environ={})

        assert config.source is None
        assert config.PRIMARY_TIMEOUT_MS == 10000
        assert config.MAX_TURNS == 10
        assert config.VAD_SILENCE_THRESHOLD == 30.0
        assert config.GENERIC_RESPONSE_PHRASES == defaults.GENERIC_RESPONSE_PHRASES

    def test_user_file_overrides(self, tmp_path):
        path = tmp_path / "config.py"
        path.write_text('PRIMARY_TIMEOUT_MS = 2500\nELEVENLABS_AGENT_ID = "agent-7"\nUNRELATED = 1\n')

        config = Config(path, environ={})

        assert config.source == path
        assert config.PRIMARY_TIMEOUT_MS == 2500
        assert config.ELEVENLABS_AGENT_ID == "agent-7"
        assert config.MAX_TURNS == 10
        assert not hasattr(config, "UNRELATED")

    def test_found_in_parent_directory(self, tmp_path, monkeypatch):
        (tmp_path / "config.py").write_text("SERVER_PORT = 6001\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        assert Config(environ={}).SERVER_PORT == 6001

    def test_get_with_default(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = Config(environ={})
        assert config.get("SERVER_HOST") == "localhost"
        assert config.get("MISSING", 3) == 3


class TestValidate:
    def test_missing_credentials(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        errors = Config(environ={}).validate()

        assert "ELEVENLABS_API_KEY is not set" in errors
        assert "ELEVENLABS_AGENT_ID is not set" in errors
        assert "FALLBACK_API_KEY is not set" in errors

    def test_valid_config(self, tmp_path):
        path = tmp_path / "config.py"
        path.write_text(
            'ELEVENLABS_API_KEY = "k"\nELEVENLABS_AGENT_ID = "a"\nFALLBACK_API_KEY = "f"\n'
        )
        assert Config(path, environ={}).validate() == []

    def test_out_of_range_values(self, tmp_path):
        path = tmp_path / "config.py"
        path.write_text(
            'PRIMARY_TIMEOUT_MS = 0\nMAX_TURNS = 0\nVAD_SILENCE_THRESHOLD = 300\n'
            'GENERIC_RESPONSE_PHRASES = "one phrase"\n'
        )
        errors = Config(path, environ={}).validate()

        assert "PRIMARY_TIMEOUT_MS must be positive" in errors
        assert "MAX_TURNS must be at least 1" in errors
        assert "VAD_SILENCE_THRESHOLD must be within 0-255" in errors
        assert "GENERIC_RESPONSE_PHRASES must be a list" in errors


class TestGlobalConfig:
    def test_reload_replaces_global(self, tmp_path, monkeypatch):
        monkeypatch.setattr(loader, "_config", None)
        path = tmp_path / "config.py"
        path.write_text("MAX_TURNS = 4\n")

        config = reload_config(path)

        assert get_config() is config
        assert get_config().MAX_TURNS == 4

    def test_get_config_is_cached(self, tmp_path, monkeypatch):
        monkeypatch.setattr(loader, "_config", None)
        monkeypatch.chdir(tmp_path)

        assert get_config() is get_config()


class TestEnvironment:
    def test_vendor_aliases(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = Config(environ={
            "ELEVEN_LABS_API_KEY": "el-key",
            "ELEVEN_LABS_AGENT_ID": "agent-3",
            "IONOS_API_TOKEN": "ionos-token",
            "SILENCE_DURATION": "6",
        })

        assert config.ELEVENLABS_API_KEY == "el-key"
        assert config.ELEVENLABS_AGENT_ID == "agent-3"
        assert config.FALLBACK_API_KEY == "ionos-token"
        assert config.VAD_SILENCE_DURATION_MS == 6000
        assert config.validate() == []

    def test_prefixed_keys_are_coerced(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = Config(environ={
            "VOICEBRIDGE_SERVER_PORT": "6100",
            "VOICEBRIDGE_VAD_SILENCE_THRESHOLD": "42.5",
            "VOICEBRIDGE_TRANSCRIPTS_ENABLED": "no",
        })

        assert config.SERVER_PORT == 6100
        assert config.VAD_SILENCE_THRESHOLD == 42.5
        assert config.TRANSCRIPTS_ENABLED is False
        assert sorted(config.env_overrides) == [
            "SERVER_PORT",
            "TRANSCRIPTS_ENABLED",
            "VAD_SILENCE_THRESHOLD",
        ]

    def test_environment_beats_config_file(self, tmp_path):
        path = tmp_path / "config.py"
        path.write_text('ELEVENLABS_AGENT_ID = "from-file"\n')

        config = Config(path, environ={"VOICEBRIDGE_ELEVENLABS_AGENT_ID": "from-env"})

        assert config.ELEVENLABS_AGENT_ID == "from-env"

    def test_prefix_wins_over_alias(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = Config(environ={
            "ELEVEN_LABS_API_KEY": "alias",
            "VOICEBRIDGE_ELEVENLABS_API_KEY": "prefixed",
        })
        assert config.ELEVENLABS_API_KEY == "prefixed"

    def test_invalid_values_reported(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = Config(environ={
            "VOICEBRIDGE_MAX_TURNS": "ten",
            "VOICEBRIDGE_GENERIC_RESPONSE_PHRASES": "hello",
        })
        errors = config.validate()

        assert config.MAX_TURNS == 10
        assert any(e.startswith("VOICEBRIDGE_MAX_TURNS is invalid") for e in errors)
        assert any("cannot override GENERIC_RESPONSE_PHRASES" in e for e in errors)

    def test_silence_duration_alias_is_in_seconds(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        assert Config(environ={"SILENCE_DURATION": "1.5"}).VAD_SILENCE_DURATION_MS == 1500
        assert Config(
            environ={"VOICEBRIDGE_VAD_SILENCE_DURATION_MS": "1500"}
        ).VAD_SILENCE_DURATION_MS == 1500

    def test_silence_duration_alias_rejects_garbage(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = Config(environ={"SILENCE_DURATION": "six"})

        assert config.VAD_SILENCE_DURATION_MS == 2000
        assert any(e.startswith("SILENCE_DURATION is invalid") for e in config.validate())
