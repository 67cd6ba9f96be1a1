"""Tests for settings loading."""

from nbprobe.config import Settings, load_settings


class TestLoadSettings:
    def test_defaults_without_file(self, tmp_path):
        settings = load_settings(str(tmp_path))
        assert settings == Settings()
        assert settings.run_timeout == 10.0
        assert settings.refresh_debounce == 0.3
        assert settings.kernel_name == "python3"

    def test_reads_yaml(self, tmp_path):
        config_dir = tmp_path / ".nbprobe"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text(
            "run_timeout: 30\ninterrupt_on_timeout: false\nunknown_key: 1\n"
        )
        settings = load_settings(str(tmp_path))
        assert settings.run_timeout == 30
        assert settings.interrupt_on_timeout is False

    def test_corrupted_yaml_uses_defaults(self, tmp_path, capsys):
        config_dir = tmp_path / ".nbprobe"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text("run_timeout: [unclosed\n")
        settings = load_settings(str(tmp_path))
        assert settings == Settings()
        assert "Warning" in capsys.readouterr().err

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NBPROBE_RUN_TIMEOUT", "2.5")
        monkeypatch.setenv("NBPROBE_KERNEL", "ir")
        settings = load_settings(str(tmp_path))
        assert settings.run_timeout == 2.5
        assert settings.kernel_name == "ir"

    def test_invalid_environment_value_is_ignored(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("NBPROBE_RUN_TIMEOUT", "soon")
        settings = load_settings(str(tmp_path))
        assert settings.run_timeout == 10.0
        assert "NBPROBE_RUN_TIMEOUT" in capsys.readouterr().err


class TestExecutionOptions:
    def test_query_options(self):
        options = Settings(run_timeout=4, queue_timeout=1).execution_options("object-query")
        assert options.timeout == 4
        assert options.effective_queue_timeout == 1
        assert options.label == "object-query"

    def test_action_options_have_no_timeout_by_default(self):
        assert Settings().action_options().timeout is None
