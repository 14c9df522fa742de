"""
Module: test_config.py
Purpose: Runtime settings and persistence to the env file
"""

from experience_remote import config


class TestRuntimeSettings:

    def test_defaults(self):
        assert isinstance(config.RELAY_PORT, int)
        assert config.get_setting("osc_host")
        assert isinstance(config.get_setting("osc_port"), int)

    def test_update(self, monkeypatch):
        monkeypatch.setitem(config._runtime_settings, "osc_port", 9000)
        config.update_setting("osc_port", 7000)
        assert config.get_setting("osc_port") == 7000


class TestPersistSettings:

    def test_creates_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "_runtime_settings", {"osc_host": "10.0.0.2", "osc_port": 8000})
        env_path = tmp_path / "sub" / "experience-remote.env"

        assert config.persist_settings(env_path) is True

        content = env_path.read_text()
        assert "OSC_HOST=10.0.0.2" in content
        assert "OSC_PORT=8000" in content

    def test_replaces_existing_values(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config, "_runtime_settings", {"osc_host": "192.168.0.9", "osc_port": 9100})
        env_path = tmp_path / "experience-remote.env"
        env_path.write_text("RELAY_PORT=4000\nOSC_HOST=127.0.0.1\nOSC_PORT=9000\n")

        config.persist_settings(env_path)

        lines = env_path.read_text().splitlines()
        assert "RELAY_PORT=4000" in lines
        assert lines.count("OSC_HOST=192.168.0.9") == 1
        assert "OSC_HOST=127.0.0.1" not in lines
        assert "OSC_PORT=9100" in lines

    def test_unwritable_path(self, tmp_path, monkeypatch):
        blocker = tmp_path / "file"
        blocker.write_text("")
        # A regular file where a directory is expected
        assert config.persist_settings(blocker / "experience-remote.env") is False


class TestLoggerNames:

    def test_component_prefixes(self):
        from experience_remote import events, link
        from experience_remote.desktop import app, host, tunnel
        from experience_remote.relay import server
        from experience_remote.remote import client

        names = [mod.logger.name for mod in (events, link, app, host, tunnel, server, client)]
        assert names == ["events", "link", "desktop.app", "desktop.host", "desktop.tunnel",
                         "relay.server", "remote.client"]
