import pytest
from pydantic import ValidationError

from collectors.config import DEFAULT_DOCKER_PATHS, Settings, load_config


def test_defaults_without_file():
    settings = load_config(None)
    assert settings.lsof_path == "lsof"
    assert settings.docker_paths == DEFAULT_DOCKER_PATHS
    assert settings.timeouts.socket_listing == 4.0
    assert settings.timeouts.runtime_probe == 1.0
    assert settings.system_uid_threshold == 500


def test_yaml_overrides(tmp_path):
    path = tmp_path / "portlens.yaml"
    path.write_text(
        "lsof_path: /usr/sbin/lsof\n"
        "current_user: bob\n"
        "docker_paths: [/opt/docker]\n"
        "timeouts:\n"
        "  socket_listing: 1.5\n"
        "  container_stats: 2\n"
        "unknown_key: ignored\n",
        encoding="utf-8",
    )

    settings = load_config(path)

    assert settings.lsof_path == "/usr/sbin/lsof"
    assert settings.current_user == "bob"
    assert settings.docker_paths == ["/opt/docker"]
    assert settings.timeouts.socket_listing == 1.5
    assert settings.timeouts.container_stats == 2.0
    assert settings.timeouts.process_metadata == 2.5


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path).ps_path == "ps"


@pytest.mark.parametrize("content", [
    "max_workers: many\n",
    "max_workers: true\n",
    "max_workers: 0\n",
    "docker_paths: /usr/bin/docker\n",
    "timeouts: 3\n",
    "timeouts:\n  owner_lookup: -1\n",
    "- just\n- a list\n",
])
def test_invalid_config_raises(tmp_path, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_missing_file_raises(tmp_path):
    with pytest.raises(ValueError, match="not found"):
        load_config(tmp_path / "nope.yaml")


def test_settings_are_immutable():
    settings = Settings()
    with pytest.raises(ValidationError):
        settings.lsof_path = "other"


def test_invalid_value_names_the_key(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("timeouts:\n  runtime_probe: 0\n", encoding="utf-8")
    with pytest.raises(ValueError, match="runtime_probe"):
        load_config(path)


def test_null_values_keep_defaults(tmp_path):
    path = tmp_path / "nulls.yaml"
    path.write_text("lsof_path:\ndisplay_names_path:\n", encoding="utf-8")
    settings = load_config(path)
    assert settings.lsof_path == "lsof"
    assert settings.display_names_path is None
