from motionwall.config import MotionWallConfig


def test_defaults():
    config = MotionWallConfig()

    assert config.media_player == "mpv"
    assert config.playlist_duration == 30
    assert config.playlist_loop
    assert not config.seamless_transitions


def test_load_parses_known_keys(tmp_path):
    path = tmp_path / "config"
    path.write_text(
        "# MotionWall Configuration File\n"
        "media_player=vlc\n"
        "playlist_duration=12\n"
        "playlist_shuffle=true\n"
        "playlist_loop=false\n"
        "multi_monitor=yes\n"
        "per_monitor_content=true\n"
        "\n"
        "unknown_key=1\n"
        "no equals sign here\n"
    )

    config = MotionWallConfig.from_file(path)

    assert config.media_player == "vlc"
    assert config.playlist_duration == 12
    assert config.playlist_shuffle
    assert not config.playlist_loop
    # only the literal "true" enables a flag
    assert not config.multi_monitor
    assert config.per_monitor_content
    assert not hasattr(config, "unknown_key")


def test_invalid_duration_keeps_previous_value(tmp_path):
    path = tmp_path / "config"
    path.write_text("playlist_duration=soon\n")

    config = MotionWallConfig(playlist_duration=45)
    config.load(path)

    assert config.playlist_duration == 45


def test_missing_file_keeps_defaults(tmp_path):
    assert MotionWallConfig.from_file(tmp_path / "nope") == MotionWallConfig()


def test_save_writes_every_key(tmp_path):
    path = tmp_path / "nested" / "config"
    config = MotionWallConfig(media_player="mplayer", playlist_duration=5, seamless_transitions=True)

    config.save(path)

    lines = path.read_text().splitlines()
    assert lines[0].startswith("#")
    assert "media_player=mplayer" in lines
    assert "playlist_duration=5" in lines
    assert "seamless_transitions=true" in lines
    assert "multi_monitor=false" in lines
    assert MotionWallConfig.from_file(path) == config
