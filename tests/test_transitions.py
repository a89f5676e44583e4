from conftest import FakeController, make_output

from motionwall.playlist import Playlist
from motionwall.transitions import TransitionController, playlist_groups
from motionwall.windows import WindowSlot


def make_slot(index, window, playlist=None):
    return WindowSlot(output_index=index, output=make_output(f"DP-{index}"), window=window, playlist=playlist)


def start(controller, slots, playlist):
    for slot in slots:
        slot.player = controller.spawn(slot, playlist.current_path())


def test_groups_follow_playlist_ownership():
    shared = Playlist(paths=["a", "b"])
    own = Playlist(paths=["x", "y"])
    slots = [make_slot(0, 1), make_slot(1, 2, own), make_slot(2, 3)]

    groups = playlist_groups(slots, shared)

    assert [(p, [s.output_index for s in g]) for p, g in groups] == [(shared, [0, 2]), (own, [1])]


def test_abrupt_replaces_every_player(clock):
    controller = FakeController(clock)
    playlist = Playlist(paths=["a", "b"])
    slots = [make_slot(0, 1), make_slot(1, 2)]
    start(controller, slots, playlist)

    assert TransitionController(controller).transition(playlist, slots)

    assert controller.terminated == [1000, 1001]
    assert [(s.window, s.path) for s in controller.spawns[2:]] == [(1, "b"), (2, "b")]
    assert playlist.current == 1


def test_prestage_replaces_stale_staged_player(clock):
    controller = FakeController(clock)
    playlist = Playlist(paths=["a", "b", "c"])
    slot = make_slot(0, 1)
    start(controller, [slot], playlist)
    transitions = TransitionController(controller, seamless=True)

    transitions.prestage(playlist, [slot])
    stale = slot.staged.pid
    transitions.prestage(playlist, [slot])

    assert stale in controller.terminated
    assert slot.staged.pid != stale
    assert controller.spawns[-1].path == "b"
    assert slot.player.pid == 1000


def test_prestage_is_skipped_when_abrupt(clock):
    controller = FakeController(clock)
    playlist = Playlist(paths=["a", "b"])
    slot = make_slot(0, 1)

    TransitionController(controller).prestage(playlist, [slot])

    assert controller.spawns == []


def test_seamless_mixes_promotion_and_fallback(clock):
    controller = FakeController(clock)
    playlist = Playlist(paths=["a", "b", "c"])
    healthy, broken = make_slot(0, 1), make_slot(1, 2)
    start(controller, [healthy, broken], playlist)
    transitions = TransitionController(controller, seamless=True)
    transitions.prestage(playlist, [healthy, broken])
    promoted = healthy.staged.pid
    controller.dead.add(broken.staged.pid)

    transitions.transition(playlist, [healthy, broken])

    assert healthy.player.pid == promoted
    assert controller.resumed == [promoted]
    assert broken.staged.empty
    assert controller.is_healthy(broken.player)
    assert controller.spawns[-1].path == "b"
    assert playlist.current == 1
    assert controller.alive() == {healthy.player.pid, broken.player.pid}
