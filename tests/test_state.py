import random

from korasi.core.utils import backoff_delay, expand_home, generate_instance_name, names_home, shell_command
from korasi.infrastructure.state.file_store import FileStateStore


def test_save_load_delete(tmp_path):
    store = FileStateStore(tmp_path / "state")
    store.save("instance", {"instance_id": "i-1", "created_at": 1.5})

    assert store.exists("instance")
    assert store.load("instance") == {"instance_id": "i-1", "created_at": 1.5}
    assert store.list() == ["instance"]

    store.delete("instance")
    assert store.load("instance") is None
    store.delete("instance")


def test_corrupt_record_reads_as_missing(tmp_path):
    store = FileStateStore(tmp_path)
    (tmp_path / "instance.json").write_text("{not json")
    assert store.load("instance") is None


def test_save_leaves_no_temp_files(tmp_path):
    store = FileStateStore(tmp_path)
    store.save("instance", {"instance_id": "i-1"})
    store.save("instance", {"instance_id": "i-2"})
    assert sorted(p.name for p in tmp_path.iterdir()) == ["instance.json"]
    assert store.load("instance")["instance_id"] == "i-2"


def test_backoff_is_capped():
    assert [backoff_delay(a, 2.0, 30.0) for a in range(6)] == [2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


def test_home_expansion(tmp_path):
    assert expand_home("~/x", tmp_path) == f"{tmp_path}/x"
    assert expand_home("$HOME", tmp_path) == str(tmp_path)
    assert expand_home("~user/x", tmp_path) == "~user/x"
    assert names_home("${HOME}/a")
    assert not names_home("src/~")


def test_shell_command_quoting():
    assert shell_command(["make test && echo ok"]) == "make test && echo ok"
    assert shell_command(["python", "train.py", "--name", "my run"]) == "python train.py --name 'my run'"


def test_instance_names_are_deterministic_with_seed():
    assert generate_instance_name(random.Random(7)) == generate_instance_name(random.Random(7))
    assert "-" in generate_instance_name()
