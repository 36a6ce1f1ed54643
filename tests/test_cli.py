import io

import pytest
from typer.testing import CliRunner

from korasi.adapters.cli import commands, factory
from korasi.adapters.cli.app import app
from korasi.adapters.config.loader import ConfigLoader
from korasi.core.constants import (
    CACHED_INSTANCE_KEY,
    EXIT_CONFIG_FAILED,
    EXIT_PROVISION_FAILED,
    EXIT_SYNC_FAILED,
)
from korasi.core.exceptions import ProvisionError
from korasi.domain.instance.models import LaunchSpec
from korasi.domain.orchestrator import Orchestrator, OrchestratorOptions
from korasi.infrastructure.state.file_store import FileStateStore

from conftest import FakeProvisioner

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    for key in ConfigLoader.env_mappings:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "cli-home"))


@pytest.fixture()
def fake_build(monkeypatch, provisioner, connector, workspace, local_home, credentials):
    built = []

    def build(settings, workspace_arg, reuse, cancel, progress=None, state_store=None):
        options = OrchestratorOptions(
            workspace=workspace,
            credentials=credentials,
            launch_spec=LaunchSpec(image_id="ami-123", instance_type=settings.instance_type),
            local_home=local_home,
            root_folder=settings.root_folder,
            keep=settings.keep,
        )
        orch = Orchestrator(
            provisioner,
            connector,
            options,
            cancel=cancel,
            reachable=lambda address, port: True,
            sleep=lambda _: None,
            io={"stdin": io.BytesIO(b""), "stdout": io.BytesIO(), "stderr": io.BytesIO()},
        )
        built.append((settings, orch))
        return orch

    monkeypatch.setattr(commands, "build_orchestrator", build)
    return built


def test_run_exits_with_remote_status(fake_build, connector, provisioner):
    connector.exec_result = (b"", b"", 2)

    result = runner.invoke(app, ["run", "make test"])

    assert result.exit_code == 2
    assert provisioner.terminated == ["i-0001"]


def test_run_passes_command_arguments_through(fake_build, connector):
    result = runner.invoke(app, ["run", "--no-sync", "python", "train.py", "--epochs", "3"])

    assert result.exit_code == 0
    command = next(p["command"] for kind, p in connector.last.opened if kind.value == "exec")
    assert command == "python train.py --epochs 3"


def test_global_options_reach_settings(fake_build):
    result = runner.invoke(app, ["--instance-type", "c7g.xlarge", "--keep", "run", "--no-sync", "true"])

    assert result.exit_code == 0
    settings, _ = fake_build[0]
    assert settings.instance_type == "c7g.xlarge"
    assert settings.keep is True


def test_upload_to_missing_destination_fails_with_sync_code(fake_build, provisioner):
    result = runner.invoke(app, ["upload", "src", "missing"])

    assert result.exit_code == EXIT_SYNC_FAILED
    assert provisioner.terminated == ["i-0001"]


def test_upload_no_root_disables_wrapper(fake_build, remote_fs):
    result = runner.invoke(app, ["upload", "output.txt", "--no-root"])

    assert result.exit_code == 0
    settings, _ = fake_build[0]
    assert settings.root_folder == ""
    assert "/home/ubuntu/proj/output.txt" in remote_fs.files


def test_tunnel_rejects_bad_remote(fake_build):
    result = runner.invoke(app, ["tunnel", "8080", "db:http"])

    assert result.exit_code == 2
    assert fake_build == []


def test_teardown_without_kept_instance_is_a_config_error():
    result = runner.invoke(app, ["teardown", "--yes"])

    assert result.exit_code == EXIT_CONFIG_FAILED


def test_version_exits_before_any_command():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert "korasi" in result.output


# --------------------
# Real wiring, recorded AWS calls
# --------------------
class RecordingProvisioner(FakeProvisioner):
    """Provisioner that records every AWS-side change in call order"""

    def __init__(self, rows=None):
        super().__init__()
        self.calls = []
        self.rows = list(rows or [])
        self.launch_error = None

    def ensure_key_pair(self, key_name, key_path):
        self.calls.append(("ensure_key_pair", key_name))
        return key_path

    def ensure_security_group(self, name, ingress_ip=None, port=22):
        self.calls.append(("ensure_security_group", name, ingress_ip))
        return "sg-1"

    def launch(self, spec):
        self.calls.append(("launch", spec.image_id))
        if self.launch_error is not None:
            raise self.launch_error
        return super().launch(spec)

    def list_instances(self):
        return list(self.rows)

    def terminate_instances(self, instance_ids, wait=False):
        self.calls.append(("terminate_instances", list(instance_ids), wait))

    def stop_instances(self, instance_ids, wait=False):
        self.calls.append(("stop_instances", list(instance_ids), wait))

    def start_instances(self, instance_ids, wait=False):
        self.calls.append(("start_instances", list(instance_ids), wait))

    def delete_security_group(self, name):
        self.calls.append(("delete_security_group", name))
        return "sg-1"

    def delete_key_pair(self, key_name):
        self.calls.append(("delete_key_pair", key_name))
        return True


@pytest.fixture()
def recorder(monkeypatch):
    rec = RecordingProvisioner()
    monkeypatch.setattr(factory, "build_provisioner", lambda settings: rec)
    monkeypatch.setattr(commands, "build_provisioner", lambda settings: rec)
    monkeypatch.setattr(factory, "fetch_public_ip", lambda: "1.2.3.4")
    return rec


def test_missing_upload_source_touches_no_aws_resources(recorder, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["--image", "ami-1", "upload", "does-not-exist.txt"])

    assert result.exit_code == EXIT_SYNC_FAILED
    assert recorder.calls == []


def test_aws_prerequisites_run_right_before_launch(recorder, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "notes.txt").write_text("hello")
    recorder.launch_error = ProvisionError("limit reached", kind=ProvisionError.Kind.QUOTA)

    result = runner.invoke(app, ["--image", "ami-1", "upload", "notes.txt"])

    assert result.exit_code == EXIT_PROVISION_FAILED
    assert recorder.calls == [
        ("ensure_key_pair", "ec2-ssh-key"),
        ("ensure_security_group", "allow-ssh", "1.2.3.4"),
        ("launch", "ami-1"),
    ]


def test_teardown_accepts_several_ids(recorder):
    store = FileStateStore()
    store.save(CACHED_INSTANCE_KEY, {"instance_id": "i-b"})

    result = runner.invoke(app, ["teardown", "i-a", "i-b", "--wait", "--yes"])

    assert result.exit_code == 0
    assert recorder.calls == [("terminate_instances", ["i-a", "i-b"], True)]
    assert store.load(CACHED_INSTANCE_KEY) is None


def test_teardown_defaults_to_kept_instance(recorder):
    FileStateStore().save(CACHED_INSTANCE_KEY, {"instance_id": "i-kept"})

    result = runner.invoke(app, ["teardown", "--yes"])

    assert result.exit_code == 0
    assert recorder.calls == [("terminate_instances", ["i-kept"], False)]


def test_stop_and_start_by_id(recorder):
    assert runner.invoke(app, ["stop", "i-a", "--wait"]).exit_code == 0
    assert runner.invoke(app, ["start", "i-a"]).exit_code == 0

    assert recorder.calls == [
        ("stop_instances", ["i-a"], True),
        ("start_instances", ["i-a"], False),
    ]


def test_stop_without_ids_or_kept_instance_is_a_config_error(recorder):
    result = runner.invoke(app, ["stop"])

    assert result.exit_code == EXIT_CONFIG_FAILED
    assert recorder.calls == []


def test_obliterate_removes_instances_group_key_pair_and_key_file(recorder, tmp_path):
    recorder.rows = [{"id": "i-a"}, {"id": "i-b"}]
    key_file = tmp_path / "korasi.pem"
    key_file.write_text("PRIVATE")
    store = FileStateStore()
    store.save(CACHED_INSTANCE_KEY, {"instance_id": "i-a"})

    result = runner.invoke(app, ["--key", str(key_file), "obliterate", "--yes"])

    assert result.exit_code == 0
    assert recorder.calls == [
        ("terminate_instances", ["i-a", "i-b"], True),
        ("delete_security_group", "allow-ssh"),
        ("delete_key_pair", "ec2-ssh-key"),
    ]
    assert not key_file.exists()
    assert store.load(CACHED_INSTANCE_KEY) is None


def test_obliterate_aborts_without_confirmation(recorder, monkeypatch):
    monkeypatch.setattr(commands.prompt_provider, "confirm", lambda message, default=False: False)

    result = runner.invoke(app, ["obliterate"])

    assert result.exit_code == 0
    assert recorder.calls == []
