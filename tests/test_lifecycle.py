import pytest

from korasi.core.exceptions import ConfigError, ProvisionError, TeardownError
from korasi.domain.instance.lifecycle import InstanceLifecycle
from korasi.domain.instance.models import InstanceDescription, InstanceState, LaunchSpec, ProviderState

from conftest import FakeProvisioner


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def make_lifecycle(provisioner, clock=None, reachable=lambda address, port: True, **kwargs):
    clock = clock or FakeClock()
    return InstanceLifecycle(
        provisioner,
        boot_timeout=30,
        poll_interval=5,
        reachable=reachable,
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


SPEC = LaunchSpec(image_id="ami-123", instance_type="t4g.micro", name="brisk-otter", labels={"team": "ml"})


def test_provision_waits_until_reachable():
    provisioner = FakeProvisioner(descriptions=[
        InstanceDescription(ProviderState.PENDING),
        InstanceDescription(ProviderState.RUNNING, "203.0.113.10"),
    ])
    lifecycle = make_lifecycle(provisioner)

    instance = lifecycle.provision(SPEC)

    assert instance.state is InstanceState.READY
    assert instance.public_address == "203.0.113.10"
    assert provisioner.described == 2
    assert provisioner.tags == [(instance.id, {"team": "ml", "Name": "brisk-otter"})]


def test_running_but_unreachable_keeps_polling():
    answers = iter([False, False, True])
    provisioner = FakeProvisioner()
    lifecycle = make_lifecycle(provisioner, reachable=lambda address, port: next(answers))

    lifecycle.provision(SPEC)
    assert provisioner.described == 3


def test_boot_timeout_still_terminates_exactly_once():
    provisioner = FakeProvisioner(descriptions=[InstanceDescription(ProviderState.PENDING)] * 100)
    clock = FakeClock()

    with pytest.raises(ProvisionError) as exc_info:
        with make_lifecycle(provisioner, clock=clock) as lifecycle:
            lifecycle.provision(SPEC)

    assert exc_info.value.kind is ProvisionError.Kind.TIMEOUT
    assert clock.now >= 30
    assert provisioner.terminated == ["i-0001"]
    lifecycle.terminate()
    assert provisioner.terminated == ["i-0001"]


def test_instance_gone_while_booting():
    provisioner = FakeProvisioner(descriptions=[InstanceDescription(ProviderState.TERMINATED)])
    lifecycle = make_lifecycle(provisioner)

    with pytest.raises(ProvisionError) as exc_info:
        lifecycle.provision(SPEC)
    assert exc_info.value.kind is ProvisionError.Kind.TERMINATED_EARLY


def test_keep_skips_termination():
    provisioner = FakeProvisioner()
    with make_lifecycle(provisioner, keep=True) as lifecycle:
        lifecycle.provision(SPEC)
    assert provisioner.terminated == []
    assert lifecycle.state is InstanceState.READY


def test_terminate_failure_becomes_teardown_error():
    provisioner = FakeProvisioner()
    provisioner.terminate_error = ProvisionError("throttled", kind=ProvisionError.Kind.FAILED)
    lifecycle = make_lifecycle(provisioner)
    lifecycle.provision(SPEC)

    with pytest.raises(TeardownError) as exc_info:
        lifecycle.terminate()
    assert "billable" in exc_info.value.hint


def test_teardown_error_does_not_mask_original_error():
    provisioner = FakeProvisioner(descriptions=[InstanceDescription(ProviderState.TERMINATED)])
    provisioner.terminate_error = ProvisionError("throttled", kind=ProvisionError.Kind.FAILED)

    with pytest.raises(ProvisionError):
        with make_lifecycle(provisioner) as lifecycle:
            lifecycle.provision(SPEC)
    assert len(provisioner.terminated) == 1


def test_attach_reuses_existing_instance():
    provisioner = FakeProvisioner()
    instance = make_lifecycle(provisioner).attach("i-kept")
    assert instance.id == "i-kept"
    assert instance.state is InstanceState.READY
    assert provisioner.launched == []


def test_invalid_spec_launches_nothing():
    provisioner = FakeProvisioner()
    with pytest.raises(ConfigError):
        make_lifecycle(provisioner).provision(LaunchSpec(image_id="", instance_type="t4g.micro"))
    assert provisioner.launched == []


def test_unknown_id_right_after_launch_keeps_polling():
    provisioner = FakeProvisioner(descriptions=[
        InstanceDescription(ProviderState.MISSING),
        InstanceDescription(ProviderState.RUNNING, "203.0.113.10"),
    ])
    lifecycle = make_lifecycle(provisioner)

    assert lifecycle.provision(SPEC).state is InstanceState.READY
    assert provisioner.described == 2


def test_attach_to_missing_instance_fails_immediately():
    provisioner = FakeProvisioner(descriptions=[InstanceDescription(ProviderState.MISSING)])
    lifecycle = make_lifecycle(provisioner)

    with pytest.raises(ProvisionError) as exc_info:
        lifecycle.attach("i-gone")
    assert exc_info.value.kind is ProvisionError.Kind.TERMINATED_EARLY
    assert provisioner.described == 1
    assert lifecycle.instance is None
    assert lifecycle.terminate() is False
    assert provisioner.terminated == []


def test_attach_to_stopped_instance_points_at_start():
    provisioner = FakeProvisioner(descriptions=[InstanceDescription(ProviderState.STOPPED)])
    lifecycle = make_lifecycle(provisioner)

    with pytest.raises(ProvisionError) as exc_info:
        lifecycle.attach("i-0042")
    assert "korasi start i-0042" in exc_info.value.hint
    assert provisioner.described == 1
