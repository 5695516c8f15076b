"""Unit tests for the Pulumi backend."""

from types import SimpleNamespace

import pytest

from infratest.errors import HarnessError, OutputNotFoundError
from infratest.models import ProvisionOptions
from infratest.pulumi_backend import PulumiProvisioner, config_value


class FakeStack:
    """Stands in for pulumi.automation.Stack."""

    def __init__(self, outputs=None):
        self.config = {}
        self.calls = []
        self._outputs = outputs or {}
        self.workspace = SimpleNamespace(remove_stack=lambda name: self.calls.append(f"rm {name}"))

    def set_all_config(self, config):
        self.config.update(config)

    def preview(self, on_output=None):
        self.calls.append("preview")
        on_output("Previewing update (test)")
        return SimpleNamespace(change_summary={"create": 23})

    def up(self, on_output=None):
        self.calls.append("up")
        return SimpleNamespace(summary=SimpleNamespace(result="succeeded"))

    def destroy(self, on_output=None):
        self.calls.append("destroy")

    def outputs(self):
        return {name: SimpleNamespace(value=value, secret=False) for name, value in self._outputs.items()}


@pytest.fixture
def pulumi_options(tmp_path):
    return ProvisionOptions(
        working_dir=tmp_path,
        stack_name="test-platform-test",
        vars={
            "customerName": "test-platform",
            "availabilityZones": ["us-east-1a", "us-east-1b", "us-east-1c"],
            "nodeMinSize": 1,
        },
    )


@pytest.fixture
def fake_stack(monkeypatch):
    stack = FakeStack(outputs={"vpc_id": "vpc-0abc", "private_subnet_ids": ["s-1", "s-2", "s-3"]})
    selected = {}

    def create_or_select_stack(stack_name, work_dir, opts=None):
        selected.update(stack_name=stack_name, work_dir=work_dir)
        return stack

    monkeypatch.setattr("infratest.pulumi_backend.auto.create_or_select_stack", create_or_select_stack)
    stack.selected = selected
    return stack


class TestConfigValue:
    """Test rendering of config values."""

    def test_scalars(self):
        assert config_value("t3.medium") == "t3.medium"
        assert config_value(2) == "2"
        assert config_value(True) == "true"

    def test_lists_are_comma_separated(self):
        assert config_value(["us-east-1a", "us-east-1b"]) == "us-east-1a,us-east-1b"

    def test_maps_are_json(self):
        assert config_value({"b": 1, "a": "x"}) == '{"a": "x", "b": 1}'


class TestPulumiProvisioner:
    """Test the stack lifecycle."""

    def test_requires_stack_name(self, tmp_path):
        with pytest.raises(ValueError):
            PulumiProvisioner(ProvisionOptions(working_dir=tmp_path))

    def test_init_selects_stack_and_sets_config(self, pulumi_options, fake_stack):
        PulumiProvisioner(pulumi_options).init()

        assert fake_stack.selected == {
            "stack_name": "test-platform-test",
            "work_dir": str(pulumi_options.working_dir),
        }
        assert fake_stack.config["availabilityZones"].value == "us-east-1a,us-east-1b,us-east-1c"
        assert fake_stack.config["nodeMinSize"].value == "1"

    def test_plan_apply_destroy(self, pulumi_options, fake_stack):
        provisioner = PulumiProvisioner(pulumi_options)
        provisioner.init_and_plan()
        provisioner.apply()
        provisioner.destroy()

        assert fake_stack.calls == ["preview", "up", "destroy", "rm test-platform-test"]

    def test_outputs(self, pulumi_options, fake_stack):
        provisioner = PulumiProvisioner(pulumi_options)
        provisioner.init()

        assert provisioner.output("vpc_id") == "vpc-0abc"
        assert provisioner.output_list("private_subnet_ids") == ["s-1", "s-2", "s-3"]
        with pytest.raises(OutputNotFoundError):
            provisioner.output("cluster_name")

    def test_steps_need_init(self, pulumi_options):
        with pytest.raises(HarnessError):
            PulumiProvisioner(pulumi_options).plan()
