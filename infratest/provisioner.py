"""Provisioner interface shared by the Terraform and Pulumi backends."""

from abc import ABC, abstractmethod
from typing import Any

from infratest.errors import OutputTypeError
from infratest.models import ProvisionOptions


class Provisioner(ABC):
    """Drives one infrastructure module through an external tool."""

    def __init__(self, options: ProvisionOptions) -> None:
        self.options = options

    @abstractmethod
    def init(self) -> None:
        """Prepare the working directory (providers, backend, stack)."""
        pass

    @abstractmethod
    def plan(self) -> None:
        """Run a dry-run plan with the configured variables."""
        pass

    @abstractmethod
    def apply(self) -> None:
        """Create or update the resources."""
        pass

    @abstractmethod
    def destroy(self) -> None:
        """Tear down everything the module created."""
        pass

    @abstractmethod
    def output_raw(self, name: str) -> Any:
        """Read one output as its decoded JSON value.

        Args:
            name: Output name

        Returns:
            The decoded value

        Raises:
            OutputNotFoundError: No output with that name exists
        """
        pass

    @abstractmethod
    def outputs(self) -> dict[str, Any]:
        """Read every output as decoded JSON values."""
        pass

    def init_and_plan(self) -> None:
        self.init()
        self.plan()

    def init_and_apply(self) -> None:
        self.init()
        self.apply()

    def output(self, name: str) -> str:
        """Read an output as a string.

        Lists and maps are rendered as JSON text; null becomes "".
        """
        value = self.output_raw(name)
        return _to_string(value)

    def output_list(self, name: str) -> list[str]:
        """Read a list output as a list of strings.

        Raises:
            OutputTypeError: The output is not a list
        """
        value = self.output_raw(name)
        if not isinstance(value, list):
            raise OutputTypeError(name, "list", value)
        return [_to_string(item) for item in value]

    def output_map(self, name: str) -> dict[str, str]:
        """Read a map output as a mapping of strings.

        Raises:
            OutputTypeError: The output is not a map
        """
        value = self.output_raw(name)
        if not isinstance(value, dict):
            raise OutputTypeError(name, "map", value)
        return {str(key): _to_string(item) for key, item in value.items()}

    def output_json(self, name: str) -> Any:
        return self.output_raw(name)


def _to_string(value: Any) -> str:
    import json

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)
