"""Run lifecycle: init, plan, read outputs, then unconditional teardown."""

import json
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, TypeVar, Union

import structlog

from infratest.errors import RunNotFoundError
from infratest.ledger import RunLedger
from infratest.models import Backend, ProvisionOptions, RunStatus
from infratest.naming import unique_name
from infratest.provisioner import Provisioner

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def create_provisioner(
    options: ProvisionOptions, backend: Union[Backend, str] = Backend.TERRAFORM
) -> Provisioner:
    """Build the provisioner for ``backend`` (a Backend or its value, e.g. "terraform")."""
    backend = Backend(backend)
    if backend == Backend.TERRAFORM:
        from infratest.terraform import TerraformProvisioner

        return TerraformProvisioner(options)
    if backend == Backend.PULUMI:
        from infratest.pulumi_backend import PulumiProvisioner

        return PulumiProvisioner(options)
    raise ValueError(f"Unknown backend: {backend}")


class ProvisionSession:
    """One provisioning run, with every step recorded in the ledger."""

    def __init__(
        self,
        provisioner: Provisioner,
        backend: Union[Backend, str] = Backend.TERRAFORM,
        ledger: Optional[RunLedger] = None,
        run_id: Optional[str] = None,
    ) -> None:
        backend = Backend(backend)
        self.provisioner = provisioner
        self.backend = backend
        self.ledger = ledger
        self.run_id = run_id or unique_name(provisioner.options.working_dir.name or "run")
        self.torn_down = False
        self.destroyed = False
        self.log = logger.bind(run_id=self.run_id, backend=backend.value)

        if self.ledger is not None:
            self.ledger.create_run(self.run_id, backend, provisioner.options)

    @property
    def options(self) -> ProvisionOptions:
        return self.provisioner.options

    def _record(self, status: RunStatus, outputs: Optional[str] = None, error_message: Optional[str] = None) -> None:
        if self.ledger is not None:
            self.ledger.update_status(self.run_id, status, outputs=outputs, error_message=error_message)

    def run_step(self, status: RunStatus, action: Callable[[], T]) -> T:
        """Run one tool step, recording ``status`` before it and FAILED if it raises."""
        self._record(status)
        self.log.info("step started", step=status.value)
        try:
            return action()
        except Exception as e:
            self._record(RunStatus.FAILED, error_message=str(e))
            raise

    def init(self) -> None:
        self.run_step(RunStatus.INITIALIZING, self.provisioner.init)

    def plan(self) -> None:
        self.run_step(RunStatus.PLANNING, self.provisioner.plan)

    def apply(self) -> None:
        self.run_step(RunStatus.APPLYING, self.provisioner.apply)

    def init_and_plan(self) -> None:
        self.init()
        self.plan()

    def init_and_apply(self) -> None:
        self.init()
        self.apply()

    def output(self, name: str) -> str:
        return self.provisioner.output(name)

    def output_list(self, name: str) -> list[str]:
        return self.provisioner.output_list(name)

    def output_map(self, name: str) -> dict[str, str]:
        return self.provisioner.output_map(name)

    def output_json(self, name: str) -> Any:
        return self.provisioner.output_json(name)

    def outputs(self) -> dict[str, Any]:
        """Read all outputs and keep a copy in the ledger."""
        values = self.provisioner.outputs()
        if self.ledger is not None:
            record = self.ledger.get_run(self.run_id)
            if record is not None:
                self.ledger.update_status(self.run_id, record.status, outputs=json.dumps(values))
        return values

    def mark_succeeded(self) -> None:
        self._record(RunStatus.SUCCEEDED)

    def mark_failed(self, error: BaseException) -> None:
        self._record(RunStatus.FAILED, error_message=str(error) or type(error).__name__)

    def teardown(self, raise_errors: bool = True) -> None:
        """Destroy the module's resources. Later calls are no-ops.

        Args:
            raise_errors: Re-raise a failed destroy; otherwise it is only logged
        """
        if self.torn_down:
            return
        self.torn_down = True

        self._record(RunStatus.DESTROYING)
        self.log.info("tearing down")
        try:
            self.provisioner.destroy()
        except Exception as e:
            self._record(RunStatus.DESTROY_FAILED, error_message=str(e))
            self.log.error("teardown failed", error=str(e))
            if raise_errors:
                raise
            return
        self._record(RunStatus.DESTROYED)
        self.destroyed = True
        self.log.info("teardown finished")


@contextmanager
def provision(
    options: ProvisionOptions,
    backend: Union[Backend, str] = Backend.TERRAFORM,
    ledger: Optional[RunLedger] = None,
    run_id: Optional[str] = None,
    destroy: bool = True,
    provisioner: Optional[Provisioner] = None,
) -> Iterator[ProvisionSession]:
    """Yield a session whose resources are destroyed when the block exits.

    Teardown runs even when the block raises. In that case a failing destroy
    is logged and the block's own error propagates.

    Args:
        options: Provisioning options
        backend: Tool to drive, as a Backend or its value ("terraform", "pulumi")
        ledger: Optional run ledger
        run_id: Run identifier (generated when omitted)
        destroy: Set False to keep the resources around
        provisioner: Pre-built provisioner, overriding ``backend``
    """
    backend = Backend(backend)
    session = ProvisionSession(
        provisioner or create_provisioner(options, backend),
        backend=backend,
        ledger=ledger,
        run_id=run_id,
    )
    try:
        yield session
    except BaseException as e:
        session.mark_failed(e)
        if destroy:
            session.teardown(raise_errors=False)
        raise
    else:
        session.mark_succeeded()
        if destroy:
            session.teardown()


def destroy_recorded_run(ledger: RunLedger, run_id: str, provisioner: Optional[Provisioner] = None) -> None:
    """Destroy a run from the options stored in the ledger.

    Used to clean up runs whose teardown never completed.

    Raises:
        RunNotFoundError: The run is not recorded
    """
    record = ledger.get_run(run_id)
    if record is None:
        raise RunNotFoundError(run_id)

    provisioner = provisioner or create_provisioner(record.provision_options(), record.backend)
    ledger.update_status(run_id, RunStatus.DESTROYING)
    logger.info("destroying recorded run", run_id=run_id, working_dir=record.working_dir)
    try:
        provisioner.init()
        provisioner.destroy()
    except Exception as e:
        ledger.update_status(run_id, RunStatus.DESTROY_FAILED, error_message=str(e))
        raise
    ledger.update_status(run_id, RunStatus.DESTROYED)
