"""pytest plugin: the ``infra`` marker, ``--run-infra`` and module fixtures.

Enable it from a conftest with ``pytest_plugins = ["infratest.pytest_plugin"]``.
Tests marked ``infra`` provision real resources and are skipped unless
``--run-infra`` (or ``INFRATEST_RUN_INFRA=true``) is given and the terraform
binary is on PATH. Each test tears down what it created, so tests can run in
parallel with ``pytest -n auto``.
"""

import os
import shutil
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

import pytest

from infratest.ledger import RunLedger
from infratest.log import configure_logging
from infratest.models import Backend, ProvisionOptions, with_default_retryable_errors
from infratest.naming import unique_name
from infratest.session import ProvisionSession
from infratest.settings import HarnessSettings, get_settings
from infratest.terraform import TerraformProvisioner

INFRA_MARKER = "infra"


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("infratest")
    group.addoption(
        "--run-infra",
        action="store_true",
        default=False,
        help="run tests marked 'infra' (provisions real cloud resources)",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        f"{INFRA_MARKER}: provisions real infrastructure; needs --run-infra and the terraform binary",
    )
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)


def infra_skip_reason(config: pytest.Config, settings: HarnessSettings) -> Optional[str]:
    """Why infra tests cannot run in this session, or None if they can."""
    if not (config.getoption("--run-infra") or settings.run_infra):
        return "infra tests need --run-infra or INFRATEST_RUN_INFRA=true"
    if shutil.which(settings.terraform_binary) is None:
        return f"{settings.terraform_binary} binary not found"
    return None


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    reason = infra_skip_reason(config, get_settings())
    if reason is None:
        return
    skip = pytest.mark.skip(reason=reason)
    for item in items:
        if item.get_closest_marker(INFRA_MARKER):
            item.add_marker(skip)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo) -> Iterator[None]:
    outcome = yield
    report = outcome.get_result()
    setattr(item, f"infratest_report_{report.when}", report)


def module_options(
    settings: HarnessSettings,
    working_dir: Path,
    vars: Optional[dict[str, Any]] = None,
    **overrides: Any,
) -> ProvisionOptions:
    """Options for a module under test, with the default retryable errors."""
    env_vars = dict(overrides.pop("env_vars", {}))
    if "AWS_REGION" not in os.environ:
        env_vars.setdefault("AWS_REGION", settings.aws_region)

    fields: dict[str, Any] = {
        "working_dir": working_dir,
        "vars": vars or {},
        "env_vars": env_vars,
        "binary": settings.terraform_binary,
        "max_retries": settings.max_retries,
        "time_between_retries": settings.time_between_retries,
    }
    fields.update(overrides)
    return with_default_retryable_errors(ProvisionOptions(**fields))


@pytest.fixture(scope="session")
def harness_settings() -> HarnessSettings:
    return get_settings()


@pytest.fixture(scope="session")
def run_ledger(harness_settings: HarnessSettings) -> RunLedger:
    return RunLedger(harness_settings.ledger_url)


@pytest.fixture
def terraform_module(
    request: pytest.FixtureRequest,
    harness_settings: HarnessSettings,
    run_ledger: RunLedger,
) -> Iterator[Callable[..., ProvisionSession]]:
    """Factory that plans a Terraform module and destroys it after the test.

    ``terraform_module("vpc", vars={...})`` resolves the module under
    ``INFRATEST_MODULES_DIR``, runs init and plan, and returns the session for
    reading outputs. Pass ``plan=False`` to drive the steps yourself.

    With ``isolate=True`` the modules directory is copied to
    ``INFRATEST_WORK_DIR/<run_id>`` so parallel runs of the same module do not
    share its .terraform directory or local state. The copy outlives the test
    session and is removed only once the run is destroyed, so
    ``infratest cleanup`` can still destroy a run whose teardown failed.

    Teardown runs whether the test passed or failed. A failing destroy errors
    the test only when the test itself passed.
    """
    sessions: list[tuple[ProvisionSession, Optional[Path]]] = []

    def _factory(
        module: Union[str, Path],
        vars: Optional[dict[str, Any]] = None,
        plan: bool = True,
        isolate: bool = False,
        **overrides: Any,
    ) -> ProvisionSession:
        path = Path(module)
        working_dir = path if path.is_absolute() else harness_settings.module_path(str(module))
        run_id = unique_name(working_dir.name)

        work_copy = None
        if isolate:
            modules_root = harness_settings.modules_dir
            if not working_dir.resolve().is_relative_to(modules_root.resolve()):
                modules_root = working_dir.parent
            work_copy = (harness_settings.work_dir / run_id).resolve()
            working_dir = copy_module(modules_root, working_dir, work_copy)
        options = module_options(harness_settings, working_dir, vars, **overrides)

        session = ProvisionSession(
            TerraformProvisioner(options),
            backend=Backend.TERRAFORM,
            ledger=run_ledger,
            run_id=run_id,
        )
        sessions.append((session, work_copy))
        if plan:
            session.init_and_plan()
        return session

    yield _factory

    report = getattr(request.node, "infratest_report_call", None)
    test_failed = report is not None and report.failed
    errors: list[Exception] = []
    for session, work_copy in reversed(sessions):
        if test_failed:
            session.mark_failed(AssertionError(str(report.longrepr)))
        else:
            session.mark_succeeded()
        try:
            session.teardown(raise_errors=not test_failed)
        except Exception as e:
            errors.append(e)
        if work_copy is not None and session.destroyed:
            shutil.rmtree(work_copy, ignore_errors=True)
    if errors:
        raise errors[0]


def copy_module(modules_root: Path, module_dir: Path, destination: Path) -> Path:
    """Copy a modules directory without .terraform directories or local state.

    The whole of ``modules_root`` is copied so relative module sources such as
    ``../vpc`` still resolve inside the copy.

    Args:
        modules_root: Directory holding ``module_dir``
        module_dir: The module under test
        destination: New directory to copy ``modules_root`` into

    Returns:
        The module's directory inside the copy
    """
    shutil.copytree(
        modules_root,
        destination,
        ignore=shutil.ignore_patterns(".terraform", "*.tfstate", "*.tfstate.backup", ".terraform.lock.hcl"),
    )
    return destination / module_dir.resolve().relative_to(modules_root.resolve())
