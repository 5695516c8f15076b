"""Shared pytest configuration.

The harness plugin provides the ``infra`` marker, ``--run-infra`` and the
``terraform_module`` fixture used by the integration suites.
"""

pytest_plugins = ["infratest.pytest_plugin", "pytester"]
