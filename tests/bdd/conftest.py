"""
Shared fixtures and step definitions for BDD tests.

- runner, rt, context: available to all scenario files in this directory
- rt: one memory-backed Runtime per scenario, handed to every CLI command
- no_logging: autouse, prevents log file creation during tests
- contact / output steps: shared across all feature files
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from pytest_bdd import given, then, parsers

from salescrm.runtime import build_runtime

SIGNED_IN_EMAIL = "ana@example.com"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def settings(tmp_path):
    return SimpleNamespace(
        STORE_BACKEND="memory",
        DATABASE_URL=None,
        CURRENT_USER_EMAIL=SIGNED_IN_EMAIL,
        NOTIFICATION_POLL_SECONDS=0.01,
        NOTIFICATION_LIMIT=20,
        CONTACT_LIST_LIMIT=500,
        PREFERENCES_PATH=tmp_path / "preferences.json",
        CURRENCY="€",
    )


@pytest.fixture
def rt(settings):
    runtime = build_runtime(settings)
    with patch("salescrm.cli.main.build_runtime", return_value=runtime):
        yield runtime


@pytest.fixture
def context():
    """Mutable dict shared between Given/When/Then steps within a scenario."""
    return {"contacts": {}}


@pytest.fixture(autouse=True)
def no_logging():
    with patch("salescrm.cli.main.configure_logging"):
        yield


def _add_contact(rt, context, name, company, stage, value=None):
    prenom, _, nom = name.rpartition(" ")
    fields = {"prenom": prenom or None, "nom": nom, "societe": company, "statut": stage}
    if value is not None:
        fields["valeur_estimee"] = value
    context["contacts"][name] = asyncio.run(rt.machine.create_contact(fields))


@given("there are no contacts")
def no_contacts(rt):
    assert asyncio.run(rt.machine.list_contacts()) == []


@given(parsers.parse('a contact "{name}" at "{company}" in stage "{stage}"'))
def contact_in_stage(rt, context, name, company, stage):
    _add_contact(rt, context, name, company, stage)


@given(parsers.parse('a contact "{name}" at "{company}" in stage "{stage}" worth {value:d}'))
def contact_in_stage_with_value(rt, context, name, company, stage, value):
    _add_contact(rt, context, name, company, stage, value)


@then(parsers.parse('the output contains "{text}"'))
def output_contains(context, text):
    assert text in context["result"].output, (
        f"Expected {text!r} in output:\n{context['result'].output}"
    )
