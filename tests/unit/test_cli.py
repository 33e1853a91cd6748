"""
Unit tests for salescrm/cli/main.py.

Mocking strategy:
  - patch salescrm.cli.main.build_runtime to hand every command one shared
    memory-backed Runtime, seeded through the real engine
  - patch salescrm.cli.main.configure_logging (autouse) to prevent file I/O
  - use click.testing.CliRunner to invoke commands end-to-end
"""

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import click
import pandas as pd
import psycopg2
import pytest
from click.testing import CliRunner

from salescrm.cli.main import cli, _parse_amount, _prompt_email, _width
from salescrm.errors import StoreError, ValidationError
from salescrm.models import Column
from salescrm.runtime import build_runtime

ADMIN_EMAIL = 'ana@example.com'


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def no_logging():
    """Prevent configure_logging from creating log files during tests."""
    with patch("salescrm.cli.main.configure_logging"):
        yield


@pytest.fixture
def settings(tmp_path):
    return SimpleNamespace(
        STORE_BACKEND='memory',
        DATABASE_URL=None,
        CURRENT_USER_EMAIL=ADMIN_EMAIL,
        NOTIFICATION_POLL_SECONDS=0.01,
        NOTIFICATION_LIMIT=20,
        CONTACT_LIST_LIMIT=500,
        PREFERENCES_PATH=tmp_path / 'preferences.json',
        CURRENCY='€',
    )


@pytest.fixture
def rt(settings):
    runtime = build_runtime(settings)
    with patch("salescrm.cli.main.build_runtime", return_value=runtime):
        yield runtime


def run(coro):
    return asyncio.run(coro)


def add_contact(rt, **fields):
    return run(rt.machine.create_contact(fields))


@pytest.fixture
def acme(rt):
    return add_contact(rt, prenom='Marie', nom='Durand', societe='Acme Corp', email='marie@acme.test',
                       statut='Négociation', valeur_estimee=1200, temperature='Chaud', tags=['vip'])


@pytest.fixture
def other(rt):
    return add_contact(rt, prenom='Paul', nom='Martin', societe='Other', statut='Prospect',
                       valeur_estimee=300, source='Salon')


@pytest.fixture
def admin(rt):
    return run(rt.users.create({'email': ADMIN_EMAIL, 'full_name': 'Ana Lopez', 'role': 'admin',
                                'last_seen': datetime.now(timezone.utc)}))


def add_notifications(rt, user, unread=2, read=0):
    async def seed():
        for i in range(unread):
            await rt.notifications.create({'user_id': user.id, 'title': f'Relance {i}', 'message': 'À rappeler'})
        for i in range(read):
            await rt.notifications.create({'user_id': user.id, 'title': f'Lu {i}', 'read': True})
    run(seed())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:

    def test_parse_amount(self):
        assert str(_parse_amount('1 200,50')) == '1200.50'
        assert _parse_amount('') is None
        with pytest.raises(ValidationError):
            _parse_amount('beaucoup')

    def test_width(self):
        assert _width(Column('email', 'Email', width='220px')) == 22
        assert _width(Column('x', 'X', width='50px')) == 8
        assert _width(Column('x', 'X', width='auto')) == 15

    def test_prompt_email_reprompts_on_bad_format(self, runner):
        @click.command()
        def cmd():
            click.echo(f"got={_prompt_email()}")

        result = runner.invoke(cmd, input="not-an-email\nmarie@acme.test\n")
        assert "Invalid email address" in result.output
        assert "got=marie@acme.test" in result.output

    def test_prompt_email_blank_is_none(self, runner):
        @click.command()
        def cmd():
            click.echo(f"got={_prompt_email()}")

        result = runner.invoke(cmd, input="\n")
        assert "got=None" in result.output


# ---------------------------------------------------------------------------
# contacts list
# ---------------------------------------------------------------------------

class TestContactsList:

    def test_empty(self, runner, rt):
        result = runner.invoke(cli, ["contacts", "list"])
        assert result.exit_code == 0
        assert "No contacts match." in result.output

    def test_lists_visible_columns(self, runner, rt, acme, other):
        result = runner.invoke(cli, ["contacts", "list"])
        assert result.exit_code == 0
        assert "Found 2 contacts (prospects: 1, clients: 0, in negotiation: 1)" in result.output
        assert "Acme Corp" in result.output
        assert "Société" in result.output
        assert "Valeur" not in result.output

    def test_search(self, runner, rt, acme, other):
        result = runner.invoke(cli, ["contacts", "list", "--search", "acme"])
        assert "Found 1 contacts" in result.output
        assert acme.id in result.output
        assert other.id not in result.output

    def test_stage_and_tag_filters(self, runner, rt, acme, other):
        result = runner.invoke(cli, ["contacts", "list", "--stage", "Prospect", "--tag", "vip"])
        assert "No contacts match." in result.output

    def test_invalid_stage_choice(self, runner, rt):
        result = runner.invoke(cli, ["contacts", "list", "--stage", "Won"])
        assert result.exit_code != 0

    def test_respects_column_preferences(self, runner, rt, acme):
        rt.columns.show_only(['nom', 'valeur_estimee'])
        result = runner.invoke(cli, ["contacts", "list"])
        assert "Valeur" in result.output
        assert "1200" in result.output
        assert "Société" not in result.output

    def test_store_error_reported(self, runner, rt):
        with patch.object(rt.contacts, 'list', AsyncMock(side_effect=StoreError("db unreachable"))):
            result = runner.invoke(cli, ["contacts", "list"])
        assert "Error: db unreachable" in result.output


# ---------------------------------------------------------------------------
# contacts show / add / edit / move / log / delete
# ---------------------------------------------------------------------------

class TestContactsShow:

    def test_details_and_history(self, runner, rt, acme):
        result = runner.invoke(cli, ["contacts", "show", acme.id])
        assert result.exit_code == 0
        assert "Marie Durand" in result.output
        assert "1,200.00 €" in result.output
        assert "INTERACTION HISTORY" in result.output
        assert "Contact créé" in result.output

    def test_unknown_contact(self, runner, rt):
        result = runner.invoke(cli, ["contacts", "show", "missing"])
        assert "Error: Contact 'missing' not found" in result.output


class TestContactsAdd:

    def test_creates_contact(self, runner, rt):
        answers = "Marie\nDurand\nAcme Corp\nmarie@acme.test\n\nLinkedIn\nQualifié\n1 200\nChaud\nvip, salon\n\n"
        result = runner.invoke(cli, ["contacts", "add"], input=answers)

        assert result.exit_code == 0
        assert "✓ Created contact" in result.output
        contact = run(rt.machine.list_contacts())[0]
        assert contact.statut == 'Qualifié'
        assert str(contact.valeur_estimee) == '1200'
        assert contact.tags == ['vip', 'salon']

    def test_invalid_source_reported(self, runner, rt):
        answers = "\nDurand\n\n\n\nFax\nProspect\n\n\n\n\n"
        result = runner.invoke(cli, ["contacts", "add"], input=answers)
        assert "Error: Unknown source 'Fax'" in result.output
        assert run(rt.machine.list_contacts()) == []


class TestContactsEdit:

    def test_updates_fields(self, runner, rt, acme):
        result = runner.invoke(cli, ["contacts", "edit", acme.id, "--email", "m.durand@acme.test", "--value", "900"])
        assert "✓ Updated contact" in result.output
        contact = run(rt.machine.get_contact(acme.id))
        assert contact.email == 'm.durand@acme.test'
        assert str(contact.valeur_estimee) == '900'

    def test_stage_option_writes_audit_event(self, runner, rt, acme):
        runner.invoke(cli, ["contacts", "edit", acme.id, "--stage", "Client"])
        [event] = run(rt.interactions.filter({'contact_id': acme.id, 'type': 'Modification'}))
        assert event.statut_precedent == 'Négociation'
        assert event.statut_actuel == 'Client'

    def test_no_updates(self, runner, rt, acme):
        result = runner.invoke(cli, ["contacts", "edit", acme.id])
        assert "No updates specified" in result.output

    def test_bad_amount(self, runner, rt, acme):
        result = runner.invoke(cli, ["contacts", "edit", acme.id, "--value", "lots"])
        assert "Error: Not an amount" in result.output


class TestContactsMove:

    def test_moves_and_reports_previous_stage(self, runner, rt, acme):
        result = runner.invoke(cli, ["contacts", "move", acme.id, "Client"])
        assert result.exit_code == 0
        assert f"✓ Moved contact {acme.id}: Négociation → Client" in result.output
        assert run(rt.machine.get_contact(acme.id)).statut == 'Client'

    def test_same_stage(self, runner, rt, acme):
        result = runner.invoke(cli, ["contacts", "move", acme.id, "Négociation"])
        assert f"Contact {acme.id} is already in Négociations." in result.output
        assert [i.type for i in run(rt.machine.history(acme.id))] == ['Note']

    def test_unknown_contact(self, runner, rt):
        result = runner.invoke(cli, ["contacts", "move", "missing", "Client"])
        assert "Error: Contact 'missing' not found" in result.output


class TestContactsLog:

    def test_logs_call(self, runner, rt, acme):
        result = runner.invoke(cli, ["contacts", "log", acme.id, "--description", "Relance devis"])
        assert "✓ Logged Appel" in result.output
        [call] = run(rt.interactions.filter({'contact_id': acme.id, 'type': 'Appel'}))
        assert call.description == 'Relance devis'

    def test_modification_not_allowed(self, runner, rt, acme):
        result = runner.invoke(cli, ["contacts", "log", acme.id, "--type", "Modification", "--description", "x"])
        assert result.exit_code != 0


class TestContactsDelete:

    def test_delete_with_yes(self, runner, rt, acme):
        result = runner.invoke(cli, ["contacts", "delete", acme.id, "--yes"])
        assert f"✓ Deleted contact {acme.id}" in result.output
        assert run(rt.machine.list_contacts()) == []
        assert len(run(rt.interactions.filter({'contact_id': acme.id}))) == 1

    def test_delete_cancelled(self, runner, rt, acme):
        result = runner.invoke(cli, ["contacts", "delete", acme.id], input="n\n")
        assert "Cancelled." in result.output
        assert len(run(rt.machine.list_contacts())) == 1


# ---------------------------------------------------------------------------
# contacts export / import
# ---------------------------------------------------------------------------

class TestTransfer:

    def test_export_filtered(self, runner, rt, acme, other, tmp_path):
        path = tmp_path / 'out.csv'
        result = runner.invoke(cli, ["contacts", "export", str(path), "--source", "Salon"])
        assert "✓ Exported 1 contacts" in result.output
        assert list(pd.read_csv(path, dtype=object)['nom']) == ['Martin']

    def test_import(self, runner, rt, acme, tmp_path):
        path = tmp_path / 'in.csv'
        path.write_text("nom,email\nDurand,marie@acme.test\nPetit,petit@globex.test\nSans,\n", encoding='utf-8')
        result = runner.invoke(cli, ["contacts", "import", str(path)])
        assert "Created: 2" in result.output
        assert "Skipped (duplicates): 1" in result.output
        assert "Failed: 0" in result.output


# ---------------------------------------------------------------------------
# pipeline
# ---------------------------------------------------------------------------

class TestPipeline:

    def test_summary_excludes_lost_from_pipeline_value(self, runner, rt):
        add_contact(rt, nom='A', statut='Prospect', valeur_estimee=100)
        add_contact(rt, nom='B', statut='Client', valeur_estimee=200)
        add_contact(rt, nom='C', statut='Perdu', valeur_estimee=50)

        result = runner.invoke(cli, ["pipeline"])

        assert result.exit_code == 0
        assert "SALES PIPELINE" in result.output
        assert "Total contacts:       3" in result.output
        assert "Total pipeline value: 300.00 €" in result.output
        assert "50.00 €" in result.output
        assert "Propositions" in result.output

    def test_follows_filters(self, runner, rt, acme, other):
        result = runner.invoke(cli, ["pipeline", "--temperature", "Chaud"])
        assert "Total pipeline value: 1,200.00 €" in result.output


# ---------------------------------------------------------------------------
# columns
# ---------------------------------------------------------------------------

class TestColumns:

    def test_show_defaults(self, runner, rt):
        result = runner.invoke(cli, ["columns", "show"])
        assert "[x] prenom" in result.output
        assert "[ ] notes" in result.output

    def test_set_and_reset(self, runner, rt):
        result = runner.invoke(cli, ["columns", "set", "nom, notes"])
        assert "✓ Visible columns: nom, notes" in result.output
        assert [c.id for c in rt.columns.visible_columns()] == ['nom', 'notes']

        result = runner.invoke(cli, ["columns", "reset"])
        assert "✓ Columns reset to defaults" in result.output
        assert 'prenom' in [c.id for c in rt.columns.visible_columns()]

    def test_set_unknown_column(self, runner, rt):
        result = runner.invoke(cli, ["columns", "set", "nom,shoe_size"])
        assert "Error: Unknown column ids: ['shoe_size']" in result.output


# ---------------------------------------------------------------------------
# notifications
# ---------------------------------------------------------------------------

class TestNotifications:

    def test_list(self, runner, rt, admin):
        add_notifications(rt, admin, unread=2, read=1)
        result = runner.invoke(cli, ["notifications", "list"])
        assert "2 unread" in result.output
        assert "Relance 1" in result.output
        assert "À rappeler" in result.output

    def test_list_without_user(self, runner, rt, settings):
        settings.CURRENT_USER_EMAIL = ''
        result = runner.invoke(cli, ["notifications", "list"])
        assert "No current user" in result.output

    def test_read_one(self, runner, rt, admin):
        add_notifications(rt, admin, unread=2)
        target = run(rt.notifications.filter({'user_id': admin.id}))[0]
        result = runner.invoke(cli, ["notifications", "read", target.id])
        assert "✓ Marked as read (1 unread)" in result.output

    def test_read_all(self, runner, rt, admin):
        add_notifications(rt, admin, unread=3)
        result = runner.invoke(cli, ["notifications", "read-all"])
        assert "✓ All notifications marked as read" in result.output
        assert run(rt.notifications.filter({'read': False})) == []

    def test_read_all_reports_failed_saves(self, runner, rt, admin):
        add_notifications(rt, admin, unread=2)
        with patch.object(rt.notifications, 'update', AsyncMock(side_effect=StoreError("timeout"))):
            result = runner.invoke(cli, ["notifications", "read-all"])
        assert "✓ All notifications marked as read" in result.output
        assert "2 could not be saved" in result.output

    def test_watch_prints_unread_count(self, runner, rt, admin):
        add_notifications(rt, admin, unread=4)
        result = runner.invoke(cli, ["notifications", "watch", "--duration", "0.05"])
        assert result.exit_code == 0
        assert "4 unread" in result.output


# ---------------------------------------------------------------------------
# users
# ---------------------------------------------------------------------------

class TestUsers:

    def test_list(self, runner, rt, admin):
        run(rt.users.create({'email': 'paul@example.com', 'full_name': 'Paul Martin',
                             'last_seen': datetime.now(timezone.utc) - timedelta(hours=2)}))
        result = runner.invoke(cli, ["users", "list"])
        assert "2 users (1 admins, 1 users, 1 online)" in result.output
        assert "En ligne" in result.output
        assert "Il y a 2h" in result.output

    def test_list_role_filter(self, runner, rt, admin):
        run(rt.users.create({'email': 'paul@example.com'}))
        result = runner.invoke(cli, ["users", "list", "--role", "admin"])
        assert ADMIN_EMAIL in result.output
        assert "paul@example.com" not in result.output

    def test_change_role(self, runner, rt, admin):
        paul = run(rt.users.create({'email': 'paul@example.com', 'full_name': 'Paul Martin'}))
        result = runner.invoke(cli, ["users", "role", paul.id, "admin"])
        assert "✓ Paul Martin is now admin" in result.output

    def test_cannot_change_own_role(self, runner, rt, admin):
        result = runner.invoke(cli, ["users", "role", admin.id, "user"])
        assert "Error: Administrators cannot change their own role" in result.output


# ---------------------------------------------------------------------------
# db
# ---------------------------------------------------------------------------

class TestDb:

    def test_init_applies_schema(self, runner):
        with patch('salescrm.cli.main.apply_schema') as apply:
            result = runner.invoke(cli, ["db", "init"])
        apply.assert_called_once_with()
        assert "✓ Schema applied" in result.output

    def test_init_reports_connection_failure(self, runner):
        with patch('salescrm.cli.main.apply_schema',
                   side_effect=psycopg2.OperationalError("connection refused")):
            result = runner.invoke(cli, ["db", "init"])
        assert "Error: connection refused" in result.output
        assert "Schema applied" not in result.output
