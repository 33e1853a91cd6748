#!/usr/bin/env python3
"""
Sales CRM Terminal CLI
Command-line interface over the contact lifecycle engine: search and filter
contacts, move them through the pipeline, read pipeline health, and manage
notifications and column preferences.
"""

import asyncio
import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import click
import psycopg2

from salescrm.bus.events import bus, EVENT_NOTIFICATIONS_REFRESHED
from salescrm.config import config
from salescrm.db.connection import apply_schema
from salescrm.engine import aggregation, transfer
from salescrm.engine.filters import FilterEngine
from salescrm.engine.stage_machine import MANUAL_INTERACTION_TYPES
from salescrm.engine.users import filter_users, presence, user_stats, change_role
from salescrm.errors import CrmError, ValidationError
from salescrm.logging_config import configure_logging, log_call
from salescrm.models import ALL, FilterState, ROLES, SOURCES, STAGE_IDS, STAGE_NAMES, TEMPERATURES
from salescrm.runtime import build_runtime

_EMAIL_RE = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

STAGE_CHOICES = click.Choice([ALL] + STAGE_IDS)
SOURCE_CHOICES = click.Choice([ALL] + SOURCES)
TEMPERATURE_CHOICES = click.Choice([ALL] + TEMPERATURES)


def _run(coro):
    return asyncio.run(coro)


def _fail(message: str, exc: Exception = None):
    logger = logging.getLogger("salescrm")
    if exc is not None:
        logger.warning(f"{message}: {type(exc).__name__}: {exc}")
        click.echo(f"Error: {exc}", err=True)
    else:
        logger.warning(message)
        click.echo(message, err=True)


def _money(amount, currency: str) -> str:
    return f"{Decimal(amount):,.2f} {currency}"


def _cell(value) -> str:
    if value is None:
        return ''
    if isinstance(value, datetime):
        return value.strftime('%Y-%m-%d')
    if isinstance(value, list):
        return ', '.join(value)
    return str(value)


def _width(column) -> int:
    """'150px' -> 15 characters."""
    digits = ''.join(ch for ch in column.width if ch.isdigit())
    return max(8, int(digits) // 10) if digits else 15


def _parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    if raw is None or raw == '':
        return None
    try:
        return Decimal(raw.replace(' ', '').replace(',', '.'))
    except InvalidOperation:
        raise ValidationError(f"Not an amount: {raw!r}")


def _parse_tags(raw: Optional[str]):
    if raw is None:
        return None
    return [t.strip() for t in raw.split(',') if t.strip()]


def _filter_state(search, stage, source, temperature, tags) -> FilterState:
    return FilterState(
        search=search or '',
        statut=stage,
        source=source,
        temperature=temperature,
        tags=frozenset(tags or ()),
    )


@log_call
def _prompt_email() -> Optional[str]:
    """Prompt for an email address, re-prompting on bad format. Returns None if left blank."""
    logger = logging.getLogger("salescrm")
    while True:
        raw = click.prompt("Email", default="", show_default=False) or None
        if raw is None:
            return None
        if _EMAIL_RE.match(raw):
            return raw
        logger.debug(f"_prompt_email | rejected input={raw!r}")
        click.echo("  Invalid email address, try again or press Enter to skip.", err=True)


@click.group()
def cli():
    """Sales CRM - Contacts, Pipeline & Notifications"""
    configure_logging()


# =============================================================================
# CONTACTS COMMANDS
# =============================================================================

@cli.group()
def contacts():
    """Manage contacts and their pipeline stage"""
    pass


def _filter_options(func):
    func = click.option('--tag', 'tags', multiple=True, help='Keep contacts carrying this tag (repeatable)')(func)
    func = click.option('--temperature', type=TEMPERATURE_CHOICES, default=ALL, help='Filter by temperature')(func)
    func = click.option('--source', type=SOURCE_CHOICES, default=ALL, help='Filter by acquisition source')(func)
    func = click.option('--stage', type=STAGE_CHOICES, default=ALL, help='Filter by pipeline stage')(func)
    func = click.option('--search', '-s', default='', help='Search name, company or email')(func)
    return func


async def _visible_contacts(rt, state: FilterState):
    everything = await rt.machine.list_contacts('-updated_date')
    return FilterEngine().apply(everything, state)


@contacts.command('list')
@_filter_options
@click.option('--limit', default=config.CONTACT_LIST_LIMIT, show_default=True, help='Max rows shown')
@log_call
def contacts_list(search, stage, source, temperature, tags, limit):
    """List contacts matching search and filters"""
    rt = build_runtime()
    state = _filter_state(search, stage, source, temperature, tags)
    try:
        visible = _run(_visible_contacts(rt, state))
        columns = rt.columns.visible_columns()
    except CrmError as e:
        _fail("contacts_list failed", e)
        return

    if not visible:
        click.echo("No contacts match.")
        return

    stats = aggregation.quick_stats(visible)
    click.echo(
        f"\nFound {stats['total']} contacts "
        f"(prospects: {stats['prospects']}, clients: {stats['clients']}, "
        f"in negotiation: {stats['negotiation']}):\n"
    )
    header = f"{'ID':<34}" + ''.join(f"{c.label[:_width(c) - 1]:<{_width(c)}}" for c in columns)
    click.echo(header)
    click.echo("-" * len(header))
    for contact in visible[:limit]:
        line = f"{contact.id:<34}"
        for column in columns:
            w = _width(column)
            line += f"{_cell(getattr(contact, column.id, None))[:w - 1]:<{w}}"
        click.echo(line)


@contacts.command('show')
@click.argument('contact_id')
@log_call
def contacts_show(contact_id):
    """Show full contact details and history"""
    rt = build_runtime()

    async def load():
        return await rt.machine.get_contact(contact_id), await rt.machine.history(contact_id)

    try:
        contact, history = _run(load())
    except CrmError as e:
        _fail(f"contacts_show | contact_id={contact_id}", e)
        return

    currency = rt.settings.CURRENCY
    click.echo(f"\n{'='*80}")
    click.echo(f"CONTACT {contact.id}: {contact.full_name or '(no name)'}")
    click.echo(f"{'='*80}")
    click.echo(f"Company:     {contact.societe or '(not set)'}")
    click.echo(f"Job title:   {contact.fonction or '(not set)'}")
    click.echo(f"Email:       {contact.email or '(not set)'}")
    click.echo(f"Phone:       {contact.telephone or '(not set)'}")
    click.echo(f"Address:     {contact.adresse or '(not set)'}")
    click.echo(f"Source:      {contact.source or '(not set)'}")
    click.echo(f"Stage:       {contact.statut}")
    value = _money(contact.valeur_estimee, currency) if contact.valeur_estimee is not None else 'N/A'
    click.echo(f"Value:       {value}")
    click.echo(f"Temperature: {contact.temperature or '(not set)'}")
    click.echo(f"Tags:        {_cell(contact.tags) or '(none)'}")
    click.echo(f"Last touch:  {contact.derniere_interaction}")
    click.echo(f"Created:     {contact.created_date}")
    click.echo(f"Updated:     {contact.updated_date}")

    if contact.notes:
        click.echo(f"\nNotes:\n{contact.notes}")

    click.echo(f"\n{'='*80}")
    click.echo("INTERACTION HISTORY")
    click.echo(f"{'='*80}")
    if history:
        for i in history:
            click.echo(f"\n[{_cell(i.date_interaction)}] {i.type}")
            if i.description:
                click.echo(f"  {i.description[:100]}")
    else:
        click.echo("No interactions yet.")
    click.echo()


@contacts.command('add')
@log_call
def contacts_add():
    """Add a new contact (interactive)"""
    click.echo("\n=== ADD NEW CONTACT ===\n")

    prenom = click.prompt("First name", default="", show_default=False) or None
    nom = click.prompt("Last name", type=str)
    societe = click.prompt("Company", default="", show_default=False) or None
    email = _prompt_email()
    telephone = click.prompt("Phone", default="", show_default=False) or None
    source = click.prompt(f"Source ({'/'.join(SOURCES)})", default="", show_default=False) or None
    statut = click.prompt("Stage", type=click.Choice(STAGE_IDS), default=STAGE_IDS[0])
    valeur = click.prompt("Estimated value", default="", show_default=False) or None
    temperature = click.prompt(f"Temperature ({'/'.join(TEMPERATURES)})", default="", show_default=False) or None
    tags = click.prompt("Tags (comma separated)", default="", show_default=False) or None
    notes = click.prompt("Notes", default="", show_default=False) or None

    rt = build_runtime()
    try:
        fields = {
            'prenom': prenom, 'nom': nom, 'societe': societe, 'email': email,
            'telephone': telephone, 'source': source, 'statut': statut,
            'valeur_estimee': _parse_amount(valeur), 'temperature': temperature,
            'tags': _parse_tags(tags) or [], 'notes': notes,
        }
        contact = _run(rt.machine.create_contact(fields))
    except CrmError as e:
        _fail("contacts_add failed", e)
        return
    click.echo(f"\n✓ Created contact {contact.id}: {contact.full_name}")


@contacts.command('edit')
@click.argument('contact_id')
@click.option('--prenom', help='Update first name')
@click.option('--nom', help='Update last name')
@click.option('--societe', help='Update company')
@click.option('--email', help='Update email')
@click.option('--telephone', help='Update phone')
@click.option('--source', type=click.Choice(SOURCES), help='Update source')
@click.option('--stage', 'statut', type=click.Choice(STAGE_IDS), help='Update pipeline stage')
@click.option('--value', 'valeur', help='Update estimated value')
@click.option('--temperature', type=click.Choice(TEMPERATURES), help='Update temperature')
@click.option('--tags', help='Replace tags (comma separated)')
@click.option('--notes', help='Update notes')
@log_call
def contacts_edit(contact_id, prenom, nom, societe, email, telephone, source, statut,
                  valeur, temperature, tags, notes):
    """Edit a contact (use options to set fields)"""
    try:
        candidates = {
            'prenom': prenom, 'nom': nom, 'societe': societe, 'email': email,
            'telephone': telephone, 'source': source, 'statut': statut,
            'valeur_estimee': _parse_amount(valeur), 'temperature': temperature,
            'tags': _parse_tags(tags), 'notes': notes,
        }
    except ValidationError as e:
        _fail("contacts_edit: bad value", e)
        return
    updates = {k: v for k, v in candidates.items() if v is not None}

    if not updates:
        click.echo("No updates specified. Use --stage, --email, --value, ... (see --help)", err=True)
        return

    rt = build_runtime()
    try:
        _run(rt.machine.update_contact(contact_id, updates))
    except CrmError as e:
        _fail(f"contacts_edit | contact_id={contact_id}", e)
        return
    click.echo(f"✓ Updated contact {contact_id}")


@contacts.command('move')
@click.argument('contact_id')
@click.argument('stage', type=click.Choice(STAGE_IDS))
@log_call
def contacts_move(contact_id, stage):
    """Move a contact to another pipeline stage"""
    rt = build_runtime()

    async def move():
        before = await rt.machine.get_contact(contact_id)
        await rt.machine.move_contact(contact_id, stage)
        return before.statut

    try:
        previous = _run(move())
    except CrmError as e:
        _fail(f"contacts_move | contact_id={contact_id}", e)
        return

    if previous == stage:
        click.echo(f"Contact {contact_id} is already in {STAGE_NAMES[stage]}.")
    else:
        click.echo(f"✓ Moved contact {contact_id}: {previous} → {stage}")


@contacts.command('log')
@click.argument('contact_id')
@click.option('--type', 'kind', type=click.Choice(MANUAL_INTERACTION_TYPES), default='Appel',
              show_default=True, help='Interaction type')
@click.option('--description', prompt='Description', help='What happened')
@log_call
def contacts_log(contact_id, kind, description):
    """Log a call, email, meeting or note for a contact"""
    rt = build_runtime()
    try:
        interaction = _run(rt.machine.log_interaction(contact_id, kind, description))
    except CrmError as e:
        _fail(f"contacts_log | contact_id={contact_id}", e)
        return
    click.echo(f"\n✓ Logged {interaction.type} {interaction.id}")


@contacts.command('delete')
@click.argument('contact_id')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@log_call
def contacts_delete(contact_id, yes):
    """Delete a contact (its history is kept)"""
    if not yes and not click.confirm(f"Delete contact {contact_id}?"):
        click.echo("Cancelled.")
        return
    rt = build_runtime()
    try:
        _run(rt.machine.delete_contact(contact_id))
    except CrmError as e:
        _fail(f"contacts_delete | contact_id={contact_id}", e)
        return
    click.echo(f"✓ Deleted contact {contact_id}")


@contacts.command('export')
@click.argument('path', type=click.Path(dir_okay=False))
@_filter_options
@log_call
def contacts_export(path, search, stage, source, temperature, tags):
    """Export the filtered contacts to .csv or .xlsx"""
    rt = build_runtime()
    state = _filter_state(search, stage, source, temperature, tags)
    try:
        visible = _run(_visible_contacts(rt, state))
        count = transfer.export_contacts(visible, path)
    except CrmError as e:
        _fail("contacts_export failed", e)
        return
    click.echo(f"✓ Exported {count} contacts to {path}")


@contacts.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@log_call
def contacts_import(path):
    """Import contacts from .csv or .xlsx (duplicates are skipped)"""
    rt = build_runtime()

    async def run_import():
        existing = await rt.machine.list_contacts()
        return await transfer.import_contacts(rt.machine, path, existing, progress=True)

    try:
        report = _run(run_import())
    except CrmError as e:
        _fail("contacts_import failed", e)
        return

    click.echo(f"\nCreated: {len(report.created)}")
    click.echo(f"Skipped (duplicates): {len(report.skipped)}")
    click.echo(f"Failed: {len(report.failed)}")
    for row, reason in report.failed:
        click.echo(f"  row {row}: {reason}", err=True)


# =============================================================================
# PIPELINE
# =============================================================================

@cli.command('pipeline')
@_filter_options
@log_call
def pipeline(search, stage, source, temperature, tags):
    """Pipeline health: contacts and value per stage"""
    rt = build_runtime()
    state = _filter_state(search, stage, source, temperature, tags)
    try:
        visible = _run(_visible_contacts(rt, state))
    except CrmError as e:
        _fail("pipeline failed", e)
        return

    currency = rt.settings.CURRENCY
    summary = aggregation.summarize(visible)

    click.echo(f"\n{'='*60}")
    click.echo("SALES PIPELINE")
    click.echo(f"{'='*60}")
    click.echo(f"Total contacts:       {summary.total_contacts}")
    click.echo(f"Total pipeline value: {_money(summary.pipeline_value, currency)}")
    click.echo(f"\n{'Stage':<16} {'Contacts':>9} {'Value':>20}")
    click.echo("-" * 47)
    for stage_id in STAGE_IDS:
        click.echo(
            f"{STAGE_NAMES[stage_id]:<16} {summary.counts[stage_id]:>9} "
            f"{_money(summary.totals[stage_id], currency):>20}"
        )
    click.echo()


# =============================================================================
# COLUMNS
# =============================================================================

@cli.group()
def columns():
    """Choose which contact fields 'contacts list' shows"""
    pass


@columns.command('show')
@log_call
def columns_show():
    """Show the column configuration"""
    rt = build_runtime()
    try:
        current = rt.columns.get_columns()
    except CrmError as e:
        _fail("columns_show failed", e)
        return
    for column in current:
        mark = 'x' if column.visible else ' '
        click.echo(f"[{mark}] {column.id:<22} {column.label:<22} {column.width:>6}  {column.type}")


@columns.command('set')
@click.argument('column_ids')
@log_call
def columns_set(column_ids):
    """Show exactly these columns (comma separated ids)"""
    rt = build_runtime()
    try:
        updated = rt.columns.show_only([c.strip() for c in column_ids.split(',') if c.strip()])
    except CrmError as e:
        _fail("columns_set failed", e)
        return
    click.echo(f"✓ Visible columns: {', '.join(c.id for c in updated if c.visible)}")


@columns.command('reset')
@log_call
def columns_reset():
    """Restore the default columns"""
    rt = build_runtime()
    try:
        rt.columns.reset()
    except CrmError as e:
        _fail("columns_reset failed", e)
        return
    click.echo("✓ Columns reset to defaults")


# =============================================================================
# NOTIFICATIONS
# =============================================================================

@cli.group()
def notifications():
    """Read and acknowledge your notifications"""
    pass


_NO_USER = "No current user. Set CURRENT_USER_EMAIL in .env to a known user's email."


async def _with_feed(rt, action):
    """Run action(feed) inside a started session. Returns None when anonymous."""
    async with rt.session() as session:
        if session.current_user is None:
            return None
        feed = rt.notification_feed(session)
        await feed.refresh()
        return await action(feed)


@notifications.command('list')
@log_call
def notifications_list():
    """List your latest notifications"""
    rt = build_runtime()

    async def action(feed):
        return feed.notifications, feed.unread_count

    try:
        result = _run(_with_feed(rt, action))
    except CrmError as e:
        _fail("notifications_list failed", e)
        return
    if result is None:
        _fail(_NO_USER)
        return

    items, unread = result
    click.echo(f"\n{unread} unread\n")
    if not items:
        click.echo("No notifications.")
        return
    for n in items:
        mark = ' ' if n.read else '•'
        click.echo(f"{mark} {n.id:<34} {_cell(n.created_date):<12} {n.title or ''}")
        if n.message:
            click.echo(f"    {n.message[:100]}")


@notifications.command('read')
@click.argument('notification_id')
@log_call
def notifications_read(notification_id):
    """Mark one notification as read"""
    rt = build_runtime()

    async def action(feed):
        await feed.mark_read(notification_id)
        return feed.unread_count

    try:
        unread = _run(_with_feed(rt, action))
    except CrmError as e:
        _fail("notifications_read failed", e)
        return
    if unread is None:
        _fail(_NO_USER)
        return
    click.echo(f"✓ Marked as read ({unread} unread)")


@notifications.command('read-all')
@log_call
def notifications_read_all():
    """Mark all notifications as read"""
    rt = build_runtime()

    async def action(feed):
        return await feed.mark_all_read()

    try:
        failed = _run(_with_feed(rt, action))
    except CrmError as e:
        _fail("notifications_read_all failed", e)
        return
    if failed is None:
        _fail(_NO_USER)
        return
    click.echo("✓ All notifications marked as read")
    if failed:
        click.echo(f"  {len(failed)} could not be saved and may reappear as unread.", err=True)


@notifications.command('watch')
@click.option('--duration', type=float, default=0.0,
              help='Stop after this many seconds (default: run until Ctrl-C)')
@log_call
def notifications_watch(duration):
    """Poll notifications and print the unread count on every refresh"""
    rt = build_runtime()

    def on_refresh(data):
        stamp = datetime.now().strftime('%H:%M:%S')
        click.echo(f"[{stamp}] {data['unread_count']} unread")

    async def watch():
        async with rt.session() as session:
            if session.current_user is None:
                return False
            feed = rt.notification_feed(session)
            await feed.start()
            if duration > 0:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        return True

    bus.on(EVENT_NOTIFICATIONS_REFRESHED, on_refresh)
    try:
        started = _run(watch())
    except KeyboardInterrupt:
        click.echo("\nStopped.")
        return
    except CrmError as e:
        _fail("notifications_watch failed", e)
        return
    finally:
        bus.off(EVENT_NOTIFICATIONS_REFRESHED, on_refresh)
    if not started:
        _fail(_NO_USER)


# =============================================================================
# USERS
# =============================================================================

@cli.group()
def users():
    """Browse users and manage roles"""
    pass


@users.command('list')
@click.option('--search', '-s', default='', help='Search name, email or department')
@click.option('--role', type=click.Choice([ALL] + ROLES), default=ALL, help='Filter by role')
@log_call
def users_list(search, role):
    """List users, most recently seen first"""
    rt = build_runtime()
    try:
        everyone = _run(rt.users.list('-last_seen'))
    except CrmError as e:
        _fail("users_list failed", e)
        return

    now = datetime.now().astimezone()
    stats = user_stats(everyone, now)
    click.echo(
        f"\n{stats['total']} users ({stats['admins']} admins, "
        f"{stats['users']} users, {stats['online']} online)\n"
    )
    for u in filter_users(everyone, search, role):
        click.echo(
            f"{u.id:<34} {(u.full_name or 'Utilisateur')[:24]:<25} {(u.email or '')[:29]:<30} "
            f"{u.role:<6} {presence(u.last_seen, now)}"
        )


@users.command('role')
@click.argument('user_id')
@click.argument('role', type=click.Choice(ROLES))
@log_call
def users_role(user_id, role):
    """Change a user's role (admins only)"""
    rt = build_runtime()

    async def apply():
        async with rt.session() as session:
            if session.current_user is None:
                return None
            return await change_role(rt.users, user_id, role, session.current_user)

    try:
        user = _run(apply())
    except CrmError as e:
        _fail(f"users_role | user_id={user_id}", e)
        return
    if user is None:
        _fail(_NO_USER)
        return
    click.echo(f"✓ {user.full_name or user.email} is now {role}")


# =============================================================================
# DATABASE
# =============================================================================

@cli.group()
def db():
    """Database maintenance"""
    pass


@db.command('init')
@log_call
def db_init():
    """Create the CRM tables in DATABASE_URL (safe to re-run)"""
    try:
        apply_schema()
    except (psycopg2.Error, OSError) as e:
        _fail("db_init", e)
        return
    click.echo("✓ Schema applied")


# =============================================================================
# MAIN
# =============================================================================

if __name__ == '__main__':
    cli()
