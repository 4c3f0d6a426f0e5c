"""
Flask CLI commands for operators: class catalog, sessions and the ledger.

    flask --app promotion_engine classes load SCHOOL_ID [NAMES...]
    flask --app promotion_engine sessions create SCHOOL_ID YEAR [--start] [--end]
    flask --app promotion_engine sessions activate SCHOOL_ID SESSION_ID
    flask --app promotion_engine sessions list SCHOOL_ID
    flask --app promotion_engine ledger show SCHOOL_ID
"""

import click
from flask import current_app
from flask.cli import AppGroup

from promotion_engine.errors import EngineError
from promotion_engine.extensions import db
from promotion_engine.services import class_catalog, history_ledger, session_store
from promotion_engine.utils.helpers import format_local

classes_cli = AppGroup('classes', help='Manage the class catalog.')
sessions_cli = AppGroup('sessions', help='Manage academic sessions.')
ledger_cli = AppGroup('ledger', help='Inspect the transition ledger.')


def _fail(error):
    db.session.rollback()
    raise click.ClickException(f"{error.code}: {error.message}")


@classes_cli.command('load')
@click.argument('school_id')
@click.argument('names', nargs=-1)
def load_classes_command(school_id, names):
    """
    Replace SCHOOL_ID's catalog with NAMES in promotion order.

    Without NAMES the default progression (Nursery, LKG, UKG, I to XII) is loaded.
    """
    try:
        loaded = class_catalog.load_classes(school_id, list(names) or None)
        db.session.commit()
    except EngineError as e:
        _fail(e)

    for class_def in loaded:
        click.echo(f"  {class_def.ordinal:>2}  {class_def.name}")
    click.echo(f"✅ Loaded {len(loaded)} classes for school {school_id}")


@sessions_cli.command('create')
@click.argument('school_id')
@click.argument('year')
@click.option('--start', 'start_date', default=None, help='Start date (YYYY-MM-DD).')
@click.option('--end', 'end_date', default=None, help='End date (YYYY-MM-DD).')
def create_session_command(school_id, year, start_date, end_date):
    """Create an inactive session YEAR for SCHOOL_ID."""
    try:
        session_obj = session_store.create_session(school_id, year, start_date, end_date)
    except EngineError as e:
        _fail(e)
    click.echo(f"✅ Created session {session_obj.year} (id={session_obj.id})")


@sessions_cli.command('activate')
@click.argument('school_id')
@click.argument('session_id', type=int)
def activate_session_command(school_id, session_id):
    """Make SESSION_ID the only active session of SCHOOL_ID."""
    try:
        session_obj, state, changed = session_store.activate_session(school_id, session_id)
    except EngineError as e:
        _fail(e)
    if changed:
        click.echo(f"✅ Session {session_obj.year} is now active (version {state.version})")
    else:
        click.echo(f"Session {session_obj.year} was already active (version {state.version})")


@sessions_cli.command('list')
@click.argument('school_id')
def list_sessions_command(school_id):
    """List SCHOOL_ID's sessions in temporal order."""
    sessions = session_store.list_sessions(school_id)
    if not sessions:
        click.echo("No sessions found.")
        return
    for session_obj in sessions:
        marker = '*' if session_obj.is_active else ' '
        start = session_obj.start_date.isoformat() if session_obj.start_date else '-'
        end = session_obj.end_date.isoformat() if session_obj.end_date else '-'
        click.echo(f"{marker} {session_obj.id:>4}  {session_obj.year:<12} {start} .. {end}")


@ledger_cli.command('show')
@click.argument('school_id')
@click.option('--session', 'session_id', type=int, default=None, help='Only rows touching this session.')
@click.option('--status', default=None, help='Promoted, DropOut or Graduated.')
@click.option('--tz', 'tz_name', default=None, help='Timezone for timestamps (default: DEFAULT_TIMEZONE).')
def show_ledger_command(school_id, session_id, status, tz_name):
    """Print SCHOOL_ID's transition ledger, newest first."""
    tz_name = tz_name or current_app.config['DEFAULT_TIMEZONE']
    rows = history_ledger.query_by_school(school_id, session_id=session_id, status=status)
    if not rows:
        click.echo("No transitions recorded.")
        return
    for record, student_name in rows:
        from_name = record.from_class.name if record.from_class else record.from_class_id
        to_name = record.to_class.name if record.to_class else record.to_class_id
        click.echo(
            f"{format_local(record.created_at, tz_name)}  {record.student_id:<12} "
            f"{(student_name or ''):<24} {record.status:<9} {from_name} -> {to_name}"
        )
    click.echo(f"{len(rows)} row(s)")


def init_app(app):
    """Register CLI commands with Flask app."""
    app.cli.add_command(classes_cli)
    app.cli.add_command(sessions_cli)
    app.cli.add_command(ledger_cli)
