"""CLI commands implemented with click.

Each command opens its own session on the vault directory, unlocks it with
the prompted password and locks it again on the way out.
"""
from __future__ import annotations
import logging, click
from datetime import datetime
from pathlib import Path
from ciphervault.config import settings
from ciphervault.lib.crypto import CryptoError, AuthenticationFailure, check_password_strength
from ciphervault.lib.scanner import scan
from ciphervault.lib.session import VaultSession, VaultError
from ciphervault.lib.utils import FileBlobStore, EntryError, StorageError

_ERRORS = (VaultError, CryptoError, EntryError, StorageError)

def _fail(e):
	click.echo(f'Error: {e}')
	raise SystemExit(1)

def _open(ctx) -> VaultSession:
	return VaultSession(FileBlobStore(ctx.obj['vault_dir']))

def _unlocked(ctx, password: str, verify: bool = False) -> VaultSession:
	"""Unlock a fresh session; with ``verify`` the password is proven before any write."""
	s = _open(ctx)
	if not s.has_vault:
		_fail('No vault found; run `ciphervault init` first.')
	s.unlock(password)
	if verify:
		s.verify()
	return s

def _auth_failed(e):
	_fail(f'{e} The vault has been locked.')

def _when(ts: int) -> str:
	return datetime.fromtimestamp(ts / 1000).strftime('%Y-%m-%d %H:%M')

@click.group()
@click.option('--vault-dir', type=click.Path(file_okay=False, path_type=Path), envvar='CIPHERVAULT_DIR', help='Directory holding the vault blobs.')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging.')
@click.pass_context
def cli(ctx, vault_dir, verbose):
	"""CipherVault: a local encrypted journal."""
	logging.basicConfig(level=logging.DEBUG if verbose else settings.LOG_LEVEL, format='%(levelname)s %(name)s: %(message)s')
	ctx.ensure_object(dict)
	ctx.obj['vault_dir'] = vault_dir

@cli.command()
@click.option('--password', prompt=True, hide_input=True)
@click.option('--confirm-password', prompt='Repeat for confirmation', hide_input=True)
@click.option('--force', is_flag=True, help='Wipe and recreate if a vault already exists.')
@click.option('--yes', is_flag=True, help='Do not ask before wiping with --force.')
@click.pass_context
def init(ctx, password, confirm_password, force, yes):
	"""Initialise a new encrypted vault. The password cannot be recovered if lost."""
	s = _open(ctx)
	try:
		VaultSession.check_new_password(password, confirm_password)
		if force and s.has_vault:
			if not yes and not click.confirm('A vault already exists. Replacing it permanently deletes ALL entries. Proceed?'):
				click.echo('Aborted.')
				return
			s.wipe()
		with s:
			s.initialize(password, confirm_password)
		_score, fb = check_password_strength(password)
		click.echo(f'Vault created. Password strength: {fb}')
	except _ERRORS as e:
		_fail(e)

@cli.command()
@click.pass_context
def status(ctx):
	"""Show whether a vault exists in the vault directory."""
	s = _open(ctx)
	click.echo(f"Vault: {'locked' if s.has_vault else 'not initialised'}")

@cli.command('pw-strength')
@click.argument('password')
def pw_strength_cmd(password):
	score, fb = check_password_strength(password)
	click.echo(f"Score: {score} -> {fb}")

@cli.command('list')
@click.option('--password', prompt=True, hide_input=True)
@click.pass_context
def list_entries(ctx, password):
	"""List entries, newest first."""
	try:
		with _unlocked(ctx, password) as s:
			items = s.entries()
		if not items:
			click.echo('No entries.')
		for e in items:
			click.echo(f"{e.id}: {e.title} ({_when(e.timestamp)})")
	except _ERRORS as e:
		_fail(e)

@cli.command()
@click.option('--password', prompt=True, hide_input=True)
@click.option('--title', prompt=True, help='Stored unencrypted.')
@click.option('--body', prompt=True)
@click.pass_context
def write(ctx, password, title, body):
	"""Encrypt and save a new entry."""
	try:
		with _unlocked(ctx, password, verify=True) as s:
			saved = s.save_entry(title, body)[0]
		click.echo(f'Saved entry {saved.id}.')
	except AuthenticationFailure as e:
		_auth_failed(e)
	except _ERRORS as e:
		_fail(e)

@cli.command()
@click.argument('entry_id')
@click.option('--password', prompt=True, hide_input=True)
@click.option('--title', default=None, help='New title (keeps the current one if omitted).')
@click.option('--body', prompt=True)
@click.pass_context
def edit(ctx, entry_id, password, title, body):
	"""Replace an entry body; it is re-encrypted under a new nonce."""
	try:
		with _unlocked(ctx, password) as s:
			current = next((e for e in s.entries() if e.id == entry_id), None)
			if current is None:
				raise EntryError(f'Entry not found: {entry_id}')
			# Decrypting the entry being replaced proves the key before it is overwritten.
			s.read_entry(entry_id)
			s.save_entry(title or current.title, body, entry_id)
		click.echo(f'Updated entry {entry_id}.')
	except AuthenticationFailure as e:
		_auth_failed(e)
	except _ERRORS as e:
		_fail(e)

def _print_audit(report):
	click.echo(f'Privacy score: {report.score}/100')
	for t in report.threats:
		click.echo(f'  ! {t}')
	for s in report.suggestions:
		click.echo(f'  - {s}')

@cli.command()
@click.argument('entry_id')
@click.option('--password', prompt=True, hide_input=True)
@click.option('--audit', is_flag=True, help='Also run the privacy audit on the decrypted text.')
@click.pass_context
def read(ctx, entry_id, password, audit):
	"""Decrypt and print an entry."""
	try:
		with _unlocked(ctx, password) as s:
			body = s.read_entry(entry_id)
		click.echo(body)
		if audit:
			click.echo('---')
			_print_audit(scan(body))
	except AuthenticationFailure as e:
		_auth_failed(e)
	except _ERRORS as e:
		_fail(e)

@cli.command('audit')
@click.argument('entry_id')
@click.option('--password', prompt=True, hide_input=True)
@click.pass_context
def audit_cmd(ctx, entry_id, password):
	"""Scan a decrypted entry for sensitive details."""
	try:
		with _unlocked(ctx, password) as s:
			report = s.audit_entry(entry_id)
		_print_audit(report)
	except AuthenticationFailure as e:
		_auth_failed(e)
	except _ERRORS as e:
		_fail(e)

@cli.command()
@click.argument('entry_id')
@click.option('--password', prompt=True, hide_input=True)
@click.option('--yes', is_flag=True, help='Do not ask for confirmation.')
@click.pass_context
def delete(ctx, entry_id, password, yes):
	"""Permanently delete an entry."""
	try:
		with _unlocked(ctx, password, verify=True) as s:
			if not yes and not click.confirm('Permanently delete this entry?'):
				click.echo('Aborted.')
				return
			s.delete_entry(entry_id)
		click.echo(f'Deleted entry {entry_id}.')
	except AuthenticationFailure as e:
		_auth_failed(e)
	except _ERRORS as e:
		_fail(e)

@cli.command()
@click.option('--yes', is_flag=True, help='Do not ask for confirmation.')
@click.pass_context
def wipe(ctx, yes):
	"""Destroy the vault and every entry in it."""
	if not yes and not click.confirm('Wiping the vault permanently deletes ALL entries. This cannot be undone. Proceed?'):
		click.echo('Aborted.')
		return
	try:
		_open(ctx).wipe()
		click.echo('Vault wiped.')
	except _ERRORS as e:
		_fail(e)
