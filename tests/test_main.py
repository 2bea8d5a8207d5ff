import re
from click.testing import CliRunner
from ciphervault.cli.commands import cli
from ciphervault.lib.session import VaultSession

PW = 'correctpassword123'

def test_cli_help():
	r = CliRunner().invoke(cli, ['--help'])
	assert r.exit_code == 0
	for name in ('init', 'write', 'read', 'list', 'wipe'):
		assert name in r.output


def _setup(monkeypatch, tmp_path, body='secret body'):
	monkeypatch.setenv('CIPHERVAULT_DIR', str(tmp_path / 'vault'))
	runner = CliRunner()
	assert runner.invoke(cli, ['init'], input=f'{PW}\n{PW}\n').exit_code == 0
	w = runner.invoke(cli, ['write'], input=f'{PW}\nTitle\n{body}\n')
	return runner, re.search(r'Saved entry (\w+)\.', w.output).group(1)


def test_write_read_lifecycle(monkeypatch, tmp_path):
	runner, eid = _setup(monkeypatch, tmp_path)
	rd = runner.invoke(cli, ['read', eid], input=f'{PW}\n')
	assert rd.exit_code == 0
	assert 'secret body' in rd.output
	# Body never hits disk in the clear
	for blob in (tmp_path / 'vault').glob('*.blob'):
		assert b'secret body' not in blob.read_bytes()


def test_read_with_wrong_password(monkeypatch, tmp_path):
	runner, eid = _setup(monkeypatch, tmp_path)
	rd = runner.invoke(cli, ['read', eid], input='wrongpassword\n')
	assert rd.exit_code == 1
	assert 'Decryption failed' in rd.output
	assert 'locked' in rd.output
	assert 'secret body' not in rd.output


def test_mutations_with_wrong_password_change_nothing(monkeypatch, tmp_path):
	runner, eid = _setup(monkeypatch, tmp_path)
	wrong = 'correctpassword124'
	wr = runner.invoke(cli, ['write'], input=f'{wrong}\nOther\nother body\n')
	assert wr.exit_code == 1
	assert 'Decryption failed' in wr.output and 'Saved entry' not in wr.output
	ed = runner.invoke(cli, ['edit', eid], input=f'{wrong}\nclobbered\n')
	assert ed.exit_code == 1
	assert 'locked' in ed.output
	de = runner.invoke(cli, ['delete', eid, '--yes'], input=f'{wrong}\n')
	assert de.exit_code == 1
	assert 'Deleted entry' not in de.output
	lst = runner.invoke(cli, ['list'], input=f'{PW}\n')
	assert f'{eid}: Title' in lst.output and 'Other' not in lst.output
	rd = runner.invoke(cli, ['read', eid], input=f'{PW}\n')
	assert rd.exit_code == 0
	assert 'secret body' in rd.output


def test_edit_and_read_back(monkeypatch, tmp_path):
	runner, eid = _setup(monkeypatch, tmp_path)
	ed = runner.invoke(cli, ['edit', eid], input=f'{PW}\nsecond draft\n')
	assert ed.exit_code == 0
	rd = runner.invoke(cli, ['read', eid], input=f'{PW}\n')
	assert 'second draft' in rd.output
	lst = runner.invoke(cli, ['list'], input=f'{PW}\n')
	assert f'{eid}: Title' in lst.output
	missing = runner.invoke(cli, ['edit', 'nope'], input=f'{PW}\nx\n')
	assert missing.exit_code == 1 and 'not found' in missing.output


def test_audit(monkeypatch, tmp_path):
	runner, eid = _setup(monkeypatch, tmp_path, body='reach me at alice@example.com')
	au = runner.invoke(cli, ['audit', eid], input=f'{PW}\n')
	assert au.exit_code == 0
	assert 'Privacy score: 90/100' in au.output
	assert 'E-mail address' in au.output
	rd = runner.invoke(cli, ['read', eid, '--audit'], input=f'{PW}\n')
	assert 'alice@example.com' in rd.output and 'Privacy score' in rd.output


def test_read_with_audit_decrypts_once(monkeypatch, tmp_path):
	runner, eid = _setup(monkeypatch, tmp_path, body='reach me at alice@example.com')
	calls = []
	original = VaultSession.read_entry
	def counting(self, entry_id):
		calls.append(entry_id)
		return original(self, entry_id)
	monkeypatch.setattr(VaultSession, 'read_entry', counting)
	rd = runner.invoke(cli, ['read', eid, '--audit'], input=f'{PW}\n')
	assert rd.exit_code == 0
	assert 'Privacy score: 90/100' in rd.output
	assert calls == [eid]


def test_delete_and_wipe(monkeypatch, tmp_path):
	runner, eid = _setup(monkeypatch, tmp_path)
	keep = runner.invoke(cli, ['delete', eid], input=f'{PW}\nn\n')
	assert 'Aborted' in keep.output
	de = runner.invoke(cli, ['delete', eid, '--yes'], input=f'{PW}\n')
	assert de.exit_code == 0
	assert eid not in runner.invoke(cli, ['list'], input=f'{PW}\n').output
	no = runner.invoke(cli, ['wipe'], input='n\n')
	assert 'Aborted' in no.output
	wp = runner.invoke(cli, ['wipe'], input='y\n')
	assert wp.exit_code == 0
	assert 'not initialised' in runner.invoke(cli, ['status']).output
	assert not list((tmp_path / 'vault').glob('*.blob'))
