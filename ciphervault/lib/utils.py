"""Utility layer: encrypted entry records, the entry store and blob persistence.

Nothing here encrypts or decrypts. Entries are opaque ciphertext records; the
session decides what goes into them.
"""
from __future__ import annotations
import base64, binascii, json, logging, os, threading, time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol
from ciphervault.config.settings import DEFAULT_VAULT_DIR, SALT_LENGTH, NONCE_LENGTH, KDF_ALGORITHM, MIN_ITERATIONS

log = logging.getLogger(__name__)

class EntryError(Exception): ...
class StorageError(Exception): ...
class StorageCorruptionError(StorageError): ...

def _b64e(raw: bytes) -> str:
	return base64.b64encode(raw).decode('ascii')

def _b64d(text, what: str) -> bytes:
	if not isinstance(text, str):
		raise StorageCorruptionError(f'{what} is not a base64 string')
	try:
		return base64.b64decode(text.encode('ascii'), validate=True)
	except (binascii.Error, UnicodeEncodeError) as e:
		raise StorageCorruptionError(f'{what} is not valid base64') from e


@dataclass(frozen=True)
class EncryptedEntry:
	id: str
	title: str
	ciphertext: bytes
	nonce: bytes
	timestamp: int  # epoch milliseconds of the last save

	def to_dict(self) -> Dict[str, object]:
		return {
			"id": self.id,
			"title": self.title,
			"ciphertext": _b64e(self.ciphertext),
			"nonce": _b64e(self.nonce),
			"timestamp": self.timestamp,
		}

	@classmethod
	def from_dict(cls, raw) -> 'EncryptedEntry':
		if not isinstance(raw, dict):
			raise StorageCorruptionError('Entry record is not an object')
		missing = {'id', 'title', 'ciphertext', 'nonce', 'timestamp'} - set(raw)
		if missing:
			raise StorageCorruptionError(f"Entry record missing fields: {', '.join(sorted(missing))}")
		if not isinstance(raw['id'], str) or not raw['id']:
			raise StorageCorruptionError('Entry id must be a non-empty string')
		if not isinstance(raw['title'], str):
			raise StorageCorruptionError(f"Entry {raw['id']} has a non-string title")
		ts = raw['timestamp']
		if isinstance(ts, bool) or not isinstance(ts, int):
			raise StorageCorruptionError(f"Entry {raw['id']} has a non-integer timestamp")
		nonce = _b64d(raw['nonce'], 'nonce')
		if len(nonce) != NONCE_LENGTH:
			raise StorageCorruptionError(f"Entry {raw['id']} has a {len(nonce)}-byte nonce")
		return cls(raw['id'], raw['title'], _b64d(raw['ciphertext'], 'ciphertext'), nonce, ts)


class EntryStore:
	"""Id-indexed collection of encrypted entries, listed newest first.

	Every mutation takes an internal lock, so concurrent upserts of different
	ids never interleave.
	"""

	def __init__(self, entries: Optional[List[EncryptedEntry]] = None):
		self._lock = threading.Lock()
		self._entries: Dict[str, EncryptedEntry] = {}
		for e in entries or []:
			self._entries[e.id] = e

	def __len__(self) -> int:
		return len(self._entries)

	def __contains__(self, entry_id) -> bool:
		return entry_id in self._entries

	def __iter__(self) -> Iterator[EncryptedEntry]:
		return iter(self.list_sorted())

	def get(self, entry_id: str) -> Optional[EncryptedEntry]:
		return self._entries.get(entry_id)

	def upsert(self, entry: EncryptedEntry) -> None:
		with self._lock:
			self._entries[entry.id] = entry

	def remove(self, entry_id: str) -> EncryptedEntry:
		with self._lock:
			try:
				return self._entries.pop(entry_id)
			except KeyError:
				raise EntryError(f'Entry not found: {entry_id}') from None

	def list_sorted(self) -> List[EncryptedEntry]:
		with self._lock:
			items = list(self._entries.values())
		return sorted(items, key=lambda e: (e.timestamp, e.id), reverse=True)

	def next_timestamp(self) -> int:
		"""Current epoch ms, bumped past the newest entry so the next save sorts first."""
		now = int(time.time() * 1000)
		with self._lock:
			newest = max((e.timestamp for e in self._entries.values()), default=0)
		return max(now, newest + 1)

	def serialize(self) -> bytes:
		return json.dumps([e.to_dict() for e in self.list_sorted()]).encode('utf-8')

	@classmethod
	def load(cls, blob: Optional[bytes]) -> 'EntryStore':
		if not blob:
			return cls()
		try:
			raw = json.loads(blob)
		except (UnicodeDecodeError, ValueError) as e:
			raise StorageCorruptionError(f'Entry blob is not valid JSON: {e}') from e
		if not isinstance(raw, list):
			raise StorageCorruptionError('Entry blob must be a JSON array')
		entries = [EncryptedEntry.from_dict(r) for r in raw]
		if len({e.id for e in entries}) != len(entries):
			raise StorageCorruptionError('Entry blob contains duplicate ids')
		return cls(entries)


# --- Persisted vault metadata ---

def encode_salt(salt: bytes) -> bytes:
	return _b64e(salt).encode('ascii')

def decode_salt(blob: bytes) -> bytes:
	try:
		text = blob.decode('ascii').strip()
	except UnicodeDecodeError as e:
		raise StorageCorruptionError('Salt is not ASCII base64') from e
	salt = _b64d(text, 'salt')
	if len(salt) != SALT_LENGTH:
		raise StorageCorruptionError(f'Salt must be {SALT_LENGTH} bytes, got {len(salt)}')
	return salt

def encode_kdf(iterations: int) -> bytes:
	return json.dumps({"algorithm": KDF_ALGORITHM, "iterations": iterations}).encode('utf-8')

def decode_kdf(blob: bytes) -> int:
	try:
		raw = json.loads(blob)
	except (UnicodeDecodeError, ValueError) as e:
		raise StorageCorruptionError(f'KDF parameters are not valid JSON: {e}') from e
	if not isinstance(raw, dict) or raw.get('algorithm') != KDF_ALGORITHM:
		raise StorageCorruptionError('Unsupported KDF parameters')
	it = raw.get('iterations')
	if isinstance(it, bool) or not isinstance(it, int) or it < MIN_ITERATIONS:
		raise StorageCorruptionError(f'Invalid KDF iteration count: {it!r}')
	return it


# --- Blob stores ---

class BlobStore(Protocol):
	"""Synchronous key-value surface; last write wins."""

	def read(self, key: str) -> Optional[bytes]: ...
	def write(self, key: str, data: bytes) -> None: ...
	def clear(self) -> None: ...

class MemoryBlobStore:
	def __init__(self, initial: Optional[Dict[str, bytes]] = None):
		self._lock = threading.Lock()
		self._data: Dict[str, bytes] = dict(initial or {})

	def read(self, key: str) -> Optional[bytes]:
		with self._lock:
			return self._data.get(key)

	def write(self, key: str, data: bytes) -> None:
		with self._lock:
			self._data[key] = bytes(data)

	def clear(self) -> None:
		with self._lock:
			self._data.clear()

	def keys(self) -> List[str]:
		with self._lock:
			return sorted(self._data)

class FileBlobStore:
	"""One ``<key>.blob`` file per logical key inside ``directory``."""
	SUFFIX = '.blob'

	def __init__(self, directory: Path | None = None):
		# Resolve path dynamically to honor environment overrides in tests
		if directory is not None:
			self.directory = Path(directory)
		else:
			env_dir = os.environ.get('CIPHERVAULT_DIR')
			self.directory = Path(env_dir) if env_dir else DEFAULT_VAULT_DIR

	def _path(self, key: str) -> Path:
		if not key or '/' in key or '\\' in key or key.startswith('.'):
			raise StorageError(f'Invalid blob key: {key!r}')
		return self.directory / f'{key}{self.SUFFIX}'

	def read(self, key: str) -> Optional[bytes]:
		path = self._path(key)
		try:
			return path.read_bytes()
		except FileNotFoundError:
			return None
		except OSError as e:
			raise StorageError(f'Cannot read {path}: {e}') from e

	def write(self, key: str, data: bytes) -> None:
		path = self._path(key)
		tmp = path.with_name(path.name + '.tmp')
		try:
			self.directory.mkdir(parents=True, exist_ok=True)
			tmp.write_bytes(data)
			os.chmod(tmp, 0o600)
			os.replace(tmp, path)
		except OSError as e:
			raise StorageError(f'Cannot write {path}: {e}') from e

	def clear(self) -> None:
		if not self.directory.exists():
			return
		removed = 0
		for path in self.directory.glob(f'*{self.SUFFIX}'):
			try:
				path.unlink(missing_ok=True)
			except OSError as e:
				raise StorageError(f'Cannot remove {path}: {e}') from e
			removed += 1
		log.info('Cleared %d blob(s) from %s', removed, self.directory)
