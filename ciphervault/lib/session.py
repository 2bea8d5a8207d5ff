"""Vault session: lock state machine around the live key.

States::

	NO_VAULT --initialize--> UNLOCKED --lock / auth failure--> LOCKED --unlock--> UNLOCKED
	any state --wipe--> NO_VAULT

Unlock is optimistic. There is no stored verifier, so a wrong password only
shows up as an ``AuthenticationFailure`` on the first ``read_entry``, which
locks the session again. ``verify`` forces that decrypt before a write.

Every transition bumps a generation counter. Key derivation runs outside the
session lock and its result is discarded if the generation moved meanwhile;
encrypt and decrypt run under the lock.
"""
from __future__ import annotations
import enum, logging, threading, uuid
from typing import List, Optional
from ciphervault.config.settings import (
	DEFAULT_ITERATIONS, MIN_PASSWORD_LENGTH, MAX_ENTRY_SIZE, MAX_TITLE_LENGTH, SALT_KEY, ENTRIES_KEY, KDF_KEY
)
from .crypto import VaultCrypto, DerivedKey, AuthenticationFailure
from .scanner import ScanReport, scan
from .utils import (
	BlobStore, EncryptedEntry, EntryStore, EntryError,
	encode_salt, decode_salt, encode_kdf, decode_kdf
)

log = logging.getLogger(__name__)

class VaultError(Exception): ...
class WeakPasswordError(VaultError): ...
class PasswordMismatchError(VaultError): ...
class VaultStateError(VaultError): ...
class VaultLockedError(VaultStateError): ...

class SessionState(enum.Enum):
	NO_VAULT = 'no_vault'
	LOCKED = 'locked'
	UNLOCKED = 'unlocked'

class VaultSession:
	"""One vault, one key, one state. Pass the instance around; there is no global."""

	def __init__(self, storage: BlobStore, iterations: int = DEFAULT_ITERATIONS, crypto: Optional[VaultCrypto] = None):
		self._storage = storage
		self._iterations = iterations
		self._crypto = crypto or VaultCrypto()
		self._lock = threading.RLock()
		self._key: Optional[DerivedKey] = None
		self._store = EntryStore()
		self._generation = 0
		has_salt = storage.read(SALT_KEY) is not None
		self._state = SessionState.LOCKED if has_salt else SessionState.NO_VAULT
		log.debug('Session opened in state %s', self._state.value)

	def __enter__(self) -> 'VaultSession':
		return self

	def __exit__(self, *exc) -> None:
		self.close()

	def __repr__(self) -> str:
		return f'<VaultSession state={self._state.value} entries={len(self._store)}>'

	@property
	def state(self) -> SessionState:
		return self._state

	@property
	def has_vault(self) -> bool:
		return self._state is not SessionState.NO_VAULT

	@property
	def is_locked(self) -> bool:
		return self._state is not SessionState.UNLOCKED

	@property
	def generation(self) -> int:
		return self._generation

	# --- transitions ---

	def _drop_key(self) -> None:
		# Caller holds self._lock.
		if self._key is not None:
			self._key.wipe()
			self._key = None

	def _bump(self, state: SessionState) -> None:
		self._generation += 1
		self._state = state

	def _require_unlocked(self) -> DerivedKey:
		if self._state is not SessionState.UNLOCKED or self._key is None:
			raise VaultLockedError('Vault is locked')
		return self._key

	@staticmethod
	def check_new_password(password: str, confirm_password: str) -> None:
		"""Raise ``WeakPasswordError`` or ``PasswordMismatchError``; touches no state."""
		if len(password) < MIN_PASSWORD_LENGTH:
			raise WeakPasswordError(f'Master password must be at least {MIN_PASSWORD_LENGTH} characters long.')
		if password != confirm_password:
			raise PasswordMismatchError('Passwords do not match.')

	def initialize(self, password: str, confirm_password: str) -> None:
		"""Create a vault protected by ``password`` and leave it unlocked."""
		self.check_new_password(password, confirm_password)
		with self._lock:
			if self._state is not SessionState.NO_VAULT:
				raise VaultStateError('Vault already exists')
			generation = self._generation
		salt = self._crypto.generate_salt()
		key = self._crypto.derive_key(password, salt, self._iterations)
		with self._lock:
			if generation != self._generation or self._state is not SessionState.NO_VAULT:
				key.wipe()
				raise VaultStateError('Vault changed while it was being created')
			self._store = EntryStore()
			try:
				self._storage.write(KDF_KEY, encode_kdf(self._iterations))
				self._storage.write(ENTRIES_KEY, self._store.serialize())
				# Salt last: its presence marks the vault as initialised.
				self._storage.write(SALT_KEY, encode_salt(salt))
			except Exception:
				key.wipe()
				raise
			self._key = key
			self._bump(SessionState.UNLOCKED)
		log.info('Vault initialised (%d PBKDF2 iterations)', self._iterations)

	def unlock(self, password: str) -> None:
		"""Derive the key from the stored salt and unlock without verifying it."""
		with self._lock:
			if self._state is not SessionState.LOCKED:
				raise VaultStateError(f'Cannot unlock from state {self._state.value}')
			generation = self._generation
			salt_blob = self._storage.read(SALT_KEY)
			kdf_blob = self._storage.read(KDF_KEY)
			entries_blob = self._storage.read(ENTRIES_KEY)
		if salt_blob is None:
			raise VaultStateError('Vault salt is missing')
		salt = decode_salt(salt_blob)
		iterations = decode_kdf(kdf_blob) if kdf_blob is not None else DEFAULT_ITERATIONS
		store = EntryStore.load(entries_blob)
		key = self._crypto.derive_key(password, salt, iterations)
		with self._lock:
			if generation != self._generation or self._state is not SessionState.LOCKED:
				key.wipe()
				log.info('Discarding key from superseded unlock')
				raise VaultStateError('Unlock was superseded by another vault action')
			self._key = key
			self._store = store
			self._bump(SessionState.UNLOCKED)
		log.info('Vault unlocked (%d entries)', len(store))

	def lock(self) -> None:
		with self._lock:
			if self._state is not SessionState.UNLOCKED:
				raise VaultLockedError('Vault is already locked')
			self._drop_key()
			self._store = EntryStore()
			self._bump(SessionState.LOCKED)
		log.info('Vault locked')

	def _auto_lock(self, generation: int) -> bool:
		"""Lock after an authentication failure seen under ``generation``; once per event."""
		with self._lock:
			if generation != self._generation or self._state is not SessionState.UNLOCKED:
				return False
			self._drop_key()
			self._store = EntryStore()
			self._bump(SessionState.LOCKED)
		log.warning('Decryption failed; vault locked')
		return True

	def wipe(self) -> None:
		"""Destroy salt, KDF parameters and entries. Irreversible."""
		with self._lock:
			self._drop_key()
			self._store = EntryStore()
			try:
				self._storage.clear()
			finally:
				gone = self._storage.read(SALT_KEY) is None
				self._bump(SessionState.NO_VAULT if gone else SessionState.LOCKED)
		log.warning('Vault wiped')

	def close(self) -> None:
		with self._lock:
			if self._state is SessionState.UNLOCKED:
				self._drop_key()
				self._store = EntryStore()
				self._bump(SessionState.LOCKED)

	# --- entries ---

	def _persist(self) -> None:
		self._storage.write(ENTRIES_KEY, self._store.serialize())

	def entries(self) -> List[EncryptedEntry]:
		with self._lock:
			self._require_unlocked()
			return self._store.list_sorted()

	def save_entry(self, title: str, body: str, entry_id: Optional[str] = None) -> List[EncryptedEntry]:
		"""Encrypt ``body`` under a fresh nonce and store it as a new or replaced entry.

		Returns the updated entries, newest first; the saved entry leads the list.
		"""
		title = title.strip()
		if not title:
			raise EntryError('Entry title cannot be empty')
		if len(title) > MAX_TITLE_LENGTH:
			raise EntryError(f'Entry title cannot exceed {MAX_TITLE_LENGTH} characters')
		data = body.encode('utf-8')
		if len(data) > MAX_ENTRY_SIZE:
			raise EntryError('Content too large')
		with self._lock:
			key = self._require_unlocked()
			if entry_id is not None and entry_id not in self._store:
				raise EntryError(f'Entry not found: {entry_id}')
			ciphertext, nonce = self._crypto.encrypt(data, key)
			entry = EncryptedEntry(entry_id or uuid.uuid4().hex, title, ciphertext, nonce, self._store.next_timestamp())
			self._store.upsert(entry)
			self._persist()
			log.debug('Saved entry %s', entry.id)
			return self._store.list_sorted()

	def read_entry(self, entry_id: str) -> str:
		"""Decrypt an entry body.

		An ``AuthenticationFailure`` locks the session before it is re-raised;
		unlock again with the right password to recover.
		"""
		with self._lock:
			key = self._require_unlocked()
			entry = self._store.get(entry_id)
			if entry is None:
				raise EntryError(f'Entry not found: {entry_id}')
			generation = self._generation
			try:
				data = self._crypto.decrypt(entry.ciphertext, entry.nonce, key)
			except AuthenticationFailure:
				self._auto_lock(generation)
				raise
		return data.decode('utf-8')

	def verify(self) -> bool:
		"""Prove the key by decrypting the newest entry.

		Returns False when there is nothing to decrypt. A wrong key raises
		``AuthenticationFailure`` and locks, exactly like ``read_entry``.
		"""
		with self._lock:
			self._require_unlocked()
			items = self._store.list_sorted()
		if not items:
			return False
		self.read_entry(items[0].id)
		return True

	def delete_entry(self, entry_id: str) -> List[EncryptedEntry]:
		with self._lock:
			self._require_unlocked()
			self._store.remove(entry_id)
			self._persist()
			log.debug('Deleted entry %s', entry_id)
			return self._store.list_sorted()

	def audit_entry(self, entry_id: str) -> ScanReport:
		"""Decrypt then scan; the scanner only ever sees authenticated plaintext."""
		return scan(self.read_entry(entry_id))
