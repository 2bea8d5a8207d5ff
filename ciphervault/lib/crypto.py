"""Cryptographic core: PBKDF2 key derivation, AES-256-GCM and password strength.

Key material never leaves this module as plain ``bytes``: callers hold a
``DerivedKey`` handle that can be wiped but not exported.
"""
from __future__ import annotations
import hmac, secrets, weakref
from typing import Tuple, Union
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend
from ciphervault.config.settings import (
	DEFAULT_ITERATIONS, MIN_ITERATIONS, SALT_LENGTH, KEY_LENGTH, NONCE_LENGTH, AUTH_TAG_LENGTH,
	MIN_PASSWORD_LENGTH
)

# One message for every decrypt failure; callers must not learn the cause.
_AUTH_FAILED = 'Decryption failed. Incorrect key or corrupted data.'

class CryptoError(Exception):
	pass

class AuthenticationFailure(CryptoError):
	"""Ciphertext did not authenticate under the given key and nonce."""

def _zero(buf: bytearray) -> None:
	for i in range(len(buf)):
		buf[i] = 0

class DerivedKey:
	"""Opaque handle around 32 bytes of session key material.

	The buffer is overwritten by ``wipe()``, and at the latest when the handle
	is garbage collected or the interpreter exits. Immutable copies handed to
	the cipher backend for a single operation are outside our control.
	"""
	__slots__ = ('_buf', '_finalizer', '__weakref__')

	def __init__(self, material: bytes):
		if len(material) != KEY_LENGTH:
			raise CryptoError(f'Key must be {KEY_LENGTH} bytes')
		self._buf = bytearray(material)
		self._finalizer = weakref.finalize(self, _zero, self._buf)

	@property
	def alive(self) -> bool:
		return self._finalizer.alive

	def wipe(self) -> None:
		# finalize objects run at most once, so repeated wipes are no-ops
		self._finalizer()

	def _material(self) -> bytes:
		if not self.alive:
			raise CryptoError('Key has been wiped')
		return bytes(self._buf)

	def __eq__(self, other):
		if not isinstance(other, DerivedKey):
			return NotImplemented
		if not (self.alive and other.alive):
			return False
		return hmac.compare_digest(self._buf, other._buf)

	__hash__ = None

	def __repr__(self) -> str:
		return f"<DerivedKey {'live' if self.alive else 'wiped'}>"

	def __reduce__(self):
		raise TypeError('DerivedKey cannot be serialised or copied')

class VaultCrypto:
	def __init__(self):
		self._backend = default_backend()

	def generate_salt(self) -> bytes:
		return secrets.token_bytes(SALT_LENGTH)

	def derive_key(self, password: Union[str, bytes], salt: bytes, iterations: int = DEFAULT_ITERATIONS) -> DerivedKey:
		"""Stretch ``password`` with PBKDF2-HMAC-SHA256.

		Deterministic for a given password, salt and iteration count. Any
		password is accepted; only a malformed salt or an iteration count below
		the floor is rejected.
		"""
		if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_LENGTH:
			raise CryptoError(f'Salt must be {SALT_LENGTH} bytes')
		if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < MIN_ITERATIONS:
			raise CryptoError(f'Iterations must be an integer >= {MIN_ITERATIONS}')
		secret = password.encode('utf-8') if isinstance(password, str) else bytes(password)
		kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=bytes(salt), iterations=iterations, backend=self._backend)
		return DerivedKey(kdf.derive(secret))

	def encrypt(self, data: bytes, key: DerivedKey) -> Tuple[bytes, bytes]:
		"""Encrypt ``data`` under a fresh random nonce.

		Returns ``(ciphertext, nonce)``; the GCM tag is appended to the ciphertext.
		"""
		nonce = secrets.token_bytes(NONCE_LENGTH)
		cipher = Cipher(algorithms.AES(key._material()), modes.GCM(nonce), backend=self._backend)
		enc = cipher.encryptor()
		ct = enc.update(bytes(data)) + enc.finalize()
		return ct + enc.tag, nonce

	def decrypt(self, ciphertext: bytes, nonce: bytes, key: DerivedKey) -> bytes:
		if len(nonce) != NONCE_LENGTH or len(ciphertext) < AUTH_TAG_LENGTH:
			raise AuthenticationFailure(_AUTH_FAILED)
		body = ciphertext[:-AUTH_TAG_LENGTH]; tag = ciphertext[-AUTH_TAG_LENGTH:]
		cipher = Cipher(algorithms.AES(key._material()), modes.GCM(bytes(nonce), bytes(tag)), backend=self._backend)
		dec = cipher.decryptor()
		try:
			return dec.update(bytes(body)) + dec.finalize()
		except InvalidTag:
			raise AuthenticationFailure(_AUTH_FAILED) from None

def check_password_strength(password: str) -> Tuple[int, str]:
	score = 0; fb = []
	L = len(password)
	if L >= 16: score += 40
	elif L >= MIN_PASSWORD_LENGTH: score += 30
	else: fb.append(f'Too short (min {MIN_PASSWORD_LENGTH})')
	sets = [any(c.islower() for c in password), any(c.isupper() for c in password), any(c.isdigit() for c in password), any(not c.isalnum() for c in password)]
	score += sum(sets)*15
	if sum(sets) < 4: fb.append('Add diverse character sets')
	common = ['password','qwerty','abc','123','111','letmein']
	if any(p in password.lower() for p in common):
		score -= 15; fb.append('Avoid common patterns')
	if L and len(set(password)) < L*0.6:
		score -= 10; fb.append('Too many repeats')
	score = max(0, min(100, score))
	if score >= 80: label='Very Strong'
	elif score >= 60: label='Strong'
	elif score >= 40: label='Moderate'
	elif score >= 20: label='Weak'
	else: label='Very Weak'
	text = f"{label} ({score}/100)"
	if fb: text += ' - ' + ', '.join(fb)
	return score, text
