import base64, json, threading
import pytest
from ciphervault.lib.utils import (
	EncryptedEntry, EntryStore, EntryError, StorageCorruptionError,
	encode_salt, decode_salt, encode_kdf, decode_kdf
)

def make_entry(eid='e1', ts=1000, title='Title'):
	return EncryptedEntry(eid, title, b'\x00ciphertext-and-tag', b'n' * 12, ts)

def test_upsert_replaces_by_id():
	store = EntryStore()
	store.upsert(make_entry('a', 1)); store.upsert(make_entry('a', 5, 'New'))
	assert len(store) == 1
	assert store.get('a').title == 'New' and store.get('a').timestamp == 5

def test_list_sorted_newest_first():
	store = EntryStore([make_entry('a', 10), make_entry('b', 30), make_entry('c', 20)])
	assert [e.id for e in store.list_sorted()] == ['b', 'c', 'a']
	assert [e.id for e in store] == ['b', 'c', 'a']

def test_remove():
	store = EntryStore([make_entry('a')])
	assert store.remove('a').id == 'a'
	assert 'a' not in store
	with pytest.raises(EntryError):
		store.remove('a')

def test_next_timestamp_is_monotonic():
	store = EntryStore([make_entry('future', 10**15)])
	assert store.next_timestamp() == 10**15 + 1
	assert EntryStore().next_timestamp() > 0

def test_serialize_layout():
	store = EntryStore([make_entry('a', 42)])
	raw = json.loads(store.serialize())
	assert raw == [{"id": "a", "title": "Title", "ciphertext": base64.b64encode(b'\x00ciphertext-and-tag').decode(), "nonce": "bm5ubm5ubm5ubm5u", "timestamp": 42}]

def test_load_roundtrip_preserves_records():
	store = EntryStore([make_entry('a', 1), make_entry('b', 2)])
	again = EntryStore.load(store.serialize())
	assert again.list_sorted() == store.list_sorted()

@pytest.mark.parametrize('blob', [None, b''])
def test_load_empty(blob):
	assert len(EntryStore.load(blob)) == 0

@pytest.mark.parametrize('blob', [
	b'not json',
	b'{"id": "a"}',
	b'[{"id": "a"}]',
	b'[{"id": "a", "title": "t", "ciphertext": "!!!", "nonce": "bm5ubm5ubm5ubm5u", "timestamp": 1}]',
	b'[{"id": "a", "title": "t", "ciphertext": "AA==", "nonce": "AA==", "timestamp": 1}]',
	b'[{"id": "a", "title": "t", "ciphertext": "AA==", "nonce": "bm5ubm5ubm5ubm5u", "timestamp": "1"}]',
	b'[{"id": "", "title": "t", "ciphertext": "AA==", "nonce": "bm5ubm5ubm5ubm5u", "timestamp": 1}]',
	b'\xff\xfe\x00garbage',
])
def test_load_rejects_corrupt_blobs(blob):
	with pytest.raises(StorageCorruptionError):
		EntryStore.load(blob)

def test_load_rejects_duplicate_ids():
	rec = make_entry('a').to_dict()
	with pytest.raises(StorageCorruptionError):
		EntryStore.load(json.dumps([rec, rec]).encode())

def test_concurrent_upserts_of_different_ids():
	store = EntryStore()
	def worker(n):
		for i in range(200):
			store.upsert(make_entry(f'{n}-{i}', i))
	threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
	for t in threads: t.start()
	for t in threads: t.join()
	assert len(store) == 8 * 200
	assert len(EntryStore.load(store.serialize())) == 8 * 200

def test_salt_encoding():
	salt = bytes(range(16))
	assert decode_salt(encode_salt(salt)) == salt
	assert decode_salt(encode_salt(salt) + b'\n') == salt

@pytest.mark.parametrize('blob', [b'', b'AAAA', b'%%%%', b'\xff'])
def test_decode_salt_rejects_malformed(blob):
	with pytest.raises(StorageCorruptionError):
		decode_salt(blob)

def test_kdf_parameters():
	assert decode_kdf(encode_kdf(250_000)) == 250_000
	with pytest.raises(StorageCorruptionError):
		decode_kdf(b'{"algorithm": "pbkdf2-sha256", "iterations": 10}')
	with pytest.raises(StorageCorruptionError):
		decode_kdf(b'{"algorithm": "scrypt", "iterations": 200000}')
