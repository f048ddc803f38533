"""
Tests for the local-disk image storage.
"""
import pytest
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from media_service.utils.errors import PersistenceError
from media_service.utils.storage import LocalImageStorage, safe_stem


@pytest.fixture
def storage(tmp_path):
    return LocalImageStorage(str(tmp_path / 'uploads'), 'http://localhost:8000/')


class TestSafeStem:
    """Tests for filename sanitizing."""

    def test_spaces_and_symbols(self):
        assert safe_stem('My Villa (front)!.JPG') == 'My_Villa_front'

    def test_directories_dropped(self):
        assert safe_stem('../../etc/passwd') == 'passwd'

    def test_empty(self):
        assert safe_stem('') == 'image'
        assert safe_stem('***.png') == 'image'


class TestLocalImageStorage:
    """Tests for storing and deleting files."""

    def test_store_writes_webp_file(self, storage, tmp_path):
        stored = storage.store(b'webp-bytes', 'Beach House.png')

        assert stored.public_id.startswith('property_')
        assert stored.public_id.endswith('_Beach_House.webp')
        assert stored.url == f'http://localhost:8000/uploads/{stored.public_id}'
        assert (tmp_path / 'uploads' / stored.public_id).read_bytes() == b'webp-bytes'

    def test_store_names_are_unique(self, storage):
        first = storage.store(b'a', 'same.jpg')
        second = storage.store(b'b', 'same.jpg')
        assert first.public_id != second.public_id

    def test_delete(self, storage):
        stored = storage.store(b'data', 'x.jpg')
        assert storage.exists(stored.public_id)

        storage.delete(stored.public_id)

        assert not storage.exists(stored.public_id)

    def test_delete_missing_is_noop(self, storage):
        storage.delete('property_0_missing.webp')

    @pytest.mark.parametrize('public_id', ['', '..', '../secret.webp', 'a/b.webp'])
    def test_rejects_paths(self, storage, public_id):
        with pytest.raises(PersistenceError):
            storage.delete(public_id)

    def test_store_failure_raises_persistence_error(self, tmp_path):
        blocker = tmp_path / 'not_a_dir'
        blocker.write_text('file in the way')
        storage = LocalImageStorage(str(blocker), 'http://localhost:8000')

        with pytest.raises(PersistenceError):
            storage.store(b'data', 'x.jpg')
