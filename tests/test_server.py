"""HTTP tests for the FastAPI routes."""

import base64
import io
import zipfile

import server


def _upload(client, name, data, current_path='', field='files[]', content_type='text/plain'):
    return client.post(
        '/api/upload',
        files=[(field, (name, data, content_type))],
        data={'currentPath': current_path},
    )


def _delete(client, path, force=False):
    url = '/api/delete-force' if force else '/api/delete'
    return client.request('DELETE', url, json={'filePath': path})


class TestListFiles:
    """Tests for GET /api/files."""

    def test_empty_root(self, client):
        response = client.get('/api/files')

        assert response.status_code == 200
        body = response.json()
        assert body['success'] is True
        assert body['files'] == []
        assert body['totalItems'] == 0
        assert body['totalSize'] == 0
        assert body['currentPath'] == ''
        assert body['parentPath'] is None

    def test_traversal_rejected(self, client):
        response = client.get('/api/files', params={'path': '../'})

        assert response.status_code == 400
        assert response.json() == {
            'success': False,
            'message': 'Path traversal attempt',
            'code': 'INVALID_PATH',
        }

    def test_file_is_not_a_directory(self, client, storage_root):
        (storage_root / 'a.txt').write_text('x')

        response = client.get('/api/files', params={'path': 'a.txt'})

        assert response.status_code == 400
        assert response.json()['code'] == 'NOT_A_DIRECTORY'

    def test_link_leaving_root_not_listed(self, client, storage_root, tmp_path):
        (tmp_path / 'outside.bin').write_bytes(b'x' * 12345)
        (storage_root / 'peek').symlink_to(tmp_path / 'outside.bin')

        body = client.get('/api/files').json()

        assert body['files'] == []
        assert body['totalSize'] == 0


class TestDocsScenario:
    """Create a folder, upload twice into it and list it."""

    def test_scenario(self, client):
        created = client.post('/api/folder', json={'folderName': 'Docs', 'currentPath': ''})
        assert created.status_code == 200
        assert created.json()['name'] == 'Docs'
        assert created.json()['path'] == 'Docs'

        again = client.post('/api/folder', json={'folderName': 'Docs', 'currentPath': ''})
        assert again.status_code == 409
        assert again.json()['success'] is False
        assert again.json()['code'] == 'ALREADY_EXISTS'

        first = _upload(client, 'report.txt', b'first', current_path='Docs')
        assert first.status_code == 200
        assert first.json()['files'][0]['path'] == 'Docs/report.txt'

        second = _upload(client, 'report.txt', b'second', current_path='Docs')
        assert second.json()['files'][0]['path'] == 'Docs/report (1).txt'

        listing = client.get('/api/files', params={'path': 'Docs'}).json()
        assert [f['name'] for f in listing['files']] == ['report (1).txt', 'report.txt']
        assert listing['totalItems'] == 2
        assert listing['totalSize'] == len(b'first') + len(b'second')
        assert listing['parentPath'] == ''


class TestUpload:
    """Tests for POST /api/upload."""

    def test_response_shape(self, client):
        response = client.post(
            '/api/upload',
            files=[
                ('files[]', ('a.txt', b'aaa', 'text/plain')),
                ('files[]', ('b.txt', b'bb', 'text/plain')),
            ],
            data={'currentPath': ''},
        )

        body = response.json()
        assert body['success'] is True
        assert body['count'] == 2
        assert body['totalSize'] == 5
        assert [f['name'] for f in body['files']] == ['a.txt', 'b.txt']
        assert body['failed'] == []

    def test_plain_files_field_accepted(self, client, storage_root):
        response = _upload(client, 'a.txt', b'x', field='files')

        assert response.json()['count'] == 1
        assert (storage_root / 'a.txt').exists()

    def test_no_files(self, client):
        response = client.post('/api/upload', data={'currentPath': ''})

        assert response.status_code == 400
        assert response.json()['code'] == 'INVALID_REQUEST'

    def test_file_count_limit(self, client, monkeypatch):
        monkeypatch.setattr(server, 'MAX_FILES_PER_REQUEST', 1)

        response = client.post(
            '/api/upload',
            files=[
                ('files[]', ('a.txt', b'a', 'text/plain')),
                ('files[]', ('b.txt', b'b', 'text/plain')),
            ],
        )

        assert response.status_code == 400
        assert response.json()['code'] == 'LIMIT_FILE_COUNT'

    def test_more_parts_than_parser_accepts(self, client, monkeypatch, storage_root):
        monkeypatch.setattr(server, 'MAX_FILES_PER_REQUEST', 2)

        response = client.post(
            '/api/upload',
            files=[('files[]', (f'{i}.txt', b'x', 'text/plain')) for i in range(5)],
        )

        assert response.status_code == 400
        body = response.json()
        assert body['success'] is False
        assert body['code'] == 'LIMIT_FILE_COUNT'
        assert list(storage_root.iterdir()) == []

    def test_file_in_middle_of_current_path(self, client, storage_root):
        (storage_root / 'a.txt').write_text('x')

        response = _upload(client, 'b.txt', b'y', current_path='a.txt/sub')

        assert response.status_code == 400
        assert response.json()['code'] == 'NOT_A_DIRECTORY'

    def test_file_size_limit(self, client, monkeypatch, storage_root):
        monkeypatch.setattr(server, 'MAX_FILE_BYTES', 4)

        response = _upload(client, 'big.txt', b'too large')

        assert response.status_code == 400
        assert response.json()['code'] == 'LIMIT_FILE_SIZE'
        assert list(storage_root.iterdir()) == []

    def test_type_allow_list(self, client, monkeypatch):
        monkeypatch.setattr(server, 'ALLOWED_MIME_TYPES', frozenset({'image/png'}))

        response = _upload(client, 'a.txt', b'x')

        assert response.status_code == 400
        assert response.json()['code'] == 'UNSUPPORTED_TYPE'


class TestDownload:
    """Tests for GET /api/download and /api/download-folder."""

    def test_round_trip(self, client):
        payload = bytes(range(256)) * 10
        stored = _upload(client, 'report.txt', payload).json()['files'][0]

        response = client.get('/api/download', params={'path': stored['path']})

        assert response.status_code == 200
        assert response.content == payload
        disposition = response.headers['content-disposition']
        assert disposition.startswith('attachment')
        assert 'filename="report.txt"' in disposition

    def test_non_ascii_filename(self, client, storage_root):
        (storage_root / 'résumé.txt').write_bytes(b'x')

        response = client.get('/api/download', params={'path': 'résumé.txt'})

        assert "filename*=utf-8''r%C3%A9sum%C3%A9.txt" in response.headers['content-disposition']

    def test_missing_file(self, client):
        response = client.get('/api/download', params={'path': 'nope.txt'})

        assert response.status_code == 404
        assert response.json()['success'] is False

    def test_folder_via_file_download(self, client, storage_root):
        (storage_root / 'dir').mkdir()

        response = client.get('/api/download', params={'path': 'dir'})

        assert response.status_code == 400

    def test_download_folder_zip(self, client, storage_root):
        (storage_root / 'Docs' / 'empty').mkdir(parents=True)
        (storage_root / 'Docs' / 'a.txt').write_bytes(b'alpha')

        response = client.get('/api/download-folder', params={'path': 'Docs'})

        assert response.status_code == 200
        assert response.headers['content-type'] == 'application/zip'
        assert 'filename="Docs.zip"' in response.headers['content-disposition']
        with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
            assert set(zf.namelist()) == {'Docs/', 'Docs/a.txt', 'Docs/empty/'}
            assert zf.read('Docs/a.txt') == b'alpha'

    def test_download_missing_folder(self, client):
        response = client.get('/api/download-folder', params={'path': 'ghost'})

        assert response.status_code == 404
        assert response.json()['code'] == 'NOT_FOUND'


class TestDelete:
    """Tests for DELETE /api/delete and /api/delete-force."""

    def test_non_empty_then_force(self, client, storage_root):
        (storage_root / 'dir').mkdir()
        (storage_root / 'dir' / 'f.txt').write_text('x')

        refused = _delete(client, 'dir')
        assert refused.status_code == 409
        assert refused.json()['code'] == 'DIRECTORY_NOT_EMPTY'

        forced = _delete(client, 'dir', force=True)
        assert forced.status_code == 200
        assert forced.json() == {'success': True, 'message': 'Deleted successfully', 'path': 'dir'}

        names = [f['name'] for f in client.get('/api/files').json()['files']]
        assert 'dir' not in names

    def test_missing(self, client):
        response = _delete(client, 'ghost')

        assert response.status_code == 404

    def test_missing_body_field(self, client):
        response = client.request('DELETE', '/api/delete', json={})

        assert response.status_code == 400
        assert response.json()['success'] is False
        assert response.json()['code'] == 'INVALID_REQUEST'


class TestRenameAndMove:
    """Tests for PUT /api/rename and /api/move."""

    def test_rename(self, client, storage_root):
        (storage_root / 'docs').mkdir()
        (storage_root / 'docs' / 'old.txt').write_text('x')

        response = client.put('/api/rename', json={'oldPath': 'docs/old.txt', 'newName': 'new.txt'})

        assert response.status_code == 200
        body = response.json()
        assert body['oldPath'] == 'docs/old.txt'
        assert body['newPath'] == 'docs/new.txt'
        assert body['newName'] == 'new.txt'

    def test_rename_conflict(self, client, storage_root):
        (storage_root / 'a.txt').write_text('a')
        (storage_root / 'b.txt').write_text('b')

        response = client.put('/api/rename', json={'oldPath': 'a.txt', 'newName': 'b.txt'})

        assert response.status_code == 409

    def test_rename_missing(self, client):
        response = client.put('/api/rename', json={'oldPath': 'x.txt', 'newName': 'y.txt'})

        assert response.status_code == 404

    def test_move(self, client, storage_root):
        (storage_root / 'a.txt').write_text('a')
        (storage_root / 'dest').mkdir()

        response = client.put('/api/move', json={'sourcePath': 'a.txt', 'targetPath': 'dest'})

        assert response.status_code == 200
        assert response.json()['newPath'] == 'dest/a.txt'
        assert (storage_root / 'dest' / 'a.txt').exists()


class TestUploadFolder:
    """Tests for POST /api/upload-folder."""

    def test_upload_and_repeat(self, client, storage_root):
        folder = {
            'name': 'Album',
            'files': [{'name': 'p.txt', 'content': base64.b64encode(b'pic').decode()}],
            'folders': [{'name': 'nested', 'files': [], 'folders': []}],
        }

        first = client.post('/api/upload-folder', json={'folderData': folder, 'currentPath': ''})
        assert first.status_code == 200
        assert first.json()['path'] == 'Album'
        assert first.json()['name'] == 'Album'
        assert (storage_root / 'Album' / 'p.txt').read_bytes() == b'pic'
        assert (storage_root / 'Album' / 'nested').is_dir()

        second = client.post('/api/upload-folder', json={'folderData': folder, 'currentPath': ''})
        assert second.status_code == 409

    def test_file_in_middle_of_current_path(self, client, storage_root):
        (storage_root / 'a.txt').write_text('x')
        folder = {'name': 'up', 'files': [], 'folders': []}

        response = client.post(
            '/api/upload-folder', json={'folderData': folder, 'currentPath': 'a.txt/sub'}
        )

        assert response.status_code == 400
        assert response.json()['code'] == 'NOT_A_DIRECTORY'

    def test_invalid_descriptor(self, client):
        response = client.post('/api/upload-folder', json={'currentPath': ''})

        assert response.status_code == 400
        assert response.json()['success'] is False


class TestFileInfoAndHealth:
    """Tests for GET /api/file-info and /health."""

    def test_file_info(self, client, storage_root):
        (storage_root / 'dir' / 'sub').mkdir(parents=True)

        response = client.get('/api/file-info', params={'path': 'dir'})

        assert response.status_code == 200
        info = response.json()['info']
        assert info['isDirectory'] is True
        assert info['hasFolders'] is True
        assert info['hasFiles'] is False

    def test_file_info_missing(self, client):
        response = client.get('/api/file-info', params={'path': 'ghost'})

        assert response.status_code == 404

    def test_health(self, client, storage_root):
        body = client.get('/health').json()

        assert body['status'] == 'OK'
        assert body['uploadDir'] == storage_root.name
        assert str(storage_root) not in str(body)
        assert body['writable'] is True
        assert body['uptime'] >= 0
        assert isinstance(body['memory'], dict)


class TestCreateFolderRoute:
    """Tests for POST /api/folder."""

    def test_file_in_middle_of_current_path(self, client, storage_root):
        (storage_root / 'a.txt').write_text('x')

        response = client.post('/api/folder', json={'folderName': 'x', 'currentPath': 'a.txt/sub'})

        assert response.status_code == 400
        assert response.json() == {
            'success': False,
            'message': 'Path is not a folder',
            'code': 'NOT_A_DIRECTORY',
        }


class TestFrameworkErrors:
    """Routing failures use the same JSON error shape as the API."""

    def test_unknown_route(self, client):
        response = client.get('/api/nope')

        assert response.status_code == 404
        body = response.json()
        assert body['success'] is False
        assert body['code'] == 'NOT_FOUND'
        assert 'detail' not in body

    def test_wrong_method(self, client):
        response = client.post('/api/files')

        assert response.status_code == 405
        assert response.json()['code'] == 'METHOD_NOT_ALLOWED'
        assert 'GET' in response.headers['allow']
