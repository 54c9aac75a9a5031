from types import SimpleNamespace

import pytest
import requests
from sqlalchemy import select

from shared.database.database import get_db_manager
from shared.models.models import Attachment, Comment
from services.pipeline.ingestion import load_comments
from services.pipeline.ingestion.load_comments import (
    RegulationsGovClient, RegulationsGovError, csv_attachments, is_file_source, load_from_api, load_from_csv,
    map_csv_row, parse_display_properties, run
)

CSV_TEXT = """Document ID,Comment,First Name,Last Name,Organization Name,Category,Page Count,Attachment Files,"Display Properties (Name, Label, Tooltip)"
CMS-1-0002,Please delay the rule.,Jane,Doe,,Individual,2,https://downloads.example.gov/CMS-1-0002/attachment_1.pdf,"pageCount, Page Count, Number of pages"
CMS-1-0003,The rule is too costly.,,,Rural Health Alliance,Health Care Organization,n/a,,
,Anonymous support.,,,,,,,
"""


def write_csv(tmp_path, name="CMS-1-0001.csv"):
    path = tmp_path / name
    path.write_text(CSV_TEXT, encoding='utf-8')
    return str(path)


def comments(manager):
    with manager.get_session() as session:
        return {c.id: c.attributes_json for c in session.scalars(select(Comment))}


def test_is_file_source():
    assert is_file_source('exports/CMS-2025-0050-0031.csv')
    assert is_file_source('comments.csv')
    assert not is_file_source('CMS-2025-0050-0031')


def test_map_csv_row():
    row = {'Document ID': ' CMS-1-0002 ', 'Comment': 'Text', 'First Name': '', 'Page Count': '3',
           'Attachment Files': 'https://a.example/x.pdf; https://a.example/y.docx', 'Content Files': ''}
    comment_id, attributes, urls = map_csv_row(row, 1)
    assert comment_id == 'CMS-1-0002'
    assert attributes == {'id': 'CMS-1-0002', 'comment': 'Text', 'pageCount': 3}
    assert urls == ['https://a.example/x.pdf', 'https://a.example/y.docx']


def test_map_csv_row_without_id_uses_row_number():
    comment_id, _, urls = map_csv_row({'Comment': 'Hi'}, 7)
    assert comment_id == 'row7'
    assert urls == []


def test_parse_display_properties():
    assert parse_display_properties('pageCount, Page Count, Number of pages; city,City') == [
        {'name': 'pageCount', 'label': 'Page Count', 'tooltip': 'Number of pages'},
        {'name': 'city', 'label': 'City', 'tooltip': None},
    ]


def test_load_from_csv(tmp_path, db_dir):
    path = write_csv(tmp_path)
    stats = run(path, skip_attachments=True, db_dir=db_dir)
    assert stats == {'existing': 0, 'loaded': 3, 'attachments': 1}

    manager = get_db_manager('CMS-1-0001', db_dir)
    loaded = comments(manager)
    assert set(loaded) == {'CMS-1-0002', 'CMS-1-0003', 'row3'}
    assert loaded['CMS-1-0002']['pageCount'] == 2
    assert loaded['CMS-1-0002']['displayProperties'][0]['label'] == 'Page Count'
    assert loaded['CMS-1-0003']['organization'] == 'Rural Health Alliance'
    assert 'pageCount' not in loaded['CMS-1-0003']

    with manager.get_session() as session:
        attachment = session.scalars(select(Attachment)).one()
        assert attachment.id == 'CMS-1-0002-att1'
        assert attachment.format == 'pdf'
        assert attachment.file_name == 'attachment_1.pdf'
        assert attachment.blob_data is None


def test_load_from_csv_resumes_and_limits(tmp_path, db_dir):
    path = write_csv(tmp_path)
    first = load_from_csv(path, limit=1, skip_attachments=True, db_dir=db_dir)
    assert first['loaded'] == 1

    second = load_from_csv(path, skip_attachments=True, db_dir=db_dir)
    assert second['existing'] == 1
    assert second['loaded'] == 2


class FakeClient:
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.downloads = []

    def get_object_id(self, document_id):
        return 'OBJ-1'

    def list_comment_ids(self, object_id):
        assert object_id == 'OBJ-1'
        return ['C-1', 'C-2', 'C-3']

    def get_comment(self, comment_id):
        if comment_id in self.fail:
            raise RegulationsGovError(f"GET comments/{comment_id} failed: 500")
        data = {'id': comment_id, 'attributes': {'comment': f"Text of {comment_id}"}}
        if comment_id == 'C-1':
            data['relationships'] = {'attachments': {'data': [{'id': 'ATT-1'}]}}
        return data

    def get_attachment(self, attachment_id):
        return {'attributes': {'fileFormats': [
            {'fileUrl': 'https://downloads.example.gov/ATT-1/attachment.pdf', 'format': 'PDF', 'size': 99},
            {'format': 'docx'},
        ]}}

    def download(self, url):
        self.downloads.append(url)
        return b'%PDF-1.4 body'


def test_load_from_api(manager, db_dir):
    client = FakeClient()
    stats = load_from_api(manager.document_id, db_dir=db_dir, client=client)
    assert stats == {'available': 3, 'existing': 0, 'loaded': 3, 'failed': 0, 'attachments': 1}
    assert comments(manager)['C-2'] == {'comment': 'Text of C-2'}
    assert client.downloads == ['https://downloads.example.gov/ATT-1/attachment.pdf']

    with manager.get_session() as session:
        attachment = session.scalars(select(Attachment)).one()
        assert attachment.file_name == 'ATT-1.pdf'
        assert attachment.size == len(b'%PDF-1.4 body')


def test_load_from_api_skips_existing_and_counts_failures(manager, db_dir):
    client = FakeClient(fail={'C-3'})
    load_from_api(manager.document_id, db_dir=db_dir, client=client, limit=1)
    stats = load_from_api(manager.document_id, db_dir=db_dir, client=client, skip_attachments=True)
    assert stats['existing'] == 1
    assert stats['loaded'] == 1
    assert stats['failed'] == 1
    assert set(comments(manager)) == {'C-1', 'C-2'}


class StubSession:
    """requests.Session stand-in answering GETs from a path -> JSON body map."""

    def __init__(self, bodies):
        self.bodies = bodies
        self.headers = {}

    def get(self, url, params=None, timeout=None):
        body = self.bodies[url.split('/v4/', 1)[1]]

        def json():
            if isinstance(body, Exception):
                raise body
            return body

        return SimpleNamespace(ok=True, status_code=200, reason='OK', json=json)


def stub_client(bodies):
    return RegulationsGovClient(api_key='test-key', base_url='https://api.example.gov/v4', api_call_delay=0,
                                attachment_delay=0, session=StubSession(bodies))


def test_client_rejects_success_without_data():
    client = stub_client({
        'documents/DOC-1': {'data': {'attributes': {'objectId': 'OBJ-1'}}},
        'documents/DOC-2': {'data': {'attributes': {}}},
        'comments/C-1': {'errors': []},
        'attachments/A-1': {'data': None},
        'attachments/A-2': ValueError("Expecting value"),
    })
    assert client.get_object_id('DOC-1') == 'OBJ-1'
    assert client.session.headers == {'X-Api-Key': 'test-key'}
    with pytest.raises(RegulationsGovError, match='objectId'):
        client.get_object_id('DOC-2')
    with pytest.raises(RegulationsGovError, match='no data'):
        client.get_comment('C-1')
    with pytest.raises(RegulationsGovError, match='no data'):
        client.get_attachment('A-1')
    with pytest.raises(RegulationsGovError, match='invalid JSON'):
        client.get_attachment('A-2')


def test_load_from_api_counts_comment_without_data_as_failed(manager, db_dir):
    client = stub_client({
        f'documents/{manager.document_id}': {'data': {'attributes': {'objectId': 'OBJ-1'}}},
        'comments': {'data': [{'id': 'C-1'}, {'id': 'C-2'}]},
        'comments/C-1': {'data': {'id': 'C-1', 'attributes': {'comment': 'Hi'}}},
        'comments/C-2': {'meta': {}},
    })
    stats = load_from_api(manager.document_id, db_dir=db_dir, client=client)
    assert stats == {'available': 2, 'existing': 0, 'loaded': 1, 'failed': 1, 'attachments': 0}
    assert comments(manager) == {'C-1': {'comment': 'Hi'}}


def test_csv_attachments_download(monkeypatch):
    def fake_download(url):
        if 'broken' in url:
            raise requests.ConnectionError("reset")
        if 'missing' in url:
            return SimpleNamespace(ok=False, status_code=404, content=b'')
        return SimpleNamespace(ok=True, status_code=200, content=b'%PDF data')

    monkeypatch.setattr(load_comments, 'download_file', fake_download)
    records = csv_attachments('C-9', ['https://x.gov/a/file.PDF', 'https://x.gov/missing/notes',
                                      'https://x.gov/broken/b.docx'])
    assert [(r['id'], r['format'], r['file_name']) for r in records] == [
        ('C-9-att1', 'pdf', 'file.PDF'), ('C-9-att2', 'bin', 'notes'), ('C-9-att3', 'docx', 'b.docx')
    ]
    assert records[0]['blob'] == b'%PDF data'
    assert records[0]['size'] == 9
    assert records[1]['blob'] is None
    assert records[2]['size'] is None
