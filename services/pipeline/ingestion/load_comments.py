"""
Load public comments for a regulation document into its SQLite database.

Sources:
    - regulations.gov v4 API, given a document id (e.g. CMS-2025-0050-0031)
    - a bulk-download CSV export; the file name (without extension) becomes the document id

Loading is resumable: comments already in the database are skipped.

Usage:
    python services/pipeline/ingestion/load_comments.py CMS-2025-0050-0031
    python services/pipeline/ingestion/load_comments.py CMS-2025-0050-0031 --limit 500 --skip-attachments
    python services/pipeline/ingestion/load_comments.py exports/CMS-2025-0050-0031.csv
"""

import argparse
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import requests
from sqlalchemy import func, select

# Add project root to path
project_root = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(project_root))

from shared.config.config import REGSGOV_API_KEY
from shared.database.database import handle_db_error, init_database
from shared.models.models import Attachment, Comment
from shared.utils.utils import cfg, rate_limit

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CSV_FIELD_MAP = {
    "Document ID": "id",
    "Agency ID": "agencyId",
    "Docket ID": "docketId",
    "Document Type": "documentType",
    "Title": "title",
    "Posted Date": "postedDate",
    "Comment": "comment",
    "First Name": "firstName",
    "Last Name": "lastName",
    "Organization Name": "organization",
    "Submitter Representative": "submitterRep",
    "Category": "category",
    "State/Province": "stateProvinceRegion",
    "Country": "country",
    "Received Date": "receiveDate",
    "Page Count": "pageCount",
}

DISPLAY_PROPERTIES_COLUMN = "Display Properties (Name, Label, Tooltip)"


class RegulationsGovError(Exception):
    """Raised when regulations.gov returns an error for a required call."""
    pass


class RegulationsGovClient:
    """
    Minimal regulations.gov v4 client.

    API requests go through a rate limiter (api_call_delay seconds apart) and
    file downloads through a second one (attachment_delay);
    DEMO_KEY is heavily throttled, so set REGSGOV_API_KEY for real loads.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 api_call_delay: Optional[float] = None, attachment_delay: Optional[float] = None,
                 timeout: Optional[int] = None,
                 session: Optional[requests.Session] = None):
        settings = cfg.section('regulations_gov')
        self.api_key = api_key or REGSGOV_API_KEY
        self.base_url = (base_url or settings.get('base_url', 'https://api.regulations.gov/v4')).rstrip('/')
        self.page_size = settings.get('page_size', 250)
        self.timeout = timeout or settings.get('timeout', 60)
        delay = settings.get('api_call_delay', 1.2) if api_call_delay is None else api_call_delay
        self.session = session or requests.Session()
        self.session.headers.update({"X-Api-Key": self.api_key})
        self._get = rate_limit(delay)(self._request)
        if attachment_delay is None:
            attachment_delay = settings.get('attachment_delay', 1.0)
        self._download = rate_limit(attachment_delay)(self._request)

    def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        return self.session.get(url, params=params, timeout=self.timeout)

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._get(f"{self.base_url}/{path}", params)
        if not response.ok:
            raise RegulationsGovError(f"GET {path} failed: {response.status_code} {response.reason}")
        try:
            body = response.json()
        except ValueError as e:
            raise RegulationsGovError(f"GET {path} returned invalid JSON: {e}") from e
        if not isinstance(body, dict):
            raise RegulationsGovError(f"GET {path} returned {type(body).__name__}, expected an object")
        return body

    def _get_data(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """The 'data' object of a single-resource response."""
        data = self._get_json(path, params).get('data')
        if not isinstance(data, dict):
            raise RegulationsGovError(f"GET {path} returned no data")
        return data

    def get_object_id(self, document_id: str) -> str:
        object_id = (self._get_data(f"documents/{document_id}").get('attributes') or {}).get('objectId')
        if not object_id:
            raise RegulationsGovError(f"Document {document_id} has no objectId")
        return object_id

    def list_comment_ids(self, object_id: str) -> List[str]:
        """All comment ids on a document, paging until a short page."""
        ids = []
        page = 1
        while True:
            data = self._get_json("comments", {
                "filter[commentOnId]": object_id,
                "page[size]": self.page_size,
                "page[number]": page,
            })
            rows = data.get('data') or []
            if not rows:
                break
            ids.extend(row['id'] for row in rows)
            logger.info(f"  Page {page}: {len(rows)} comments (total: {len(ids)})")
            if len(rows) < self.page_size:
                break
            page += 1
        return ids

    def get_comment(self, comment_id: str) -> Dict[str, Any]:
        return self._get_data(f"comments/{comment_id}", {"include": "attachments"})

    def get_attachment(self, attachment_id: str) -> Dict[str, Any]:
        return self._get_data(f"attachments/{attachment_id}", {"include": "fileFormats"})

    def download(self, url: str) -> Optional[bytes]:
        response = self._download(url)
        if not response.ok:
            logger.warning(f"Failed to download {url}: {response.status_code}")
            return None
        return response.content


def existing_comment_ids(manager) -> set:
    with manager.get_session() as session:
        return set(session.scalars(select(Comment.id)))


@handle_db_error
def save_comment(manager, comment_id: str, attributes: Dict[str, Any], attachments: List[Dict[str, Any]]):
    """Save a comment and its attachments in one transaction."""
    with manager.get_session() as session:
        session.merge(Comment(id=comment_id, attributes_json=attributes))
        for att in attachments:
            session.merge(Attachment(
                id=att['id'],
                comment_id=comment_id,
                format=att['format'],
                file_name=att['file_name'],
                url=att['url'],
                size=att['size'],
                blob_data=att['blob'],
            ))


def fetch_attachments(client: RegulationsGovClient, comment_data: Dict[str, Any],
                      skip_attachments: bool = False) -> List[Dict[str, Any]]:
    """Attachment records (one per file format) for a comment from the API."""
    records = []
    relationships = (comment_data.get('relationships') or {}).get('attachments') or {}
    for rel in relationships.get('data') or []:
        try:
            att_data = client.get_attachment(rel['id'])
        except RegulationsGovError as e:
            logger.warning(f"Skipping attachment {rel['id']}: {e}")
            continue

        for file_format in (att_data.get('attributes') or {}).get('fileFormats') or []:
            url = file_format.get('downloadUrl') or file_format.get('fileUrl')
            if not url:
                continue
            fmt = (file_format.get('fileFormat') or file_format.get('format') or 'bin').lower()
            blob = None
            size = file_format.get('size')
            if not skip_attachments:
                try:
                    blob = client.download(url)
                except requests.RequestException as e:
                    logger.warning(f"Error downloading {url}: {e}")
                if blob is not None:
                    size = len(blob)
            records.append({
                'id': file_format.get('formatId') or rel['id'],
                'format': fmt,
                'file_name': f"{rel['id']}.{fmt}",
                'url': url,
                'size': size,
                'blob': blob,
            })
    return records


def load_from_api(document_id: str, api_key: Optional[str] = None, limit: Optional[int] = None,
                  skip_attachments: bool = False, db_dir: Optional[str] = None,
                  client: Optional[RegulationsGovClient] = None) -> Dict[str, int]:
    """
    Load all comments on a document from regulations.gov.

    Args:
        document_id: regulations.gov document id
        api_key: API key (falls back to REGSGOV_API_KEY, then DEMO_KEY)
        limit: Stop once the database holds this many comments
        skip_attachments: Record attachment metadata without downloading files
        db_dir: Database directory override
        client: Preconfigured client (tests)

    Returns:
        Stats dict
    """
    stats = {'available': 0, 'existing': 0, 'loaded': 0, 'failed': 0, 'attachments': 0}
    manager = init_database(document_id, db_dir)
    client = client or RegulationsGovClient(api_key=api_key)

    logger.info(f"Resolving document object id for {document_id}...")
    object_id = client.get_object_id(document_id)

    loaded_ids = existing_comment_ids(manager)
    stats['existing'] = len(loaded_ids)
    logger.info(f"Existing comments in database: {stats['existing']}")

    logger.info("Fetching comment list...")
    comment_ids = client.list_comment_ids(object_id)
    stats['available'] = len(comment_ids)

    new_ids = [cid for cid in comment_ids if cid not in loaded_ids]
    if limit:
        new_ids = new_ids[:max(0, limit - stats['existing'])]
    logger.info(f"Will load {len(new_ids)} new comments")

    for i, comment_id in enumerate(new_ids, 1):
        try:
            data = client.get_comment(comment_id)
            attachments = fetch_attachments(client, data, skip_attachments)
            save_comment(manager, comment_id, data.get('attributes') or {}, attachments)
        except (RegulationsGovError, requests.RequestException) as e:
            logger.error(f"Failed to load comment {comment_id}: {e}")
            stats['failed'] += 1
            continue
        stats['loaded'] += 1
        stats['attachments'] += len(attachments)
        if i % 25 == 0 or i == len(new_ids):
            logger.info(f"Loaded {i}/{len(new_ids)} comments")

    return stats


def parse_display_properties(value: str) -> List[Dict[str, Optional[str]]]:
    props = []
    for piece in value.split(';'):
        piece = piece.strip()
        if not piece:
            continue
        parts = re.split(r'\s*,\s*', piece)
        parts += [None] * (3 - len(parts))
        props.append({'name': parts[0], 'label': parts[1], 'tooltip': parts[2]})
    return props


def map_csv_row(row: Dict[str, str], row_number: int):
    """
    Convert a bulk-export CSV row into (comment_id, attributes, attachment urls).
    Empty cells are omitted; Page Count becomes an int when it parses.
    """
    attributes: Dict[str, Any] = {}
    for column, field in CSV_FIELD_MAP.items():
        value = (row.get(column) or '').strip()
        if not value:
            continue
        if field == 'pageCount':
            try:
                attributes[field] = int(value)
            except ValueError:
                pass
        else:
            attributes[field] = value

    display = row.get(DISPLAY_PROPERTIES_COLUMN)
    if display:
        attributes['displayProperties'] = parse_display_properties(display)

    urls = f"{row.get('Attachment Files') or ''};{row.get('Content Files') or ''}"
    urls = [u.strip() for u in re.split(r'[\s;,|]+', urls) if u.strip()]

    comment_id = (row.get('Document ID') or '').strip() or f"row{row_number}"
    return comment_id, attributes, urls


@rate_limit(cfg.section('regulations_gov').get('attachment_delay', 1.0))
def download_file(url: str) -> requests.Response:
    return requests.get(url, timeout=cfg.section('regulations_gov').get('timeout', 60))


def csv_attachments(comment_id: str, urls: List[str], skip_attachments: bool = False) -> List[Dict[str, Any]]:
    records = []
    for i, url in enumerate(urls):
        file_name = url.rstrip('/').split('/')[-1]
        suffix = Path(file_name).suffix
        fmt = suffix[1:].lower() if suffix else 'bin'
        blob = None
        if not skip_attachments:
            try:
                response = download_file(url)
                if response.ok:
                    blob = response.content
                else:
                    logger.warning(f"Failed to download {url}: {response.status_code}")
            except requests.RequestException as e:
                logger.warning(f"Error downloading attachment {url}: {e}")
        records.append({
            'id': f"{comment_id}-att{i + 1}",
            'format': fmt,
            'file_name': file_name,
            'url': url,
            'size': len(blob) if blob is not None else None,
            'blob': blob,
        })
    return records


def load_from_csv(csv_path: str, limit: Optional[int] = None, skip_attachments: bool = False,
                  db_dir: Optional[str] = None) -> Dict[str, int]:
    """
    Load comments from a regulations.gov bulk CSV export.

    Rows already loaded (by count) are skipped, so re-running continues
    where the last run stopped.
    """
    document_id = Path(csv_path).stem
    logger.info(f"Using document id: {document_id}")
    manager = init_database(document_id, db_dir)

    with manager.get_session() as session:
        skip_count = session.scalar(select(func.count()).select_from(Comment))
    stats = {'existing': skip_count, 'loaded': 0, 'attachments': 0}

    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    for row_number, row in enumerate(df.to_dict(orient='records'), 1):
        if row_number <= skip_count:
            continue
        if limit and stats['loaded'] >= limit:
            logger.info(f"Reached limit of {limit} comments")
            break

        comment_id, attributes, urls = map_csv_row(row, row_number)
        attachments = csv_attachments(comment_id, urls, skip_attachments)
        save_comment(manager, comment_id, attributes, attachments)
        stats['loaded'] += 1
        stats['attachments'] += len(attachments)
        if stats['loaded'] % 100 == 0:
            logger.info(f"Loaded {stats['loaded']} comments")

    return stats


def is_file_source(source: str) -> bool:
    return '.' in source or '/' in source or os.sep in source


def run(source: str, api_key: Optional[str] = None, limit: Optional[int] = None,
        skip_attachments: bool = False, db_dir: Optional[str] = None) -> Dict[str, int]:
    if is_file_source(source):
        logger.info(f"Loading comments from CSV file: {source}")
        return load_from_csv(source, limit=limit, skip_attachments=skip_attachments, db_dir=db_dir)
    logger.info(f"Loading comments for {source} from regulations.gov")
    return load_from_api(source, api_key=api_key, limit=limit,
                         skip_attachments=skip_attachments, db_dir=db_dir)


def build_parser():
    parser = argparse.ArgumentParser(description="Load comments from regulations.gov or a CSV export")
    parser.add_argument("source", help="Document id (e.g. CMS-2025-0050-0031) or path to CSV file")
    parser.add_argument("-k", "--api-key", default=REGSGOV_API_KEY,
                        help="regulations.gov API key")
    parser.add_argument("--skip-attachments", action="store_true", help="Do not download attachment files")
    parser.add_argument("-l", "--limit", type=int, help="Stop after N comments")
    parser.add_argument("--db-dir", help="Directory holding per-document databases")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    stats = run(args.source, api_key=args.api_key, limit=args.limit,
                skip_attachments=args.skip_attachments, db_dir=args.db_dir)

    print("\n" + "=" * 60)
    print("LOAD SUMMARY")
    print("=" * 60)
    for key, value in stats.items():
        print(f"  {key}: {value}")
    print("=" * 60)
    return stats


if __name__ == "__main__":
    main()
