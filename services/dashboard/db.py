"""
Data access shared by the dashboard pages.

The overview pages read the JSON files written by build_website (DASHBOARD_DATA_DIR,
default from config.yaml pipeline.output_dir). The theme browser reads a document
database directly.
"""

import os
import sys
from pathlib import Path

import streamlit as st

project_root = Path(__file__).parent.parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from shared.config.batch_config import get_pipeline_config
from shared.database.database import list_documents
from services.dashboard.store import DashboardStore


def data_dir() -> Path:
    return Path(os.getenv("DASHBOARD_DATA_DIR") or get_pipeline_config()['output_dir'])


@st.cache_resource
def load_store(path: str) -> DashboardStore:
    return DashboardStore.load(path)


def get_store():
    """Store for the configured data directory, or None (with an error shown) when it is missing."""
    path = data_dir()
    if not (path / 'meta.json').exists():
        st.error(f"No dashboard data in {path}. Run `comment-analysis build-website <document_id>` first.")
        return None
    return load_store(str(path))


def document_selector():
    """Sidebar picker over the document databases; None when there are none."""
    documents = list_documents()
    if not documents:
        st.sidebar.warning("No document databases found.")
        return None
    return st.sidebar.selectbox("Document", options=documents, index=0)


__all__ = ['data_dir', 'load_store', 'get_store', 'document_selector']
