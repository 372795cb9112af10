"""Pytest configuration and shared fixtures for datagrid-engine tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List
from unittest.mock import patch

import polars as pl
import pytest

from datagrid_engine.core.extensions import ColumnFilterExtension
from datagrid_engine.core.selection import SelectionExtension
from datagrid_engine.core.state import TableStateStore


class MockSessionState(dict):
    """Mock Streamlit session_state that behaves like a dict."""
    pass


@pytest.fixture
def mock_streamlit():
    """
    Mock Streamlit's session_state for testing persistence.

    This fixture patches st.session_state to allow testing without
    running a full Streamlit server.
    """
    mock_session_state = MockSessionState()

    with patch('streamlit.session_state', mock_session_state):
        yield mock_session_state


@pytest.fixture
def temp_export_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for export output."""
    tmpdir = tempfile.mkdtemp(prefix="datagrid_engine_test_")
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def people_rows() -> List[Dict[str, Any]]:
    """Small list of row dicts covering every column type."""
    return [
        {"id": "1", "name": "John", "age": 25, "joined": "2023-01-15", "active": True, "team": "red"},
        {"id": "2", "name": "Amy", "age": 15, "joined": "2023-03-02", "active": False, "team": "blue"},
        {"id": "3", "name": "Joanna", "age": 35, "joined": "2022-12-31", "active": True, "team": "red"},
        {"id": "4", "name": "Bob", "age": None, "joined": None, "active": False, "team": "green"},
        {"id": "5", "name": "", "age": 42, "joined": "not a date", "active": True, "team": "blue"},
    ]


@pytest.fixture
def people_columns() -> List[Dict[str, Any]]:
    return [
        {"id": "id", "header": "ID", "type": "text"},
        {"id": "name", "header": "Name", "type": "text"},
        {"id": "age", "header": "Age", "type": "number"},
        {"id": "joined", "header": "Joined", "type": "date"},
        {"id": "active", "header": "Active", "type": "boolean"},
        {"id": "team", "header": "Team", "type": "select"},
    ]


@pytest.fixture
def orders_table() -> pl.LazyFrame:
    """Small order table for client-side querying."""
    return pl.LazyFrame({
        "id": [1, 2, 3, 4, 5],
        "customer_id": [100, 100, 200, 200, 300],
        "amount": [50.5, 60.6, 70.7, 80.8, 90.9],
        "product": ["desk", "chair", "lamp", "shelf", "sofa"],
    })


@pytest.fixture
def large_orders_table() -> pl.LazyFrame:
    """Order table large enough for pagination tests."""
    n_rows = 1000
    return pl.LazyFrame({
        "id": list(range(n_rows)),
        "customer_id": [i // 100 for i in range(n_rows)],
        "amount": [100.0 + i * 0.5 for i in range(n_rows)],
        "product": [f"item_{i}" for i in range(n_rows)],
        "region": [["north", "south", "west"][i % 3] for i in range(n_rows)],
    })


@pytest.fixture
def store() -> TableStateStore:
    """Store composed with the column filter and selection extensions."""
    return TableStateStore([ColumnFilterExtension(), SelectionExtension()])
