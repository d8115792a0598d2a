from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vinscan.db import Base, PrefillRecord


@pytest.fixture
def sqlite_session_factory(tmp_path):
    # A file-backed SQLite cache so separate sessions use separate connections
    engine = create_engine(
        f"sqlite:///{tmp_path / 'cache.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def mock_db_session():
    # Create a mock database session with a cached prefill
    mock_session = MagicMock()
    mock_record = PrefillRecord(
        vin="1FAHP3F20CL123456",
        make="Ford",
        model="Focus",
        manufacturer_group="ford",
    )
    mock_session.query().filter().first.return_value = mock_record
    return mock_session


@pytest.fixture
def mock_db_session_no_data():
    mock_session = MagicMock()
    mock_session.query().filter().first.return_value = None
    return mock_session


@pytest.fixture
def mock_db_session_export():
    mock_session = MagicMock()
    mock_session.query().all.return_value = [
        PrefillRecord(
            vin="1FAHP3F20CL123456",
            make="Ford",
            model="Focus",
            manufacturer_group="ford",
            created_at=datetime(2024, 5, 1, 8, 30),
        ),
        PrefillRecord(
            vin="2HGFB2F50CH123456",
            make="Honda",
            model="Civic",
            manufacturer_group="honda",
            created_at=datetime(2024, 5, 2, 9, 45),
        ),
    ]
    return mock_session


@pytest.fixture
def vpic_response():
    # Build a mocked vPIC HTTP response
    def _build(payload=None, status_code=200):
        response = MagicMock()
        response.status_code = status_code
        response.json.return_value = payload
        return response

    return _build


@pytest.fixture
def mock_http_client():
    return AsyncMock()
