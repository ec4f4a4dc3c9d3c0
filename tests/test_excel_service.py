"""
Tests for Excel import/export functionality
"""

import pytest
import pandas as pd
import io
from datetime import datetime
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.db import Base
from app.models import CheckInAction, CheckInLog, Guest, GuestStatus
from app.services.excel_service import ExcelService

# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_excel.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def db_session():
    """Create test database session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)

def create_test_excel(data):
    """Helper function to create Excel bytes from data"""
    df = pd.DataFrame(data)
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        df.to_excel(writer, index=False)
    return buffer.getvalue()

def guest_rows(**overrides):
    data = {
        'ID': ['G001', 'G002', 'G003'],
        'First Name': ['John', 'Jane', 'Bob'],
        'Last Name': ['Doe', 'Smith', 'Johnson'],
        'Email': ['john@example.com', None, 'bob@example.com'],
        'Phone': ['555-0100', '555-0101', None],
        'Ticket Type': ['VIP', 'General', 'General'],
        'Plus Ones Allowed': [2, 0, 1],
        'Notes': ['Front row', None, ''],
    }
    data.update(overrides)
    return data

def test_validate_excel_structure_valid():
    """Test Excel structure validation with valid columns"""
    df = pd.DataFrame(guest_rows())

    valid, errors = ExcelService.validate_excel_structure(df)
    assert valid
    assert len(errors) == 0

def test_validate_excel_structure_missing_columns():
    """Test Excel structure validation with missing columns"""
    df = pd.DataFrame({
        'ID': ['G001'],
        'First Name': ['John'],
        # Missing Last Name and Ticket Type
    })

    valid, errors = ExcelService.validate_excel_structure(df)
    assert not valid
    assert 'missing required columns' in errors[0].lower()
    assert 'last name' in errors[0]
    assert 'ticket type' in errors[0]

def test_validate_excel_structure_case_insensitive():
    """Test Excel structure validation with different cases"""
    df = pd.DataFrame({
        'id': ['G001'],
        'FIRST NAME': ['John'],
        ' Last Name ': ['Doe'],
        'ticket type': ['VIP'],
    })

    valid, errors = ExcelService.validate_excel_structure(df)
    assert valid

def test_validate_data_constraints_ok():
    valid, errors = ExcelService.validate_data_constraints(pd.DataFrame(guest_rows()))
    assert valid
    assert errors == []

def test_validate_data_constraints_duplicate_ids():
    df = pd.DataFrame(guest_rows(ID=['G001', 'G001', 'G003']))

    valid, errors = ExcelService.validate_data_constraints(df)
    assert not valid
    assert "Duplicate ID 'G001' (2 times)" in errors

def test_validate_data_constraints_long_id():
    df = pd.DataFrame(guest_rows(ID=['G001', 'G0000000002', 'G003']))

    valid, errors = ExcelService.validate_data_constraints(df)
    assert not valid
    assert 'Row 3' in errors[0]
    assert 'longer than 10' in errors[0]

def test_validate_data_constraints_required_values():
    df = pd.DataFrame(guest_rows(**{'First Name': ['John', '', 'Bob'], 'Ticket Type': ['VIP', 'General', None]}))

    valid, errors = ExcelService.validate_data_constraints(df)
    assert not valid
    assert "Row 3: First Name is required" in errors
    assert "Row 4: Ticket Type is required" in errors

def test_validate_data_constraints_plus_ones():
    df = pd.DataFrame(guest_rows(**{'Plus Ones Allowed': [-1, 'two', 1.5]}))

    valid, errors = ExcelService.validate_data_constraints(df)
    assert not valid
    assert len([e for e in errors if 'Plus Ones Allowed' in e]) == 3

def test_process_excel_upload_success(db_session):
    """Test successful Excel upload processing"""
    excel_bytes = create_test_excel(guest_rows())

    success, errors, count = ExcelService.process_excel_upload(excel_bytes, db_session)

    assert success
    assert errors == []
    assert count == 3

    guests = db_session.query(Guest).order_by(Guest.id).all()
    assert [g.id for g in guests] == ['G001', 'G002', 'G003']
    john = guests[0]
    assert john.plus_ones_allowed == 2
    assert john.status == GuestStatus.NOT_CHECKED_IN.value
    assert john.notes == 'Front row'
    assert guests[1].email is None
    assert guests[2].notes is None

def test_process_excel_upload_validation_failure(db_session):
    """Test Excel upload with validation errors"""
    excel_bytes = create_test_excel(guest_rows(ID=['G001', 'G001', 'G003']))

    success, errors, count = ExcelService.process_excel_upload(excel_bytes, db_session)

    assert not success
    assert len(errors) > 0
    assert count == 0
    assert db_session.query(Guest).count() == 0

def test_process_excel_upload_rejects_existing_ids(db_session):
    db_session.add(Guest(id='G002', first_name='Existing', last_name='Guest', ticket_type='VIP'))
    db_session.commit()

    success, errors, count = ExcelService.process_excel_upload(create_test_excel(guest_rows()), db_session)

    assert not success
    assert errors == ["Guest ID 'G002' already exists"]
    assert db_session.query(Guest).count() == 1

def test_process_excel_upload_unreadable_file(db_session):
    success, errors, count = ExcelService.process_excel_upload(b'not an excel file', db_session)

    assert not success
    assert 'could not read' in errors[0].lower()

def test_create_template():
    """Test Excel template creation"""
    template_bytes = ExcelService.create_template()

    assert len(template_bytes) > 0

    df = pd.read_excel(io.BytesIO(template_bytes))
    assert list(df.columns) == ExcelService.COLUMNS
    assert len(df) == 2

def test_template_round_trips_through_import(db_session):
    success, errors, count = ExcelService.process_excel_upload(ExcelService.create_template(), db_session)
    assert success, errors
    assert count == 2

def test_export_guests(db_session):
    """Test exporting current guest data"""
    db_session.add(Guest(
        id='G001', first_name='John', last_name='Doe', ticket_type='VIP', plus_ones_allowed=2,
        plus_ones_checked_in=1, status=GuestStatus.CHECKED_IN.value,
        check_in_time=datetime(2024, 6, 15, 18, 30), checked_in_by='Jane Usher', confirmation_code='JANE-JOHNDOE-1',
    ))
    db_session.add(Guest(id='G002', first_name='Amy', last_name='Adams', ticket_type='General'))
    db_session.commit()

    df = pd.read_excel(io.BytesIO(ExcelService.export_guests(db_session)))

    assert len(df) == 2
    assert 'Status' in df.columns
    assert 'Confirmation Code' in df.columns
    # Ordered by last name
    assert df.iloc[0]['Last Name'] == 'Adams'
    assert df.iloc[1]['Status'] == 'Checked In'
    assert df.iloc[1]['Plus Ones Checked In'] == 1

def test_export_audit_log(db_session):
    db_session.add(Guest(id='G001', first_name='John', last_name='Doe', ticket_type='VIP'))
    db_session.add(CheckInLog(timestamp=datetime(2024, 6, 15, 18, 31), guest_id='G001', guest_name='John Doe',
                              action=CheckInAction.UNDO_CHECK_IN.value, usher_name='Jane Usher'))
    db_session.add(CheckInLog(timestamp=datetime(2024, 6, 15, 18, 30), guest_id='G001', guest_name='John Doe',
                              action=CheckInAction.CHECK_IN.value, usher_name='Jane Usher'))
    db_session.commit()

    df = pd.read_excel(io.BytesIO(ExcelService.export_audit_log(db_session)), sheet_name='Check-In Log')

    assert list(df['Action']) == ['Check In', 'Undo Check In']

def test_export_empty_audit_log(db_session):
    df = pd.read_excel(io.BytesIO(ExcelService.export_audit_log(db_session)))
    assert len(df) == 0
    assert 'Timestamp' in df.columns
