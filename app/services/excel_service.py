"""
Excel processing service for guest list import/export
"""

import io
import logging
from typing import Dict, List, Tuple

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import Guest, GuestStatus
from app.services.repositories import CheckInLogRepo, GuestRepo
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class ExcelService:
    """Service for handling Excel operations"""

    COLUMNS = [
        'ID', 'First Name', 'Last Name', 'Email', 'Phone',
        'Ticket Type', 'Plus Ones Allowed', 'Notes',
    ]
    REQUIRED_COLUMNS = ['id', 'first name', 'last name', 'ticket type']
    MAX_ID_LENGTH = 10

    @staticmethod
    def create_template() -> bytes:
        """Create Excel template with the import columns"""
        df = pd.DataFrame(columns=ExcelService.COLUMNS)

        # Add sample data for guidance
        sample_data = [
            ['G001', 'Ada', 'Lovelace', 'ada@example.com', '555-0100', 'VIP', 2, 'Front row'],
            ['G002', 'Alan', 'Turing', 'alan@example.com', '555-0101', 'General', 0, ''],
        ]

        for row in sample_data:
            df.loc[len(df)] = row

        return ExcelService._to_bytes(df, 'Guest List')

    @staticmethod
    def _column_mapping(df: pd.DataFrame) -> Dict[str, str]:
        """Map normalized column names to the sheet's own headers"""
        return {str(col).lower().strip(): col for col in df.columns}

    @staticmethod
    def validate_excel_structure(df: pd.DataFrame) -> Tuple[bool, List[str]]:
        """Validate Excel file structure"""
        errors = []
        normalized_columns = ExcelService._column_mapping(df)

        missing_columns = [col for col in ExcelService.REQUIRED_COLUMNS if col not in normalized_columns]
        if missing_columns:
            errors.append(f"Missing required columns: {', '.join(missing_columns)}")

        return len(errors) == 0, errors

    @staticmethod
    def validate_data_constraints(df: pd.DataFrame) -> Tuple[bool, List[str]]:
        """Validate row values: ids, names, ticket types and plus-one allowances"""
        errors = []
        columns = ExcelService._column_mapping(df)

        ids = df[columns['id']].astype(str).str.strip()
        missing_ids = df[columns['id']].isna() | (ids == '')
        for index in df.index[missing_ids]:
            errors.append(f"Row {index + 2}: ID is required")

        present = ids[~missing_ids]
        too_long = present[present.str.len() > ExcelService.MAX_ID_LENGTH]
        for index, value in too_long.items():
            errors.append(f"Row {index + 2}: ID '{value}' is longer than {ExcelService.MAX_ID_LENGTH} characters")

        duplicates = present.value_counts()
        for guest_id, count in duplicates[duplicates > 1].items():
            errors.append(f"Duplicate ID '{guest_id}' ({count} times)")

        for name in ['first name', 'last name', 'ticket type']:
            column = df[columns[name]]
            blank = column.isna() | (column.astype(str).str.strip() == '')
            for index in df.index[blank]:
                errors.append(f"Row {index + 2}: {columns[name]} is required")

        if 'plus ones allowed' in columns:
            allowed = pd.to_numeric(df[columns['plus ones allowed']].fillna(0), errors='coerce')
            invalid = allowed.isna() | (allowed < 0) | (allowed % 1 != 0)
            for index in df.index[invalid]:
                errors.append(f"Row {index + 2}: Plus Ones Allowed must be a non-negative whole number")

        return len(errors) == 0, errors

    @staticmethod
    def process_excel_upload(file_content: bytes, db: Session) -> Tuple[bool, List[str], int]:
        """Import new guests from an uploaded sheet. Nothing is written unless every row is valid."""
        try:
            df = pd.read_excel(io.BytesIO(file_content), dtype={'ID': str})
        except Exception as e:
            logger.warning(f"Unreadable guest upload: {e}")
            return False, [f"Could not read Excel file: {str(e)}"], 0

        # Drop fully empty rows
        df = df.dropna(how='all').reset_index(drop=True)
        if df.empty:
            return False, ["Excel file contains no guest rows"], 0

        valid_structure, structure_errors = ExcelService.validate_excel_structure(df)
        if not valid_structure:
            return False, structure_errors, 0

        valid_data, data_errors = ExcelService.validate_data_constraints(df)
        if not valid_data:
            return False, data_errors, 0

        columns = ExcelService._column_mapping(df)

        def cell(row, name):
            if name not in columns or pd.isna(row[columns[name]]):
                return None
            value = str(row[columns[name]]).strip()
            return value or None

        try:
            guest_ids = [str(v).strip() for v in df[columns['id']]]
            existing = GuestRepo.existing_ids(db, guest_ids)
            if existing:
                return False, [f"Guest ID '{guest_id}' already exists" for guest_id in sorted(existing)], 0

            now = utcnow()
            for _, row in df.iterrows():
                plus_ones = cell(row, 'plus ones allowed')
                db.add(Guest(
                    id=cell(row, 'id'),
                    first_name=cell(row, 'first name'),
                    last_name=cell(row, 'last name'),
                    email=cell(row, 'email'),
                    phone=cell(row, 'phone'),
                    ticket_type=cell(row, 'ticket type'),
                    plus_ones_allowed=int(float(plus_ones)) if plus_ones else 0,
                    plus_ones_checked_in=0,
                    status=GuestStatus.NOT_CHECKED_IN.value,
                    notes=cell(row, 'notes'),
                    created_at=now,
                    last_modified=now,
                ))

            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Guest import failed in store", exc_info=True)
            return False, [f"Error saving guests: {e.__class__.__name__}"], 0

        logger.info(f"Imported {len(df)} guests from Excel")
        return True, [], len(df)

    @staticmethod
    def export_guests(db: Session) -> bytes:
        """Export the guest list with check-in state to Excel"""
        data = []
        for guest in GuestRepo.all_ordered(db):
            data.append({
                'ID': guest.id,
                'First Name': guest.first_name,
                'Last Name': guest.last_name,
                'Email': guest.email,
                'Phone': guest.phone,
                'Ticket Type': guest.ticket_type,
                'Plus Ones Allowed': guest.plus_ones_allowed,
                'Plus Ones Checked In': guest.plus_ones_checked_in,
                'Status': guest.status,
                'Check In Time': guest.check_in_time,
                'Checked In By': guest.checked_in_by,
                'Confirmation Code': guest.confirmation_code,
                'Notes': guest.notes,
            })

        df = pd.DataFrame(data, columns=ExcelService.COLUMNS[:7] + [
            'Plus Ones Checked In', 'Status', 'Check In Time',
            'Checked In By', 'Confirmation Code', 'Notes',
        ])
        return ExcelService._to_bytes(df, 'Guest List')

    @staticmethod
    def export_audit_log(db: Session) -> bytes:
        """Export the full check-in audit trail, oldest first"""
        data = [
            {
                'Timestamp': entry.timestamp,
                'Guest ID': entry.guest_id,
                'Guest Name': entry.guest_name,
                'Action': entry.action,
                'Usher': entry.usher_name,
                'Plus Ones': entry.plus_ones_count,
                'Confirmation Code': entry.confirmation_code,
                'Notes': entry.notes,
            }
            for entry in CheckInLogRepo.all_chronological(db)
        ]
        df = pd.DataFrame(data, columns=[
            'Timestamp', 'Guest ID', 'Guest Name', 'Action', 'Usher',
            'Plus Ones', 'Confirmation Code', 'Notes',
        ])
        return ExcelService._to_bytes(df, 'Check-In Log')

    @staticmethod
    def _to_bytes(df: pd.DataFrame, sheet_name: str) -> bytes:
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            df.to_excel(writer, index=False, sheet_name=sheet_name)
        return buffer.getvalue()
