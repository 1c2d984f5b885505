"""Unit tests for parsers module."""

import asyncio
from datetime import date
from io import BytesIO

import pandas as pd
import pytest
from pydantic import ValidationError

from early_warning.parsers import (
    normalize_col_name,
    normalize_and_rename_columns,
    clean_student_number,
    compute_percentage,
    load_workbook_records,
    import_records,
)
from early_warning.storage import InMemoryStorage, Filter, STUDENTS, ATTENDANCE, ASSESSMENTS


def build_workbook(students=None, attendance=None, assessments=None, students_sheet='Students') -> bytes:
    students = students if students is not None else pd.DataFrame({
        'Student#': [1001, 1002],
        'First Name': ['Jane', 'John'],
        'Last Name': ['Doe', 'Smith'],
        'Email': ['jane@example.com', None],
        'Major': ['Biology', 'History'],
        'Status': ['Active', None],
    })
    attendance = attendance if attendance is not None else pd.DataFrame({
        'Student #': [1001, 1001, 1002],
        'Date': [date(2026, 10, 1), date(2026, 10, 2), date(2026, 10, 1)],
        'Status': ['Present', ' ABSENT ', 'late'],
        'Notes': [None, 'sick', None],
    })
    assessments = assessments if assessments is not None else pd.DataFrame({
        'Student#': [1001, 1002],
        'Assessment Name': ['Midterm', 'Quiz 1'],
        'Assessment Type': ['Exam', 'quiz'],
        'Subject': ['Biology', 'History'],
        'Score': [45, 18],
        'Max Score': [50, 20],
        'Date': [date(2026, 10, 5), date(2026, 10, 6)],
    })
    output = BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        students.to_excel(writer, sheet_name=students_sheet, index=False)
        attendance.to_excel(writer, sheet_name='Attendance', index=False)
        assessments.to_excel(writer, sheet_name='Assessments', index=False)
    return output.getvalue()


def test_normalize_col_name():
    assert normalize_col_name('Student#') == 'student'
    assert normalize_col_name('  Max   Score ') == 'max score'
    assert normalize_col_name('first_name') == 'first name'
    assert normalize_col_name(None) == ''


def test_normalize_and_rename_columns():
    df = pd.DataFrame(columns=['Student #', 'DATE', 'Attendance Status', 'Comments'])
    renamed = normalize_and_rename_columns(df, 'attendance')
    assert list(renamed.columns) == ['student_id', 'date', 'status', 'notes']

    with pytest.raises(ValueError):
        normalize_and_rename_columns(pd.DataFrame(columns=['Student#', 'Date']), 'attendance')


def test_clean_student_number():
    assert clean_student_number(1001.0) == '1001'
    assert clean_student_number(' A-17 ') == 'A-17'


def test_compute_percentage():
    assert compute_percentage(45, 50) == pytest.approx(90.0)
    assert compute_percentage(0, 20) == 0.0
    with pytest.raises(ValueError):
        compute_percentage(5, 0)


def test_load_workbook_records():
    records = load_workbook_records(build_workbook())

    assert len(records['students']) == 2
    jane = records['students'][0]
    assert jane['student_id'] == '1001'
    assert jane['first_name'] == 'Jane'
    assert jane['status'] == 'active'
    assert records['students'][1]['email'] is None
    assert records['students'][1]['status'] == 'active'

    statuses = [r['status'] for r in records['attendance']]
    assert statuses == ['present', 'absent', 'late']
    assert records['attendance'][0]['date'] == date(2026, 10, 1)
    assert records['attendance'][1]['notes'] == 'sick'

    midterm = records['assessments'][0]
    assert midterm['percentage'] == pytest.approx(90.0)
    assert midterm['assessment_type'] == 'exam'
    assert midterm['date'] == date(2026, 10, 5)


def test_load_workbook_sheet_name_whitespace():
    records = load_workbook_records(build_workbook(students_sheet='students '))
    assert len(records['students']) == 2


def test_load_workbook_rejects_bad_status():
    attendance = pd.DataFrame({
        'Student#': [1001], 'Date': [date(2026, 10, 1)], 'Status': ['sick'],
    })
    with pytest.raises(ValidationError):
        load_workbook_records(build_workbook(attendance=attendance))


def test_load_workbook_missing_students_sheet():
    output = BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        pd.DataFrame({'a': [1]}).to_excel(writer, sheet_name='Other', index=False)
    with pytest.raises(ValueError):
        load_workbook_records(output.getvalue())


def test_import_records_resolves_student_numbers():
    storage = InMemoryStorage()
    counts = asyncio.run(import_records(storage, load_workbook_records(build_workbook())))
    assert counts == {'students': 2, 'attendance': 3, 'assessments': 2}

    jane = asyncio.run(storage.query(STUDENTS, [Filter('student_id', 'eq', '1001')]))[0]
    rows = asyncio.run(storage.query(ATTENDANCE, [Filter('student_id', 'eq', jane['id'])]))
    assert len(rows) == 2
    rows = asyncio.run(storage.query(ASSESSMENTS, [Filter('student_id', 'eq', jane['id'])]))
    assert rows[0]['subject'] == 'Biology'


def test_import_records_unknown_student():
    records = {
        'students': [],
        'attendance': [{'student_id': '999', 'date': date(2026, 10, 1), 'status': 'present'}],
    }
    with pytest.raises(ValueError):
        asyncio.run(import_records(InMemoryStorage(), records))


def test_rejected_import_writes_nothing():
    """A row for an unknown Student# aborts before any student is stored."""
    storage = InMemoryStorage()
    records = {
        'students': [{'student_id': '1001', 'first_name': 'Jane', 'last_name': 'Doe', 'status': 'active'}],
        'attendance': [
            {'student_id': '1001', 'date': date(2026, 10, 1), 'status': 'present'},
            {'student_id': '999', 'date': date(2026, 10, 2), 'status': 'absent'},
        ],
    }
    with pytest.raises(ValueError):
        asyncio.run(import_records(storage, records))

    assert asyncio.run(storage.query(STUDENTS)) == []
    assert asyncio.run(storage.query(ATTENDANCE)) == []


def test_import_records_rejects_duplicate_student_numbers():
    storage = InMemoryStorage()
    students = pd.DataFrame({
        'Student#': [1001, 1001],
        'First Name': ['Jane', 'Jane'],
        'Last Name': ['Doe', 'Doe'],
    })
    records = load_workbook_records(build_workbook(students=students))

    with pytest.raises(ValueError, match="Duplicate Student#"):
        asyncio.run(import_records(storage, records))
    assert asyncio.run(storage.query(STUDENTS)) == []
