"""Excel workbook parsing and import of student records."""

import logging
import re
from datetime import date
from io import BytesIO
from typing import Any, Dict, List, Optional

import pandas as pd

from early_warning.models import AttendanceRecord, AssessmentRecord, Student
from early_warning.storage import Storage, STUDENTS, ATTENDANCE, ASSESSMENTS

logger = logging.getLogger(__name__)

SHEET_NAMES = {
    'students': 'Students',
    'attendance': 'Attendance',
    'assessments': 'Assessments',
}

COLUMN_VARIANTS = {
    'students': {
        'student_id': ['student', 'student number', 'student id', 'studentid', 'studentnum'],
        'first_name': ['first name', 'firstname', 'given name'],
        'last_name': ['last name', 'lastname', 'surname', 'family name'],
        'email': ['email', 'e-mail', 'email address'],
        'enrollment_date': ['enrollment date', 'enrolment date', 'enrolled'],
        'grade_level': ['grade level', 'year level', 'grade', 'year'],
        'major': ['major', 'program', 'program name'],
        'status': ['status', 'enrollment status'],
    },
    'attendance': {
        'student_id': ['student', 'student number', 'student id', 'studentid', 'studentnum'],
        'date': ['date', 'attendance date', 'day'],
        'status': ['status', 'attendance', 'attendance status'],
        'notes': ['notes', 'note', 'comment', 'comments'],
    },
    'assessments': {
        'student_id': ['student', 'student number', 'student id', 'studentid', 'studentnum'],
        'assessment_name': ['assessment name', 'assessment', 'name', 'title'],
        'assessment_type': ['assessment type', 'type'],
        'subject': ['subject', 'course', 'unit'],
        'score': ['score', 'mark', 'marks'],
        'max_score': ['max score', 'maximum score', 'max', 'out of', 'total'],
        'date': ['date', 'assessment date'],
    },
}

REQUIRED_COLUMNS = {
    'students': ['student_id', 'first_name', 'last_name'],
    'attendance': ['student_id', 'date', 'status'],
    'assessments': ['student_id', 'subject', 'score', 'max_score', 'date'],
}


def normalize_col_name(col_name) -> str:
    """Normalize a column name for matching."""
    if pd.isna(col_name):
        return ""
    normalized = str(col_name).strip().lower()
    normalized = re.sub(r'[.,%#_]', ' ', normalized)
    normalized = re.sub(r'\s+', ' ', normalized)
    return normalized.strip()


def normalize_and_rename_columns(df: pd.DataFrame, sheet_type: str) -> pd.DataFrame:
    """
    Rename known column variations to their canonical field names.

    Args:
        df: Sheet as read from the workbook
        sheet_type: "students", "attendance" or "assessments"

    Returns:
        DataFrame with canonical column names

    Raises:
        ValueError: if a required column is missing
    """
    rename = {}
    for col in df.columns:
        normalized = normalize_col_name(col)
        for target, variants in COLUMN_VARIANTS[sheet_type].items():
            if normalized == normalize_col_name(target) or normalized in variants:
                if target not in rename.values():
                    rename[col] = target
                break

    df = df.rename(columns=rename)
    missing = [c for c in REQUIRED_COLUMNS[sheet_type] if c not in df.columns]
    if missing:
        raise ValueError(
            f"Missing required columns in {SHEET_NAMES[sheet_type]} sheet: {missing}. "
            f"Found: {list(df.columns)}"
        )
    logger.debug("Columns in %s sheet after renaming: %s", sheet_type, list(df.columns))
    return df


def clean_student_number(value) -> str:
    """Student numbers read as floats (e.g. 1001.0) become '1001'."""
    try:
        return str(int(float(value)))
    except (ValueError, TypeError):
        return str(value).strip()


def clean_optional(value) -> Optional[Any]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def to_date(value) -> Optional[date]:
    value = clean_optional(value)
    if value is None:
        return None
    return pd.to_datetime(value).date()


def compute_percentage(score, max_score) -> float:
    """Assessment percentage as score / max_score * 100."""
    score = float(score)
    max_score = float(max_score)
    if max_score <= 0:
        raise ValueError(f"max_score must be positive, got {max_score}")
    return score / max_score * 100.0


def _find_sheet(sheets: Dict[str, pd.DataFrame], name: str) -> Optional[pd.DataFrame]:
    # Sheet names often carry stray whitespace or different casing
    for sheet_name, df in sheets.items():
        if str(sheet_name).strip().lower() == name.lower():
            return df
    return None


def load_workbook_records(file_bytes: bytes) -> Dict[str, List[Dict[str, Any]]]:
    """
    Load students, attendance and assessments from an Excel workbook.

    Expected Excel structure:
    - Sheet "Students": Student#, First Name, Last Name, Email, Enrollment Date,
      Grade Level, Major, Status
    - Sheet "Attendance": Student#, Date, Status (present/absent/late/excused), Notes
    - Sheet "Assessments": Student#, Assessment Name, Assessment Type, Subject,
      Score, Max Score, Date

    Attendance and assessment rows keep the institutional Student# in
    `student_id`; `import_records` resolves it to the stored student id.

    Args:
        file_bytes: Raw bytes of the Excel file

    Returns:
        Dict with 'students', 'attendance' and 'assessments' record lists

    Raises:
        ValueError: if the Students sheet is missing or a row is malformed
    """
    sheets = pd.read_excel(BytesIO(file_bytes), sheet_name=None, engine='openpyxl')

    students_df = _find_sheet(sheets, SHEET_NAMES['students'])
    if students_df is None:
        raise ValueError(f"Workbook has no '{SHEET_NAMES['students']}' sheet. Found: {list(sheets)}")

    records: Dict[str, List[Dict[str, Any]]] = {'students': [], 'attendance': [], 'assessments': []}

    students_df = normalize_and_rename_columns(students_df.dropna(how='all'), 'students')
    for _, row in students_df.iterrows():
        student = {
            'student_id': clean_student_number(row['student_id']),
            'first_name': str(row['first_name']).strip(),
            'last_name': str(row['last_name']).strip(),
            'email': clean_optional(row.get('email')),
            'enrollment_date': to_date(row.get('enrollment_date')),
            'grade_level': clean_optional(row.get('grade_level')),
            'major': clean_optional(row.get('major')),
            'status': (clean_optional(row.get('status')) or 'active').lower(),
        }
        if student['grade_level'] is not None:
            student['grade_level'] = str(student['grade_level'])
        Student.model_validate(student)
        records['students'].append(student)

    attendance_df = _find_sheet(sheets, SHEET_NAMES['attendance'])
    if attendance_df is not None:
        attendance_df = normalize_and_rename_columns(attendance_df.dropna(how='all'), 'attendance')
        for _, row in attendance_df.iterrows():
            entry = {
                'student_id': clean_student_number(row['student_id']),
                'date': to_date(row['date']),
                'status': str(row['status']).strip().lower(),
                'notes': clean_optional(row.get('notes')),
            }
            AttendanceRecord.model_validate(entry)
            records['attendance'].append(entry)

    assessments_df = _find_sheet(sheets, SHEET_NAMES['assessments'])
    if assessments_df is not None:
        assessments_df = normalize_and_rename_columns(assessments_df.dropna(how='all'), 'assessments')
        for _, row in assessments_df.iterrows():
            assessment_type = clean_optional(row.get('assessment_type'))
            entry = {
                'student_id': clean_student_number(row['student_id']),
                'assessment_name': clean_optional(row.get('assessment_name')),
                'assessment_type': assessment_type.lower() if assessment_type else None,
                'subject': str(row['subject']).strip(),
                'score': float(row['score']),
                'max_score': float(row['max_score']),
                'percentage': compute_percentage(row['score'], row['max_score']),
                'date': to_date(row['date']),
            }
            AssessmentRecord.model_validate(entry)
            records['assessments'].append(entry)

    logger.info(
        "Loaded workbook: %d students, %d attendance records, %d assessments",
        len(records['students']), len(records['attendance']), len(records['assessments'])
    )
    return records


async def import_records(storage: Storage, records: Dict[str, List[Dict[str, Any]]]) -> Dict[str, int]:
    """
    Insert loaded workbook records, students first.

    Every row is checked before anything is written, so a rejected
    workbook leaves storage untouched.

    Raises:
        ValueError: on a duplicate Student# or a row naming an unknown Student#
    """
    numbers = [student['student_id'] for student in records.get('students', [])]
    number_series = pd.Series(numbers, dtype=object)
    duplicates = sorted(number_series[number_series.duplicated()].unique())
    if duplicates:
        raise ValueError(f"Duplicate Student# in students sheet: {duplicates}")
    for key in ('attendance', 'assessments'):
        unknown = sorted({row['student_id'] for row in records.get(key, [])} - set(numbers))
        if unknown:
            raise ValueError(f"{key} rows reference unknown Student# {unknown}")

    id_by_number: Dict[str, str] = {}
    for student in records.get('students', []):
        stored = await storage.insert(STUDENTS, student)
        id_by_number[student['student_id']] = stored['id']

    counts = {'students': len(id_by_number), 'attendance': 0, 'assessments': 0}
    for key, collection in (('attendance', ATTENDANCE), ('assessments', ASSESSMENTS)):
        for row in records.get(key, []):
            number = row['student_id']
            await storage.insert(collection, dict(row, student_id=id_by_number[number]))
            counts[key] += 1
    return counts
