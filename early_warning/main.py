"""FastAPI host for the Student Early Warning engine."""

import logging
import os
import traceback
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, File, UploadFile, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from dotenv import load_dotenv

from early_warning.alerts import update_alert_status, AlertNotFoundError, InvalidTransitionError
from early_warning.analysis import analyze_student, analyze_all
from early_warning.models import (
    Alert,
    AlertStatus,
    AlertStatusRequest,
    AnalysisResult,
    BatchReport,
    DashboardSummary,
    ImportResponse,
    RiskLevel,
    RiskPrediction,
    Student,
)
from early_warning.parsers import load_workbook_records, import_records
from early_warning.reports import dashboard_summary, list_alerts, alerts_to_csv, latest_predictions
from early_warning.storage import InMemoryStorage, Filter, STUDENTS, PREDICTIONS

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Student Early Warning", version="1.0.0")

# CORS configuration
allow_origins = os.getenv('ALLOW_ORIGINS', '*').split(',')
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s", request.url.path)
    error_detail = str(exc)
    if os.getenv('DEBUG', 'False').lower() == 'true':
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


MAX_UPLOAD_SIZE_MB = int(os.getenv('MAX_UPLOAD_SIZE_MB', '10'))
MAX_UPLOAD_SIZE = MAX_UPLOAD_SIZE_MB * 1024 * 1024

# Process-local record store
storage = InMemoryStorage()


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


@app.post("/upload", response_model=ImportResponse)
async def upload_file(file: UploadFile = File(...)):
    """Import students, attendance and assessments from an Excel workbook."""
    file_bytes = await file.read()
    if len(file_bytes) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {MAX_UPLOAD_SIZE_MB}MB"
        )

    if not file.filename.lower().endswith(".xlsx"):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload an Excel file (.xlsx)"
        )

    try:
        records = load_workbook_records(file_bytes)
        counts = await import_records(storage, records)
    except ValueError as e:
        # pydantic's ValidationError is a ValueError too
        raise HTTPException(status_code=400, detail=f"Error loading Excel file: {e}")

    return ImportResponse(
        success=True,
        message=f"Successfully imported {counts['students']} students",
        summary=counts
    )


@app.get("/students")
async def get_students(search: Optional[str] = None, risk_level: Optional[RiskLevel] = None):
    """Students with their latest prediction, optionally searched and filtered."""
    rows = await storage.query(STUDENTS, order_by='last_name')
    latest = await latest_predictions(storage)

    results = []
    for row in rows:
        student = Student.model_validate(row)
        if search:
            term = search.lower()
            haystack = [student.first_name, student.last_name, student.student_id, student.email or '']
            if not any(term in value.lower() for value in haystack):
                continue
        prediction = latest.get(student.id)
        if risk_level is not None and (prediction is None or prediction.risk_level != risk_level):
            continue
        results.append({
            'student': student.model_dump(mode='json'),
            'latest_risk': prediction.model_dump(mode='json') if prediction else None,
        })
    return {'results': results, 'total': len(results)}


@app.post("/students/{student_id}/analyze", response_model=AnalysisResult)
async def analyze_student_endpoint(student_id: str):
    """Analyse one student and store the prediction (and alert when not low)."""
    rows = await storage.query(STUDENTS, [Filter('id', 'eq', student_id)], limit=1)
    if not rows:
        raise HTTPException(status_code=404, detail=f"Student {student_id} not found")
    return await analyze_student(storage, student_id)


@app.post("/analyze-all", response_model=BatchReport)
async def analyze_all_endpoint(fail_fast: bool = False):
    """Analyse every active student in turn."""
    return await analyze_all(storage, fail_fast=fail_fast)


@app.get("/students/{student_id}/predictions", response_model=List[RiskPrediction])
async def get_predictions(student_id: str):
    """Prediction history for a student, newest first."""
    rows = await storage.query(
        PREDICTIONS, [Filter('student_id', 'eq', student_id)],
        order_by='prediction_date', descending=True
    )
    return [RiskPrediction.model_validate(row) for row in rows]


@app.get("/alerts", response_model=List[Alert])
async def get_alerts(status: Optional[AlertStatus] = None, severity: Optional[RiskLevel] = None):
    return await list_alerts(storage, status=status, severity=severity)


@app.post("/alerts/{alert_id}/status", response_model=Alert)
async def change_alert_status(alert_id: str, request: AlertStatusRequest):
    """Record a staff action on an alert."""
    try:
        return await update_alert_status(storage, alert_id, request.status)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.get("/dashboard", response_model=DashboardSummary)
async def get_dashboard():
    return await dashboard_summary(storage)


@app.get("/alerts.csv")
async def download_alerts_csv(status: Optional[AlertStatus] = None, severity: Optional[RiskLevel] = None):
    """Download alerts as CSV."""
    alerts = await list_alerts(storage, status=status, severity=severity)
    return StreamingResponse(
        iter([alerts_to_csv(alerts)]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=alerts_{datetime.now().date().isoformat()}.csv"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
