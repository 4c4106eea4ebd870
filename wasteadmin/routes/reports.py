from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..schemas.common import ExportFormat, ReportGroupBy
from ..services import reports


router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/dashboard")
def get_dashboard(
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """Dashboard statistics and recent administrative activity"""
    return reports.dashboard_stats(db)


@router.get("/users")
def get_user_report(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    group_by: ReportGroupBy = Query(ReportGroupBy.month),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("view_all_reports")),
):
    return reports.user_report(db, start_date, end_date, group_by)


@router.get("/vehicles")
def get_vehicle_report(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("view_all_reports")),
):
    return reports.vehicle_report(db, start_date, end_date)


@router.get("/assignments")
def get_assignment_report(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    type: str = Query("all", description="all|vehicle|feeder"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("view_all_reports")),
):
    return reports.assignment_report(db, start_date, end_date, type)


@router.get("/export")
def export_report(
    type: str = Query(..., description="users|vehicles|assignments"),
    format: ExportFormat = Query(ExportFormat.json),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("generate_reports")),
):
    """Download a collection as JSON or CSV"""
    rows = reports.export_rows(db, type)
    filename = f"{type}_report_{date.today().isoformat()}.{format.value}"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}

    if format == ExportFormat.csv:
        return Response(content=reports.rows_to_csv(rows), media_type="text/csv", headers=headers)
    return JSONResponse(
        content=jsonable_encoder({
            "data": {type: rows},
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "type": type,
            "format": format.value,
        }),
        headers=headers,
    )
