"""
Reporting endpoints and the CSV export.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from server.dependencies import CurrentUser, get_current_user, rate_limit, service
from services.report_service import ReportService

router = APIRouter(
    prefix="/api/reports", tags=["reports"], dependencies=[Depends(rate_limit("general"))]
)

report_service = service(ReportService)


@router.get("")
def summary(user: CurrentUser = Depends(get_current_user), reports: ReportService = Depends(report_service)):
    return reports.summary(user["user_id"])


@router.get("/outstanding")
def outstanding(user: CurrentUser = Depends(get_current_user), reports: ReportService = Depends(report_service)):
    return reports.outstanding(user["user_id"])


@router.get("/revenue")
def revenue(
    period: str = Query("monthly"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    reports: ReportService = Depends(report_service)
):
    return reports.revenue(user["user_id"], period=period, start_date=start_date, end_date=end_date)


@router.get("/tax")
def tax(
    group_by: str = Query("month"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    reports: ReportService = Depends(report_service)
):
    return reports.tax(user["user_id"], group_by=group_by, start_date=start_date, end_date=end_date)


@router.get("/client-payment-history")
def client_payment_history(
    client_id: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    reports: ReportService = Depends(report_service)
):
    return reports.client_payment_history(user["user_id"], client_id=client_id)


@router.get("/export")
def export(
    type: str = Query(...),
    user: CurrentUser = Depends(get_current_user),
    reports: ReportService = Depends(report_service)
):
    filename, csv = reports.export_csv(user["user_id"], type)
    return Response(
        content=csv,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
