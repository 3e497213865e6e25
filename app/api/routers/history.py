from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from app.models.history import CrawlRequest, FilterUpdate, HolidayText, SessionCreate
from app.services.crawl.base import SourceFetchError
from app.services.crawl.spiders.history_page_spider import HistoryPageSpider
from app.services.history_session import HistorySession

router = APIRouter(tags=["history"])


def _get_session(request: Request) -> HistorySession:
    session = getattr(request.app.state, "history_session", None)
    if session is None:
        raise HTTPException(status_code=409, detail="No history session loaded; POST /history/session first")
    return session


@router.post("/history/session", status_code=201)
async def api_create_session(body: SessionCreate, request: Request):
    """Load the on-load history page (given markup or fetched) and the holiday calendar into a fresh session."""
    previous = getattr(request.app.state, "history_session", None)
    spider = HistoryPageSpider()
    try:
        session = await HistorySession.load(
            spider, html=body.html, holiday_service=request.app.state.holiday_service
        )
    except SourceFetchError as exc:
        await spider.aclose()
        raise HTTPException(status_code=502, detail=str(exc))
    if previous is not None:
        await previous.aclose()
    request.app.state.history_session = session
    return session.to_dict()


@router.get("/history")
def api_get_history(request: Request):
    return _get_session(request).to_dict()


@router.put("/history/filters")
async def api_update_filters(body: FilterUpdate, request: Request):
    session = _get_session(request)
    changes = {k: getattr(body, k) for k in body.model_fields_set}
    await session.update_filters(**changes)
    return session.to_dict()


@router.post("/history/filters/reset")
def api_reset_filters(request: Request):
    session = _get_session(request)
    session.reset_filters()
    return session.to_dict()


@router.post("/history/crawl")
async def api_crawl(request: Request, body: Optional[CrawlRequest] = None):
    session = _get_session(request)
    bounds = {k: getattr(body, k) for k in body.model_fields_set} if body else {}
    report = await session.crawl(**bounds)
    return {**report.to_dict(), "summary": session.result.summary.to_dict()}


@router.post("/history/holidays/refresh")
async def api_refresh_holidays(request: Request):
    session = _get_session(request)
    await session.refresh_holidays()
    data = session.to_dict()
    data["holiday_error"] = session.holiday_service.last_error
    return data


@router.put("/history/holidays")
def api_set_holidays(body: HolidayText, request: Request):
    session = _get_session(request)
    session.set_holidays_text(body.raw)
    return session.to_dict()


@router.get("/history/export.csv")
def api_export_csv(request: Request):
    session = _get_session(request)
    filename = session.export_filename()
    return Response(
        content=session.export_csv(),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
