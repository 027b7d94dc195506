from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

import httpx
from fastapi import BackgroundTasks, Depends, FastAPI, File, Header, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from loguru import logger

from po_change.backends import build_backend
from po_change.config import Settings, get_settings
from po_change.errors import SessionExpiredError, WorkflowError, classify_remote_error
from po_change.logger import configure_logger
from po_change.models import (
    Category,
    CompletedToggle,
    ConfirmedShipmentDate,
    Priority,
    RequestDraft,
    RequestFilters,
    RequestPatch,
    RequestSort,
    ReviewAction,
    SortOrder,
    Status,
)
from po_change.notifications import EmailNotifier, notify_created
from po_change.service import Actor, RequestService
from po_change.spreadsheets import export_requests, parse_line_items
from po_change.views import DEFAULT_PRIORITY_SORT

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@dataclass
class CallContext:
    service: RequestService
    actor: Actor


def bearer_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    return token if scheme.lower() == "bearer" and token else None


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logger(settings.log_level)

    backend = build_backend(settings)
    notifier = EmailNotifier(settings, recipients=backend.recipients)

    app = FastAPI(title="PO Change Requests", version="1.0.0")
    app.state.settings = settings
    app.state.backend = backend
    app.state.notifier = notifier

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkflowError)
    async def handle_workflow_error(request: Request, exc: WorkflowError) -> JSONResponse:
        content = {"detail": exc.user_message, "error_type": type(exc).__name__}
        if isinstance(exc, SessionExpiredError):
            content["redirect"] = exc.redirect_to
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {type(exc).__name__}: {exc.user_message}")
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.middleware("http")
    async def handle_broad_exceptions(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as err:  # noqa: BLE001
            logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {type(err).__name__}")
            return JSONResponse(
                status_code=500,
                content={"detail": "Something went wrong. Please try again.", "error_type": type(err).__name__},
            )

    def call_context(token: Optional[str] = Depends(bearer_token)) -> CallContext:
        identity = backend.identity(token)
        user = identity.current_user(token)
        if user is None:
            raise SessionExpiredError("Please sign in to continue.")
        service = backend.service(token)
        return CallContext(service=service, actor=service.actor_for(user, identity.current_profile(user.id)))

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/me")
    def me(ctx: CallContext = Depends(call_context)):
        caps = ctx.actor.caps
        return {
            "user": ctx.actor.user,
            "profile": ctx.actor.profile,
            "roles": sorted(r.value for r in caps.roles),
            "is_requester": caps.is_requester,
            "is_reviewer": caps.is_reviewer,
            "is_admin": caps.is_admin,
        }

    def listing_params(
        search: Optional[str] = Query(default=None),
        status: Optional[Status] = Query(default=None),
        completed: Optional[bool] = Query(default=None),
        priority: Optional[Priority] = Query(default=None),
        category: Optional[Category] = Query(default=None),
        sort_by: str = Query(default="created_at"),
        order: SortOrder = Query(default="desc"),
    ) -> tuple[Optional[str], RequestFilters, RequestSort]:
        filters = RequestFilters(status=status, completed=completed, priority=priority, category_of_request=category)
        return search, filters, RequestSort(sort_by=sort_by, order=order)

    @app.get("/requests")
    def list_requests(params=Depends(listing_params), ctx: CallContext = Depends(call_context)):
        search, filters, sort = params
        return ctx.service.list_requests(ctx.actor, search=search, filters=filters, sort=sort)

    @app.get("/requests/stats")
    def request_stats(params=Depends(listing_params), ctx: CallContext = Depends(call_context)):
        search, filters, _ = params
        return ctx.service.stats(ctx.actor, search=search, filters=filters)

    @app.get("/requests/priority")
    def request_priority(
        sort_by: str = Query(default=DEFAULT_PRIORITY_SORT),
        order: SortOrder = Query(default="asc"),
        window: Optional[int] = Query(default=None, ge=1, le=100),
        ctx: CallContext = Depends(call_context),
    ):
        return ctx.service.priority(ctx.actor, sort_by=sort_by, order=order, window=window or settings.priority_window)

    @app.get("/requests/export")
    def export(params=Depends(listing_params), ctx: CallContext = Depends(call_context)):
        search, filters, sort = params
        rows = ctx.service.list_requests(ctx.actor, search=search, filters=filters, sort=sort)
        filename = f"po_change_requests_{date.today().strftime('%Y%m%d')}.xlsx"
        return Response(
            content=export_requests(rows),
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/requests", status_code=201)
    def create_request(draft: RequestDraft, background_tasks: BackgroundTasks, ctx: CallContext = Depends(call_context)):
        created = ctx.service.create(ctx.actor, draft)
        # Insert first, then notify; a failed email never undoes the insert
        background_tasks.add_task(notify_created, notifier, created)
        return created

    @app.post("/requests/import-items")
    async def import_items(file: UploadFile = File(...), ctx: CallContext = Depends(call_context)):
        content = await file.read()
        items = parse_line_items(content, file.filename or "upload.xlsx")
        return {"items": items, "count": len(items)}

    @app.get("/requests/{request_id}")
    def get_request(request_id: str, ctx: CallContext = Depends(call_context)):
        return ctx.service.get(ctx.actor, request_id)

    @app.patch("/requests/{request_id}")
    def update_request(request_id: str, patch: RequestPatch, ctx: CallContext = Depends(call_context)):
        return ctx.service.update(ctx.actor, request_id, patch)

    @app.delete("/requests/{request_id}")
    def delete_request(request_id: str, ctx: CallContext = Depends(call_context)):
        ctx.service.delete(ctx.actor, request_id)
        return {"ok": True}

    @app.post("/requests/{request_id}/review")
    def review_request(request_id: str, action: ReviewAction, ctx: CallContext = Depends(call_context)):
        return ctx.service.review(ctx.actor, request_id, action)

    @app.post("/requests/{request_id}/completed")
    def toggle_completed(request_id: str, body: CompletedToggle, ctx: CallContext = Depends(call_context)):
        return ctx.service.set_completed(ctx.actor, request_id, body.completed)

    @app.post("/requests/{request_id}/confirmed-shipment-date")
    def confirm_shipment_date(request_id: str, body: ConfirmedShipmentDate, ctx: CallContext = Depends(call_context)):
        return ctx.service.set_confirmed_shipment_date(ctx.actor, request_id, body.confirmed_shipment_date)

    @app.get("/requests/{request_id}/audit")
    def get_audit(request_id: str, ctx: CallContext = Depends(call_context)):
        return ctx.service.audit_trail(ctx.actor, request_id)

    @app.post("/reminders/pending")
    async def pending_reminder(ctx: CallContext = Depends(call_context)):
        pending = ctx.service.pending_for_reminder(ctx.actor)
        try:
            sent = await notifier.send_pending_review_reminder(pending)
        except httpx.HTTPError as exc:
            raise classify_remote_error(exc, "reminder") from exc
        return {"pending_count": len(pending), "recipient_count": sent}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("po_change.main:app", host="0.0.0.0", port=8000, reload=True)
