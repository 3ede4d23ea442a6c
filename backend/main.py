from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from budgetplan.assembler import bind_identities, import_workbook
from budgetplan.config import ImportConfig, Settings, get_settings
from budgetplan.errors import (
    DivergentCommitError,
    ProjectNotFoundError,
    SnapshotExistsError,
    UnboundResourceError,
    WorkbookReadError,
)
from budgetplan.excel_export import build_plan_excel, build_reconciliation_excel
from budgetplan.grid import read_workbook
from budgetplan.models import AllocationEdit, ImportedPlan, Project
from budgetplan.projects import project_from_plan
from budgetplan.reconciliation import TOUCHED, WHOLE_VIEW, compute_bucket_states
from budgetplan.store import ProjectStore, plan_from_dict, plan_to_dict, read_json, to_jsonable, write_json

logger = logging.getLogger("budgetplan.api")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

router = APIRouter(prefix="/api")


class IdentityIn(BaseModel):
    id: str
    name: str


class CommitMode(str, Enum):
    touched = TOUCHED
    whole_view = WHOLE_VIEW


class ImportResponse(BaseModel):
    upload_id: str
    filename: str
    plan: dict[str, Any]
    unmatched_resources: list[str]
    warnings: list[str]


class PlanResponse(BaseModel):
    upload_id: str
    plan: dict[str, Any]
    unmatched_resources: list[str]


class BindingPayload(BaseModel):
    upload_id: str
    bindings: dict[str, str]


class CreateProjectPayload(BaseModel):
    upload_id: str


class ApprovalPayload(BaseModel):
    today: Optional[date] = None


class AllocationEditIn(BaseModel):
    work_package_id: str
    resource_id: str
    month: int = Field(..., ge=1, le=12)
    year: int
    occupancy: Decimal = Field(..., ge=0, le=1)


class CommitRequest(BaseModel):
    edits: list[AllocationEditIn]
    mode: CommitMode = CommitMode.touched
    year: Optional[int] = None
    resource_id: Optional[str] = None


class BucketOut(BaseModel):
    month: int
    year: int
    real: Decimal
    submitted: Decimal
    difference: Decimal
    state: str


class ReconciliationResponse(BaseModel):
    project_id: str
    year: int
    has_snapshot: bool
    buckets: list[BucketOut]


def get_store(request: Request) -> ProjectStore:
    return request.app.state.store


def upload_dir(request: Request, upload_id: str):
    settings: Settings = request.app.state.settings
    return settings.uploads_dir / upload_id


def load_plan(request: Request, upload_id: str) -> ImportedPlan:
    plan_path = upload_dir(request, upload_id) / "plan.json"
    if not plan_path.exists():
        raise HTTPException(status_code=404, detail="Upload not found")
    return plan_from_dict(read_json(plan_path))


def load_project(request: Request, project_id: str) -> Project:
    try:
        return get_store(request).load(project_id)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def plan_warnings(plan: ImportedPlan) -> list[str]:
    warnings = [f"{facet} not found" for facet in plan.report.missing]
    for facet in plan.report.facets:
        warnings.extend(facet.notes)
    return warnings


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/import", response_model=ImportResponse)
async def upload_workbook(
    request: Request,
    workbook: UploadFile = File(...),
    identities: str = Form("[]"),
    import_config: str | None = Form(None),
) -> ImportResponse:
    if not workbook.filename or not workbook.filename.lower().endswith((".xlsx", ".xlsm")):
        raise HTTPException(status_code=400, detail="Only .xlsx workbooks are accepted")

    settings: Settings = request.app.state.settings
    config = settings.import_config()
    if import_config:
        try:
            config = ImportConfig(**{**config.model_dump(), **json.loads(import_config)})
        except (json.JSONDecodeError, TypeError, ValidationError) as exc:
            raise HTTPException(status_code=400, detail="Invalid import_config JSON") from exc
    try:
        known = [IdentityIn(**item).model_dump() for item in json.loads(identities)]
    except (json.JSONDecodeError, TypeError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail="Invalid identities JSON") from exc

    content = await workbook.read()
    try:
        sheets = read_workbook(content, workbook.filename)
    except WorkbookReadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    plan = import_workbook(sheets, known, config)

    upload_id = str(uuid.uuid4())
    target = upload_dir(request, upload_id)
    target.mkdir(parents=True, exist_ok=True)
    write_json(target / "plan.json", plan_to_dict(plan))
    write_json(
        target / "meta.json",
        {
            "upload_id": upload_id,
            "filename": workbook.filename,
            "sheets": list(sheets.keys()),
            "created_at": datetime.now(timezone.utc).isoformat(),
        },
    )
    logger.info("Imported %s as upload %s", workbook.filename, upload_id)

    return ImportResponse(
        upload_id=upload_id,
        filename=workbook.filename,
        plan=plan_to_dict(plan),
        unmatched_resources=plan.report.unmatched_resources,
        warnings=plan_warnings(plan),
    )


@router.get("/plan", response_model=PlanResponse)
async def get_plan(request: Request, upload_id: str) -> PlanResponse:
    plan = load_plan(request, upload_id)
    return PlanResponse(
        upload_id=upload_id,
        plan=plan_to_dict(plan),
        unmatched_resources=plan.report.unmatched_resources,
    )


@router.post("/plan/bindings", response_model=PlanResponse)
async def save_bindings(request: Request, payload: BindingPayload) -> PlanResponse:
    plan = load_plan(request, payload.upload_id)
    unbound = bind_identities(plan, payload.bindings)
    write_json(upload_dir(request, payload.upload_id) / "plan.json", plan_to_dict(plan))
    return PlanResponse(upload_id=payload.upload_id, plan=plan_to_dict(plan), unmatched_resources=unbound)


@router.get("/export/excel")
async def export_excel(request: Request, upload_id: str) -> StreamingResponse:
    plan = load_plan(request, upload_id)
    content = build_plan_excel(plan)
    return StreamingResponse(
        iter([content]),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=plano-importado.xlsx"},
    )


@router.post("/projects")
async def create_project(request: Request, payload: CreateProjectPayload) -> dict[str, Any]:
    plan = load_plan(request, payload.upload_id)
    try:
        project = project_from_plan(plan)
    except UnboundResourceError as exc:
        raise HTTPException(
            status_code=400,
            detail={"message": "Bind every resource before creating the project", "unbound": exc.names},
        ) from exc
    get_store(request).save(project)
    return to_jsonable(project)


@router.get("/projects/{project_id}")
async def get_project(request: Request, project_id: str) -> dict[str, Any]:
    return to_jsonable(load_project(request, project_id))


@router.post("/projects/{project_id}/approve")
async def approve(request: Request, project_id: str, payload: ApprovalPayload | None = None) -> dict[str, Any]:
    today = payload.today if payload else None
    try:
        project = get_store(request).approve(project_id, today)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SnapshotExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"id": project.id, "state": project.state.value}


@router.post("/projects/{project_id}/reject")
async def reject(request: Request, project_id: str) -> dict[str, Any]:
    try:
        project = get_store(request).reject(project_id)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"id": project.id, "state": project.state.value}


def reconciliation_view(project: Project, year: int, resource_id: Optional[str]) -> ReconciliationResponse:
    states = compute_bucket_states(project, year, resource_id)
    return ReconciliationResponse(
        project_id=project.id,
        year=year,
        has_snapshot=project.snapshot is not None,
        buckets=[
            BucketOut(
                month=state.month,
                year=state.year,
                real=state.real,
                submitted=state.submitted,
                difference=state.difference,
                state=state.state.value,
            )
            for state in states.values()
        ],
    )


@router.get("/projects/{project_id}/reconciliation", response_model=ReconciliationResponse)
async def get_reconciliation(
    request: Request, project_id: str, year: int, resource_id: str | None = None
) -> ReconciliationResponse:
    return reconciliation_view(load_project(request, project_id), year, resource_id)


@router.get("/projects/{project_id}/reconciliation/excel")
async def export_reconciliation(
    request: Request, project_id: str, year: int, resource_id: str | None = None
) -> StreamingResponse:
    project = load_project(request, project_id)
    content = build_reconciliation_excel(compute_bucket_states(project, year, resource_id))
    return StreamingResponse(
        iter([content]),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename=reconciliacao-{year}.xlsx"},
    )


@router.post("/projects/{project_id}/allocations", response_model=ReconciliationResponse)
async def commit_allocations(request: Request, project_id: str, payload: CommitRequest) -> ReconciliationResponse:
    edits = [AllocationEdit(**edit.model_dump()) for edit in payload.edits]
    if payload.mode is CommitMode.whole_view and payload.year is None:
        raise HTTPException(status_code=400, detail="whole_view mode needs a year")
    try:
        project = get_store(request).commit_allocations(
            project_id,
            edits,
            mode=payload.mode.value,
            year=payload.year,
            resource_id=payload.resource_id,
        )
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DivergentCommitError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "divergent_buckets": [{"month": month, "year": year} for month, year in exc.buckets],
            },
        ) from exc
    except KeyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    year = payload.year or (edits[0].year if edits else date.today().year)
    return reconciliation_view(project, year, payload.resource_id)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings.uploads_dir.mkdir(parents=True, exist_ok=True)

    app = FastAPI(title="Budget Plan Import API")
    app.state.settings = settings
    app.state.store = ProjectStore(settings.projects_dir)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    try:
        import uvicorn
    except ImportError:
        raise SystemExit("uvicorn is not installed. Install with: pip install -e .")
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
