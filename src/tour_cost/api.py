"""Tour cost HTTP API.

Run with ``uvicorn --factory tour_cost.api:create_app``.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from tour_cost.calculations import group_services_by_itinerary
from tour_cost.config import AppConfig, configure_logging
from tour_cost.core import validate_tour
from tour_cost.db import open_tour_database
from tour_cost.export import export_tour_workbook
from tour_cost.extraction import ExtractionError, GeminiExtractionClient, normalize_extraction_result
from tour_cost.matching import count_discrepancies, match_extracted_services
from tour_cost.models import MasterData, Tour
from tour_cost.reports import filter_tours, summarize_tours
from tour_cost.services import TourNotFoundError, TourRecordAssembler
from tour_cost.stores import SqliteMasterDataStore, SqliteTourStore, load_master_data_seed
from tour_cost.ui import render_validation_summary

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/heic", "application/pdf"}


def build_assembler(config: AppConfig) -> TourRecordAssembler:
    conn = open_tour_database(config.db_path)
    seed = load_master_data_seed(config.master_data_seed) if config.master_data_seed else load_master_data_seed()
    assembler = TourRecordAssembler(SqliteTourStore(conn), SqliteMasterDataStore(conn, seed=seed))
    assembler.load()
    return assembler


def create_app(
    config: Optional[AppConfig] = None,
    assembler: Optional[TourRecordAssembler] = None,
    extraction_client: Optional[GeminiExtractionClient] = None,
) -> FastAPI:
    config = config or AppConfig()
    configure_logging(config)
    assembler = assembler or build_assembler(config)
    extraction_client = extraction_client or GeminiExtractionClient(config)

    app = FastAPI(title="Tour Cost API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.assembler = assembler
    logger.info("Tour cost API ready, mock_mode=%s, %d tours loaded", config.mock_mode, len(assembler.tours))

    @app.exception_handler(ExtractionError)
    async def _extraction_error(_request: Request, exc: ExtractionError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc), "preview": exc.raw_preview})

    def _get_tour_or_404(tour_id: str) -> Tour:
        tour = assembler.get_tour(tour_id)
        if tour is None:
            raise HTTPException(status_code=404, detail="Tour not found")
        return tour

    @app.get("/master-data")
    def get_master_data():
        return assembler.master_data.to_document()

    @app.put("/master-data")
    def replace_master_data(payload: Dict[str, Any] = Body(...)):
        try:
            master_data = MasterData.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=_validation_detail(exc)) from exc
        assembler.master_data_store.save(master_data)
        return master_data.to_document()

    @app.post("/extractions")
    async def extract_document(file: UploadFile = File(...)):
        content_type = (file.content_type or "").lower()
        if content_type not in SUPPORTED_IMAGE_TYPES:
            raise HTTPException(status_code=415, detail=f"Unsupported content type '{file.content_type}'")
        content = await file.read()
        extraction = extraction_client.extract(content, content_type, assembler.master_data)
        matches = match_extracted_services(extraction, assembler.master_data.services)
        return {
            "extraction": extraction.to_document(),
            "matches": [match.to_document() for match in matches],
            "discrepancyCount": count_discrepancies(matches),
        }

    @app.post("/tours/import", status_code=201)
    def import_tour(payload: Dict[str, Any] = Body(...)):
        extraction = normalize_extraction_result(payload, assembler.master_data)
        tour_id = assembler.create_from_extraction(extraction)
        return _get_tour_or_404(tour_id).to_document()

    @app.get("/tours")
    def list_tours(
        search: str = "",
        guide_id: Optional[str] = Query(None, alias="guideId"),
        from_date: Optional[str] = Query(None, alias="fromDate"),
        to_date: Optional[str] = Query(None, alias="toDate"),
    ):
        tours = filter_tours(assembler.tours, search, guide_id, from_date, to_date)
        return [tour.to_document() for tour in tours]

    @app.get("/dashboard")
    def dashboard():
        return summarize_tours(assembler.tours).to_document()

    @app.get("/tours/{tour_id}")
    def get_tour(tour_id: str):
        return _get_tour_or_404(tour_id).to_document()

    @app.get("/tours/{tour_id}/schedule")
    def tour_schedule(tour_id: str):
        tour = _get_tour_or_404(tour_id)
        grouped = group_services_by_itinerary(tour.itinerary, tour.services)
        return [
            {"day": item.to_document(), "services": [service.to_document() for service in grouped[item.id]]}
            for item in tour.itinerary
        ]

    @app.put("/tours/{tour_id}")
    def save_tour(tour_id: str, payload: Dict[str, Any] = Body(...)):
        _get_tour_or_404(tour_id)
        try:
            edited = Tour.model_validate({**payload, "id": tour_id})
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=_validation_detail(exc)) from exc
        try:
            validation = assembler.save_manual_edit(edited)
        except TourNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Tour not found") from exc
        if not validation.ready_to_save:
            raise HTTPException(status_code=422, detail={"blockers": validation.blockers})
        return _get_tour_or_404(tour_id).to_document()

    @app.get("/tours/{tour_id}/validation", response_class=HTMLResponse)
    def tour_validation(tour_id: str):
        return render_validation_summary(validate_tour(_get_tour_or_404(tour_id)))

    @app.delete("/tours/{tour_id}", status_code=204)
    def delete_tour(tour_id: str):
        if not assembler.delete_tour(tour_id):
            raise HTTPException(status_code=404, detail="Tour not found")
        return Response(status_code=204)

    @app.get("/tours/{tour_id}/export.xlsx")
    def export_tour(tour_id: str):
        tour = _get_tour_or_404(tour_id)
        tmp_dir = Path(tempfile.mkdtemp(prefix="tour-export-"))
        path = export_tour_workbook(tour, tmp_dir / f"{tour.code_key or tour.id}.xlsx", assembler.master_data)
        return FileResponse(
            path,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            filename=path.name,
            background=BackgroundTask(_remove_export, path),
        )

    return app


def _validation_detail(exc: ValidationError) -> list[dict[str, Any]]:
    return [{"loc": list(error["loc"]), "msg": error["msg"]} for error in exc.errors()]


def _remove_export(path: Path) -> None:
    path.unlink(missing_ok=True)
    path.parent.rmdir()
