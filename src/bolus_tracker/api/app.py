"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from uuid import UUID

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from bolus_tracker.api.models import (
    DoseStatusIn,
    DraftIn,
    FoodIn,
    GlucoseCaptureFailureIn,
    GlucoseCaptureIn,
    GlucoseCaptureResultIn,
    MealIn,
    ProfileIn,
    TemplateFromMealIn,
    TemplateIn,
)
from bolus_tracker.app_logging import configure_logging
from bolus_tracker.containers import AppContainer
from bolus_tracker.domain.errors import (
    InvalidDataError,
    IOFailureError,
    ProfileMissingError,
    StoreError,
)
from bolus_tracker.domain.glucose import (
    GlucoseFailure,
    GlucoseLoading,
    GlucoseState,
    GlucoseSuccess,
)
from bolus_tracker.domain.meals import DayFilter, DoseFilter
from bolus_tracker.domain.models import Food, Profile
from bolus_tracker.domain.stats import StatsPeriod
from bolus_tracker.services.catalog import load_catalog
from bolus_tracker.services.store import DataStore

_ERROR_STATUS: dict[type[StoreError], int] = {
    ProfileMissingError: 409,
    InvalidDataError: 422,
    IOFailureError: 500,
}


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        try:
            seed = load_catalog(state_container.catalog_path)
        except (OSError, UnicodeDecodeError):
            logger.exception("Failed to read the food catalog")
            seed = []
        state_container.store.initialize(seed)
        state_container.store.restart_glucose_polling()
        yield
        await state_container.glucose_service.stop_polling()
        state_container.store.create_auto_backup_if_needed()
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        status_code = _ERROR_STATUS.get(
            type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        return JSONResponse(status_code=status_code, content={"detail": exc.message})

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/profile")
    async def get_profile(request: Request) -> dict[str, object]:
        profile = _store(request).profile
        if profile is None:
            raise HTTPException(status_code=404, detail="No profile configured")
        return {"profile": profile}

    @app.put("/profile")
    async def put_profile(payload: ProfileIn, request: Request) -> dict[str, object]:
        """Create or replace the profile, keeping its creation time."""
        store = _store(request)
        current = store.profile
        profile = Profile(
            name=payload.name.strip(),
            grams_per_ration=payload.grams_per_ration,
            insulin_ratio=payload.insulin_ratio,
            daily_carbs_goal=payload.daily_carbs_goal,
            daily_rations_goal=payload.daily_rations_goal,
            daily_insulin_goal=payload.daily_insulin_goal,
            reminder_2h_enabled=payload.reminder_2h_enabled,
            nightscout_url=payload.nightscout_url,
            nightscout_token=payload.nightscout_token,
            created_at=current.created_at if current is not None else store.clock(),
        )
        store.save_profile(profile)
        return {"profile": profile}

    @app.get("/foods")
    async def list_foods(request: Request, query: str = "") -> dict[str, object]:
        return {"foods": _store(request).foods_filtered(query)}

    @app.post("/foods", status_code=status.HTTP_201_CREATED)
    async def create_food(payload: FoodIn, request: Request) -> dict[str, object]:
        food = _store(request).upsert_food(
            Food(
                name=payload.name,
                carbs_per_100g=payload.carbs_per_100g,
                source=payload.source,
                note=payload.note,
            )
        )
        return {"food": food}

    @app.put("/foods/{food_id}")
    async def update_food(
        food_id: UUID, payload: FoodIn, request: Request
    ) -> dict[str, object]:
        store = _store(request)
        existing = store.food_by_id(food_id)
        if existing is None:
            raise HTTPException(status_code=404, detail="Food not found")
        food = store.upsert_food(
            replace(
                existing,
                name=payload.name,
                carbs_per_100g=payload.carbs_per_100g,
                source=payload.source,
                note=payload.note,
            )
        )
        return {"food": food}

    @app.delete("/foods/{food_id}")
    async def delete_food(food_id: UUID, request: Request) -> dict[str, str]:
        if not _store(request).delete_food(food_id):
            raise HTTPException(status_code=404, detail="Food not found")
        return {"status": "ok"}

    @app.post("/calculation")
    async def calculate(payload: DraftIn, request: Request) -> dict[str, object]:
        """Preview totals for draft items without saving."""
        store = _store(request)
        drafts = payload.to_drafts()
        return {
            "calculation": store.calculation(drafts),
            "can_save": store.can_save_meal(drafts),
        }

    @app.post("/meals", status_code=status.HTTP_201_CREATED)
    async def save_meal(payload: MealIn, request: Request) -> dict[str, object]:
        result = await _store(request).save_meal(payload.to_drafts(), payload.notes)
        return {"result": result}

    @app.get("/meals")
    async def list_meals(
        request: Request,
        query: str = "",
        day: DayFilter = DayFilter.ALL,
        dose: DoseFilter = DoseFilter.ALL,
    ) -> dict[str, object]:
        """Return history filtered by text, day window and dose status."""
        return {"meals": _store(request).filtered_meals(query, day, dose)}

    @app.get("/meals/{meal_id}")
    async def meal_detail(meal_id: UUID, request: Request) -> dict[str, object]:
        store = _store(request)
        meal = store.meal_by_id(meal_id)
        if meal is None:
            raise HTTPException(status_code=404, detail="Meal not found")
        return {
            "meal": meal,
            "items": [
                {"item": item, "food": food}
                for item, food in store.meal_items_with_food(meal_id)
            ],
        }

    @app.delete("/meals/{meal_id}")
    async def delete_meal(meal_id: UUID, request: Request) -> dict[str, str]:
        if not _store(request).delete_meal(meal_id):
            raise HTTPException(status_code=404, detail="Meal not found")
        return {"status": "ok"}

    @app.put("/meals/{meal_id}/dose-status")
    async def update_dose_status(
        meal_id: UUID, payload: DoseStatusIn, request: Request
    ) -> dict[str, object]:
        meal = _store(request).update_dose_status(meal_id, payload.status)
        if meal is None:
            raise HTTPException(status_code=404, detail="Meal not found")
        return {"meal": meal}

    @app.post("/meals/{meal_id}/template", status_code=status.HTTP_201_CREATED)
    async def template_from_meal(
        meal_id: UUID, payload: TemplateFromMealIn, request: Request
    ) -> dict[str, object]:
        store = _store(request)
        if store.meal_by_id(meal_id) is None:
            raise HTTPException(status_code=404, detail="Meal not found")
        return {"template": store.create_template_from_meal(meal_id, payload.name)}

    @app.get("/templates")
    async def list_templates(request: Request) -> dict[str, object]:
        store = _store(request)
        return {
            "templates": [
                {
                    "template": template,
                    "items": [
                        {"item": item, "food": food}
                        for item, food in store.template_items_with_food(template.id)
                    ],
                }
                for template in store.templates
            ]
        }

    @app.post("/templates", status_code=status.HTTP_201_CREATED)
    async def save_template(payload: TemplateIn, request: Request) -> dict[str, object]:
        template = _store(request).save_template(payload.name, payload.to_drafts())
        return {"template": template}

    @app.delete("/templates/{template_id}")
    async def delete_template(template_id: UUID, request: Request) -> dict[str, str]:
        if not _store(request).delete_template(template_id):
            raise HTTPException(status_code=404, detail="Template not found")
        return {"status": "ok"}

    @app.get("/templates/{template_id}/draft")
    async def apply_template(template_id: UUID, request: Request) -> dict[str, object]:
        """Return draft items prefilled from a template."""
        store = _store(request)
        if store.template_by_id(template_id) is None:
            raise HTTPException(status_code=404, detail="Template not found")
        drafts = store.apply_template(template_id)
        return {
            "items": [
                {"food_id": draft.food_id, "grams": draft.grams_text}
                for draft in drafts
            ]
        }

    @app.get("/glucose")
    async def glucose(request: Request) -> dict[str, object]:
        state_container: AppContainer = request.app.state.container
        service = state_container.glucose_service
        return {
            "state": _glucose_state_payload(service.state),
            "status": service.status,
            "polling": service.is_polling,
        }

    @app.post("/glucose/refresh")
    async def refresh_glucose(request: Request) -> dict[str, object]:
        """Fetch the feed once and return the resulting state."""
        state_container: AppContainer = request.app.state.container
        service = state_container.glucose_service
        await service.refresh(state_container.store.profile)
        return {
            "state": _glucose_state_payload(service.state),
            "status": service.status,
        }

    @app.get("/glucose/pending")
    async def pending_glucose(request: Request) -> dict[str, object]:
        store = _store(request)
        return {
            "tasks": store.pending_glucose_tasks,
            "max_attempts": store.pending_max_attempts,
            "backoff_minutes": store.glucose_backoff_minutes(),
            "stalled": store.stalled_glucose_tasks(),
        }

    @app.post("/glucose/pending", status_code=status.HTTP_201_CREATED)
    async def enqueue_glucose_capture(
        payload: GlucoseCaptureIn, request: Request
    ) -> dict[str, object]:
        store = _store(request)
        if store.meal_by_id(payload.meal_id) is None:
            raise HTTPException(status_code=404, detail="Meal not found")
        return {"task": store.enqueue_glucose_capture(payload.meal_id, payload.kind)}

    @app.post("/glucose/pending/{task_id}/failure")
    async def glucose_capture_failed(
        task_id: UUID, payload: GlucoseCaptureFailureIn, request: Request
    ) -> dict[str, object]:
        task = _store(request).record_glucose_capture_failure(task_id, payload.message)
        if task is None:
            raise HTTPException(status_code=404, detail="Pending capture not found")
        return {"task": task}

    @app.post("/glucose/pending/{task_id}/complete")
    async def glucose_capture_completed(
        task_id: UUID, payload: GlucoseCaptureResultIn, request: Request
    ) -> dict[str, object]:
        meal = _store(request).complete_glucose_capture(task_id, payload.mgdl)
        if meal is None:
            raise HTTPException(status_code=404, detail="Pending capture not found")
        return {"meal": meal}

    @app.get("/backup")
    async def export_backup(request: Request) -> Response:
        return Response(
            content=_store(request).export_backup(),
            media_type="application/json",
            headers={"Content-Disposition": 'attachment; filename="backup.json"'},
        )

    @app.post("/backup")
    async def import_backup(request: Request) -> dict[str, str]:
        """Replace all data with the uploaded backup document."""
        _store(request).import_backup(await request.body())
        return {"status": "ok"}

    @app.get("/export.csv")
    async def export_csv(request: Request) -> Response:
        return Response(
            content=_store(request).export_csv(),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": 'attachment; filename="meals.csv"'},
        )

    @app.get("/backups/auto")
    async def latest_auto_backup(request: Request) -> dict[str, object]:
        return {"latest_at": _store(request).latest_auto_backup_at()}

    @app.post("/backups/auto")
    async def create_auto_backup(request: Request) -> dict[str, object]:
        """Take a snapshot unless a recent one exists."""
        path = _store(request).create_auto_backup_if_needed()
        return {"created": path is not None, "file": path.name if path else None}

    @app.post("/backups/auto/restore")
    async def restore_auto_backup(request: Request) -> dict[str, str]:
        if not _store(request).restore_latest_auto_backup():
            raise HTTPException(status_code=404, detail="No automatic backup found")
        return {"status": "ok"}

    @app.get("/stats")
    async def stats(
        request: Request, period: StatsPeriod = StatsPeriod.ALL
    ) -> dict[str, object]:
        return {"period": period, "summary": _store(request).stats(period)}

    return app


def _store(request: Request) -> DataStore:
    state_container: AppContainer = request.app.state.container
    return state_container.store


def _glucose_state_payload(state: GlucoseState) -> dict[str, object]:
    """Flatten the glucose state variant into a tagged dictionary."""
    if isinstance(state, GlucoseSuccess):
        return {
            "kind": "success",
            "entry": state.entry,
            "trend_arrow": state.entry.trend_arrow,
        }
    if isinstance(state, GlucoseFailure):
        return {"kind": "failure", "message": state.message}
    if isinstance(state, GlucoseLoading):
        return {"kind": "loading"}
    return {"kind": "idle"}
