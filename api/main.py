"""
FastAPI application for the Account service.

This application provides:
1. CRUD endpoints for every user type, institutions and children groups (/v1/...)
2. Inspection of the integration events waiting to be republished
3. A health check

The HTTP layer is thin: it parses requests, calls the services and maps domain
errors to status codes. Event publication happens inside the services and never
delays a response.

Run with:
    uvicorn api.main:app --reload

Then visit http://localhost:8000/docs for interactive API documentation.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Body, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from domain.data_store import AccountStore
from domain.exceptions import AccountError, ConflictException
from domain.models import (
    Admin,
    Application,
    Child,
    ChildrenGroup,
    Educator,
    Family,
    HealthProfessional,
    Institution,
    User,
)
from messaging.event_bus import EventBus
from messaging.event_store import IntegrationEventStore
from messaging.publisher import EventPublisher
from messaging.retry_task import EventBusRetryTask
from services import (
    AdminService,
    ApplicationService,
    ChildrenGroupService,
    ChildService,
    EducatorService,
    FamilyService,
    HealthProfessionalService,
    InstitutionService,
    UserService,
)
from settings import Settings

logger = logging.getLogger("account_api")


# =============================================================================
# Wiring
# =============================================================================

@dataclass
class AccountContainer:
    """Every collaborator of the application, built once and passed explicitly."""
    settings: Settings
    data_store: AccountStore
    bus: EventBus
    event_store: IntegrationEventStore
    publisher: EventPublisher
    retry_task: EventBusRetryTask
    children: ChildService
    educators: EducatorService
    health_professionals: HealthProfessionalService
    families: FamilyService
    applications: ApplicationService
    admins: AdminService
    users: UserService
    institutions: InstitutionService
    children_groups: ChildrenGroupService


def build_container(settings: Settings, bus: Optional[EventBus] = None) -> AccountContainer:
    """Create the store, bus, publisher, retry task and services."""
    data_store = AccountStore()
    bus = bus or EventBus(connected=settings.bus_connected)
    event_store = IntegrationEventStore(path=settings.event_store_path)
    publisher = EventPublisher(bus=bus, store=event_store, max_workers=settings.publisher_max_workers)
    retry_task = EventBusRetryTask(
        bus=bus,
        store=event_store,
        interval_seconds=settings.retry_interval_seconds,
    )
    children_groups = ChildrenGroupService(data_store)

    return AccountContainer(
        settings=settings,
        data_store=data_store,
        bus=bus,
        event_store=event_store,
        publisher=publisher,
        retry_task=retry_task,
        children=ChildService(data_store, publisher),
        educators=EducatorService(data_store, publisher, children_groups),
        health_professionals=HealthProfessionalService(data_store, publisher, children_groups),
        families=FamilyService(data_store, publisher),
        applications=ApplicationService(data_store, publisher),
        admins=AdminService(data_store, publisher),
        users=UserService(data_store, publisher),
        institutions=InstitutionService(data_store, publisher),
        children_groups=children_groups,
    )


def _container(request: Request) -> AccountContainer:
    return request.app.state.container


def _found(item, detail: str):
    if item is None:
        raise HTTPException(status_code=404, detail=detail)
    return item


# =============================================================================
# Route Registration
# =============================================================================

def _register_user_routes(app: FastAPI, path: str, service_name: str, model: type[User], label: str) -> None:
    """Register create/list/get/update/delete routes for one user type."""

    def create(request: Request, user: model) -> model:  # type: ignore[valid-type]
        return getattr(_container(request), service_name).add(user)

    def get_all(request: Request) -> list[model]:  # type: ignore[valid-type]
        return getattr(_container(request), service_name).get_all()

    def get_by_id(request: Request, user_id: str) -> model:  # type: ignore[valid-type]
        user = getattr(_container(request), service_name).get_by_id(user_id)
        return _found(user, f"{label} not found")

    def update(request: Request, user_id: str, changes: dict[str, Any] = Body(...)) -> model:  # type: ignore[valid-type]
        user = getattr(_container(request), service_name).update(user_id, changes)
        return _found(user, f"{label} not found")

    def remove(request: Request, user_id: str) -> Response:
        getattr(_container(request), service_name).remove(user_id)
        return Response(status_code=204)

    app.add_api_route(f"/v1/{path}", create, methods=["POST"], status_code=201, response_model=model, tags=[label])
    app.add_api_route(f"/v1/{path}", get_all, methods=["GET"], response_model=list[model], tags=[label])
    app.add_api_route(f"/v1/{path}/{{user_id}}", get_by_id, methods=["GET"], response_model=model, tags=[label])
    app.add_api_route(f"/v1/{path}/{{user_id}}", update, methods=["PATCH"], response_model=model, tags=[label])
    app.add_api_route(f"/v1/{path}/{{user_id}}", remove, methods=["DELETE"], status_code=204, tags=[label])


def _register_group_routes(app: FastAPI, path: str, service_name: str, label: str) -> None:
    """Register the children group routes of educators or health professionals."""

    def save_group(request: Request, user_id: str, group: ChildrenGroup) -> ChildrenGroup:
        return getattr(_container(request), service_name).save_children_group(user_id, group)

    def get_groups(request: Request, user_id: str) -> list[ChildrenGroup]:
        return getattr(_container(request), service_name).get_all_children_groups(user_id)

    def get_group(request: Request, user_id: str, group_id: str) -> ChildrenGroup:
        group = getattr(_container(request), service_name).get_children_group_by_id(user_id, group_id)
        return _found(group, "Children group not found")

    def update_group(
        request: Request, user_id: str, group_id: str, changes: dict[str, Any] = Body(...)
    ) -> ChildrenGroup:
        group = getattr(_container(request), service_name).update_children_group(user_id, group_id, changes)
        return _found(group, "Children group not found")

    def delete_group(request: Request, user_id: str, group_id: str) -> Response:
        getattr(_container(request), service_name).delete_children_group(user_id, group_id)
        return Response(status_code=204)

    base = f"/v1/{path}/{{user_id}}/children/groups"
    app.add_api_route(base, save_group, methods=["POST"], status_code=201, response_model=ChildrenGroup, tags=[label])
    app.add_api_route(base, get_groups, methods=["GET"], response_model=list[ChildrenGroup], tags=[label])
    app.add_api_route(f"{base}/{{group_id}}", get_group, methods=["GET"], response_model=ChildrenGroup, tags=[label])
    app.add_api_route(f"{base}/{{group_id}}", update_group, methods=["PATCH"], response_model=ChildrenGroup, tags=[label])
    app.add_api_route(f"{base}/{{group_id}}", delete_group, methods=["DELETE"], status_code=204, tags=[label])


def _register_routes(app: FastAPI) -> None:
    _register_user_routes(app, "children", "children", Child, "Children")
    _register_user_routes(app, "educators", "educators", Educator, "Educators")
    _register_user_routes(app, "healthprofessionals", "health_professionals", HealthProfessional, "Health Professionals")
    _register_user_routes(app, "families", "families", Family, "Families")
    _register_user_routes(app, "applications", "applications", Application, "Applications")
    _register_user_routes(app, "admins", "admins", Admin, "Admins")
    _register_group_routes(app, "educators", "educators", "Educators")
    _register_group_routes(app, "healthprofessionals", "health_professionals", "Health Professionals")

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/health", tags=["Health"])
    def health_check(request: Request):
        container = _container(request)
        return {
            "status": "healthy",
            "service": "account",
            "bus_connected": container.bus.is_connected,
            "pending_events": container.event_store.count(),
            "retry_task": container.retry_task.state.value,
        }

    # =========================================================================
    # Families
    # =========================================================================

    @app.get("/v1/families/{family_id}/children", response_model=list[Child], tags=["Families"])
    def get_family_children(request: Request, family_id: str):
        children = _container(request).families.get_all_children(family_id)
        return _found(children, "Family not found")

    @app.post("/v1/families/{family_id}/children/{child_id}", response_model=Family, tags=["Families"])
    def associate_child(request: Request, family_id: str, child_id: str):
        family = _container(request).families.associate_child(family_id, child_id)
        return _found(family, "Family not found")

    @app.delete("/v1/families/{family_id}/children/{child_id}", status_code=204, tags=["Families"])
    def disassociate_child(request: Request, family_id: str, child_id: str):
        _found(_container(request).families.disassociate_child(family_id, child_id), "Family not found")
        return Response(status_code=204)

    # =========================================================================
    # Users (any type)
    # =========================================================================

    @app.get("/v1/users/{user_id}", response_model=User, tags=["Users"])
    def get_user(request: Request, user_id: str):
        return _found(_container(request).users.get_by_id(user_id), "User not found")

    @app.delete("/v1/users/{user_id}", status_code=204, tags=["Users"])
    def delete_user(request: Request, user_id: str):
        _container(request).users.remove(user_id)
        return Response(status_code=204)

    # =========================================================================
    # Institutions
    # =========================================================================

    @app.post("/v1/institutions", response_model=Institution, status_code=201, tags=["Institutions"])
    def create_institution(request: Request, institution: Institution):
        return _container(request).institutions.add(institution)

    @app.get("/v1/institutions", response_model=list[Institution], tags=["Institutions"])
    def get_institutions(request: Request):
        return _container(request).institutions.get_all()

    @app.get("/v1/institutions/{institution_id}", response_model=Institution, tags=["Institutions"])
    def get_institution(request: Request, institution_id: str):
        return _found(_container(request).institutions.get_by_id(institution_id), "Institution not found")

    @app.patch("/v1/institutions/{institution_id}", response_model=Institution, tags=["Institutions"])
    def update_institution(request: Request, institution_id: str, changes: dict[str, Any] = Body(...)):
        institution = _container(request).institutions.update(institution_id, changes)
        return _found(institution, "Institution not found")

    @app.delete("/v1/institutions/{institution_id}", status_code=204, tags=["Institutions"])
    def delete_institution(request: Request, institution_id: str):
        _container(request).institutions.remove(institution_id)
        return Response(status_code=204)

    # =========================================================================
    # Integration Events (outbox)
    # =========================================================================

    @app.get("/v1/integration-events", tags=["Integration Events"])
    def get_pending_events(request: Request):
        """List the events waiting to be republished."""
        return [stored.model_dump(mode="json") for stored in _container(request).event_store.find_all()]

    @app.post("/v1/integration-events/retry", tags=["Integration Events"])
    def retry_pending_events(request: Request):
        """Run one retry pass now instead of waiting for the next tick."""
        report = _container(request).retry_task.run_once()
        if report is None:
            raise HTTPException(status_code=409, detail="Retry task is stopped")
        return {
            "attempted": report.attempted,
            "published": report.published,
            "failed": report.failed,
            "skipped": report.skipped,
        }


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None, bus: Optional[EventBus] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Service settings (read from the environment when None)
        bus: Message bus to publish to (an in-process EventBus when None)
    """
    settings = settings or Settings()
    container = build_container(settings, bus=bus)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the retry task on startup; stop it and drain publications on shutdown."""
        logger.info(f"Starting {settings.app_title}")
        container.retry_task.start()
        yield
        logger.info("Shutting down")
        container.retry_task.stop()
        container.publisher.close(wait=True)

    app = FastAPI(
        title=settings.app_title,
        description="User management and integration event publication for the health-monitoring platform.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.container = container

    @app.exception_handler(AccountError)
    async def handle_account_error(request: Request, exc: AccountError):
        status_code = 409 if isinstance(exc, ConflictException) else 400
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    _register_routes(app)
    return app


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
        datefmt="%H:%M:%S",
    )


_settings = Settings()
configure_logging(_settings.log_level)
app = create_app(_settings)
