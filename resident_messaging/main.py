import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .api import inbox, messages
from .config import Base, SessionLocal, engine, settings
from .constants import DEFAULT_ROLES
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .core.request_context import REQUEST_ID_HEADER, assign_request_id
from .models.models import Role
from .services.email import log_email_configuration
from .services.templates import ensure_default_templates

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Sandpiper Run Resident Messaging")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


def ensure_default_roles(session: Session) -> None:
    for name, description in DEFAULT_ROLES:
        role = session.query(Role).filter(Role.name == name).first()
        if not role:
            session.add(Role(name=name, description=description))
    session.commit()


@app.on_event("startup")
def startup() -> None:
    # Tables are created in place; there is no migration history for this service.
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        ensure_default_roles(session)
        created = ensure_default_templates(session)
        if created:
            logger.info("Seeded %d default message template(s).", created)
    log_email_configuration()


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = assign_request_id(request)
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.get("/health", tags=["system"])
def health() -> dict:
    return {"status": "ok"}


app.include_router(messages.router, prefix="/messages", tags=["messages"])
app.include_router(inbox.router, prefix="/inbox", tags=["inbox"])
app.include_router(inbox.broadcasts_router, prefix="/broadcasts", tags=["broadcasts"])
