import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from atelier import catalog
from atelier.db import Base, database, engine
from atelier.errors import LedgerError
from atelier.logging_config import setup_logging
from atelier.routers import caisse, catalog as catalog_router, clients, dashboard, devis, expenses, invoices, payments

setup_logging()
log = logging.getLogger("atelier")


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    await database.connect()
    await catalog.ensure_machine_pricing()
    log.info("startup db=%s", engine.url.get_backend_name())
    yield
    await database.disconnect()


app = FastAPI(title="Atelier ledger", lifespan=lifespan)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    log.info("request_rejected path=%s code=%s status=%s", request.url.path, exc.code, exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.get("/health")
async def health():
    return {"status": "ok"}


app.include_router(clients.router)
app.include_router(catalog_router.router)
app.include_router(devis.router)
app.include_router(invoices.router)
app.include_router(payments.router)
app.include_router(expenses.router)
app.include_router(caisse.router)
app.include_router(dashboard.router)
