# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""
FastAPI application for infraplan.
"""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from infraplan import __version__
from infraplan.core.observability import (
    initialize_logging,
    get_logger,
    ObservabilityMiddleware,
)
from infraplan.core.storage.state_store import StateStore
from infraplan.core.storage.plan_store import PlanStore
from infraplan.core.services.engine import Engine, default_registry
from infraplan.core.services.stacks import StackLoader
from infraplan.api.routes import (
    health_router,
    stacks_router,
    plans_router,
    state_router,
    set_engine,
    set_stack_loader,
)
from infraplan.api.routes.health import set_service_status

API_V1_PREFIX = "/api/v1"
LOG_FORMAT = os.environ.get("LOG_FORMAT", "console")
DATA_DIR = Path(os.environ.get("DATA_DIR", "data"))
STACKS_BASE = Path(os.environ.get("STACKS_BASE", "stacks"))
PLAYBOOK_DIR = Path(os.environ.get("PLAYBOOK_DIR", "playbooks"))
MAX_PARALLELISM = int(os.environ.get("MAX_PARALLELISM", "4"))
LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "30"))
LOCK_TTL_SECONDS = float(os.environ.get("LOCK_TTL_SECONDS", "300"))
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://localhost:8000").split(
    ","
)

initialize_logging(level=logging.INFO, log_format=LOG_FORMAT)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown.

    Opens the state and plan stores, builds the engine and hands it to the
    routes. On shutdown running applies are cancelled and stores closed.

    :param app: FastAPI application instance.
    :type app: FastAPI
    :yields: None
    """
    engine = None
    state_store = None
    plan_store = None

    try:
        logger.info("Initializing infraplan...")
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        db_path = DATA_DIR / "infraplan.db"
        state_store = StateStore(db_path=db_path, lock_ttl=LOCK_TTL_SECONDS)
        plan_store = PlanStore(db_path=db_path)
        engine = Engine(
            state_store=state_store,
            plan_store=plan_store,
            registry=default_registry(
                playbook_dir=PLAYBOOK_DIR,
                log_dir=DATA_DIR / "logs" / "playbooks",
            ),
            lock_timeout=LOCK_TIMEOUT_SECONDS,
            max_workers=MAX_PARALLELISM,
        )
        app.state.engine = engine
        app.state.stack_loader = StackLoader(STACKS_BASE)
        set_engine(engine)
        set_stack_loader(app.state.stack_loader)
        set_service_status("engine", True)
        logger.info(
            f"infraplan initialized: stacks={STACKS_BASE}, "
            f"providers={engine.registry.types()}, parallelism={MAX_PARALLELISM}"
        )
        yield

    except Exception as e:
        logger.error(f"Failed to initialize infraplan: {e}", exc_info=True)
        raise

    finally:
        logger.info("Shutting down infraplan...")
        set_service_status("engine", False)
        if engine:
            cancelled = engine.cancel()
            if cancelled:
                logger.warning(f"Cancelled running applies: {cancelled}")
        if plan_store:
            plan_store.close()
        if state_store:
            state_store.close()
        logger.info("infraplan shutdown complete")


app = FastAPI(
    title="infraplan API",
    description="Dependency-ordered plan and apply for declared infrastructure",
    version=__version__,
    lifespan=lifespan,
)
app.add_middleware(ObservabilityMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(health_router)
app.include_router(stacks_router, prefix=API_V1_PREFIX)
app.include_router(state_router, prefix=API_V1_PREFIX)
app.include_router(plans_router, prefix=API_V1_PREFIX)
