"""
Document extraction – pure API back-end

Endpoints
─────────
GET  /health                          → {"status": "ok"}
POST /api/extractions                 → 202 {job_id, status, estimated_completion}
GET  /api/extractions/<job_id>        → job status (and data once completed)
GET  /api/extractions/<job_id>/stream → Server-Sent Events for one job
GET  /api/extractions/templates       → registered extraction templates
GET  /api/extractions/health          → LLM / OCR / queue health
GET  /api/admin/queue/status          → queue statistics
POST /api/admin/queue/manage          → retry | retry_all | cancel | reset_stuck | purge
POST /api/admin/queue/process         → process the next job inline
POST /api/admin/templates/invalidate  → clear the template cache
"""

# SPDX-License-Identifier: AGPL-3.0-only

# ── imports ──────────────────────────────────────────────────────
import logging

from flask import Flask, jsonify
from flask_cors import CORS                 # allow front-end origin
from dotenv import load_dotenv

from common.llm_client import LLMClient
from docextract.ai_service import StructuredParser
from docextract.config import ExtractionConfig
from docextract.confidence import ConfidenceScorer
from docextract.field_validator import FieldValidator
from docextract.file_classifier import FileClassifier
from docextract.ocr_service import TesseractOCREngine
from docextract.pipeline import ExtractionOrchestrator
from docextract.templates import TemplateRepository
from docextract.text_service import TextExtractionService
from jobqueue.admin import QueueAdmin
from jobqueue.endpoints import register_admin_endpoints, register_extraction_endpoints
from jobqueue.notifications import StatusNotifier
from jobqueue.service import ExtractionService
from jobqueue.storage import LocalFileStorage
from jobqueue.store import InMemoryJobStore
from jobqueue.worker import WorkerPool

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()

origins = [
    "http://localhost:5173",  # Development frontend
    "http://127.0.0.1:5173",  # Alternative localhost
]


class Services:
    """Wired components shared by the endpoints, the worker pool and the runner."""

    def __init__(self, config, store, storage, notifier, ocr_engine, llm_client,
                 parser, orchestrator, worker_pool, admin, extraction):
        self.config = config
        self.store = store
        self.storage = storage
        self.notifier = notifier
        self.ocr_engine = ocr_engine
        self.llm_client = llm_client
        self.parser = parser
        self.orchestrator = orchestrator
        self.worker_pool = worker_pool
        self.admin = admin
        self.extraction = extraction


def build_store(config: ExtractionConfig):
    """In-memory store unless a database URL is configured."""
    if config.database_url:
        from jobqueue.sql_store import SQLJobStore
        logger.info("Using SQL job store")
        return SQLJobStore(config.database_url)
    logger.info("Using in-memory job store")
    return InMemoryJobStore()


def build_services(config=None, store=None, ocr_engine=None, llm_client=None, storage=None) -> Services:
    """Wire the pipeline and queue from configuration; any part may be supplied instead."""
    config = config or ExtractionConfig()
    store = store if store is not None else build_store(config)
    storage = storage or LocalFileStorage(config.get_effective_upload_folder())
    notifier = StatusNotifier()

    ocr_engine = ocr_engine or TesseractOCREngine(config)
    text_service = TextExtractionService(ocr_engine, FileClassifier(config), config)

    llm_client = llm_client or LLMClient.from_config(config.get_llm_config())
    parser = StructuredParser(llm_client, TemplateRepository(config), config)
    logger.info("Structured parsing strategy: %s", parser.strategy.value)

    orchestrator = ExtractionOrchestrator(
        text_service,
        parser,
        FieldValidator(config),
        ConfidenceScorer(config),
        config,
    )
    worker_pool = WorkerPool(store, orchestrator, storage, notifier, config)
    admin = QueueAdmin(store, config, notifier, storage, worker_pool)
    extraction = ExtractionService(store, storage, notifier, config)

    return Services(
        config=config,
        store=store,
        storage=storage,
        notifier=notifier,
        ocr_engine=ocr_engine,
        llm_client=llm_client,
        parser=parser,
        orchestrator=orchestrator,
        worker_pool=worker_pool,
        admin=admin,
        extraction=extraction,
    )


def create_app(services: Services = None) -> Flask:
    """Application factory. Workers are not started here; see start_backend.py."""
    services = services or build_services()

    app = Flask(__name__)
    # Leave room for the multipart envelope around the largest accepted file
    app.config["MAX_CONTENT_LENGTH"] = services.config.max_file_size + 1024 * 1024
    app.extensions["extraction"] = services

    CORS(
        app,
        resources={r"/api/*": {"origins": origins}}
    )

    @app.get("/health")
    def health():
        """Used by uptime checks to verify API is alive."""
        return jsonify(status="ok"), 200

    @app.errorhandler(413)
    def file_too_large(e):
        limit_mb = services.config.max_file_size // (1024 * 1024)
        return jsonify(error=f"File too large (max {limit_mb} MB)"), 413

    @app.errorhandler(500)
    def internal_error(e):
        logger.exception("Unhandled error: %s", e)
        return jsonify(error="Internal server error"), 500

    register_extraction_endpoints(app, services)
    register_admin_endpoints(app, services)
    return app


app = create_app()
