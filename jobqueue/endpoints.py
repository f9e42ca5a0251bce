# SPDX-License-Identifier: AGPL-3.0-only

"""
Flask endpoints for document extraction jobs and queue administration.
"""
import json
import logging
import queue
import time

from flask import Response, request, jsonify
from marshmallow import ValidationError

from validators import (
    InvalidateTemplatesSchema,
    QueueManageSchema,
    SubmitExtractionSchema,
    target_job_ids,
)

from .service import SubmissionError, build_status_view

logger = logging.getLogger(__name__)


def _sse(payload) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def register_extraction_endpoints(app, services):
    """Register submission, status and template endpoints with Flask app."""

    @app.post("/api/extractions")
    def submit_extraction():
        """Accept an upload and enqueue it; processing happens in the worker pool."""
        if 'file' not in request.files:
            return jsonify(error="No file provided"), 400
        file = request.files['file']
        if file.filename == '':
            return jsonify(error="No file selected"), 400

        try:
            form = SubmitExtractionSchema().load(request.form.to_dict())
        except ValidationError as e:
            return jsonify(error="Invalid request", details=e.messages), 400

        try:
            accepted = services.extraction.submit(
                file.read(),
                file.filename,
                form['document_type'],
                declared_type=file.mimetype,
                document_ref=form.get('document_ref'),
                priority=form['priority'],
            )
        except SubmissionError as e:
            return jsonify(error=str(e)), e.status_code
        return jsonify(accepted), 202

    @app.get("/api/extractions/<job_id>")
    def extraction_status(job_id: str):
        """Current job state, read from the store."""
        view = services.extraction.get_status(job_id)
        if view is None:
            return jsonify(error="Job not found"), 404
        return jsonify(view)

    @app.get("/api/extractions/<job_id>/stream")
    def extraction_stream(job_id: str):
        """
        Server-Sent Events for one job.

        Notifications only wake the loop early; every event sent is a fresh
        read of the store. The stream ends once the job is done or after
        ``stream_timeout`` seconds.
        """
        if services.extraction.get_job(job_id) is None:
            return jsonify(error="Job not found"), 404

        timeout = services.config.stream_timeout
        tick = services.config.stream_tick

        def generate():
            events = services.notifier.subscribe(job_id)
            deadline = time.monotonic() + timeout
            try:
                while True:
                    view = services.extraction.get_status(job_id)
                    if view is None:
                        yield _sse({"job_id": job_id, "error": "Job not found", "done": True})
                        return
                    yield _sse(view)
                    if view["done"]:
                        return
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        yield _sse({"job_id": job_id, "error": "Stream timed out", "done": False})
                        return
                    try:
                        events.get(timeout=min(tick, remaining))
                    except queue.Empty:
                        pass
            finally:
                services.notifier.unsubscribe(job_id, events)

        return Response(generate(), mimetype="text/event-stream",
                        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})

    @app.get("/api/extractions/templates")
    def extraction_templates():
        templates = [t.model_dump(mode="json") for t in services.parser.list_templates()]
        return jsonify(templates=templates, parser_strategy=services.parser.strategy.value)

    @app.get("/api/extractions/health")
    def extraction_health():
        """Extended health: LLM configuration, OCR availability and queue counts."""
        return jsonify(
            status="ok",
            llm_configured=services.llm_client.is_configured(),
            llm_config_valid=services.config.validate_llm_config(),
            llm_provider=services.llm_client.provider,
            parser_strategy=services.parser.strategy.value,
            tesseract_available=services.ocr_engine.is_available(),
            workers_running=services.worker_pool.is_running,
            queue=services.admin.stats().to_dict(),
        )


def register_admin_endpoints(app, services):
    """Register queue remediation endpoints with Flask app."""

    @app.get("/api/admin/queue/status")
    def queue_status():
        return jsonify(services.admin.stats().to_dict())

    @app.post("/api/admin/queue/manage")
    def queue_manage():
        """Run one operator action against the queue."""
        try:
            data = QueueManageSchema().load(request.get_json(silent=True) or {})
        except ValidationError as e:
            return jsonify(error="Invalid request", details=e.messages), 400

        admin = services.admin
        action = data['action']
        if action == 'retry':
            outcome = admin.retry(target_job_ids(data), force=data['force'])
        elif action == 'retry_all':
            outcome = admin.retry_all()
        elif action == 'cancel':
            outcome = admin.cancel(target_job_ids(data))
        elif action == 'reset_stuck':
            outcome = admin.reset_stuck(data.get('stale_minutes'))
        else:
            outcome = admin.purge(data.get('older_than_days'))
        return jsonify(outcome)

    @app.post("/api/admin/queue/process")
    def queue_process():
        """Claim and process the next eligible job inline."""
        try:
            job = services.admin.process_next()
        except RuntimeError as e:
            return jsonify(error=str(e)), 503
        if job is None:
            return jsonify(processed=False, message="No jobs eligible for processing")
        return jsonify(processed=True, job=build_status_view(job, services.extraction.get_result(job.id)))

    @app.post("/api/admin/templates/invalidate")
    def invalidate_templates():
        try:
            data = InvalidateTemplatesSchema().load(request.get_json(silent=True) or {})
        except ValidationError as e:
            return jsonify(error="Invalid request", details=e.messages), 400
        cleared = services.parser.invalidate_templates(data.get('document_type'))
        return jsonify(success=True, invalidated=cleared)
