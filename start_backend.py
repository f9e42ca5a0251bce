#!/usr/bin/env python3
# SPDX-License-Identifier: AGPL-3.0-only
"""
Startup script for the document extraction backend
"""

import logging
import os
import sys

import requests

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from app import app  # noqa: E402

logger = logging.getLogger("start_backend")


def check_ollama(base_url: str) -> bool:
    """Check if Ollama service is running"""
    try:
        response = requests.get(f"{base_url.rstrip('/')}/api/tags", timeout=5)
    except requests.exceptions.ConnectionError:
        logger.error("Ollama service is not running at %s", base_url)
        return False
    except requests.exceptions.RequestException as e:
        logger.error("Error checking Ollama: %s", e)
        return False

    if response.status_code != 200:
        logger.error("Ollama service responded with status %d", response.status_code)
        return False
    models = response.json().get('models', [])
    if models:
        logger.info("Ollama is running; available models: %s", ', '.join(m['name'] for m in models))
    else:
        logger.warning("Ollama is running but no models are installed")
    return True


def check_dependencies(services) -> None:
    """Report what the pipeline can do with the current environment."""
    config = services.config
    if services.ocr_engine.is_available():
        logger.info("Tesseract OCR is available")
    else:
        logger.warning("Tesseract OCR not found; scanned documents and images will fail extraction")

    if services.llm_client.is_configured():
        logger.info("LLM provider %s configured (model %s)", services.llm_client.provider,
                    services.llm_client.model)
        if services.llm_client.provider == "ollama":
            check_ollama(config.ollama_base_url)
    else:
        logger.warning("No LLM provider configured; using the regex parser (results always need review)")

    if not config.database_url:
        logger.warning("No database configured; jobs are kept in memory and lost on restart")


def main():
    services = app.extensions["extraction"]
    logger.info("Starting document extraction backend")
    check_dependencies(services)

    services.worker_pool.start()
    port = int(os.getenv("PORT", "8000"))
    logger.info("Flask server listening on http://0.0.0.0:%d (health: /health)", port)

    try:
        # The reloader would start a second worker pool
        app.run(host="0.0.0.0", port=port, debug=False, use_reloader=False)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error("Error starting server: %s", e)
        sys.exit(1)
    finally:
        services.worker_pool.stop(timeout=10)


if __name__ == "__main__":
    main()
