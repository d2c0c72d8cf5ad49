"""
===========================================================================
main.py — Application Entry Point
===========================================================================

PURPOSE:
    Start-up for the ComfyUI gateway:

    1. Build the configuration (environment, ComfyUI probe, models scan)
    2. Create the FastAPI app and hand it the configuration
    3. Serve it with uvicorn on HOST:PORT

    If the configuration can't be built, NOTHING is served: the error is
    logged and the process exits with the original error message.

    python main.py
===========================================================================
"""

import logging

from fastapi import FastAPI

from config_loader import ComfyConfig, build_config
from errors import ConfigurationError
from routes import model_routes

logger = logging.getLogger(__name__)


def create_app(config: ComfyConfig) -> FastAPI:
    """
    Create the FastAPI application for a given configuration snapshot.

    Tests call this directly with a snapshot built from fake data.
    """
    app = FastAPI(title="ComfyUI Gateway")
    app.state.config = config
    app.include_router(model_routes.router)
    return app


def run():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = build_config()
    except ConfigurationError as e:
        logger.error("Start-up aborted: %s", e)
        raise SystemExit(str(e)) from e

    logger.info(
        "Configuration loaded: ComfyUI at %s, %d model categories",
        config.comfy_url, len(config.models),
    )

    import uvicorn
    uvicorn.run(create_app(config), host=config.wrapper_host, port=config.wrapper_port)


if __name__ == "__main__":
    run()
