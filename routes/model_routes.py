"""
===========================================================================
routes/model_routes.py — Model & Capability Listing Routes
===========================================================================

PURPOSE:
    Read-only views of the configuration snapshot, so clients (and UIs)
    can discover what they are allowed to send:

    1. GET /models             : every category and its installed models
    2. GET /models/{category}  : the models of one category
    3. GET /capabilities       : legal sampler and scheduler names

    The configuration is NOT imported as a global: main.py stores it on
    app.state.config, and the get_config() dependency reads it from there.

USED BY:
    main.py (included via the router)
===========================================================================
"""

from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request

from config_loader import ComfyConfig

# ---------------------------------------------------------------------------
# Create the router for model listing routes
# ---------------------------------------------------------------------------
router = APIRouter()


def get_config(request: Request) -> ComfyConfig:
    return request.app.state.config


@router.get("/models")
async def list_models(config: ComfyConfig = Depends(get_config)) -> Dict[str, List[str]]:
    """
    List installed models, grouped by category.

    Example: GET /models →
        {"checkpoints": ["v1-5-pruned.ckpt"], "loras": []}
    """
    return {name: list(category.entries) for name, category in config.models.items()}


@router.get("/models/{category}")
async def list_category(category: str, config: ComfyConfig = Depends(get_config)) -> List[str]:
    """
    List the installed models of one category.

    An empty list means the category exists but has no models;
    a 404 means there is no such category at all.
    """
    found = config.models.get(category)
    if found is None:
        raise HTTPException(status_code=404, detail=f"Unknown model category: {category}")
    return list(found.entries)


@router.get("/capabilities")
async def list_capabilities(config: ComfyConfig = Depends(get_config)) -> Dict[str, List[str]]:
    """Legal sampler and scheduler names, in the order ComfyUI reports them."""
    return {
        "samplers": list(config.samplers),
        "schedulers": list(config.schedulers),
    }
