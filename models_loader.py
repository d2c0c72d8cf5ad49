"""
===========================================================================
models_loader.py — Installed Model Discovery
===========================================================================

PURPOSE:
    This file finds out which model files are installed, so requests can
    be checked ("is 'sd_xl_base_1.0.safetensors' really installed?")
    BEFORE they are forwarded to ComfyUI.

HOW THE MODELS FOLDER IS LAID OUT:
    models/                         ← the "model root" (MODEL_DIR)
    ├── checkpoints/                ← one CATEGORY per sub-folder
    │   ├── put_checkpoints_here    ← placeholder, ignored
    │   └── v1-5-pruned.ckpt
    ├── loras/                      ← empty category: valid, zero models
    └── extra_model_paths.yaml      ← not a folder, ignored

RULES:
    - Only IMMEDIATE sub-folders of the root become categories.
    - Only the immediate entries of each category are listed; nothing
      below that is walked.
    - "put_<anything>_here" files are scaffolding, not models.
    - Listing order is kept as the filesystem returns it.
    - This module only READS the disk.

USED BY:
    config_loader.py (build_config)
===========================================================================
"""

import logging
import os
from typing import Dict, List

from errors import ModelRootUnreadable
from schemas import ModelCategory

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "put_"
PLACEHOLDER_SUFFIX = "_here"


def is_placeholder(filename: str) -> bool:
    """True for scaffolding entries like "put_checkpoints_here"."""
    return filename.startswith(PLACEHOLDER_PREFIX) and filename.endswith(PLACEHOLDER_SUFFIX)


def list_models(category_dir: str) -> List[str]:
    """
    List the model files inside one category folder.

    Args:
        category_dir : e.g. "/opt/ComfyUI/models/checkpoints"

    Returns:
        list[str]: entry names, placeholders removed, listing order kept.
    """
    try:
        names = os.listdir(category_dir)
    except OSError as e:
        raise ModelRootUnreadable(f"Failed to list model directory {category_dir}: {e}") from e
    return [name for name in names if not is_placeholder(name)]


def scan_model_dir(model_dir: str) -> Dict[str, ModelCategory]:
    """
    Build the model registry: one ModelCategory per sub-folder of model_dir.

    Args:
        model_dir : the model root

    Returns:
        dict: {"checkpoints": ModelCategory(...), "loras": ModelCategory(...), ...}

    Raises:
        ModelRootUnreadable: model_dir is missing, not a folder, or not listable.
    """
    try:
        children = os.listdir(model_dir)
    except OSError as e:
        raise ModelRootUnreadable(f"Failed to list model directory {model_dir}: {e}") from e

    models = {}
    for name in children:
        category_dir = os.path.join(model_dir, name)
        if not os.path.isdir(category_dir):
            continue

        entries = list_models(category_dir)
        models[name] = ModelCategory(name=name, directory=category_dir, entries=entries)
        logger.debug("Model category %s: %d entries", name, len(entries))

    logger.info("Found %d model categories in %s", len(models), model_dir)
    return models
