"""
===========================================================================
config_loader.py — Configuration Loading Module
===========================================================================

PURPOSE:
    This file builds the ONE configuration object the whole service uses.
    It combines three sources:

    1. Environment variables  : hosts, ports, folders, flags (Settings)
    2. ComfyUI itself         : legal sampler/scheduler names (comfy_probe.py)
    3. The models folder      : installed model files (models_loader.py)

HOW IT WORKS (build_config):
    environment → workflow dir → warm-up prompt → ComfyUI probe → model scan
                                                                    │
                                              ComfyConfig (frozen) ←┘

    The result is IMMUTABLE and built exactly once, before the server
    accepts any request. Nothing here is a module-level global: main.py
    calls build_config() and hands the result to the app. Tests build
    their own snapshots with fake settings and a StaticCapabilitySource.

    Any problem raises a ConfigurationError subclass (see errors.py) and
    start-up is aborted.

USED BY:
    main.py, routes/model_routes.py, schemas.py (build_ksampler_model)
===========================================================================
"""

import json
import logging
import os
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from comfy_probe import CapabilitySource, ComfyDescriptionProbe
from errors import ConfigParseError, ConfigurationError, InvalidEnvironmentError
from models_loader import scan_model_dir
from schemas import ClosedSet, ModelCategory

logger = logging.getLogger(__name__)

# The node type whose "ckpt_name" input we pull out of the warm-up prompt
CHECKPOINT_LOADER_CLASS = "CheckpointLoaderSimple"

# ---------------------------------------------------------------------------
# Shell fragments that put ComfyUI's Python on PATH, keyed by BASE image
# ---------------------------------------------------------------------------
LOAD_ENV_COMMANDS: Dict[str, str] = {
    "ai-dock": (
        "source /opt/ai-dock/etc/environment.sh"
        " && source /opt/ai-dock/bin/venv-set.sh comfyui"
        ' && source "$COMFYUI_VENV/bin/activate"'
    ),
}


# ===========================================================================
# SECTION 1: Environment variables
# ===========================================================================

class Settings(BaseSettings):
    """
    Raw settings read from the environment.

    Every field maps to the upper-case environment variable of the same
    name (PORT → port, COMFY_HOME → comfy_home, ...). All are optional.
    A malformed value (PORT=abc, MARKDOWN_SCHEMA_DESCRIPTIONS=maybe)
    fails validation instead of being silently accepted.
    """
    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=("settings_",),
    )

    cmd: str = "init.sh"
    host: str = "::"
    port: int = 3000
    direct_address: str = "127.0.0.1"
    comfyui_port_host: int = 8188
    startup_check_interval_s: int = 1
    startup_check_max_tries: int = 10
    comfy_home: str = "/opt/ComfyUI"
    output_dir: Optional[str] = None
    input_dir: Optional[str] = None
    model_dir: Optional[str] = None
    warmup_prompt_file: Optional[str] = None
    workflow_models: str = "all"
    workflow_dir: str = "/workflows"
    markdown_schema_descriptions: bool = True
    base: str = "ai-dock"


def load_settings() -> Settings:
    """Read Settings from the environment, turning bad values into InvalidEnvironmentError."""
    try:
        return Settings()
    except ValidationError as e:
        raise InvalidEnvironmentError(f"Invalid environment configuration: {e}") from e


def get_env_preamble(base: str) -> Optional[str]:
    """Return the activation shell fragment for a BASE image, or None if it needs none."""
    return LOAD_ENV_COMMANDS.get(base)


# ===========================================================================
# SECTION 2: Warm-up prompt
# ===========================================================================

def find_checkpoint_name(prompt: Dict[str, Any]) -> Optional[str]:
    """
    Find the checkpoint a ComfyUI prompt loads.

    A ComfyUI prompt (API format) looks like:
        {
            "4": {
                "class_type": "CheckpointLoaderSimple",
                "inputs": {"ckpt_name": "v1-5-pruned.ckpt"}
            },
            "3": {"class_type": "KSampler", "inputs": {...}},
            ...
        }

    Returns:
        The ckpt_name of the FIRST CheckpointLoaderSimple node, or None
        if the prompt has no such node.
    """
    for node_id, node in prompt.items():
        if not isinstance(node, dict) or node.get("class_type") != CHECKPOINT_LOADER_CLASS:
            continue
        inputs = node.get("inputs")
        if not isinstance(inputs, dict) or "ckpt_name" not in inputs:
            raise ConfigParseError(
                f"Failed to parse warmup prompt: node {node_id} has no inputs.ckpt_name"
            )
        ckpt_name = inputs["ckpt_name"]
        if not isinstance(ckpt_name, str):
            # e.g. a link to another node: ["10", 0]
            raise ConfigParseError(
                f"Failed to parse warmup prompt: node {node_id} ckpt_name "
                f"must be a filename, got {ckpt_name!r}"
            )
        return ckpt_name
    return None


def load_warmup_prompt(path: str) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Read the warm-up prompt file.

    Returns:
        (prompt, ckpt_name). ckpt_name is None if the prompt has no
        checkpoint loader node.
    """
    if not os.path.exists(path):
        raise ConfigParseError(f"Warmup prompt file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            prompt = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigParseError(f"Failed to parse warmup prompt: {e}") from e

    if not isinstance(prompt, dict):
        raise ConfigParseError("Failed to parse warmup prompt: top level must be an object")

    return prompt, find_checkpoint_name(prompt)


# ===========================================================================
# SECTION 3: The configuration snapshot
# ===========================================================================

def freeze(value):
    """Return a read-only copy of parsed JSON: dicts become mappingproxies, lists tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value):
    """Undo freeze(): a fresh, mutable, JSON-serializable copy."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


class ComfyConfig(BaseModel):
    """
    Everything the service needs to know, frozen at start-up.

    Fields (the interesting ones):
        comfy_url    : where to reach ComfyUI, e.g. "http://127.0.0.1:8188"
        samplers     : ClosedSet of legal sampler names
        schedulers   : ClosedSet of legal scheduler names
        models       : read-only {"checkpoints": ModelCategory, "loras": ModelCategory, ...}
        warmup_prompt: read-only copy of the warm-up prompt (see warmup_prompt_payload)
        warmup_ckpt  : checkpoint used by the warm-up prompt (or None)
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, protected_namespaces=())

    comfy_launch_cmd: str
    wrapper_host: str
    wrapper_port: int
    self_url: str
    comfy_host: str
    comfy_port: int
    comfy_url: str
    startup_check_interval: float
    startup_check_max_tries: int
    comfy_dir: str
    output_dir: str
    input_dir: str
    model_dir: str
    workflow_dir: str
    warmup_prompt: Optional[Mapping[str, Any]] = None
    warmup_ckpt: Optional[str] = None
    samplers: ClosedSet
    schedulers: ClosedSet
    models: Mapping[str, ModelCategory]
    workflow_models: str
    markdown_schema_descriptions: bool

    @field_validator("warmup_prompt", mode="after")
    @classmethod
    def _freeze_warmup_prompt(cls, value):
        return None if value is None else freeze(value)

    @field_validator("models", mode="after")
    @classmethod
    def _freeze_models(cls, value):
        return MappingProxyType(dict(value))

    def warmup_prompt_payload(self) -> Optional[Dict[str, Any]]:
        """The warm-up prompt as a plain dict, ready to json.dumps and send to ComfyUI."""
        return None if self.warmup_prompt is None else thaw(self.warmup_prompt)


def build_config(
    settings: Optional[Settings] = None,
    capability_source: Optional[CapabilitySource] = None,
) -> ComfyConfig:
    """
    Build the configuration snapshot. Call this ONCE at start-up.

    Args:
        settings          : defaults to reading the environment
        capability_source : defaults to probing the real ComfyUI install
                            at settings.comfy_home

    Raises:
        ConfigurationError (or a subclass) if anything is wrong.
    """
    if settings is None:
        settings = load_settings()

    try:
        os.makedirs(settings.workflow_dir, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(
            f"Failed to create workflow directory {settings.workflow_dir}: {e}"
        ) from e

    warmup_prompt, warmup_ckpt = None, None
    if settings.warmup_prompt_file:
        warmup_prompt, warmup_ckpt = load_warmup_prompt(settings.warmup_prompt_file)
        logger.info("Loaded warmup prompt from %s (checkpoint: %s)",
                    settings.warmup_prompt_file, warmup_ckpt)

    comfy_dir = settings.comfy_home
    if capability_source is None:
        capability_source = ComfyDescriptionProbe(
            comfy_dir, preamble=get_env_preamble(settings.base)
        )
    capabilities = capability_source.fetch_capabilities()

    model_dir = settings.model_dir if settings.model_dir is not None else os.path.join(comfy_dir, "models")
    models = scan_model_dir(model_dir)

    return ComfyConfig(
        comfy_launch_cmd=settings.cmd,
        wrapper_host=settings.host,
        wrapper_port=settings.port,
        self_url=f"http://localhost:{settings.port}",
        comfy_host=settings.direct_address,
        comfy_port=settings.comfyui_port_host,
        comfy_url=f"http://{settings.direct_address}:{settings.comfyui_port_host}",
        startup_check_interval=float(settings.startup_check_interval_s),
        startup_check_max_tries=settings.startup_check_max_tries,
        comfy_dir=comfy_dir,
        output_dir=settings.output_dir if settings.output_dir is not None else os.path.join(comfy_dir, "output"),
        input_dir=settings.input_dir if settings.input_dir is not None else os.path.join(comfy_dir, "input"),
        model_dir=model_dir,
        workflow_dir=settings.workflow_dir,
        warmup_prompt=warmup_prompt,
        warmup_ckpt=warmup_ckpt,
        samplers=ClosedSet(capabilities.samplers),
        schedulers=ClosedSet(capabilities.schedulers),
        models=models,
        workflow_models=settings.workflow_models,
        markdown_schema_descriptions=settings.markdown_schema_descriptions,
    )
