"""
===========================================================================
comfy_probe.py — Ask ComfyUI Which Samplers & Schedulers It Supports
===========================================================================

PURPOSE:
    Before the API can accept a request, it needs to know which
    "sampler_name" and "scheduler" values are legal. Those lists live in
    ComfyUI's own Python code (comfy.samplers.KSampler), and they change
    between ComfyUI versions, so we ask ComfyUI itself at start-up.

HOW IT WORKS:
    ComfyUI's HTTP API is not running yet at this point, so instead we:
    1. Write a tiny Python script into the ComfyUI folder:
           <comfy_dir>/temp_comfy_description.py
    2. Run it with ComfyUI's own Python (optionally after a shell
       "preamble" that activates ComfyUI's virtualenv).
    3. The script dumps the two lists to:
           <comfy_dir>/temp_comfy_description.json
    4. We read that JSON back and check its shape.
    5. Both temp files are ALWAYS deleted afterwards, success or not.

    ┌─────────────┐  write   ┌──────────────┐  bash   ┌──────────────┐
    │ this module │ ───────→ │ temp .py file│ ──────→ │ ComfyUI's    │
    └─────┬───────┘          └──────────────┘         │ python       │
          │        read      ┌──────────────┐  write  └──────┬───────┘
          └────────────────← │ temp .json   │ ←──────────────┘
                             └──────────────┘

    The call BLOCKS until the child process exits. That's fine: nothing
    can be served until we know the capability lists anyway.

USED BY:
    config_loader.py (build_config)
===========================================================================
"""

import abc
import logging
import os
import shlex
import subprocess
from string import Template
from typing import Dict, Iterable, Optional

from pydantic import ValidationError

from errors import ProbeExecutionError, ProbeOutputError
from schemas import EngineCapabilities

logger = logging.getLogger(__name__)

SCRIPT_FILENAME = "temp_comfy_description.py"
OUTPUT_FILENAME = "temp_comfy_description.json"

# ---------------------------------------------------------------------------
# The script we hand to ComfyUI's Python
# ---------------------------------------------------------------------------
# $output_path is replaced with the (quoted) path of the JSON output file.
DESCRIBE_SNIPPET = """
import comfy.samplers
import json

comfy_description = {
    "samplers": comfy.samplers.KSampler.SAMPLERS,
    "schedulers": comfy.samplers.KSampler.SCHEDULERS,
}

with open($output_path, "w") as f:
    json.dump(comfy_description, f)
"""


# ===========================================================================
# SECTION 1: The "port", anything that can give us capabilities
# ===========================================================================

class CapabilitySource(abc.ABC):
    """Something that knows which samplers and schedulers ComfyUI supports."""

    @abc.abstractmethod
    def fetch_capabilities(self) -> EngineCapabilities:
        """Return the capabilities, or raise a ProbeError."""


class StaticCapabilitySource(CapabilitySource):
    """
    A CapabilitySource with fixed lists.

    Used by the tests, and handy when developing without ComfyUI installed.
    """

    def __init__(self, samplers: Iterable[str], schedulers: Iterable[str]):
        self.samplers = list(samplers)
        self.schedulers = list(schedulers)

    def fetch_capabilities(self) -> EngineCapabilities:
        try:
            return EngineCapabilities(samplers=self.samplers, schedulers=self.schedulers)
        except ValidationError as e:
            raise ProbeOutputError(f"Invalid ComfyUI description: {e}") from e


# ===========================================================================
# SECTION 2: The real adapter, run a script inside ComfyUI
# ===========================================================================

class ComfyDescriptionProbe(CapabilitySource):
    """
    Obtain capabilities by running a script with ComfyUI's Python.

    Args:
        comfy_dir   : ComfyUI installation folder (also the working dir)
        preamble    : optional shell fragment run before python, e.g.
                      "source /opt/venv/bin/activate". Joined with "&&",
                      so if it fails, python never runs.
        python      : the python executable to call
        snippet     : script template; must write the JSON to $output_path
    """

    def __init__(
        self,
        comfy_dir: str,
        preamble: Optional[str] = None,
        python: str = "python",
        snippet: str = DESCRIBE_SNIPPET,
    ):
        self.comfy_dir = comfy_dir
        self.preamble = preamble
        self.python = python
        self.snippet = snippet

    @property
    def script_path(self) -> str:
        return os.path.join(self.comfy_dir, SCRIPT_FILENAME)

    @property
    def output_path(self) -> str:
        return os.path.join(self.comfy_dir, OUTPUT_FILENAME)

    def build_command(self) -> str:
        command = f"{shlex.quote(self.python)} {shlex.quote(self.script_path)}"
        if self.preamble:
            command = f"{self.preamble} && {command}"
        return command

    def build_env(self) -> Dict[str, str]:
        # ComfyUI's own packages (comfy, comfy_extras, ...) must be importable
        env = dict(os.environ)
        existing = env.get("PYTHONPATH")
        env["PYTHONPATH"] = self.comfy_dir + (os.pathsep + existing if existing else "")
        return env

    def fetch_capabilities(self) -> EngineCapabilities:
        try:
            return self._run_probe()
        finally:
            # Each file is removed independently; a failure here is only logged
            _remove_temp_file(self.script_path)
            _remove_temp_file(self.output_path)

    def _run_probe(self) -> EngineCapabilities:
        # A leftover output file from an interrupted run must never be read as our answer
        try:
            if os.path.exists(self.output_path):
                os.remove(self.output_path)
        except OSError as e:
            raise ProbeExecutionError(f"Failed to remove stale ComfyUI description: {e}") from e

        script = Template(self.snippet).substitute(output_path=repr(self.output_path))
        try:
            with open(self.script_path, "w", encoding="utf-8") as f:
                f.write(script)
        except OSError as e:
            raise ProbeExecutionError(f"Failed to get ComfyUI description: {e}") from e

        command = self.build_command()
        logger.debug("Probing ComfyUI capabilities: %s (cwd=%s)", command, self.comfy_dir)

        try:
            subprocess.run(
                command,
                shell=True,
                executable="/bin/bash",
                cwd=self.comfy_dir,
                env=self.build_env(),
                check=True,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as e:
            details = (e.stderr or e.stdout or "").strip()
            message = f"Failed to get ComfyUI description: {e}"
            if details:
                message = f"{message}\n{details}"
            raise ProbeExecutionError(message) from e
        except OSError as e:
            # Bad working directory, missing /bin/bash, ...
            raise ProbeExecutionError(f"Failed to get ComfyUI description: {e}") from e

        try:
            with open(self.output_path, "r", encoding="utf-8") as f:
                output = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ProbeOutputError(f"Failed to read ComfyUI description: {e}") from e

        try:
            capabilities = EngineCapabilities.model_validate_json(output.strip())
        except ValidationError as e:
            raise ProbeOutputError(f"Failed to parse ComfyUI description: {e}") from e

        logger.info(
            "ComfyUI reports %d samplers and %d schedulers",
            len(capabilities.samplers), len(capabilities.schedulers),
        )
        return capabilities


def _remove_temp_file(path: str) -> None:
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning("Failed to delete temporary file %s: %s", path, e)
