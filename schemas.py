"""
===========================================================================
schemas.py — Pydantic Data Models & Closed Value Sets
===========================================================================

PURPOSE:
    This file defines the "shape" of the data the configuration is made
    of, and the tool we use to validate user input against it.

    1. ClosedSet            : an ordered list of legal string values that
                              is FIXED at start-up (sampler names, scheduler
                              names, checkpoint filenames, ...).
    2. EngineCapabilities   : what ComfyUI told us it supports.
    3. ModelCategory        : one sub-folder of the models directory.
    4. build_ksampler_model : builds a pydantic request model whose fields
                              only accept values from the closed sets.

WHY NOT A PYTHON Enum?
    The legal values are only known once ComfyUI has been asked and the
    models folder has been scanned. A ClosedSet is a set-membership check
    against that runtime data, plus the ordered list for display. An empty
    ClosedSet is allowed: it simply rejects every value ("no models of
    this kind installed" is not the same as "no such category").

USED BY:
    comfy_probe.py, models_loader.py, config_loader.py, routes/model_routes.py
===========================================================================
"""

from typing import Annotated, Iterable, List, Tuple

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, create_model


# ===========================================================================
# SECTION 1: ClosedSet
# ===========================================================================

class ClosedSet:
    """
    An immutable, ordered set of legal string values.

    Example:
        samplers = ClosedSet(["euler", "dpmpp_2m"])
        "euler" in samplers          → True
        samplers.validate("ddim")    → raises ValueError
        list(samplers)               → ["euler", "dpmpp_2m"]   (order kept!)
    """

    __slots__ = ("_values", "_lookup")

    def __init__(self, values: Iterable[str] = ()):
        self._values: Tuple[str, ...] = tuple(values)
        self._lookup = frozenset(self._values)

    @property
    def values(self) -> Tuple[str, ...]:
        return self._values

    def __contains__(self, value) -> bool:
        return value in self._lookup

    def __iter__(self):
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ClosedSet):
            return NotImplemented
        return self._values == other._values

    def __hash__(self) -> int:
        return hash(self._values)

    def __repr__(self) -> str:
        return f"ClosedSet({list(self._values)!r})"

    def validate(self, value: str) -> str:
        """Return value unchanged if it is legal, otherwise raise ValueError."""
        if value not in self._lookup:
            if not self._values:
                raise ValueError(f"{value!r} is not allowed: no values are available")
            allowed = ", ".join(repr(v) for v in self._values)
            raise ValueError(f"{value!r} is not one of {allowed}")
        return value

    def as_type(self):
        """
        Turn this set into a pydantic field type.

        The returned type is a plain str that runs validate() after
        parsing, and advertises the legal values as a JSON-schema "enum"
        (so they show up in FastAPI's /docs).
        """
        return Annotated[
            str,
            AfterValidator(self.validate),
            Field(json_schema_extra={"enum": list(self._values)}),
        ]


# ===========================================================================
# SECTION 2: Registry data
# ===========================================================================

class EngineCapabilities(BaseModel):
    """
    The sampler and scheduler names ComfyUI reports, in ComfyUI's order.

    This is also the exact shape of temp_comfy_description.json:
        {"samplers": ["euler", ...], "schedulers": ["normal", ...]}

    Both lists must be non-empty: a request can't be validated against
    an empty list of samplers.
    """
    model_config = ConfigDict(frozen=True, strict=True)

    samplers: List[str] = Field(min_length=1)
    schedulers: List[str] = Field(min_length=1)


class ModelCategory(BaseModel):
    """
    One immediate sub-folder of the models directory.

    Fields:
        name      (str)       : folder name, e.g. "checkpoints", "loras"
        directory (str)       : full path of the folder
        entries   (tuple[str]): model filenames, in directory-listing order,
                                placeholder files already removed
    """
    model_config = ConfigDict(frozen=True)

    name: str
    directory: str
    entries: Tuple[str, ...] = ()

    @property
    def enum(self) -> ClosedSet:
        return ClosedSet(self.entries)


# ===========================================================================
# SECTION 3: Request models built from the configuration
# ===========================================================================

def _describe(what: str, values: ClosedSet, markdown: bool) -> str:
    if markdown:
        listed = ", ".join(f"`{v}`" for v in values)
    else:
        listed = ", ".join(values)
    return f"{what}. One of: {listed}" if listed else f"{what}. None available."


def build_ksampler_model(config) -> type:
    """
    Build a pydantic model for the parameters of a KSampler node.

    Args:
        config : a ComfyConfig snapshot (see config_loader.py)

    Returns:
        A BaseModel subclass with these required fields:
            sampler_name : must be one of config.samplers
            scheduler    : must be one of config.schedulers
            ckpt_name    : must be an installed checkpoint
                           (only present if a "checkpoints" folder exists)
    """
    markdown = config.markdown_schema_descriptions
    fields = {
        "sampler_name": (
            config.samplers.as_type(),
            Field(description=_describe("The sampler to use", config.samplers, markdown)),
        ),
        "scheduler": (
            config.schedulers.as_type(),
            Field(description=_describe("The noise scheduler to use", config.schedulers, markdown)),
        ),
    }

    checkpoints = config.models.get("checkpoints")
    if checkpoints is not None:
        fields["ckpt_name"] = (
            checkpoints.enum.as_type(),
            Field(description=_describe("The checkpoint to load", checkpoints.enum, markdown)),
        )

    return create_model("KSamplerParams", **fields)
