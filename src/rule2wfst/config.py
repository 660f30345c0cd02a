from __future__ import annotations

import json
from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .macros import RedefinitionPolicy


class CompileOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    delta: float = Field(default=1e-7, gt=0)
    # Words with more tone-bearing positions than this are not modeled by
    # the linear rule-set compiler.
    max_tone_positions: int = Field(default=4, ge=1)
    filler_weight: float = Field(default=10.0, ge=0)
    identity_weight: float | None = Field(default=None, ge=0)
    boundary: str = "#"
    macro_redefinition: RedefinitionPolicy = "keep-first"
    segment_macro: str = "segment"
    tone_macro: str = "tone"

    @model_validator(mode="after")
    def _validate_names(self) -> "CompileOptions":
        if not self.boundary.strip():
            raise ValueError("Boundary symbol cannot be empty.")
        for label, name in (
            ("segment_macro", self.segment_macro),
            ("tone_macro", self.tone_macro),
        ):
            if not name.strip():
                raise ValueError(f"{label} cannot be empty.")
        return self


def load_options(path: Path | None) -> CompileOptions:
    if path is None:
        return CompileOptions()
    payload = json.loads(path.read_text(encoding="utf-8"))
    return CompileOptions.model_validate(payload)


def format_validation_error(error: ValidationError) -> str:
    parts: list[str] = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err.get("loc", []))
        msg = err.get("msg", "Invalid value")
        if loc:
            parts.append(f"{loc}: {msg}")
        else:
            parts.append(msg)
    return "; ".join(parts)
