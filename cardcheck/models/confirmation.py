"""
Confirmation pass answer schema.

The scanner is asked a handful of targeted questions and answers with a
small JSON object. Every field is optional: a field that is absent, null
or blank means "not answered" and leaves the verification result alone.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class ConfirmationResponse(BaseModel):
    """Answer to a targeted re-ask."""

    model_config = ConfigDict(extra="ignore")

    variation_confirmed: str | None = None
    player_confirmed: str | None = None
    is_numbered: str | None = None
    serial_text: str | None = None
    surface_finish: str | None = None
    border_color: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_answer(cls, value: Any) -> str | None:
        # Models answer yes/no questions with JSON booleans often enough
        if isinstance(value, bool):
            return "yes" if value else "no"
        if isinstance(value, int | float):
            return str(value)
        if isinstance(value, str):
            value = value.strip()
            if not value or value.lower() in ("null", "none", "n/a"):
                return None
            return value
        if value is None:
            return None
        raise ValueError(f"Unsupported answer type: {type(value).__name__}")

    @property
    def numbered(self) -> bool:
        """True if the scanner answered yes to the serial-number question."""
        return self.is_numbered is not None and self.is_numbered.lower() == "yes"
