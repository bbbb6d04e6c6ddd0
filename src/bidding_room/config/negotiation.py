from pydantic import BaseModel, Field


class NegotiationSettings(BaseModel):
    """Timing rules for a bidding room session."""

    window_days: int = Field(7, gt=0)
    extension_days: int = Field(2, gt=0)
    # None: an extension may be requested at any point while the session is live
    extension_window_hours: float | None = Field(None, gt=0)
    warning_hours: float = Field(72, gt=0)
    critical_hours: float = Field(24, gt=0)
