from typing import Optional

from pydantic import BaseModel, Field


class VatSettings(BaseModel):
    vat_registered: bool = False
    vat_number: str = ""
    vat_rate: float = Field(default=20, ge=0, le=100)
    prices_include_vat: bool = True


class VatSettingsUpdate(BaseModel):
    vat_registered: Optional[bool] = None
    vat_number: Optional[str] = None
    vat_rate: Optional[float] = Field(default=None, ge=0, le=100)
    prices_include_vat: Optional[bool] = None


class CartStep(BaseModel):
    delay_minutes: int = Field(..., ge=0)
    enabled: bool = True
    subject: Optional[str] = None
    preview_text: Optional[str] = None
    include_discount: bool = False
    discount_code: Optional[str] = None
    discount_percent: Optional[float] = Field(default=None, ge=0, le=100)


class CartAutomationSettings(BaseModel):
    enabled: bool = False
    steps: list[CartStep] = Field(default_factory=list)


class RepSettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    points_per_sale: Optional[int] = Field(default=None, ge=0)
    auto_approve: Optional[bool] = None
    default_discount_percent: Optional[float] = Field(default=None, ge=0, le=100)
    level_thresholds: Optional[list[int]] = None
    level_names: Optional[list[str]] = None
    leaderboard_visible: Optional[bool] = None
    max_events_per_rep: Optional[int] = Field(default=None, ge=1)
    welcome_message: Optional[str] = None
    email_from_name: Optional[str] = None


class PlanRead(BaseModel):
    plan_id: str
    plan_name: str
    description: str
    fee_percent: float
    min_fee: int
    monthly_price: int
    card_rate_label: str
    trial_days: int
    features: list[str]


class PlanUpdate(BaseModel):
    plan_id: str
