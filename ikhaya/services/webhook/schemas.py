"""Inbound PayFast ITN payload."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


FAILURE_STATUSES = {"FAILED", "CANCELLED"}


class PayFastNotification(BaseModel):
    """Form-encoded ITN body; unknown variables are kept for signing and audit."""

    model_config = ConfigDict(extra="allow")

    m_payment_id: str = Field(min_length=1)
    pf_payment_id: str | None = None
    payment_status: str = Field(min_length=1)
    merchant_id: str = Field(min_length=1)
    amount_gross: Decimal | None = None
    signature: str | None = None

    _raw: dict[str, str] = PrivateAttr(default_factory=dict)

    @classmethod
    def from_form(cls, form: dict[str, str]) -> "PayFastNotification":
        notification = cls.model_validate(form)
        notification._raw = {key: str(value) for key, value in form.items()}
        return notification

    def signed_fields(self) -> dict[str, str]:
        """Posted values exactly as received, minus the signature itself."""

        return {key: value for key, value in self._raw.items() if key != "signature"}

    def audit_data(self) -> dict[str, str]:
        return self.signed_fields()
