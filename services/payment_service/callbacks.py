"""
Boundary validation for STK callback deliveries.

The gateway posts::

    {"Body": {"stkCallback": {
        "MerchantRequestID": "...",
        "CheckoutRequestID": "ws_CO_...",
        "ResultCode": 0,
        "ResultDesc": "The service request is processed successfully.",
        "CallbackMetadata": {"Item": [
            {"Name": "Amount", "Value": 1500},
            {"Name": "MpesaReceiptNumber", "Value": "ABC123"},
            {"Name": "TransactionDate", "Value": 20240101120000},
            {"Name": "PhoneNumber", "Value": 254712345678}]}}}}

`parse_callback` turns that into either a PaymentSucceeded or a
PaymentFailed; anything else raises CallbackShapeError before business
logic sees it.
"""
from dataclasses import dataclass
from typing import Annotated, Any, List, Optional, Union

import pydantic
from pydantic import BaseModel, Field, StringConstraints, field_validator

from shared.errors import CallbackShapeError

UNKNOWN = "unknown"

CorrelationId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class CallbackMetadata(BaseModel):
    items: List[Any] = Field(default_factory=list, alias="Item")

    @field_validator("items", mode="before")
    @classmethod
    def single_item_as_list(cls, v):
        if v is None:
            return []
        if isinstance(v, dict):
            return [v]
        return v


class StkCallback(BaseModel):
    merchant_request_id: Optional[str] = Field(default=None, alias="MerchantRequestID")
    checkout_request_id: CorrelationId = Field(alias="CheckoutRequestID")
    result_code: int = Field(alias="ResultCode")
    result_desc: str = Field(default="", alias="ResultDesc")
    callback_metadata: Optional[CallbackMetadata] = Field(default=None, alias="CallbackMetadata")


class CallbackBody(BaseModel):
    stk_callback: StkCallback = Field(alias="stkCallback")


class CallbackEnvelope(BaseModel):
    body: CallbackBody = Field(alias="Body")


@dataclass(frozen=True)
class PaymentSucceeded:
    reference: str
    merchant_request_id: Optional[str]
    result_desc: str
    receipt_number: Any
    amount: Any
    phone_number: Any
    transaction_date: Any
    result_code: int = 0


@dataclass(frozen=True)
class PaymentFailed:
    reference: str
    merchant_request_id: Optional[str]
    result_code: int
    result_desc: str


CallbackResult = Union[PaymentSucceeded, PaymentFailed]


def metadata_values(items: List[Any]) -> dict:
    """
    Flatten `[{"Name": k, "Value": v}, ...]` (or bare `{k: v}` items) into a dict.

    Items that are not objects, or whose Name is not a string, are skipped.
    """
    values = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        if "Name" in item:
            if isinstance(item["Name"], str):
                values[item["Name"]] = item.get("Value")
        else:
            values.update(item)
    return values


def _value(values: dict, name: str) -> Any:
    value = values.get(name)
    return UNKNOWN if value is None else value


def parse_callback(payload: Any) -> CallbackResult:
    try:
        envelope = CallbackEnvelope.model_validate(payload)
    except pydantic.ValidationError as e:
        errors = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise CallbackShapeError("Malformed callback payload", invalid_fields=errors)

    callback = envelope.body.stk_callback
    if callback.result_code != 0:
        return PaymentFailed(
            reference=callback.checkout_request_id,
            merchant_request_id=callback.merchant_request_id,
            result_code=callback.result_code,
            result_desc=callback.result_desc,
        )

    items = callback.callback_metadata.items if callback.callback_metadata else []
    values = metadata_values(items)
    return PaymentSucceeded(
        reference=callback.checkout_request_id,
        merchant_request_id=callback.merchant_request_id,
        result_desc=callback.result_desc,
        receipt_number=_value(values, "MpesaReceiptNumber"),
        amount=_value(values, "Amount"),
        phone_number=_value(values, "PhoneNumber"),
        transaction_date=_value(values, "TransactionDate"),
    )
