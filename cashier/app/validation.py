from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _strip_str(v):
    if v is None:
        return v
    return str(v).strip()


# "payconiq" is the mobile payment option offered at the register.
PaymentMethod = Annotated[Literal["cash", "payconiq"], BeforeValidator(_to_lower_str)]

OrderId = Annotated[str, BeforeValidator(_strip_str), StringConstraints(min_length=1, max_length=64)]
