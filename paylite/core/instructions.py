"""
Channel instructions
--------------------
Pure rendering of the step-by-step guide shown after confirmation. Output
depends only on (mode, payee_vpa, amount) so identical inputs always produce
byte-identical steps.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Union

from paylite.core.errors import ValidationError
from paylite.core.lifecycle import MODE_USSD, MODE_IVR

CURRENCY_GLYPH = "₹"

Number = Union[Decimal, int, float, str]


def format_amount(amount: Number) -> str:
    """Plain decimal: 250 -> "250", 99.50 -> "99.5". No exponent, no grouping."""
    d = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if d == d.to_integral_value():
        return str(int(d))
    return format(d.normalize(), "f")


def _ussd_steps(payee_vpa: str, amt: str) -> List[str]:
    return [
        "Dial *99# from the SIM linked to your bank account.",
        'Select Option 1 → "Send Money".',
        f'Choose "UPI ID" and enter: {payee_vpa}',
        f"Enter amount: {amt}",
        "Enter a remark or press 1 to skip.",
        "Enter your UPI PIN to authorize the payment.",
        "You will see a confirmation message and receive an SMS.",
    ]


def _ivr_steps(payee_vpa: str, amt: str) -> List[str]:
    return [
        "Call 080-4516-3666 from your registered mobile number.\n"
        "(SBI, HDFC, ICICI, Axis, IDFC First)\n"
        "Or call 6366-200-200 (Canara, PNB, NSDL)",
        "Select your preferred language.",
        'Choose "Money Transfer" or "Send Money".',
        f"Enter recipient mobile number or UPI ID: {payee_vpa}",
        f"Enter amount: {amt}",
        "Enter your UPI PIN using the keypad to authorize.",
        "You will hear a confirmation and receive an SMS.",
    ]


_TEMPLATES = {
    MODE_USSD: _ussd_steps,
    MODE_IVR: _ivr_steps,
}


def render_steps(mode: str, payee_vpa: str, amount: Number) -> List[str]:
    template = _TEMPLATES.get(mode)
    if template is None:
        raise ValidationError(f"Invalid mode: {mode!r}")
    return template(payee_vpa, f"{CURRENCY_GLYPH}{format_amount(amount)}")


def build_instruction(mode: str, payee_vpa: str, amount: Number) -> Dict[str, object]:
    steps = render_steps(mode, payee_vpa, amount)
    return {"type": mode, "steps": steps, "message": "\n".join(steps)}
