from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Header, Request, status
from pydantic import BaseModel

from storefront.deps import CurrentUser, get_payment_service, require_admin
from storefront.services.payments import PaymentService

router = APIRouter()


class CreateOrderRequest(BaseModel):
    amount: Decimal | None = None  # major units, e.g. 500.00 for ₹500
    currency: str | None = None
    receipt: str | None = None
    notes: dict[str, Any] | None = None
    order_id: str | None = None  # local order to tie the payment to


class VerifyPaymentRequest(BaseModel):
    # Missing or non-string fields fail signature verification rather than validation.
    razorpay_payment_id: Any = ""
    razorpay_order_id: Any = ""
    razorpay_signature: Any = ""
    order_id: Any = None


@router.post("/create-order", status_code=status.HTTP_201_CREATED)
async def create_order(
    body: CreateOrderRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    """Create Razorpay order; frontend opens checkout with order.id."""
    order = await payments.create_intent(
        amount=body.amount,
        currency=body.currency,
        receipt=body.receipt,
        notes=body.notes,
        order_id=body.order_id,
    )
    return {"success": True, "order": order}


@router.post("/verify")
async def verify_payment(
    body: VerifyPaymentRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    """Checkout success callback: verify signature, then mark the order paid."""
    result = await payments.confirm_payment(
        body.razorpay_order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
        order_id=body.order_id,
    )
    out: dict[str, Any] = {"success": True, "message": "Payment verified successfully"}
    if result is not None and result.order is not None:
        out["order_status"] = result.order.status.value
    return out


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(None, alias="X-Razorpay-Signature"),
    payments: PaymentService = Depends(get_payment_service),
):
    """Razorpay webhook: payment.authorized/captured -> paid, payment.failed -> failed."""
    body = await request.body()
    await payments.handle_webhook(body, x_razorpay_signature)
    return {"received": True}


@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    user: CurrentUser = Depends(require_admin),
    payments: PaymentService = Depends(get_payment_service),
):
    """Admin: provider-side payment details for manual reconciliation."""
    payment = await payments.fetch_payment(payment_id)
    return {"success": True, "payment": payment}
