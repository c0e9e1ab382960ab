"""Direct gateway endpoints: bill inquiry and deposit balance."""

from fastapi import APIRouter, Depends

from billpay.dependencies import Gateway
from billpay.models.transaction import ProductType
from billpay.schemas.gateway import BillInquiryRequest, GatewayBalance, GatewayRequest, GatewayResult
from billpay.utils.audit import audit_logged

router = APIRouter()


@router.post("/inquiry", response_model=GatewayResult)
async def inquire_bill(body: BillInquiryRequest, gateway: Gateway) -> GatewayResult:
    """Look up a postpaid bill before purchase. Moves no money.

    The inquiry reference is derived from the customer number; it is never
    reused as a settlement key.
    """
    params = {k: v for k, v in (("periode", body.periode), ("tahun", body.tahun)) if v}
    request = GatewayRequest(
        product_code=body.product_code,
        customer_number=body.customer_number,
        product_type=ProductType.PASCABAYAR,
        reference_id=f"INQ-{body.customer_number}",
        params=params,
    )
    return await gateway.inquire(request)


@router.get(
    "/balance",
    response_model=GatewayBalance,
    dependencies=[Depends(audit_logged("gateway_balance"))],
)
async def get_balance(gateway: Gateway) -> GatewayBalance:
    """Merchant deposit balance at the provider."""
    return await gateway.check_balance()
