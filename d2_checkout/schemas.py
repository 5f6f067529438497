"""
D2 Checkout Schemas

Pydantic schemas for the checkout session and payment link endpoints.
Wire names are camelCase; required fields are checked by the creators so a
missing field yields the store's 400 error body.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class CheckoutSessionRequest(BaseModel):
    """Schema for checkout session creation request"""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "pdfId": "5f0c6a8e-2b1d-4a8e-9f51-0d2b7c9e4a11",
                "userId": "user_123",
                "successUrl": "https://financetransformers.com/purchase/success",
                "cancelUrl": "https://financetransformers.com/purchase/cancel",
            }
        },
    )

    pdf_id: Optional[str] = Field(None, alias="pdfId", max_length=64)
    user_id: Optional[str] = Field(None, alias="userId", max_length=255)
    success_url: Optional[str] = Field(None, alias="successUrl", max_length=2048)
    cancel_url: Optional[str] = Field(None, alias="cancelUrl", max_length=2048)
    customer_email: Optional[EmailStr] = Field(None, alias="customerEmail")


class CheckoutSessionResponse(BaseModel):
    """Schema for checkout session creation response"""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    url: str


class PaymentLinkRequest(BaseModel):
    """Schema for payment link creation request"""

    model_config = ConfigDict(populate_by_name=True)

    pdf_id: Optional[str] = Field(None, alias="pdfId", max_length=64)


class PaymentLinkResponse(BaseModel):
    """Schema for payment link creation response"""

    model_config = ConfigDict(populate_by_name=True)

    payment_link_url: str = Field(..., alias="paymentLinkUrl")
    payment_link_id: Optional[str] = Field(None, alias="paymentLinkId")
    price_id: Optional[str] = Field(None, alias="priceId")
    amount: float
    currency: str
    pdf_title: Optional[str] = Field(None, alias="pdfTitle")
    cached: bool = False
