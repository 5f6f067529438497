"""
D5 Fulfillment Schemas
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EmailDeliveryRequest(BaseModel):
    """Schema for a direct confirmation email request"""

    model_config = ConfigDict(populate_by_name=True)

    customer_email: Optional[str] = Field(None, alias="customerEmail", max_length=255)
    pdf_title: Optional[str] = Field(None, alias="pdfTitle", max_length=255)
    order_id: Optional[str] = Field(None, alias="orderId", max_length=255)
    amount: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, max_length=3)
    pdf_content: Optional[str] = Field(None, alias="pdfContent", description="Base64 encoded PDF")
    download_url: Optional[str] = Field(None, alias="downloadUrl", max_length=2048)


class ResendEmailRequest(BaseModel):
    """Schema for re-sending a purchase confirmation"""

    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(None, alias="sessionId", max_length=255)


class EmailDeliveryResponse(BaseModel):
    success: bool
    message: str
