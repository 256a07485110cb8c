from pydantic import BaseModel, Field


class WebhookUpsert(BaseModel):
    webhookUrl: str = Field(max_length=500)
    webhookName: str | None = Field(default=None, max_length=120)


class WebhookOut(BaseModel):
    id: str
    name: str | None
    url_preview: str
    is_active: bool


class WebhookTestOut(BaseModel):
    success: bool = True
    message: str
