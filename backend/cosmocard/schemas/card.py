"""
CosmoCard Backend — Card Request/Response Schemas
===================================================

What:  Pydantic models defining the card API contract with the web form.
How:   Declared in snake_case, serialized in camelCase (CamelModel).

Request fields default to "" so that missing values reach the card service,
which reports them as a 400 ValidationError in the form's own wording
rather than FastAPI's generic 422.
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import Field, field_validator

from cosmocard.schemas.common import CamelModel


# ══════════════════════════════════════════════════════════════════════════
# Requests
# ══════════════════════════════════════════════════════════════════════════


class CardCreateRequest(CamelModel):
    product_name: str = ""
    purpose: str = ""
    application: str = ""


class CardInfoRequest(CamelModel):
    purpose: str = ""
    application: str = ""


class LabelTextRequest(CamelModel):
    label_text: str = ""


class LabelUrlRequest(CamelModel):
    label_url: str = ""


class CardNameRequest(CamelModel):
    new_name: str = ""
    # Sent by older clients; the folder id stored in the registry is used instead
    card_folder_id: Optional[str] = None


class FeedbackRequest(CamelModel):
    result_type: str = ""
    feedback: str = ""
    corrections: str = ""


class WebhookRequest(CamelModel):
    chat_id: Optional[Union[str, int]] = None
    product_name: str = ""
    purpose: str = ""
    application: str = ""
    inci: str = ""
    inci_doc_url: Optional[str] = None
    photo_urls: List[str] = Field(default_factory=list)
    user_name: str = ""

    @field_validator("chat_id")
    @classmethod
    def chat_id_as_text(cls, v: Optional[Union[str, int]]) -> Optional[str]:
        """Telegram chat ids arrive as JSON numbers from most automations."""
        return None if v is None else str(v)


# ══════════════════════════════════════════════════════════════════════════
# Responses
# ══════════════════════════════════════════════════════════════════════════


class CardCreateResponse(CamelModel):
    success: bool = True
    card_id: str
    card_folder_id: str
    user_folder_id: str
    photos_folder_id: str
    sheet_row: Optional[int] = None
    folder_url: str
    stage: str
    message: str = "Карточка создана"


class CardInfoResponse(CamelModel):
    success: bool = True
    card_id: str
    purpose: str
    application: str
    stage: str
    message: str = "Назначение и Применение обновлены"


class LabelFile(CamelModel):
    name: str
    link: str
    mime_type: str


class AISuggestions(CamelModel):
    purpose: str = ""
    application: str = ""


class LabelResponse(CamelModel):
    success: bool = True
    card_id: str
    label_link: str
    label_file_name: str
    label_files: List[LabelFile] = Field(default_factory=list)
    ai_suggestions: AISuggestions
    label_info: str
    # Values stored on the card after the step (suggestions may have overwritten them)
    purpose: str
    application: str
    ai_available: bool
    stage: str
    message: str


class Bilingual(CamelModel):
    ru: str = ""
    en: str = ""


class InciAIResults(CamelModel):
    full_composition: Bilingual
    active_ingredients: Bilingual
    booklet_composition: Bilingual


class InciResponse(CamelModel):
    success: bool = True
    card_id: str
    inci_link: str
    inci_file_name: str
    inci_text: str
    ai_available: bool
    ai_results: Optional[InciAIResults] = None
    stage: str
    message: str


class UploadedPhoto(CamelModel):
    name: str
    id: str
    url: str


class PhotosResponse(CamelModel):
    success: bool = True
    card_id: str
    uploaded_photos: List[UploadedPhoto]
    count: int
    stage: str
    message: str = "Фотографии загружены"


class CardNameResponse(CamelModel):
    success: bool = True
    card_id: str
    product_name: str
    folder_name: str
    message: str = "Название обновлено"


class CardResponse(CamelModel):
    """Registry view of a card owned by the caller."""
    success: bool = True
    card_id: str
    user_id: str
    product_name: str
    purpose: str
    application: str
    stage: str
    ai_status: str
    card_folder_id: Optional[str] = None
    photos_folder_id: Optional[str] = None
    sheet_row: Optional[int] = None
    label_link: str
    label_info: str
    inci_text: str
    inci_doc_link: str
    active_ingredients_ru: str
    active_ingredients_en: str
    booklet_composition_ru: str
    booklet_composition_en: str
    full_composition_ru: str
    full_composition_en: str
    created_at: datetime
    updated_at: datetime


class FeedbackResponse(CamelModel):
    success: bool = True
    message: str = "Спасибо за отзыв"


class UploadedFile(CamelModel):
    name: str
    id: str


class DriveFolderInfo(CamelModel):
    id: str
    url: str
    uploaded_files: List[UploadedFile] = Field(default_factory=list)


class WebhookResponse(CamelModel):
    success: bool = True
    card_id: str
    drive_folder: DriveFolderInfo
    sheet_row: Optional[int] = None
    message: str = "Карточка успешно создана"


class BatchStartedResponse(CamelModel):
    success: bool = True
    message: str = "Batch processing started"
