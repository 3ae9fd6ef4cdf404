"""
CosmoCard Backend — Abstract AI Analysis Interface
====================================================

What:  Contract for the AI collaborator plus the result types it returns.
Why:   The card orchestrator must be able to tell "the model answered" from
       "the model could not be reached". Every analysis therefore returns
       either a typed result or an AIUnavailable value; it never raises for
       an AI failure and never substitutes placeholder text.
How:   Concrete implementations (GeminiService) inherit from LLMService.
       Tests use in-memory fakes that implement the same two methods.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Sequence, Union


@dataclass
class Attachment:
    """Raw file bytes sent to the model alongside the prompt."""

    content: bytes
    mime_type: str


@dataclass
class AIUnavailable:
    """The model could not produce a usable answer (no key, network, quota, bad JSON)."""

    reason: str

    def __bool__(self) -> bool:
        return False


@dataclass
class LabelAnalysis:
    label_info: str = ""
    suggested_purpose: str = ""
    suggested_application: str = ""


@dataclass
class InciAnalysis:
    active_ingredients_ru: str = ""
    active_ingredients_en: str = ""
    booklet_composition_ru: str = ""
    booklet_composition_en: str = ""
    full_composition_ru: str = ""
    full_composition_en: str = ""

    def as_fields(self) -> Dict[str, str]:
        """Values keyed by the card/sheet field names of columns K..P."""
        return {
            "active_ingredients_ru": self.active_ingredients_ru,
            "active_ingredients_en": self.active_ingredients_en,
            "booklet_composition_ru": self.booklet_composition_ru,
            "booklet_composition_en": self.booklet_composition_en,
            "full_composition_ru": self.full_composition_ru,
            "full_composition_en": self.full_composition_en,
        }


LabelResult = Union[LabelAnalysis, AIUnavailable]
InciResult = Union[InciAnalysis, AIUnavailable]


class LLMService(ABC):
    """
    Abstract interface for AI-powered label and INCI analysis.

    Contract:
        - analyze_label() and analyze_inci() return AIUnavailable on any failure
        - Implementations handle their own retry logic and circuit breaking
        - The caller (CardService) never needs to know which provider is used
    """

    @abstractmethod
    async def analyze_label(
        self,
        product_name: str,
        label_text: str,
        attachments: Sequence[Attachment] = (),
    ) -> LabelResult:
        """Extract label information and suggested purpose/application."""
        ...

    @abstractmethod
    async def analyze_inci(
        self,
        product_name: str,
        purpose: str,
        inci_text: str,
        attachments: Sequence[Attachment] = (),
        keep_percentages: bool = False,
    ) -> InciResult:
        """Derive the six composition fields (active/booklet/full × RU/EN)."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability check; must not consume generation quota."""
        ...
