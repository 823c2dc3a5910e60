"""Legal document generation."""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import date
from typing import Literal

from pydantic import BaseModel

from property_sales.state import Offer, PropertySnapshot


logger = logging.getLogger(__name__)

DocumentType = Literal["contract", "disclosure", "inspection_checklist", "closing_checklist"]
DisclosureType = Literal["full", "lead_paint", "hoa", "flood_zone"]

INSPECTION_AREAS = [
    "foundation",
    "roof",
    "plumbing",
    "electrical",
    "hvac",
    "interior",
    "exterior",
    "appliances",
]


class GeneratedDocument(BaseModel):
    document_id: str
    document_url: str
    document_type: DocumentType


class DocumentService(ABC):
    @abstractmethod
    async def generate_contract(
        self,
        prop: PropertySnapshot,
        offer: Offer,
        closing_date: date,
        revision_notes: str | None = None,
    ) -> GeneratedDocument: ...

    @abstractmethod
    async def generate_disclosure(
        self, prop: PropertySnapshot, disclosure_type: DisclosureType
    ) -> GeneratedDocument: ...

    @abstractmethod
    async def generate_inspection_checklist(
        self, prop: PropertySnapshot, areas: list[str]
    ) -> GeneratedDocument: ...

    @abstractmethod
    async def generate_closing_checklist(
        self, prop: PropertySnapshot, offer: Offer, closing_date: date
    ) -> GeneratedDocument: ...


class SimulatedDocumentService(DocumentService):
    """Issues document ids and storage URLs without rendering files."""

    def __init__(self, base_url: str = "https://documents.local") -> None:
        self._base_url = base_url.rstrip("/")
        self.generated: list[GeneratedDocument] = []

    def _issue(
        self, prop: PropertySnapshot, document_type: DocumentType, name: str
    ) -> GeneratedDocument:
        document_id = f"{name}_{uuid.uuid4().hex[:12]}"
        doc = GeneratedDocument(
            document_id=document_id,
            document_url=f"{self._base_url}/{prop.id}/{document_id}.pdf",
            document_type=document_type,
        )
        self.generated.append(doc)
        logger.info("Generated %s %s for property %s", document_type, document_id, prop.id)
        return doc

    async def generate_contract(
        self,
        prop: PropertySnapshot,
        offer: Offer,
        closing_date: date,
        revision_notes: str | None = None,
    ) -> GeneratedDocument:
        return self._issue(prop, "contract", "contract")

    async def generate_disclosure(
        self, prop: PropertySnapshot, disclosure_type: DisclosureType
    ) -> GeneratedDocument:
        return self._issue(prop, "disclosure", f"disclosure_{disclosure_type}")

    async def generate_inspection_checklist(
        self, prop: PropertySnapshot, areas: list[str]
    ) -> GeneratedDocument:
        return self._issue(prop, "inspection_checklist", "inspection")

    async def generate_closing_checklist(
        self, prop: PropertySnapshot, offer: Offer, closing_date: date
    ) -> GeneratedDocument:
        return self._issue(prop, "closing_checklist", "closing")
