from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List


class RecordData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    categories: List[str] = Field(default_factory=list, alias="Categories")
    description: Optional[str] = Field(default=None, alias="GPT_S_Description")
    tags: List[Any] = Field(default_factory=list, alias="Tags")
    colours: List[Any] = Field(default_factory=list, alias="Colours")
    width: Optional[int] = Field(default=None, alias="Width")
    height: Optional[int] = Field(default=None, alias="Height")
    format: Optional[str] = Field(default=None, alias="Format")


class NormalizedRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    filename: str
    blob_ref: Optional[str] = Field(default=None, alias="imageFileId")
    data: RecordData


class StagedDocument(BaseModel):
    images: List[NormalizedRecord]


class ArchiveResponse(BaseModel):
    images: List[Dict[str, Any]]


class CatalogImage(BaseModel):
    id: str
    filename: str
    blob_ref: Optional[str] = None
    description: Optional[str] = None
    categories: List[str]
    tags: List[Any]
    colours: List[Any]
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    created_at: str
