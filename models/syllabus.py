# models/syllabus.py
from pydantic import BaseModel, Field, field_validator
from typing import Annotated, List, Literal, Optional, Union
from urllib.parse import urlparse

from .storage import StoredObject

MAX_CHAPTER_LINKS = 10
FILE_BACKED_TYPES = ("file", "pdf", "ppt", "video")


def is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


# Module / chapter / article payloads

class ModuleCreate(BaseModel):
    moduleNumber: int = Field(..., gt=0)
    title: str
    description: str = ""

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Module title is required")
        return v.strip()


class ModuleUpdate(BaseModel):
    moduleNumber: Optional[int] = Field(None, gt=0)
    title: Optional[str] = None
    description: Optional[str] = None
    isActive: Optional[bool] = None


class ChapterCreate(BaseModel):
    title: str
    description: str = ""
    links: List[str] = []

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Chapter title is required")
        return v.strip()

    @field_validator("links")
    @classmethod
    def _links(cls, v: List[str]) -> List[str]:
        links = [link.strip() for link in v if link.strip()]
        if len(links) > MAX_CHAPTER_LINKS:
            raise ValueError(f"A chapter can have at most {MAX_CHAPTER_LINKS} links")
        for link in links:
            if not is_http_url(link):
                raise ValueError(f"Invalid link: {link}")
        return links


class ArticleCreate(BaseModel):
    title: str
    content: str
    author: str = ""

    @field_validator("title", "content")
    @classmethod
    def _required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Article title and content are required")
        return v


class ArticleUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None

    @field_validator("title", "content")
    @classmethod
    def _not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Article title and content cannot be blank")
        return v


class Module(BaseModel):
    id: str
    moduleNumber: int = Field(..., gt=0)
    title: str
    description: str = ""
    isActive: bool = True
    order: int
    chapters: List[dict] = []
    contents: List[dict] = []
    createdAt: str
    updatedAt: str


class Chapter(BaseModel):
    id: str
    title: str
    description: str = ""
    links: List[str] = []
    articles: List[str] = []
    isActive: bool = True
    order: int
    createdAt: str


class OrderEntry(BaseModel):
    id: str
    order: int


class ReorderRequest(BaseModel):
    target: Literal["modules", "chapters", "contents"]
    moduleId: Optional[str] = None
    orders: List[OrderEntry]


# Content item payloads, as supplied by the caller

class ContentPayload(BaseModel):
    name: str = "Untitled Content"
    description: str = ""


class FilePayload(ContentPayload):
    type: Literal["file"] = "file"


class PdfPayload(ContentPayload):
    type: Literal["pdf"] = "pdf"
    pageCount: int = Field(0, ge=0)


class PptPayload(ContentPayload):
    type: Literal["ppt"] = "ppt"


class VideoPayload(ContentPayload):
    type: Literal["video"] = "video"
    duration: str = ""
    videoQuality: Literal["HD", "SD", "4K", "auto"] = "auto"


class LinkPayload(ContentPayload):
    type: Literal["link"] = "link"
    url: str
    linkType: Literal["external", "youtube", "vimeo", "article", "resource", "other"] = "external"


class TextPayload(ContentPayload):
    type: Literal["text"] = "text"
    body: str


ContentItemCreate = Annotated[
    Union[FilePayload, PdfPayload, PptPayload, VideoPayload, LinkPayload, TextPayload],
    Field(discriminator="type"),
]


class ContentItemUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    isActive: Optional[bool] = None
    pageCount: Optional[int] = Field(None, ge=0)
    duration: Optional[str] = None
    videoQuality: Optional[Literal["HD", "SD", "4K", "auto"]] = None
    url: Optional[str] = None
    linkType: Optional[Literal["external", "youtube", "vimeo", "article", "resource", "other"]] = None
    body: Optional[str] = None


# Stored content items: one closed variant per type

class ContentItemBase(BaseModel):
    id: str
    name: str
    description: str = ""
    order: int
    isActive: bool = True
    thumbnail: Optional[StoredObject] = None
    createdAt: str
    updatedAt: Optional[str] = None


class FileItem(ContentItemBase):
    type: Literal["file"] = "file"
    fileUrl: str
    fileKey: str
    fileName: str
    fileSize: int = Field(..., ge=0)


class PdfItem(FileItem):
    type: Literal["pdf"] = "pdf"
    pageCount: int = Field(0, ge=0)


class PptItem(FileItem):
    type: Literal["ppt"] = "ppt"
    presentationType: Literal["ppt", "pptx", "odp"] = "pptx"


class VideoItem(ContentItemBase):
    type: Literal["video"] = "video"
    videoUrl: str
    fileKey: str
    fileName: str
    videoSize: int = Field(..., ge=0)
    duration: str = ""
    videoQuality: Literal["HD", "SD", "4K", "auto"] = "auto"


class LinkItem(ContentItemBase):
    type: Literal["link"] = "link"
    url: str
    linkType: Literal["external", "youtube", "vimeo", "article", "resource", "other"] = "external"

    @field_validator("url")
    @classmethod
    def _url(cls, v: str) -> str:
        if not is_http_url(v):
            raise ValueError(f"Invalid URL: {v}")
        return v


class TextItem(ContentItemBase):
    type: Literal["text"] = "text"
    body: str

    @field_validator("body")
    @classmethod
    def _body(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Text content cannot be empty")
        return v


ContentItem = Annotated[
    Union[FileItem, PdfItem, PptItem, VideoItem, LinkItem, TextItem],
    Field(discriminator="type"),
]
