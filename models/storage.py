# models/storage.py
from pydantic import BaseModel


class Upload(BaseModel):
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class StoredObject(BaseModel):
    url: str
    key: str
