from pydantic import BaseModel, Field, RootModel


class GroupDocument(RootModel[dict[str, list[str]]]):
    """On-disk layout of the group map: ``{group_id: [stored name, ...]}``."""


class UploadResponse(BaseModel):
    message: str = "File(s) processed successfully"
    file_count: int
    download_link: str
    qr_code: str
    uploaded_files: list[str]


class GroupFile(BaseModel):
    name: str


class GroupInfo(BaseModel):
    type: str = "group"
    group_id: str = Field(serialization_alias="groupId")
    files: list[GroupFile]
    download_link: str


class ErrorResponse(BaseModel):
    error: str
    code: str | None = None
