from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional


class PartForm(BaseModel):
    """Form fields sent by the upload widget alongside each part."""

    model_config = ConfigDict(populate_by_name=True)

    upload_id: str = Field(alias="qquuid", min_length=1)
    filename: str = Field(alias="qqfilename", min_length=1)
    part_index: Optional[int] = Field(default=None, alias="qqpartindex", ge=0)
    total_parts: Optional[int] = Field(default=None, alias="qqtotalparts", ge=1)
    total_file_size: Optional[int] = Field(default=None, alias="qqtotalfilesize", ge=0)

    @model_validator(mode="after")
    def _chunk_fields(self):
        if self.part_index is not None:
            if self.total_parts is None:
                raise ValueError("qqtotalparts is required with qqpartindex")
            if self.part_index >= self.total_parts:
                raise ValueError("qqpartindex must be < qqtotalparts")
        return self

    @property
    def is_chunked(self) -> bool:
        return self.part_index is not None


class UploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    error: Optional[str] = None
    prevent_retry: Optional[bool] = Field(default=None, alias="preventRetry")

    def body(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
