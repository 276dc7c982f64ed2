"""Citation models attached to assistant messages."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class FileCitation(BaseModel):
    """A citation pointing at an uploaded file."""

    type: Literal["file"] = "file"
    file_id: str = Field(..., description="Provider file ID")
    file_name: str = Field(..., description="Original file name")

    @property
    def key(self) -> tuple[str, str]:
        return ("file", self.file_id)


class UrlCitation(BaseModel):
    """A citation pointing at a web result."""

    type: Literal["url"] = "url"
    url: str = Field(..., description="Cited URL")
    title: str = Field(..., description="Page title")

    @property
    def key(self) -> tuple[str, str]:
        return ("url", self.url)


Citation = Annotated[Union[FileCitation, UrlCitation], Field(discriminator="type")]
