from pydantic import BaseModel, ConfigDict, Field


class GenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    logo_url: str | None = Field(default=None, alias="logoUrl")
    logo_description: str | None = Field(default=None, alias="logoDescription")
    destination_prompt: str | None = Field(default=None, alias="destinationPrompt")


class GenerationOut(BaseModel):
    id: str
    logoUrl: str
    logoDescription: str
    destinationPrompt: str
    resultUrl: str
    resultFileName: str
    status: str
    creditCost: int
    createdAt: str | None


class UploadOut(BaseModel):
    success: bool = True
    imageUrl: str
