# schemas/request_models.py
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional


class PushOptions(BaseModel):
    """
    Registry push settings supplied by the client.
    Push is enabled only when all three values are non-empty.
    """
    model_config = ConfigDict(frozen=True)

    image_name: str = Field("", description="Image name to push to the registry")
    username: str = Field("", description="Registry username")
    password: str = Field("", description="Registry password")

    @property
    def enabled(self) -> bool:
        return bool(self.image_name and self.username and self.password)


class BuildRequest(BaseModel):
    """
    The single frame a client sends to start a docker build.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "4c6d7a52-3b5f-4c1e-9d1d-0b0c7e3a9f11",
                "content": "UEsDBBQAAAAIA...",
                "image_name": "user/my-image:latest",
                "push_options": {
                    "image_name": "user/my-image:latest",
                    "username": "user",
                    "password": "secret"
                }
            }
        },
    )

    id: str = Field(..., description="Client supplied request id")
    content: str = Field(..., description="Base64 encoded build context archive (zip or tar.gz)")
    image_name: str = Field("", description="Name of the image to build")
    push_options: Optional[PushOptions] = Field(None, description="Optional registry push settings")


class ErrorStatus(BaseModel):
    message: str


class BuildResponse(BaseModel):
    """
    One frame on the outbound stream. Exactly one of content/error is set.
    """
    id: str
    content: Optional[str] = None
    error: Optional[ErrorStatus] = None

    @model_validator(mode="after")
    def _exactly_one_payload(self) -> "BuildResponse":
        if (self.content is None) == (self.error is None):
            raise ValueError("exactly one of content or error must be set")
        return self

    @property
    def is_error(self) -> bool:
        return self.error is not None


class HealthResponse(BaseModel):
    status: str = "healthy"
    message: str = "Dockerfile builder gateway is operational"
    redis_status: Optional[str] = None
    s3_status: Optional[str] = None
