# app/schemas/sqs_models.py
import base64
import binascii
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from typing import Dict, Optional


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str = ""
    password: str = ""


class PushParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    push: bool = False
    image_name: str = ""
    credentials: Credentials = Credentials()


class BuildImageSpecification(BaseModel):
    model_config = ConfigDict(frozen=True)

    image_name: str
    dockerfile: str = "./Dockerfile"
    no_cache: bool = True
    push: PushParameters = PushParameters()


class CommandsSpecification(BaseModel):
    model_config = ConfigDict(frozen=True)

    build_image: BuildImageSpecification


class CPUResources(BaseModel):
    model_config = ConfigDict(frozen=True)

    architecture: str


class Resources(BaseModel):
    model_config = ConfigDict(frozen=True)

    cpu: CPUResources


class RAISpecification(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str = "2.0"
    container_image: str = ""


class BuildSpecification(BaseModel):
    """Versioned description of the build a worker must run."""
    model_config = ConfigDict(frozen=True)

    rai: RAISpecification = RAISpecification()
    resources: Resources
    commands: CommandsSpecification


class JobRequest(BaseModel):
    """The unit a worker consumes from the queue."""
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime
    upload_key: str
    build_specification: BuildSpecification


class QueueMessage(BaseModel):
    """Envelope published on the queue; body is the serialized JobRequest."""
    id: str
    header: Dict[str, str] = Field(default_factory=dict)
    body: str


class ResponseKind(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    END = "end"


class JobResponse(BaseModel):
    """
    One record a worker publishes on the build log channel.
    Kinds outside ResponseKind are kept as plain strings.

    On the wire `body` is raw bytes encoded as a base64 string; in Python it
    is bytes, and `text` is its UTF-8 reading.
    """
    id: Optional[str] = None
    kind: str
    body: bytes = b""
    created_at: Optional[datetime] = None

    @field_validator("body", mode="before")
    @classmethod
    def _decode_body(cls, value):
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"body is not valid base64: {e}") from e
        return value

    @field_serializer("body", when_used="json")
    def _encode_body(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")
