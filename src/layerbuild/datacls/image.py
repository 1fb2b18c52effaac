from typing import Optional
from pydantic import BaseModel, ConfigDict, field_validator

from .. import constants


class BaseImage(BaseModel):
    """
        Reference to the base snapshot a pipeline starts from, e.g. `archlinux:latest`
    """
    model_config = ConfigDict(frozen=True)

    name: str
    tag: str = constants.DEFAULT_TAG
    digest: Optional[str] = None

    @field_validator('name')
    @classmethod
    def check_name(cls, v: str) -> str:
        if not v or any(c.isspace() for c in v):
            raise ValueError(f"Invalid image name '{v}'.")
        return v

    @classmethod
    def parse(cls, ref: str) -> "BaseImage":
        """
        Parse `name[:tag][@digest]`. A colon only separates a tag when it
        comes after the last '/', so `localhost:5000/app` keeps its port.
        """
        ref = ref.strip()
        digest = None
        if "@" in ref:
            ref, digest = ref.split("@", 1)
        name, sep, tag = ref.rpartition(":")
        if not sep or "/" in tag:
            return cls(name=ref, digest=digest)
        return cls(name=name, tag=tag, digest=digest)

    @property
    def reference(self) -> str:
        if self.digest:
            return f"{self.name}@{self.digest}"
        return f"{self.name}:{self.tag}"

    def __str__(self) -> str:
        return self.reference
