import re
import yaml
import logging
from pathlib import Path, PurePosixPath
from typing import Dict, Any, List, Optional, Union
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator, ConfigDict

from . import constants
from .datacls import BaseImage, StepAction
from .dockerfile import parse_dockerfile
from .exceptions import (
    ConfigFileMissingError,
    ConfigParsingError,
    ConfigValidationError,
    RecipeDefinitionError,
    UnsupportedInstructionError,
)

logger = logging.getLogger(__name__)

FORMAT_YAML = "yaml"
FORMAT_DOCKERFILE = "dockerfile"

_NAME_RE = re.compile(r'^[a-z0-9][a-z0-9_.-]*$')


def _stringify_env(v: Any) -> Any:
    if isinstance(v, dict):
        return {str(k): "" if val is None else str(val) for k, val in v.items()}
    return v


class StepModel(BaseModel):
    """
        Class Config-Validation Model describe one entry of `steps`
    """
    name: Optional[str] = None
    run: Optional[Union[str, List[str]]] = None
    copy_src: Optional[str] = Field(None, alias='copy')
    install: Optional[List[str]] = None
    manager: Optional[str] = None
    workdir: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = None
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator('install', mode='before')
    @classmethod
    def split_install(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.split()
        return v

    @field_validator('env', mode='before')
    @classmethod
    def env_to_str(cls, v: Any) -> Any:
        return _stringify_env(v)

    @model_validator(mode='after')
    def check_single_action(self) -> 'StepModel':
        """Check exactly one of run/copy/install is given"""
        given = [a for a, v in (("run", self.run), ("copy", self.copy_src), ("install", self.install)) if v is not None]
        if len(given) != 1:
            raise RecipeDefinitionError(
                f"Step '{self.name or '<unnamed>'}' must define exactly one of 'run', 'copy' or 'install', got {given or 'none'}."
            )
        if self.manager is not None and self.install is None:
            raise RecipeDefinitionError(f"Step '{self.name or '<unnamed>'}' sets 'manager' without 'install'.")
        if self.install is not None and not self.install:
            raise RecipeDefinitionError(f"Step '{self.name or '<unnamed>'}' has an empty 'install' list.")
        if isinstance(self.run, list) and not self.run:
            raise RecipeDefinitionError(f"Step '{self.name or '<unnamed>'}' has an empty 'run' command.")
        if isinstance(self.run, str) and not self.run.strip():
            raise RecipeDefinitionError(f"Step '{self.name or '<unnamed>'}' has an empty 'run' command.")
        if self.manager is not None and self.manager not in constants.PACKAGE_MANAGERS:
            raise RecipeDefinitionError(
                f"Unknown package manager '{self.manager}', must be one of {sorted(constants.PACKAGE_MANAGERS)}."
            )
        if self.timeout is not None and self.timeout <= 0:
            raise RecipeDefinitionError(
                f"Step '{self.name or '<unnamed>'}' timeout must be positive, got {self.timeout}."
            )
        return self

    @property
    def action(self) -> StepAction:
        if self.run is not None:
            return StepAction.RUN
        if self.copy_src is not None:
            return StepAction.COPY
        return StepAction.INSTALL


class RecipeModel(BaseModel):
    """
        Class Config-Validation Model describe top-level of a recipe
    """
    name: str
    base: str
    labels: Dict[str, str] = Field(default_factory=dict)
    workdir: str = constants.DEFAULT_WORKDIR
    env: Dict[str, str] = Field(default_factory=dict)
    context: Optional[str] = None
    manager: Optional[str] = None
    steps: List[StepModel] = Field(default_factory=list)
    model_config = ConfigDict(extra="forbid")

    @field_validator('env', 'labels', mode='before')
    @classmethod
    def values_to_str(cls, v: Any) -> Any:
        return _stringify_env(v)

    @field_validator('name')
    @classmethod
    def check_name(cls, v: str) -> str:
        if not _NAME_RE.match(v):
            raise RecipeDefinitionError(
                f"Recipe name '{v}' must be lowercase letters, digits, '.', '_' or '-' and start with a letter or digit."
            )
        return v

    @field_validator('base')
    @classmethod
    def check_base(cls, v: str) -> str:
        if not v or not v.strip():
            raise RecipeDefinitionError("Recipe 'base' must name an image.")
        return v.strip()

    @field_validator('workdir')
    @classmethod
    def check_workdir(cls, v: str) -> str:
        if not PurePosixPath(v).is_absolute():
            raise RecipeDefinitionError(f"Recipe 'workdir' must be absolute, got '{v}'.")
        return v

    @model_validator(mode='after')
    def check_manager(self) -> 'RecipeModel':
        if self.manager is not None and self.manager not in constants.PACKAGE_MANAGERS:
            raise RecipeDefinitionError(
                f"Unknown package manager '{self.manager}', must be one of {sorted(constants.PACKAGE_MANAGERS)}."
            )
        return self

    @model_validator(mode='after')
    def check_unique_step_names(self) -> 'RecipeModel':
        """Explicit step names must not repeat"""
        seen = set()
        for step in self.steps:
            if step.name is None:
                continue
            if step.name in seen:
                raise RecipeDefinitionError(f"Duplicate step name '{step.name}'.")
            seen.add(step.name)
        return self


def detect_format(path: Path) -> str:
    name = path.name
    if name == constants.DOCKERFILE_NAME or name.startswith(f"{constants.DOCKERFILE_NAME}.") \
            or name.endswith(".Dockerfile") or name.endswith(".dockerfile"):
        return FORMAT_DOCKERFILE
    return FORMAT_YAML


def default_name(directory: Path) -> str:
    """Recipe name derived from a directory name, for Dockerfiles that carry none."""
    name = re.sub(r'[^a-z0-9_.-]+', '-', directory.name.lower()).strip('-._')
    return name or "image"


class Config:
    """
    Loads and validates a recipe (YAML or Dockerfile) using Pydantic models.
    It is the sole gatekeeper for configuration.
    """
    def __init__(self, recipe_path: str, fmt: Optional[str] = None):
        self.path = Path(recipe_path)
        self.format = fmt or detect_format(self.path)
        if self.format not in (FORMAT_YAML, FORMAT_DOCKERFILE):
            raise ConfigParsingError(f"Unknown recipe format '{self.format}'.")
        logger.info(f"Loading {self.format} recipe from '{self.path}'...")
        raw_data = self._load_raw_config()

        logger.info("Validating recipe structure with Pydantic...")
        try:
            self.model = RecipeModel.model_validate(raw_data)
        except ValidationError as e:
            raise ConfigValidationError(f"Recipe validation failed:\n{e}")
        logger.debug(f"Recipe model validated successfully: \n{self.model.model_dump_json(indent=2, by_alias=True)}")
        logger.info("Recipe validation passed.")

    def _read_text(self) -> str:
        try:
            return self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            raise ConfigFileMissingError(f"Recipe file not found at: {self.path}")
        except IsADirectoryError:
            raise ConfigFileMissingError(f"Recipe path is a directory: {self.path}")

    def _load_raw_config(self) -> Dict[str, Any]:
        content = self._read_text()
        if self.format == FORMAT_DOCKERFILE:
            try:
                return parse_dockerfile(content, name=default_name(self.path.resolve().parent))
            except UnsupportedInstructionError:
                raise
            except ValueError as e:
                raise ConfigParsingError(f"Error parsing Dockerfile: {e}")
        try:
            config_data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigParsingError(f"Error parsing YAML file: {e}")
        if not isinstance(config_data, dict):
            raise ConfigParsingError("Recipe file must be a YAML document containing a dictionary.")
        logger.debug(f"Successfully parsed YAML from '{self.path}'.")
        return config_data

    @property
    def name(self) -> str:
        return self.model.name

    @property
    def base(self) -> BaseImage:
        return BaseImage.parse(self.model.base)

    @property
    def labels(self) -> Dict[str, str]:
        return dict(self.model.labels)

    @property
    def workdir(self) -> str:
        return self.model.workdir

    @property
    def env(self) -> Dict[str, str]:
        return dict(self.model.env)

    @property
    def steps(self) -> List[StepModel]:
        return list(self.model.steps)

    @property
    def context_dir(self) -> Path:
        """Directory copy sources are resolved against"""
        base_dir = self.path.resolve().parent
        if self.model.context:
            return (base_dir / self.model.context).resolve()
        return base_dir
