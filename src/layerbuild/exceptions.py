class LayerBuildError(Exception):
    """Base exception for all application-specific errors."""

    pass


# --- 1. Errors related to loading and parsing the recipe file ---
class ConfigurationError(LayerBuildError):
    """Base class for errors encountered while finding, reading, or parsing recipe files."""

    pass


class ConfigFileMissingError(ConfigurationError):
    """Raised when the recipe file cannot be found."""

    pass


class ConfigParsingError(ConfigurationError):
    """Raised when a recipe file (YAML or Dockerfile) is syntactically incorrect."""

    pass


class ConfigValidationError(ConfigurationError):
    """Raised when the recipe fails structural validation (e.g., Pydantic)."""

    pass


# --- 2. Errors related to the logical validity of the recipe ---
class DefinitionError(LayerBuildError):
    """Base class for errors in the logical definition of a recipe."""

    pass


class RecipeDefinitionError(DefinitionError):
    """Raised for logical errors in a recipe, like duplicate step names or a missing copy source."""

    pass


class UnsupportedInstructionError(DefinitionError):
    """Raised when a Dockerfile uses an instruction the pipeline cannot express."""

    pass


# --- 3. Errors that occur while the pipeline runs ---
class BuildError(LayerBuildError):
    """Base class for errors that occur during a build."""

    pass


class StepFailure(BuildError):
    """
    Raised when a pipeline step exits non-zero (or its runner breaks down).
    It is the only way a pipeline reports a failed step.
    """

    def __init__(self, index: int, name: str, exit_status, output: str = "", result=None):
        self.index = index
        self.name = name
        self.exit_status = exit_status
        self.output = output
        self.result = result
        status = "no exit status" if exit_status is None else f"exit status {exit_status}"
        super().__init__(f"Step {index + 1} '{name}' failed with {status}")


class BuildCancelled(BuildError):
    """Raised when a running pipeline is cancelled before it completes."""

    def __init__(self, message: str, result=None):
        self.result = result
        super().__init__(message)


class SnapshotError(BuildError):
    """Raised when a layer would break the append-only snapshot chain."""

    pass


class RunnerError(BuildError):
    """Raised when a runner cannot talk to its backend (container engine, host process)."""

    pass
