import copy
import logging
import pytest
import yaml
from pathlib import Path

from layerbuild.datacls import BaseImage, StepSpec

# The egawari Dockerfile expressed as a YAML recipe.
EGAWARI_RECIPE = {
    'name': 'egawari',
    'base': 'archlinux:latest',
    'labels': {'maintainer': 'acedron <acedrons@yahoo.co.jp>'},
    'workdir': '/app',
    'steps': [
        {'copy': '.'},
        {'install': ['rust'], 'manager': 'pacman'},
        {'run': ['cargo', 'build']},
    ],
}


@pytest.fixture(autouse=True)
def reset_root_logger():
    """Drop handlers a CLI invocation attached to the root logger."""
    root = logging.getLogger()
    before = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)


@pytest.fixture
def create_recipe_file(tmp_path: Path):
    """A pytest fixture to create a temporary recipe.yml file."""
    def _create_file(recipe_data: dict, name: str = "recipe.yml") -> Path:
        recipe_file = tmp_path / name
        with open(recipe_file, 'w') as f:
            yaml.dump(recipe_data, f)
        return recipe_file
    return _create_file


@pytest.fixture
def egawari_recipe() -> dict:
    return copy.deepcopy(EGAWARI_RECIPE)


@pytest.fixture
def base_image() -> BaseImage:
    return BaseImage.parse("archlinux:latest")


@pytest.fixture
def scenario_steps():
    """install -> copy -> build"""
    return [
        StepSpec(
            name="install",
            action="install",
            workdir="/app",
            command=["pacman", "-Sy", "--noconfirm", "--needed", "pkgX"],
        ),
        StepSpec(
            name="copy",
            action="copy",
            workdir="/app",
            command=["copy", "/src", "/app"],
            source="/src",
            destination="/app",
        ),
        StepSpec(name="build", workdir="/app", command=["cargo", "build"]),
    ]
