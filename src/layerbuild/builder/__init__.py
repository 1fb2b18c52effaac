"""
layerbuild Builder Module

- Builder: Plan, run and report one image build
- Pipeline: Ordered, fail-fast execution of steps against a runner
- Planner: Compiles a recipe into step specifications

Usage:
    from layerbuild.builder import Builder
    from layerbuild.runners import create_runner

    config = Config("recipe.yml")
    builder = Builder(config, create_runner("docker"))
    result = builder.run()
"""

from .build import Builder
from .pipeline import Pipeline
from .plan import Planner

__all__ = [
    'Builder',
    'Pipeline',
    'Planner',
]
