"""
Consistency checks for the JSON configuration.
"""

from __future__ import annotations

import logging

from tzboundary.data.loaders import DataService, used_boundary_sources
from tzboundary.exceptions import LintError
from tzboundary.models.inputs import ZoneVariant


logger = logging.getLogger(__name__)


def lint_configuration(data_service: DataService) -> list[str]:
    """
    Find configuration problems without raising.

    Checks that every fetched source used by a recipe is defined, that every
    defined source is used by some recipe, and that every expected overlap
    bounds entry carries a description.

    Returns:
        One message per problem
    """
    problems = []
    sources = data_service.load_boundary_sources()
    recipe_maps = [data_service.load_recipes(variant) for variant in ZoneVariant]
    used = used_boundary_sources(*recipe_maps)

    for query_id in used:
        if query_id not in sources:
            problems.append(f"No osmBoundarySources config found for entry: {query_id}")

    used_set = set(used)
    for query_id in sources:
        if query_id not in used_set:
            problems.append(
                f'osmBoundarySources config "{query_id}" is never used in timezone boundary building'
            )

    for pair, entries in data_service.load_expected_overlaps().entries.items():
        for i, entry in enumerate(entries):
            if not entry.description.strip():
                problems.append(f"Expected overlap {pair} entry {i} has no description")

    return problems


def run_lint(data_service: DataService) -> None:
    """
    Raises:
        LintError: if any problem was found
    """
    problems = lint_configuration(data_service)
    for problem in problems:
        logger.error(problem)
    if problems:
        raise LintError(problems)
    logger.info("No linting errors!")
