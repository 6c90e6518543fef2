"""
Test unit discovery.
"""

import re
from pathlib import Path
from typing import Iterable, List

from ..core.exceptions import ConfigError
from ..core.logging_config import get_logger
from .models import TestUnit

logger = get_logger(__name__)

FOCUS_PATTERN = re.compile(r"\b(?:test|it|describe)(?:\.describe)?\.only\s*\(")

IGNORED_DIRS = {"node_modules", ".auth"}


def discover_units(
    test_directory: Path,
    patterns: Iterable[str],
    forbid_only: bool = False,
) -> List[TestUnit]:
    """
    Find test files under test_directory, in stable path order.

    When any file contains focused (``.only``) tests only those files are
    returned, unless forbid_only is set, in which case focus is an error.

    Raises:
        ConfigError: If forbid_only is set and a focused test exists
    """
    test_directory = Path(test_directory)
    files = set()
    for pattern in patterns:
        for path in test_directory.glob(pattern):
            relative = path.relative_to(test_directory)
            if path.is_file() and not IGNORED_DIRS.intersection(relative.parts):
                files.add(path)

    units = []
    for path in sorted(files, key=lambda p: p.relative_to(test_directory).as_posix()):
        try:
            source = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ConfigError(f"Cannot read test file {path}: {e}", field="test_dir") from e
        units.append(
            TestUnit(
                unit_id=path.relative_to(test_directory).as_posix(),
                file=path,
                focused=bool(FOCUS_PATTERN.search(source)),
            )
        )

    focused = [unit for unit in units if unit.focused]
    if focused and forbid_only:
        raise ConfigError(
            "Focused tests are not allowed in this run: "
            + ", ".join(unit.unit_id for unit in focused),
            field="forbid_only",
            violations=[unit.unit_id for unit in focused],
        )
    if focused:
        logger.info(f"Running {len(focused)} focused test file(s) only")
        units = focused

    logger.info(
        f"Discovered {len(units)} test file(s) in {test_directory}",
        extra={"metadata": {"units": [unit.unit_id for unit in units]}},
    )
    return units
