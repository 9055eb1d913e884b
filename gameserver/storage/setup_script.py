"""
setup_script.py - Run a SQL setup script against a fresh database.

Script format: one statement may span several lines; a line that starts
with whitespace continues the previous statement. Blank lines and '--'
comments are skipped, as are lines the dialect can't run (USE on SQLite).
"""

import logging
from typing import TYPE_CHECKING, List

from .dialects import Dialect

if TYPE_CHECKING:
    from .context import DatabaseContext

logger = logging.getLogger("storage")


def parse_setup_script(text: str, dialect: Dialect) -> List[str]:
    statements: List[str] = []
    current: List[str] = []

    def flush():
        if current:
            stmt = " ".join(current).strip().rstrip(";").strip()
            if stmt:
                statements.append(stmt)
            current.clear()

    for raw in text.splitlines():
        line = raw.rstrip()
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        if dialect.skip_setup_line(stripped):
            continue
        if line[0].isspace() and current:
            current.append(stripped)
            continue
        flush()
        current.append(stripped)
    flush()
    return statements


async def run_setup_script_text(ctx: "DatabaseContext", text: str) -> int:
    """Execute every statement of a script in order. Returns the statement count."""
    statements = parse_setup_script(text, ctx.dialect)
    for sql in statements:
        await ctx.execute(sql)
    logger.info("Setup script: %d statements executed", len(statements))
    return len(statements)


async def run_setup_script(ctx: "DatabaseContext", path: str) -> int:
    logger.info("Running DB setup script %s", path)
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    return await run_setup_script_text(ctx, text)
