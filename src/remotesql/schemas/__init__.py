"""
Bundled SQL templates for remotesql.

This module provides the SQL payloads the library installs or applies
against the backend.

Bootstrap templates:
    - exec_sql_function: Server-side ``exec_sql(sql_text)`` function
    - migration_logs: Audit table, indexes and row level security policies
    - system_status_function: ``check_migration_system_status()`` aggregate

Migration templates:
    - module_integrations_update: Timestamp columns, indexes, stats view
      and trigger for ``module_integrations``
    - fix_bilingual_descriptions: Conditional bilingual column comments

Every template is idempotent and may be re-run safely.

Usage:
    from remotesql.schemas import get_schema, list_schemas

    exec_sql_ddl = get_schema("exec_sql_function")
    print(list_schemas())
"""

from pathlib import Path
from typing import Literal

from remotesql.exceptions import TemplateNotFoundError

# Template file names
SchemaName = Literal[
    "exec_sql_function",
    "migration_logs",
    "system_status_function",
    "module_integrations_update",
    "fix_bilingual_descriptions",
]

# Paths
_PACKAGE_DIR = Path(__file__).parent
_TEMPLATES_DIR = _PACKAGE_DIR / "templates"


def get_template_path(name: str) -> Path:
    """
    Get the path to a SQL template file.

    Args:
        name: The template name (without the .sql suffix)

    Returns:
        Path to the SQL template file

    Raises:
        TemplateNotFoundError: If the template file doesn't exist
    """
    path = _TEMPLATES_DIR / f"{name}.sql"
    if not path.exists():
        raise TemplateNotFoundError(name, list_schemas())
    return path


def get_schema(name: str) -> str:
    """
    Load a SQL template by name.

    Args:
        name: The template name, one of ``list_schemas()``

    Returns:
        SQL text as a string

    Raises:
        TemplateNotFoundError: If the template file doesn't exist

    Example:
        >>> from remotesql.schemas import get_schema
        >>> ddl = get_schema("migration_logs")
        >>> "CREATE TABLE IF NOT EXISTS migration_logs" in ddl
        True
    """
    return get_template_path(name).read_text(encoding="utf-8")


def list_schemas() -> list[str]:
    """
    List all available SQL templates.

    Example:
        >>> from remotesql.schemas import list_schemas
        >>> print(list_schemas())
        ['exec_sql_function', 'fix_bilingual_descriptions', 'migration_logs',
         'module_integrations_update', 'system_status_function']
    """
    if not _TEMPLATES_DIR.exists():
        return []
    return sorted(p.stem for p in _TEMPLATES_DIR.glob("*.sql"))


# Convenience exports
EXEC_SQL_FUNCTION_SCHEMA = "exec_sql_function"
MIGRATION_LOGS_SCHEMA = "migration_logs"
SYSTEM_STATUS_FUNCTION_SCHEMA = "system_status_function"
MODULE_INTEGRATIONS_UPDATE_SCHEMA = "module_integrations_update"
FIX_BILINGUAL_DESCRIPTIONS_SCHEMA = "fix_bilingual_descriptions"

__all__ = [
    "get_schema",
    "get_template_path",
    "list_schemas",
    "EXEC_SQL_FUNCTION_SCHEMA",
    "MIGRATION_LOGS_SCHEMA",
    "SYSTEM_STATUS_FUNCTION_SCHEMA",
    "MODULE_INTEGRATIONS_UPDATE_SCHEMA",
    "FIX_BILINGUAL_DESCRIPTIONS_SCHEMA",
    "SchemaName",
]
