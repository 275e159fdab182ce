"""Run database migrations against the configured Postgres database.

Requires DATABASE_URL in .env or .env.local (Postgres connection string from
Supabase Dashboard → Database → Connection string).

Usage:
    python -m knowledge_engine.db.migrate
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root (parent of knowledge_engine/)
_project_root = Path(__file__).resolve().parent.parent.parent
MIGRATIONS_DIR = _project_root / "migrations"


def _load_env() -> None:
    # Load .env and .env.local so DATABASE_URL is available without full app config
    load_dotenv(_project_root / ".env")
    load_dotenv(_project_root / ".env.local")


def list_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> list[Path]:
    """Return migration SQL files in lexicographic (apply) order."""
    if not migrations_dir.is_dir():
        raise SystemExit(f"Migrations directory not found: {migrations_dir}")
    sql_files = sorted(migrations_dir.glob("*.sql"))
    if not sql_files:
        raise SystemExit(f"No .sql files found in {migrations_dir}")
    return sql_files


def run_migrations(database_url: str | None = None) -> None:
    """Apply migration SQL files in migrations/ in order."""
    _load_env()
    database_url = database_url or os.environ.get("DATABASE_URL")
    if not database_url:
        raise SystemExit(
            "DATABASE_URL is not set. Add your Postgres connection string to .env or .env.local.\n"
            "Get it from Supabase Dashboard → Project Settings → Database → Connection string (URI)."
        )

    sql_files = list_migrations()

    import psycopg

    try:
        with psycopg.connect(database_url, autocommit=True) as conn:
            with conn.cursor() as cur:
                for path in sql_files:
                    sql = path.read_text()
                    print(f"Applying {path.name}...")
                    cur.execute(sql)
                    print(f"  OK {path.name}")
    except psycopg.OperationalError as e:
        hint = ""
        err_str = str(e)
        if "No route to host" in err_str or "2600:" in err_str:
            hint = (
                "\n\nIf you used the 'Direct' connection string, your network may not reach Supabase over IPv6. "
                "Use the 'Session' or 'Transaction' pooler connection string instead."
            )
        elif "password authentication failed" in err_str:
            hint = (
                "\n\nCheck that you used the database password (not the service key) "
                "and percent-encoded any # @ % or : characters in it."
            )
        raise SystemExit(f"Database connection failed: {e}{hint}") from e

    print("Migrations complete.")


if __name__ == "__main__":
    run_migrations()
