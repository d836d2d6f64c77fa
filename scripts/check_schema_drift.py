"""Compare the ORM models against the live schema.

Exit status: 0 when they match, 1 when Alembic would generate operations,
2 when the comparison itself failed.
"""

from __future__ import annotations

import sys

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext

from compcore.db.engine import make_engine
from compcore.models import Base


def describe_ops(ops, depth: int = 0) -> list[str]:
    lines: list[str] = []
    for op in ops:
        lines.append(f"{'  ' * depth}- {op}")
        lines.extend(describe_ops(getattr(op, "ops", None) or [], depth + 1))
    return lines


def main() -> int:
    engine = make_engine()
    where = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={
                    "compare_type": True,
                    "compare_server_default": True,
                    "render_as_batch": connection.dialect.name == "sqlite",
                },
            )
            upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
    except Exception as exc:
        print(f"Schema drift check: ERROR for {where}: {exc}", file=sys.stderr)
        return 2
    finally:
        engine.dispose()

    if upgrade_ops is None or upgrade_ops.is_empty():
        print(f"Schema drift check: OK for {where}.")
        return 0
    print(f"Schema drift check: FAILED for {where}:")
    print("\n".join(describe_ops(upgrade_ops.ops or [])))
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
