from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from jobqueue.db import models  # noqa: F401
from jobqueue.db.session import Base

ROOT = Path(__file__).resolve().parents[1]


def _config(db_path):
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{db_path}")
    cfg.attributes["configure_logger"] = False
    return cfg


def test_upgrade_builds_the_mapped_schema(tmp_path):
    db_path = tmp_path / "migrated.db"
    cfg = _config(db_path)
    command.upgrade(cfg, "head")

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        insp = inspect(engine)
        assert {"jobs", "job_logs", "alembic_version"} <= set(insp.get_table_names())
        for name, table in Base.metadata.tables.items():
            assert {c["name"] for c in insp.get_columns(name)} == {c.name for c in table.columns}
            assert {ix["name"] for ix in insp.get_indexes(name)} == {ix.name for ix in table.indexes}
        fk = insp.get_foreign_keys("job_logs")[0]
        assert fk["referred_table"] == "jobs"
        assert fk["options"].get("ondelete") == "CASCADE"
    finally:
        engine.dispose()

    command.downgrade(cfg, "base")
    engine = create_engine(f"sqlite:///{db_path}")
    try:
        assert set(inspect(engine).get_table_names()) == {"alembic_version"}
    finally:
        engine.dispose()
