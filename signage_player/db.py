from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy import text

from signage_player.config import DATABASE_URL

Base = declarative_base()


def build_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def init_db(bind: Engine | None = None) -> None:
    # Import for table registration on Base.metadata.
    from signage_player.models import cache_entry, media_blob  # noqa: F401

    target = bind or engine
    Base.metadata.create_all(bind=target)
    ensure_sqlite_schema(target)


def ensure_sqlite_schema(bind: Engine | None = None) -> None:
    """
    Lightweight runtime schema patching for SQLite.

    `Base.metadata.create_all()` won't add new columns to existing tables.
    Devices in the field keep their cache database across upgrades, so
    columns added after the first release are patched in here.
    """
    target = bind or engine
    if not str(target.url).startswith("sqlite"):
        return

    with target.begin() as conn:
        cache_cols = conn.execute(text("PRAGMA table_info(cache_entry)")).fetchall()
        cache_col_names = {row[1] for row in cache_cols}  # (cid, name, type, notnull, dflt_value, pk)
        if cache_cols and "expires_at" not in cache_col_names:
            conn.execute(text("ALTER TABLE cache_entry ADD COLUMN expires_at DATETIME"))

        blob_cols = conn.execute(text("PRAGMA table_info(media_blob)")).fetchall()
        blob_col_names = {row[1] for row in blob_cols}
        if blob_cols and "content_type" not in blob_col_names:
            conn.execute(text("ALTER TABLE media_blob ADD COLUMN content_type VARCHAR"))
        if blob_cols and "size" not in blob_col_names:
            conn.execute(text("ALTER TABLE media_blob ADD COLUMN size BIGINT DEFAULT 0"))
        if blob_cols and "checksum" not in blob_col_names:
            conn.execute(text("ALTER TABLE media_blob ADD COLUMN checksum VARCHAR"))
        if blob_cols:
            conn.execute(
                text(
                    "UPDATE media_blob SET size=length(payload) "
                    "WHERE size IS NULL OR size=0"
                )
            )
