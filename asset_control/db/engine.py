from sqlalchemy import create_engine, event, make_url
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool


def _is_memory_database(url: str) -> bool:
    return make_url(url).database in (None, "", ":memory:")


def build_engine(url: str) -> Engine:
    if make_url(url).get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True, future=True)

    options: dict = {"connect_args": {"check_same_thread": False}, "future": True}
    if _is_memory_database(url):
        options["poolclass"] = StaticPool
    engine = create_engine(url, **options)

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; take over transaction control.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine
