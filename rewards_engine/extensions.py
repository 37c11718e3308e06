"""
Flask extensions initialization.
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import MetaData

# Named constraints so Alembic can diff and drop the idempotency keys
NAMING_CONVENTION = {
    'ix': 'ix_%(column_0_label)s',
    'uq': 'uq_%(table_name)s_%(column_0_name)s',
    'ck': 'ck_%(table_name)s_%(constraint_name)s',
    'fk': 'fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s',
    'pk': 'pk_%(table_name)s',
}

db = SQLAlchemy(metadata=MetaData(naming_convention=NAMING_CONVENTION))

migrate = Migrate()


def configure_sqlite(engine) -> None:
    """
    Make pysqlite transactions behave for the ledger.

    pysqlite defers BEGIN until the first write and mishandles SAVEPOINT.
    Here the driver's own transaction handling is turned off and every
    transaction starts with BEGIN IMMEDIATE: the write lock is taken up
    front, so concurrent writers wait on busy_timeout instead of failing
    with "database is locked" on lock upgrade.
    """
    from sqlalchemy import event

    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')
