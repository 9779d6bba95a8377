from judgeindex.datastore.engine import (
    close_db,
    create_tables,
    get_db_session,
    get_session_factory,
    init_db,
)

__all__ = ["close_db", "create_tables", "get_db_session", "get_session_factory", "init_db"]
