"""SQLite schema management (code-first approach)."""

import logging

from src.core import db_client


logger = logging.getLogger(__name__)


# Central list of all collections in the schema, in dependency order
COLLECTIONS = [
    "users",
    "orders",
    "tasks",
]


_TABLES: dict[str, str] = {
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            created TEXT NOT NULL,
            updated TEXT NOT NULL,
            name TEXT NOT NULL,
            email TEXT NOT NULL UNIQUE,
            role TEXT NOT NULL CHECK (role IN ('wellwisher', 'admin', 'buyer')),
            user_type TEXT NOT NULL DEFAULT 'individual' CHECK (user_type IN ('individual', 'company')),
            status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'disabled'))
        )
    """,
    "orders": """
        CREATE TABLE IF NOT EXISTS orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            created TEXT NOT NULL,
            updated TEXT NOT NULL,
            order_code TEXT NOT NULL UNIQUE,
            buyer_id INTEGER NOT NULL REFERENCES users (id),
            buyer_email TEXT NOT NULL,
            buyer_name TEXT NOT NULL,
            buyer_type TEXT NOT NULL CHECK (buyer_type IN ('individual', 'company')),
            items TEXT NOT NULL,
            items_signature TEXT NOT NULL,
            total_amount REAL NOT NULL CHECK (total_amount >= 0),
            is_gift INTEGER NOT NULL DEFAULT 0,
            gift_recipient_name TEXT,
            gift_recipient_email TEXT,
            gift_message TEXT,
            payment_status TEXT NOT NULL DEFAULT 'pending'
                CHECK (payment_status IN ('pending', 'paid', 'failed', 'refunded')),
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'confirmed', 'planted', 'completed', 'cancelled')),
            payment_method TEXT,
            payment_ref TEXT,
            paid_at TEXT,
            assigned_wellwisher INTEGER REFERENCES users (id),
            admin_notes TEXT NOT NULL DEFAULT ''
        )
    """,
    "tasks": """
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            created TEXT NOT NULL,
            updated TEXT NOT NULL,
            order_id INTEGER NOT NULL REFERENCES orders (id) ON DELETE CASCADE,
            task_id TEXT NOT NULL,
            wellwisher_id INTEGER REFERENCES users (id),
            item_index INTEGER NOT NULL,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            scheduled_date TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high')),
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'in_progress', 'completed', 'updating')),
            location TEXT NOT NULL,
            tree_quantity INTEGER NOT NULL DEFAULT 1,
            planting_details TEXT,
            completed_at TEXT,
            next_growth_update_due TEXT,
            growth_updates TEXT NOT NULL DEFAULT '[]',
            UNIQUE (order_id, task_id),
            CHECK ((planting_details IS NULL) = (status IN ('pending', 'in_progress')))
        )
    """,
}


_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_users_role_status ON users (role, status)",
    "CREATE INDEX IF NOT EXISTS idx_orders_buyer ON orders (buyer_id, created)",
    "CREATE INDEX IF NOT EXISTS idx_orders_assigned ON orders (assigned_wellwisher)",
    "CREATE INDEX IF NOT EXISTS idx_orders_dedup ON orders (buyer_id, items_signature, payment_status)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status_completed ON tasks (status, completed_at)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_growth_due ON tasks (status, next_growth_update_due)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_wellwisher ON tasks (wellwisher_id, status)",
]


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables and indexes if they do not exist.

    Safe to call on every startup.
    """
    conn = await db_client.get_connection(db_path=db_path)

    for collection in COLLECTIONS:
        await conn.execute(_TABLES[collection])
        logger.debug("Ensured table", extra={"collection": collection})

    for index_sql in _INDEXES:
        await conn.execute(index_sql)

    logger.info("Database schema initialized", extra={"collections": COLLECTIONS})
