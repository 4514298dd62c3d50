"""MySQL kv_store table: the persistent-store contract over pymysql."""

import logging
import os
import sys
from typing import Optional

import pymysql

from groupchat import config  # noqa: F401  (loads .env)

logger = logging.getLogger(__name__)

# Get database connection details from environment
DB_HOST = os.getenv("MYSQL_HOST", "127.0.0.1")
DB_USER = os.getenv("MYSQL_USER")
DB_PASSWORD = os.getenv("MYSQL_PASSWORD")
DB_NAME = os.getenv("MYSQL_DATABASE")

TABLE = "kv_store"


def get_db_connection():
    """Establishes a connection to the MySQL database. Raises pymysql.MySQLError."""
    return pymysql.connect(
        host=DB_HOST,
        user=DB_USER,
        password=DB_PASSWORD,
        database=DB_NAME,
        cursorclass=pymysql.cursors.DictCursor
    )


def init_db():
    """Creates the key/value table if it doesn't exist."""
    conn = get_db_connection()
    try:
        with conn.cursor() as cursor:
            create_table_query = f"""
            CREATE TABLE IF NOT EXISTS {TABLE} (
                k VARCHAR(255) NOT NULL PRIMARY KEY,
                v LONGBLOB NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP
            );
            """
            cursor.execute(create_table_query)
        conn.commit()
        print(f"Database initialized successfully. '{TABLE}' table created.")
    finally:
        conn.close()


class MySQLStore:
    """
    Store backend for participants sharing one database.
    Reads degrade to None on database errors; writes propagate them.
    """

    def __init__(self, connect=get_db_connection):
        self._connect = connect

    def get(self, key: str) -> Optional[bytes]:
        try:
            conn = self._connect()
        except pymysql.MySQLError as e:
            logger.warning("Error connecting to MySQL: %s", e)
            return None
        try:
            with conn.cursor() as cursor:
                cursor.execute(f"SELECT v FROM {TABLE} WHERE k = %s", (key,))
                row = cursor.fetchone()
                return bytes(row["v"]) if row else None
        except pymysql.MySQLError as e:
            logger.warning("Error reading %s: %s", key, e)
            return None
        finally:
            conn.close()

    def set(self, key: str, value: bytes) -> None:
        conn = self._connect()
        try:
            with conn.cursor() as cursor:
                sql = f"INSERT INTO {TABLE} (k, v) VALUES (%s, %s) ON DUPLICATE KEY UPDATE v = VALUES(v)"
                cursor.execute(sql, (key, value))
            conn.commit()
        finally:
            conn.close()

    def remove(self, key: str) -> None:
        conn = self._connect()
        try:
            with conn.cursor() as cursor:
                cursor.execute(f"DELETE FROM {TABLE} WHERE k = %s", (key,))
            conn.commit()
        finally:
            conn.close()


# This makes the --init flag work
if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == '--init':
        try:
            init_db()
        except pymysql.MySQLError as e:
            print(f"Error initializing database: {e}")
            sys.exit(1)
    else:
        print("This script is meant to be run with --init to set up the database.")
        print("Or, it can be imported as a module.")
