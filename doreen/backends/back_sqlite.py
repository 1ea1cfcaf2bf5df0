"""SQLite backend, the default store of a Doreen tracker.

The database is the file 'db' inside the DATABASE directory. Column
types in the shared table definitions are only advisory for SQLite.
"""
__docformat__ = 'restructuredtext'

import logging
import os
import shutil

import sqlite3

from doreen.backends import rdbms_common


def db_file(config):
    return os.path.join(config.DATABASE, 'db')


def db_exists(config):
    return os.path.exists(db_file(config))


def db_nuke(config):
    """Remove the DATABASE directory with the database file in it."""
    if os.path.exists(config.DATABASE):
        shutil.rmtree(config.DATABASE)


class Database(rdbms_common.Database):
    """Store on an SQLite file.

    SQLite uses qmark placeholders and numbers rows itself through an
    INTEGER PRIMARY KEY column.
    """

    arg = '?'

    dbtype = "sqlite"

    serial_column = 'INTEGER PRIMARY KEY'

    driver_error = sqlite3.Error

    def sql_open_connection(self):
        # sqlite3 creates the file, not the directory holding it
        os.makedirs(self.config.DATABASE, exist_ok=True)
        path = db_file(self.config)
        self.log_info('open database %r', path)
        conn = sqlite3.connect(path,
            timeout=self.config.RDBMS_SQLITE_TIMEOUT)
        conn.row_factory = sqlite3.Row
        return (conn, conn.cursor())

    def schema_exists(self):
        self.sql("SELECT name FROM sqlite_master WHERE type='table' AND "
            "name=?", ('tickets',), stage='schema')
        return self.sql_fetchone() is not None

    def sql_group_concat(self, expr, order_by=None):
        # no ORDER BY inside group_concat() before SQLite 3.44; the
        # assembler sorts array values itself
        return "group_concat(%s, ',')" % expr

    def sql_fulltext_predicate(self, column, word):
        return '%s LIKE ? ESCAPE ?' % column, [
            self.search_stringquote(word), '\\']

    def _connection_closed(self, error):
        return 'closed' in str(error).lower()

    def sql_close(self):
        logging.getLogger('doreen.hyperdb.backend').info('close')
        try:
            self.conn.close()
        except sqlite3.ProgrammingError as error:
            if not self._connection_closed(error):
                raise

    def sql_rollback(self):
        # nothing to roll back once the connection is gone
        try:
            self.conn.rollback()
        except sqlite3.ProgrammingError as error:
            if not self._connection_closed(error):
                raise

    def sql_commit(self):
        logging.getLogger('doreen.hyperdb.backend').info('commit')
        try:
            self.conn.commit()
        except sqlite3.OperationalError as error:
            if 'no transaction is active' not in str(error):
                raise
        self.cursor = self.conn.cursor()

# vim: set et sts=4 sw=4 :
