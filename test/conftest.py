# simple way to see if there are order dependencies in tests
# can use if pytest-random-order --random-order mode isn't
# usable.

#def pytest_collection_modifyitems(items):
#    items.reverse()

# Add a marker for the tests that need a database server.
# They duplicate the sqlite tests exactly but run against
# PostgreSQL or MySQL.
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "dbserver: tests using a PostgreSQL or MySQL server"
    )
