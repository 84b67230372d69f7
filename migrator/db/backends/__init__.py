"""Backend adapters, one module per driver.

Modules are imported on demand by ``migrator.db.connection.get_adapter`` so
that only the selected backend's driver is loaded.
"""
