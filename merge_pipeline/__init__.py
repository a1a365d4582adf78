"""
Merge pipeline package for downloading remote SQLite result databases,
merging each group into one local database, and serving it read-only.

Modules:
- errors: Exception types shared by the pipeline and the query layer
- db: Connection and introspection helpers for SQLite files
- fetcher: Download one remote database file with bounded retry
- schema: Extract table/index definitions from a reference database
- merger: Copy rows from every source into a fresh merged database
- orchestrator: Fetch -> schema -> merge -> cleanup for one group
- connections: Live read-only handles per group, swapped after a refresh
- scheduler: Startup, interval and on-demand refresh cycles
"""
