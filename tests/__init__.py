"""Table-Windowing Test Suite.

Test organization:
- unit/: pure logic (watermarks, planning, dialect SQL, cursor lookahead,
  configuration, state, errors) with mocks where a database would be needed
- integration/: file-backed SQLite databases through SQLAlchemy, covering
  reflection, task info and multi-window scans end to end
"""
