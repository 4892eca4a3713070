"""
Persistence — install state, run lock and audit ledger.

All three live under ``state_dir`` as plain JSON files.
"""
