"""
Use cases — one module per CLI command.

Each returns a result dataclass with ``to_dict()`` so the CLI can print
it as text or JSON.
"""
