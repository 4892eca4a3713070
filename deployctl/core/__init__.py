"""Core orchestration: models, persistence, reliability, provisioners, engine."""
