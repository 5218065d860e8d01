# src/storagehub/models/__init__.py

from .storage import Storage, EngineType
