"""HTTP front door."""

from magi_core.api.app import BackgroundRunner, create_app, decode_push_envelope

__all__ = ["BackgroundRunner", "create_app", "decode_push_envelope"]
