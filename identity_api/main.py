from identity_api.api.main import app

__all__ = ["app"]
