"""Identity resolution: match, expand, reconcile, augment, project."""
from identity_api.identity.linking import ContactProjection
from identity_api.identity.resolver import IdentityResolver

__all__ = ["ContactProjection", "IdentityResolver"]
