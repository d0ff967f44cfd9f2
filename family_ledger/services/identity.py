"""
Identity Resolver

Maps authenticated principals to stable user profiles and resolves
share-by-email requests. Profiles are keyed by the provider's uid.
"""

from typing import Optional

import structlog

from family_ledger.models.ledger import UserProfile
from family_ledger.services.storage import COLLECTION_USERS, DocumentStore


logger = structlog.get_logger(__name__)


class IdentityResolver:
    """Read/write access to the user-profile collection."""
    
    def __init__(self, store: DocumentStore):
        self._store = store
    
    async def save_user_profile(
        self,
        uid: str,
        email: str,
        display_name: Optional[str] = None,
    ) -> UserProfile:
        """
        Create or refresh a profile after a successful login.
        
        The display name may change between logins; the uid never does.
        """
        profile = UserProfile(uid=uid, email=email, display_name=display_name)
        await self._store.upsert(
            COLLECTION_USERS,
            uid,
            profile.model_dump(by_alias=True),
        )
        logger.debug("user_profile_saved", uid=uid)
        return profile
    
    async def get_profile(self, uid: str) -> Optional[UserProfile]:
        document = await self._store.get(COLLECTION_USERS, uid)
        if document is None:
            return None
        return UserProfile.model_validate(document)
    
    async def resolve_by_email(self, email: str) -> Optional[UserProfile]:
        """
        Find the user registered under an email address.
        
        Matching is case-insensitive; None when nobody matches.
        """
        normalized = email.strip().lower()
        if not normalized:
            return None
        documents = await self._store.find(COLLECTION_USERS, {"email": normalized})
        if not documents:
            return None
        if len(documents) > 1:
            logger.warning("duplicate_email_profiles", email=normalized, count=len(documents))
        return UserProfile.model_validate(documents[0])
