"""Durable credential storage with atomic replace semantics"""

import json
import logging
from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

from policy_portal.domain.models import Credential, UserProfile
from policy_portal.infrastructure.storage.models import StorageEntry

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
REFRESH_TOKEN_KEY = "refreshToken"
USER_KEY = "user"
CREDENTIAL_KEYS = (TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)


def profile_to_dict(profile: UserProfile) -> Dict[str, object]:
    return {
        "email": profile.email,
        "firstName": profile.first_name,
        "lastName": profile.last_name,
        "role": profile.role,
        "level": profile.level,
        "policyCount": profile.policy_count,
    }


def profile_from_dict(data: Dict[str, object]) -> UserProfile:
    return UserProfile(
        email=str(data["email"]),
        first_name=str(data.get("firstName") or ""),
        last_name=str(data.get("lastName") or ""),
        role=str(data.get("role") or "USER"),
        level=str(data.get("level") or "WOODEN"),
        policy_count=int(data.get("policyCount") or 0),
    )


class CredentialStore:
    """
    Process-wide holder of the current credential.

    Reads come from an in-memory reference that is only ever swapped for a
    fully built Credential, so readers never see tokens from two different
    generations. Writes replace all keys in one database transaction before
    the reference is swapped.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self._current: Optional[Credential] = None
        self._generation = 0

    @property
    def current(self) -> Optional[Credential]:
        return self._current

    @property
    def access_token(self) -> Optional[str]:
        credential = self._current
        return credential.access_token if credential else None

    def load(self) -> Optional[Credential]:
        """
        Restore the credential persisted by a previous process.

        A partial or corrupt record is treated as no session and wiped.
        """
        with self.session_factory() as db:
            entries = {
                entry.key: entry.value
                for entry in db.query(StorageEntry).filter(StorageEntry.key.in_(CREDENTIAL_KEYS))
            }

        if not entries:
            self._current = None
            return None

        try:
            credential = Credential(
                access_token=entries[TOKEN_KEY],
                refresh_token=entries[REFRESH_TOKEN_KEY],
                profile=profile_from_dict(json.loads(entries[USER_KEY])),
                generation=self._next_generation(),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Discarding incomplete stored credential: {e}")
            self.clear()
            return None

        self._current = credential
        return credential

    def save(self, access_token: str, refresh_token: str, profile: UserProfile) -> Credential:
        """Atomically replace the stored credential"""
        credential = Credential(
            access_token=access_token,
            refresh_token=refresh_token,
            profile=profile,
            generation=self._next_generation(),
        )
        values = {
            TOKEN_KEY: access_token,
            REFRESH_TOKEN_KEY: refresh_token,
            USER_KEY: json.dumps(profile_to_dict(profile)),
        }

        with self.session_factory() as db:
            try:
                for key, value in values.items():
                    db.merge(StorageEntry(key=key, value=value))
                db.commit()
            except Exception:
                db.rollback()
                raise

        self._current = credential
        return credential

    def clear(self) -> None:
        """Remove every credential key; the only logout side effect"""
        self._current = None
        with self.session_factory() as db:
            try:
                db.query(StorageEntry).filter(StorageEntry.key.in_(CREDENTIAL_KEYS)).delete(
                    synchronize_session=False
                )
                db.commit()
            except Exception:
                db.rollback()
                raise

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation


