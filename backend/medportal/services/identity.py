"""
Identity resolution: which portal role an authenticated principal holds.

A principal is looked up as a doctor, then as a patient, then against the
superadmin email allow-list. Anything else is ``Role.unknown``, a terminal
classification distinct from a failed lookup (``ResolutionFailed``).
"""
from __future__ import annotations

import logging
import itertools
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from medportal.exceptions import ResolutionFailed
from medportal.models.doctor import Doctor, Patient
from medportal.models.enums import Role
from medportal.models.identity import Principal, RoleProfile, SuperAdminProfile

log = logging.getLogger(__name__)


def is_superadmin_email(email: Optional[str], superadmin_emails: Iterable[str]) -> bool:
    if not email:
        return False
    allowed = {e.strip().lower() for e in superadmin_emails if e and e.strip()}
    return email.strip().lower() in allowed


def _lookup(session: Session, principal: Principal, superadmin_emails: Iterable[str]) -> RoleProfile:
    doctor = session.exec(select(Doctor).where(Doctor.user_id == principal.id)).first()
    if doctor is not None:
        patient_id = session.exec(select(Patient.id).where(Patient.user_id == principal.id)).first()
        if patient_id is not None:
            log.warning(
                "[identity] Data integrity: principal %s has both doctor %s and patient %s profiles; using doctor",
                principal.id, doctor.id, patient_id,
            )
        return RoleProfile.for_doctor(doctor)

    patient = session.exec(select(Patient).where(Patient.user_id == principal.id)).first()
    if patient is not None:
        return RoleProfile.for_patient(patient)

    if is_superadmin_email(principal.email, superadmin_emails):
        return RoleProfile(
            role=Role.superadmin,
            profile=SuperAdminProfile(id=principal.id, email=principal.email, display_name=principal.display_name),
        )

    return RoleProfile.unknown()


def resolve_role(
    session: Session,
    principal: Principal,
    superadmin_emails: Iterable[str],
    *,
    attempts: int = 3,
    retry_delay: float = 0.2,
) -> RoleProfile:
    """Classify ``principal`` as doctor, patient, superadmin or unknown.

    Read-only. Datastore errors are retried ``attempts`` times and then raised
    as ``ResolutionFailed`` so callers can tell a transient failure from an
    ``unknown`` classification.
    """
    superadmin_emails = list(superadmin_emails)
    last_exc: Optional[Exception] = None
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            result = _lookup(session, principal, superadmin_emails)
            log.debug("[identity] principal %s resolved as %s", principal.id, result.role.value)
            return result
        except SQLAlchemyError as exc:
            last_exc = exc
            session.rollback()
            log.warning("[identity] Role lookup failed for %s (attempt %d/%d): %s", principal.id, attempt, attempts, exc)
            if attempt < attempts and retry_delay > 0:
                time.sleep(retry_delay)
    raise ResolutionFailed(f"Could not resolve role for principal {principal.id}") from last_exc


@dataclass
class _CacheEntry:
    generation: int
    first_seen: float
    last_seen: float = 0.0
    result: Optional[RoleProfile] = None
    stored_at: float = 0.0


class RoleCache:
    """Process-wide cache of resolved roles keyed by principal id.

    Each resolution is bracketed by ``begin``/``store``. Invalidating a
    principal moves it to a new generation, so a resolution that was in
    flight when the principal logged out is dropped instead of repopulating
    the cache. ``unknown`` results are never cached; a freshly signed-up
    doctor must be picked up as soon as the profile row lands.

    Generations come from one counter shared by every entry, so a token
    handed out before an entry was pruned never matches its replacement.
    Entries nobody asked about for ``idle_seconds`` are pruned on access.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
        idle_seconds: Optional[float] = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.idle_seconds = idle_seconds if idle_seconds is not None else max(ttl_seconds, 60.0)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _CacheEntry] = {}
        self._generations = itertools.count(1)
        self._last_prune = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _new_entry(self, principal_id: str) -> _CacheEntry:
        now = self._clock()
        entry = _CacheEntry(generation=next(self._generations), first_seen=now, last_seen=now)
        self._entries[principal_id] = entry
        return entry

    def _entry(self, principal_id: str) -> _CacheEntry:
        entry = self._entries.get(principal_id)
        if entry is None:
            return self._new_entry(principal_id)
        entry.last_seen = self._clock()
        return entry

    def _prune(self, now: float) -> None:
        # Callers hold the lock; sweep at most once per idle window
        if now - self._last_prune < self.idle_seconds:
            return
        self._last_prune = now
        stale = [pid for pid, entry in self._entries.items() if now - entry.last_seen >= self.idle_seconds]
        for principal_id in stale:
            del self._entries[principal_id]
        if stale:
            log.debug("[identity] Pruned %d idle role cache entries", len(stale))

    def get(self, principal_id: str) -> Optional[RoleProfile]:
        with self._lock:
            entry = self._entries.get(principal_id)
            if entry is None or entry.result is None:
                return None
            entry.last_seen = self._clock()
            if entry.last_seen - entry.stored_at >= self.ttl_seconds:
                entry.result = None
                return None
            return entry.result

    def begin(self, principal_id: str) -> int:
        with self._lock:
            self._prune(self._clock())
            return self._entry(principal_id).generation

    def store(self, principal_id: str, token: int, result: RoleProfile) -> bool:
        with self._lock:
            entry = self._entries.get(principal_id)
            if entry is None or entry.generation != token:
                log.info("[identity] Dropping stale role result for %s", principal_id)
                return False
            if not result.is_known:
                return False
            entry.result = result
            entry.stored_at = self._clock()
            return True

    def seconds_since_first_seen(self, principal_id: str) -> float:
        with self._lock:
            now = self._clock()
            self._prune(now)
            return now - self._entry(principal_id).first_seen

    def invalidate(self, principal_id: str) -> None:
        with self._lock:
            if principal_id in self._entries:
                self._new_entry(principal_id)
        log.info("[identity] Role cache invalidated for %s", principal_id)

    def clear(self) -> None:
        with self._lock:
            for principal_id in list(self._entries):
                self._new_entry(principal_id)
        log.info("[identity] Role cache cleared")


def resolve_role_cached(
    session: Session,
    principal: Principal,
    cache: RoleCache,
    superadmin_emails: Iterable[str],
    *,
    attempts: int = 3,
    retry_delay: float = 0.2,
) -> RoleProfile:
    cached = cache.get(principal.id)
    if cached is not None:
        return cached
    token = cache.begin(principal.id)
    result = resolve_role(session, principal, superadmin_emails, attempts=attempts, retry_delay=retry_delay)
    cache.store(principal.id, token, result)
    return result
