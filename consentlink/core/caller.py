# consentlink/core/caller.py
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Caller:
    """
    Explicit identity of whoever invokes a sharing operation.

    - tenant_id:   the tenant the caller is acting for (None for individuals)
    - user_id:     authenticated user, if any
    - profile_id:  personal profile, used when the caller is an individual recipient
    - email:       email address; only trusted for email locks when email_verified
    - roles:       the caller's roles inside tenant_id

    Built once per request from the bearer token and passed into every service
    call. Services never look up "the current user" on their own.
    """

    tenant_id: str | None = None
    user_id: str | None = None
    profile_id: str | None = None
    email: str | None = None
    email_verified: bool = False
    roles: frozenset[str] = field(default_factory=frozenset)

    def acts_for(self, tenant_id: str | None) -> bool:
        return tenant_id is not None and self.tenant_id == tenant_id

    def has_any_role(self, roles) -> bool:
        return bool(self.roles.intersection(roles))

    @property
    def verified_email(self) -> str | None:
        if self.email and self.email_verified:
            return self.email
        return None


ANONYMOUS = Caller()
