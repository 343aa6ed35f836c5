import logging

from labclaim.errors import MalformedIdentityError, NotFoundError
from labclaim.models import DomainIdentity, MemberName, QualifiedMember, UnqualifiedMember

logger = logging.getLogger("labclaim.identity")

MEMBER_SEPARATOR = "\\"


def derive_identity(student_email, joined_domain_name) -> DomainIdentity:
    """
    Maps the claiming student onto the account the domain knows them by.
    The user name is the local part of the email; the domain is the NetBIOS
    name the machine reports for the domain it actually joined.
    """
    email = str(student_email or "").strip()
    if "@" not in email:
        raise MalformedIdentityError(f"Claimant identifier '{email}' has no '@'; cannot derive a user name")

    username = email.split("@", 1)[0].strip()
    if not username:
        raise MalformedIdentityError(f"Claimant identifier '{email}' has an empty user name")

    domain = str(joined_domain_name or "").strip()
    if not domain:
        raise NotFoundError("Joined domain name is empty; is this machine domain-joined?")

    identity = DomainIdentity(domain_netbios_name=domain, username=username)
    logger.info(f"🪪 Derived identity {identity.qualified_name} from {email}")
    return identity


def parse_member_name(raw_name) -> MemberName:
    name = str(raw_name or "").strip()
    domain, sep, user = name.partition(MEMBER_SEPARATOR)
    if not sep or not domain or not user:
        return UnqualifiedMember(name=name)
    return QualifiedMember(domain=domain, user=user)


def member_matches(member: MemberName, identity: DomainIdentity) -> bool:
    # Only the user part is compared; the domain a member was added under
    # may be spelled differently (FQDN vs NetBIOS).
    if isinstance(member, QualifiedMember):
        return member.user.casefold() == identity.username.casefold()
    return False
