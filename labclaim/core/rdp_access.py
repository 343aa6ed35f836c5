import logging

from labclaim.config import CONFIG
from labclaim.core.identity import member_matches, parse_member_name
from labclaim.integrations import windows
from labclaim.models import DomainIdentity, ReconcileStatus

logger = logging.getLogger("labclaim.rdp")


def rdp_group_name():
    return CONFIG.get("RDP_GROUP_NAME") or "Remote Desktop Users"


def ensure_rdp_access(identity: DomainIdentity, dry_run=False) -> ReconcileStatus:
    """
    Makes sure the claimant can RDP into this machine.
    Existing members are never touched; the identity is only added when no
    domain-qualified member with the same user name is present.
    """
    group = rdp_group_name()
    logger.info(f"🔍 RDP: Checking '{group}' for {identity.qualified_name}...")

    members = windows.list_group_members(group)
    for raw in members:
        if member_matches(parse_member_name(raw), identity):
            logger.info(f"✅ RDP: '{raw}' already in '{group}'.")
            return ReconcileStatus.ALREADY_PRESENT

    if dry_run:
        logger.info(f"[DRY-RUN] Would add {identity.qualified_name} to '{group}'")
        return ReconcileStatus.RECONCILED

    added = windows.add_group_member(group, identity.qualified_name)
    if not added:
        # Someone else added it between our list and add
        logger.info(f"✅ RDP: {identity.qualified_name} already in '{group}' (reported by OS).")
        return ReconcileStatus.ALREADY_PRESENT

    logger.info(f"✅ RDP: Added {identity.qualified_name} to '{group}'.")
    return ReconcileStatus.RECONCILED
