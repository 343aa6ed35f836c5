import logging
import os
import platform
import shutil

from labclaim.config import CONFIG

logger = logging.getLogger("labclaim.preflight")


def run_startup_preflight():
    """
    Validate baseline runtime prerequisites.
    Returns a dict with `blocking` and `warnings` lists.
    """
    blocking = []
    warnings = []

    core_requirements = {
        "AZURE_SUBSCRIPTION_ID": "Subscription id is required to look up the lab",
        "RDP_GROUP_NAME": "Remote Desktop group name is required for access reconciliation",
        "ENROLLMENT_TASK_NAME": "Task name is required to register MDM enrollment",
    }
    for key, message in core_requirements.items():
        if not CONFIG.get(key):
            blocking.append(f"{key} missing: {message}")

    ps_path = CONFIG.get("POWERSHELL_PATH")
    ps_exists = bool(ps_path) and (os.path.exists(ps_path) or shutil.which(ps_path))
    if not ps_exists:
        blocking.append(f"POWERSHELL_PATH missing/unresolvable: '{ps_path}'")

    if platform.system() != "Windows":
        warnings.append(f"Host OS is {platform.system()}; group and task changes need Windows.")

    script_path = os.path.expandvars(str(CONFIG.get("ENROLLMENT_SCRIPT_PATH") or ""))
    if not script_path:
        blocking.append("ENROLLMENT_SCRIPT_PATH missing: nothing for the enrollment task to run")
    elif not os.path.exists(script_path):
        warnings.append(f"ENROLLMENT_SCRIPT_PATH not found on this host: '{script_path}'")

    for key in ("LOCAL_PASSWORD", "DOMAIN_PASSWORD"):
        if not CONFIG.get(key):
            warnings.append(f"{key}: not configured; must be passed on the command line.")

    return {"blocking": blocking, "warnings": warnings}


def log_preflight(result):
    for issue in result["blocking"]:
        logger.error(f"❌ Preflight: {issue}")
    for issue in result["warnings"]:
        logger.warning(f"⚠️  Preflight: {issue}")
    if not result["blocking"]:
        logger.info("✅ Preflight passed.")
    return not result["blocking"]
