import os
import logging
import json
import boto3
from botocore.exceptions import ClientError
from dotenv import load_dotenv

# Load .env file immediately (Local Fallback)
load_dotenv()

logger = logging.getLogger("labclaim.config")

DEFAULT_ENROLLMENT_TASK_NAME = (
    "Schedule created by enrollment client for automatically enrolling in MDM from AAD"
)


def _as_int(value, default):
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def fetch_aws_secrets():
    """
    Fetches secrets from AWS Secrets Manager.
    Returns a dict of secrets or empty dict if failed/not configured.
    """
    secret_name = os.getenv("LABCLAIM_AWS_SECRET_ID", "prod/labclaim/config")
    region_name = os.getenv("LABCLAIM_AWS_REGION", "us-east-1")

    if not os.getenv("LABCLAIM_USE_AWS_SECRETS"):
        return {}

    logger.info(f"🔐 Attempting to fetch secrets from AWS ({secret_name})...")

    try:
        session = boto3.session.Session()
        client = session.client(service_name="secretsmanager", region_name=region_name)
        get_secret_value_response = client.get_secret_value(SecretId=secret_name)

        if "SecretString" in get_secret_value_response:
            return json.loads(get_secret_value_response["SecretString"])
    except ClientError as e:
        logger.warning(f"⚠️  Could not fetch AWS Secrets: {e}")
    except Exception as e:
        logger.warning(f"⚠️  AWS Secrets Error: {e}")

    return {}


# 1. Load Local Env
env_config = dict(os.environ)

# 2. Overlay AWS Secrets (if enabled)
env_config.update(fetch_aws_secrets())

# 3. Build Global CONFIG
CONFIG = {
    # Azure Lab Services
    "AZURE_SUBSCRIPTION_ID": env_config.get("LABCLAIM_AZURE_SUBSCRIPTION_ID"),
    "ARM_ENDPOINT": env_config.get("LABCLAIM_ARM_ENDPOINT", "https://management.azure.com"),
    "LABSERVICES_API_VERSION": env_config.get("LABCLAIM_LABSERVICES_API_VERSION", "2018-10-15"),
    "HTTP_TIMEOUT": _as_int(env_config.get("LABCLAIM_HTTP_TIMEOUT"), 30),

    # Host identity (falls back to the detected host name)
    "COMPUTER_NAME": env_config.get("LABCLAIM_COMPUTER_NAME"),

    # Local OS
    "RDP_GROUP_NAME": env_config.get("LABCLAIM_RDP_GROUP_NAME", "Remote Desktop Users"),
    "POWERSHELL_PATH": env_config.get("LABCLAIM_POWERSHELL_PATH", "powershell.exe"),
    "POWERSHELL_TIMEOUT": _as_int(env_config.get("LABCLAIM_POWERSHELL_TIMEOUT"), 120),

    # MDM enrollment task
    "ENROLLMENT_TASK_NAME": env_config.get("LABCLAIM_ENROLLMENT_TASK_NAME", DEFAULT_ENROLLMENT_TASK_NAME),
    "ENROLLMENT_SCRIPT_PATH": env_config.get(
        "LABCLAIM_ENROLLMENT_SCRIPT_PATH", r"%windir%\system32\deviceenroller.exe"
    ),
    "ENROLLMENT_SCRIPT_ARGS": env_config.get("LABCLAIM_ENROLLMENT_SCRIPT_ARGS", "/c /AutoEnrollMDM"),

    # Credentials passed through from the provisioning pipeline
    "LOCAL_PASSWORD": env_config.get("LABCLAIM_LOCAL_PASSWORD"),
    "DOMAIN_PASSWORD": env_config.get("LABCLAIM_DOMAIN_PASSWORD"),

    # Logging
    "LOG_DIR": env_config.get("LABCLAIM_LOG_DIR", "logs"),
}


def load_config():
    """
    Validation helper to ensure critical keys exist.
    """
    critical_keys = ["AZURE_SUBSCRIPTION_ID"]
    missing = [k for k in critical_keys if not CONFIG.get(k)]

    if missing:
        logger.warning(f"⚠️  Missing critical config keys. Check mapping in config.py vs .env: {', '.join(missing)}")

    return CONFIG
