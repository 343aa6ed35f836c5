import logging
import time

import requests
from azure.identity import DefaultAzureCredential

from labclaim.config import CONFIG
from labclaim.errors import LabLookupError, LabServicesError
from labclaim.models import LabRecord, LabReference, StudentRecord, VmRecord

logger = logging.getLogger("labclaim.labservices")

PROVIDER = "Microsoft.LabServices"


def _response_detail(resp):
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            code = error.get("code")
            message = error.get("message")
            if code and message:
                return f"{code}: {message}"
            return message or code or resp.text
    return (resp.text or "").strip() or f"HTTP {resp.status_code}"


def _error_code(resp):
    try:
        payload = resp.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"].get("code")
    return None


def _short_name(name):
    return str(name or "").strip().split(".", 1)[0].lower()


class LabServicesClient:
    """
    Thin Azure Lab Services (lab accounts) client over ARM REST.
    One instance holds the authenticated session for a whole run.
    """

    def __init__(self, subscription_id=None, credential=None, arm_endpoint=None, api_version=None, timeout=None):
        self.subscription_id = subscription_id or CONFIG.get("AZURE_SUBSCRIPTION_ID")
        self.base_url = (arm_endpoint or CONFIG.get("ARM_ENDPOINT") or "https://management.azure.com").rstrip("/")
        self.api_version = api_version or CONFIG.get("LABSERVICES_API_VERSION", "2018-10-15")
        self.timeout = timeout or CONFIG.get("HTTP_TIMEOUT", 30)
        self._credential = credential
        self._token = None
        self._token_expires_on = 0

    # --- SESSION ---

    @property
    def scope(self):
        return f"{self.base_url}/.default"

    def _bearer_token(self):
        if self._token and self._token_expires_on - 60 > time.time():
            return self._token
        if self._credential is None:
            logger.info("🔐 Azure: Creating DefaultAzureCredential")
            self._credential = DefaultAzureCredential(
                exclude_visual_studio_code_credential=True,
                exclude_shared_token_cache_credential=True,
            )
        access = self._credential.get_token(self.scope)
        self._token = access.token
        self._token_expires_on = access.expires_on
        return self._token

    def clear_session(self):
        """Drops the cached token and credential; the next call re-authenticates."""
        credential = self._credential
        self._credential = None
        self._token = None
        self._token_expires_on = 0
        close = getattr(credential, "close", None)
        if callable(close):
            close()
        logger.info("🧹 Azure: Cleared cached Lab Services session.")

    def _get(self, url, params=None):
        query = {"api-version": self.api_version}
        if params:
            query.update(params)
        headers = {
            "Authorization": f"Bearer {self._bearer_token()}",
            "Accept": "application/json",
        }
        return requests.get(url, headers=headers, params=query, timeout=self.timeout)

    def _get_json(self, url, params=None, not_found=None):
        resp = self._get(url, params=params)
        if resp.status_code == 404 and not_found:
            raise LabLookupError(not_found(resp))
        if resp.status_code != 200:
            raise LabServicesError(
                f"Lab Services request failed ({resp.status_code}): {_response_detail(resp)}",
                status_code=resp.status_code,
            )
        return resp.json()

    def _list(self, url, params=None):
        items = []
        payload = self._get_json(url, params=params)
        items.extend(payload.get("value", []))
        next_link = payload.get("nextLink")
        while next_link:
            # nextLink already carries api-version and the skip token
            resp = requests.get(
                next_link,
                headers={"Authorization": f"Bearer {self._bearer_token()}", "Accept": "application/json"},
                timeout=self.timeout,
            )
            if resp.status_code != 200:
                raise LabServicesError(
                    f"Lab Services paging failed ({resp.status_code}): {_response_detail(resp)}",
                    status_code=resp.status_code,
                )
            payload = resp.json()
            items.extend(payload.get("value", []))
            next_link = payload.get("nextLink")
        return items

    # --- LOOKUPS ---

    def lab_account_url(self, ref: LabReference):
        return (
            f"{self.base_url}/subscriptions/{self.subscription_id}"
            f"/resourceGroups/{ref.resource_group}/providers/{PROVIDER}/labaccounts/{ref.account_name}"
        )

    def get_lab(self, ref: LabReference) -> LabRecord:
        if not self.subscription_id:
            raise LabLookupError("Azure subscription id is not configured (LABCLAIM_AZURE_SUBSCRIPTION_ID)")

        logger.info(f"🔍 Lab Services: Resolving {ref.resource_group}/{ref.account_name}/{ref.lab_name}...")

        def account_missing(resp):
            if _error_code(resp) == "ResourceGroupNotFound":
                return f"Resource group '{ref.resource_group}' not found"
            return f"Lab account '{ref.account_name}' not found in resource group '{ref.resource_group}'"

        account_url = self.lab_account_url(ref)
        self._get_json(account_url, not_found=account_missing)

        lab = self._get_json(
            f"{account_url}/labs/{ref.lab_name}",
            not_found=lambda resp: f"Lab '{ref.lab_name}' not found in lab account '{ref.account_name}'",
        )
        record = LabRecord(name=lab.get("name") or ref.lab_name, resource_id=lab.get("id") or f"{account_url}/labs/{ref.lab_name}")
        logger.info(f"✅ Lab Services: Found lab '{record.name}'.")
        return record

    def _environments(self, lab: LabRecord):
        environments = []
        for setting in self._list(f"{self.base_url}{lab.resource_id}/environmentsettings"):
            setting_id = setting.get("id")
            if not setting_id:
                continue
            environments.extend(
                self._list(
                    f"{self.base_url}{setting_id}/environments",
                    params={"$expand": "properties(networkInterface)"},
                )
            )
        return environments

    def get_current_vm(self, lab: LabRecord, computer_name, ip_addresses=()) -> VmRecord:
        """
        Finds the environment backing this machine: by computer name first,
        then by the private IP Lab Services assigned to it.
        """
        wanted = _short_name(computer_name)
        local_ips = {str(ip).strip() for ip in ip_addresses if ip}
        logger.info(f"🔍 Lab Services: Looking for VM '{computer_name}' in lab '{lab.name}'...")

        by_ip = None
        for env in self._environments(lab):
            props = env.get("properties") or {}
            nic = props.get("networkInterface") or {}
            vm_resource_id = (props.get("resourceSets") or {}).get("vmResourceId") or ""
            candidates = {
                _short_name(props.get("computerName")),
                _short_name(vm_resource_id.rsplit("/", 1)[-1]),
                _short_name(env.get("name")),
            }
            candidates.discard("")
            if wanted and wanted in candidates:
                return self._vm_record(env, computer_name)
            if by_ip is None and nic.get("privateIpAddress") in local_ips:
                by_ip = env

        if by_ip is not None:
            return self._vm_record(by_ip, computer_name)

        raise LabLookupError(f"No VM in lab '{lab.name}' matches this machine ('{computer_name}')")

    def _vm_record(self, env, computer_name):
        props = env.get("properties") or {}
        record = VmRecord(
            computer_name=computer_name,
            is_claimed=bool(props.get("isClaimed")),
            claimed_by_principal_id=props.get("claimedByUserPrincipalId") or props.get("claimedByUserObjectId"),
            resource_id=env.get("id"),
        )
        logger.info(f"✅ Lab Services: Matched VM '{env.get('name')}' (claimed={record.is_claimed}).")
        return record

    def get_claiming_student(self, lab: LabRecord, vm: VmRecord) -> StudentRecord:
        principal = str(vm.claimed_by_principal_id or "").strip().lower()
        if not principal:
            raise LabLookupError(f"VM '{vm.computer_name}' is claimed but has no claimant id")

        for user in self._list(f"{self.base_url}{lab.resource_id}/users"):
            props = user.get("properties") or {}
            keys = {
                str(user.get("name") or "").lower(),
                str(props.get("objectId") or "").lower(),
                str(props.get("userPrincipalName") or "").lower(),
            }
            if principal in keys:
                email = props.get("email") or props.get("userPrincipalName") or ""
                logger.info(f"✅ Lab Services: VM claimed by {email}.")
                return StudentRecord(email=email, principal_id=vm.claimed_by_principal_id)

        raise LabLookupError(f"Claimant '{vm.claimed_by_principal_id}' is not a user of lab '{lab.name}'")
