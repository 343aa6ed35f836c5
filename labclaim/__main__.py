import argparse
import sys
from datetime import datetime

from pydantic import ValidationError

from .config import load_config
from .integrations.labservices import LabServicesClient
from .log import setup_logger
from .models import LabReference
from .orchestrator import ClaimOrchestrator
from .preflight import log_preflight, run_startup_preflight

EXIT_SUCCESS = 0
EXIT_FAILURE = -1


def build_parser():
    parser = argparse.ArgumentParser(
        prog="labclaim",
        description="Grant the claiming student RDP access to this lab VM and schedule MDM enrollment",
    )
    parser.add_argument("--resource-group", required=True, help="Resource group of the lab account")
    parser.add_argument("--lab-account", required=True, help="Lab account name")
    parser.add_argument("--lab-name", required=True, help="Lab name")
    parser.add_argument(
        "--domain-service-address",
        required=True,
        nargs="+",
        help="One or more domain service (DNS) addresses",
    )
    parser.add_argument("--domain-name", required=True, help="Fully qualified domain name")
    parser.add_argument("--local-user", required=True, help="Local administrator user name")
    parser.add_argument(
        "--local-password",
        help=(
            "Local administrator password (or LABCLAIM_LOCAL_PASSWORD). "
            "Required for pipeline compatibility; not used by the reconciliation pass"
        ),
    )
    parser.add_argument("--domain-user", required=True, help="Domain join user name")
    parser.add_argument(
        "--domain-password",
        help=(
            "Domain join password (or LABCLAIM_DOMAIN_PASSWORD). "
            "Required for pipeline compatibility; not used by the reconciliation pass"
        ),
    )
    parser.add_argument("--current-task-name", help="Name of the scheduled task running this script")
    parser.add_argument("--computer-name", help="Override the detected host name")
    parser.add_argument("--dry-run", action="store_true", help="Resolve everything, change nothing")
    parser.add_argument(
        "--preflight",
        action="store_true",
        help="Only check runtime prerequisites and exit",
    )
    return parser


def _resolve_secret(cli_value, config, key):
    return cli_value or config.get(key)


def exit_code_for(result):
    return EXIT_SUCCESS if result.success else EXIT_FAILURE


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # 1. Load Config
    config = load_config()

    # 2. Logging
    run_id = datetime.now().strftime("%Y%m%d-%H%M%S")
    logger = setup_logger(run_id, config.get("LOG_DIR", "logs"))
    if args.current_task_name:
        logger.info(f"Invoked by task '{args.current_task_name}'")

    if args.preflight:
        code = EXIT_SUCCESS if log_preflight(run_startup_preflight()) else EXIT_FAILURE
        logger.info(f"Exiting with {code}")
        return code

    # 3. Credentials
    if not _resolve_secret(args.local_password, config, "LOCAL_PASSWORD"):
        parser.error("--local-password is required (or set LABCLAIM_LOCAL_PASSWORD)")
    if not _resolve_secret(args.domain_password, config, "DOMAIN_PASSWORD"):
        parser.error("--domain-password is required (or set LABCLAIM_DOMAIN_PASSWORD)")

    logger.info(
        f"Domain '{args.domain_name}' via {', '.join(args.domain_service_address)} "
        f"(domain user {args.domain_user}, local user {args.local_user})"
    )

    # 4. Lab reference
    try:
        lab_ref = LabReference(
            resource_group=args.resource_group,
            account_name=args.lab_account,
            lab_name=args.lab_name,
        )
    except ValidationError as e:
        logger.error(f"❌ Invalid lab reference: {e}")
        logger.info(f"Exiting with {EXIT_FAILURE}")
        return EXIT_FAILURE

    # 5. Run Orchestrator
    client = LabServicesClient()
    orch = ClaimOrchestrator(lab_ref, client, logger, dry_run=args.dry_run, computer_name=args.computer_name)
    result = orch.run()

    code = exit_code_for(result)
    logger.info(f"Exiting with {code}")
    return code


if __name__ == "__main__":
    sys.exit(main())
