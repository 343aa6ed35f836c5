import logging
from datetime import datetime, timedelta

from labclaim.config import CONFIG, DEFAULT_ENROLLMENT_TASK_NAME
from labclaim.integrations import windows
from labclaim.models import EnrollmentTaskDefinition

logger = logging.getLogger("labclaim.enrollment")

REPETITION_INTERVAL = timedelta(minutes=5)
REPETITION_DURATION = timedelta(days=1)


def _start_of_today(now=None):
    now = now or datetime.now()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def build_task_definition(task_name, script_path, script_args=None, now=None) -> EnrollmentTaskDefinition:
    """
    PowerShell scripts are run through powershell.exe; anything else is
    executed directly with the configured arguments.
    """
    path = str(script_path or "").strip()
    if not path:
        raise ValueError("Enrollment script path is empty")

    if path.lower().endswith(".ps1"):
        execute = "powershell.exe"
        arguments = f'-NoProfile -ExecutionPolicy Bypass -File "{path}"'
    else:
        execute = path
        arguments = CONFIG.get("ENROLLMENT_SCRIPT_ARGS", "") if script_args is None else script_args

    return EnrollmentTaskDefinition(
        task_name=task_name or DEFAULT_ENROLLMENT_TASK_NAME,
        execute=execute,
        arguments=arguments or "",
        start_at=_start_of_today(now),
        repetition_interval=REPETITION_INTERVAL,
        repetition_duration=REPETITION_DURATION,
    )


def schedule_enrollment(task_name, script_path, dry_run=False, now=None) -> EnrollmentTaskDefinition:
    definition = build_task_definition(task_name, script_path, now=now)
    logger.info(
        f"⏰ Enrollment: Registering '{definition.task_name}' "
        f"(every {int(REPETITION_INTERVAL.total_seconds() // 60)} min for 1 day from {definition.start_at:%Y-%m-%d %H:%M})..."
    )

    if dry_run:
        logger.info(f"[DRY-RUN] Would register task '{definition.task_name}' running {definition.execute}")
        return definition

    windows.register_scheduled_task(definition)
    logger.info(f"✅ Enrollment: Task '{definition.task_name}' registered.")
    return definition
