"""
Diagnostics: list tasks, describe services, tail container logs.

These are the read-only calls someone reaches for when a deployment looks
wrong. Each returns plain dataclasses so the CLI can print them and the
status monitor can reason about them.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Iterator, List, Optional
from botocore.exceptions import ClientError

from ecs_shipper.aws.clients import get_ecs_client, get_logs_client, error_code
from ecs_shipper.errors import ResourceNotFoundError
from ecs_shipper.settings import Settings
from ecs_shipper.utils.decorators import retry, is_throttling_error

logger = logging.getLogger(__name__)

DESCRIBE_TASKS_CHUNK = 100


@dataclass
class ContainerSummary:
    name: str
    last_status: str
    exit_code: Optional[int] = None
    reason: str = ""


@dataclass
class TaskSummary:
    task_arn: str
    task_definition_arn: str
    last_status: str
    desired_status: str
    health_status: str = "UNKNOWN"
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    stop_code: str = ""
    stopped_reason: str = ""
    containers: List[ContainerSummary] = field(default_factory=list)

    @property
    def task_id(self) -> str:
        return self.task_arn.rsplit('/', 1)[-1]

    @classmethod
    def from_api(cls, task: Dict[str, Any]) -> "TaskSummary":
        return cls(
            task_arn=task['taskArn'],
            task_definition_arn=task.get('taskDefinitionArn', ''),
            last_status=task.get('lastStatus', 'UNKNOWN'),
            desired_status=task.get('desiredStatus', 'UNKNOWN'),
            health_status=task.get('healthStatus', 'UNKNOWN'),
            started_at=task.get('startedAt'),
            stopped_at=task.get('stoppedAt'),
            stop_code=task.get('stopCode', ''),
            stopped_reason=task.get('stoppedReason', ''),
            containers=[
                ContainerSummary(
                    name=c.get('name', ''),
                    last_status=c.get('lastStatus', 'UNKNOWN'),
                    exit_code=c.get('exitCode'),
                    reason=c.get('reason', ''),
                )
                for c in task.get('containers', [])
            ],
        )


@dataclass
class ServiceSummary:
    name: str
    status: str
    desired_count: int
    running_count: int
    pending_count: int
    task_definition_arn: str
    launch_type: str = ""
    deployments: List[Dict[str, Any]] = field(default_factory=list)
    events: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.status == 'ACTIVE' and self.running_count == self.desired_count

    @classmethod
    def from_api(cls, service: Dict[str, Any], event_limit: int = 5) -> "ServiceSummary":
        return cls(
            name=service['serviceName'],
            status=service.get('status', 'UNKNOWN'),
            desired_count=service.get('desiredCount', 0),
            running_count=service.get('runningCount', 0),
            pending_count=service.get('pendingCount', 0),
            task_definition_arn=service.get('taskDefinition', ''),
            launch_type=service.get('launchType', ''),
            deployments=[
                {
                    'id': d.get('id'),
                    'status': d.get('status'),
                    'rollout_state': d.get('rolloutState'),
                    'task_definition': d.get('taskDefinition'),
                    'desired': d.get('desiredCount', 0),
                    'running': d.get('runningCount', 0),
                    'pending': d.get('pendingCount', 0),
                }
                for d in service.get('deployments', [])
            ],
            events=[e.get('message', '') for e in service.get('events', [])[:event_limit]],
        )


@dataclass
class LogEvent:
    timestamp: datetime
    message: str
    stream: str
    event_id: str = ""

    def format(self) -> str:
        return f"{self.timestamp.isoformat()} [{self.stream}] {self.message.rstrip()}"


@retry(max_attempts=4, delay=1.0, retry_if=is_throttling_error)
def list_tasks(cluster: str, service: Optional[str] = None,
               desired_status: str = "RUNNING",
               settings: Optional[Settings] = None) -> List[TaskSummary]:
    """List the tasks of a cluster (optionally of one service) with their details."""
    ecs_client = get_ecs_client(settings)
    kwargs: Dict[str, Any] = {'cluster': cluster, 'desiredStatus': desired_status}
    if service:
        kwargs['serviceName'] = service

    task_arns: List[str] = []
    try:
        paginator = ecs_client.get_paginator('list_tasks')
        for page in paginator.paginate(**kwargs):
            task_arns.extend(page.get('taskArns', []))
    except ClientError as e:
        if error_code(e) == 'ClusterNotFoundException':
            raise ResourceNotFoundError('ECS cluster', cluster) from e
        if error_code(e) == 'ServiceNotFoundException':
            raise ResourceNotFoundError('ECS service', f"{cluster}/{service}") from e
        raise

    tasks = []
    for start in range(0, len(task_arns), DESCRIBE_TASKS_CHUNK):
        chunk = task_arns[start:start + DESCRIBE_TASKS_CHUNK]
        response = ecs_client.describe_tasks(cluster=cluster, tasks=chunk)
        tasks.extend(TaskSummary.from_api(task) for task in response.get('tasks', []))

    logger.debug(f"Found {len(tasks)} {desired_status} tasks in {cluster}")
    return tasks


@retry(max_attempts=4, delay=1.0, retry_if=is_throttling_error)
def describe_services(cluster: str, services: List[str],
                      settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Describe services.

    Returns:
        Dict with 'services' (List[ServiceSummary]) and 'missing' (names ECS did not find)
    """
    ecs_client = get_ecs_client(settings)
    try:
        response = ecs_client.describe_services(cluster=cluster, services=services)
    except ClientError as e:
        if error_code(e) == 'ClusterNotFoundException':
            raise ResourceNotFoundError('ECS cluster', cluster) from e
        raise

    summaries = [ServiceSummary.from_api(s) for s in response.get('services', [])]
    missing = [f.get('arn', '').rsplit('/', 1)[-1] for f in response.get('failures', [])]
    return {'services': summaries, 'missing': missing}


def tail_logs(log_group: str, stream_prefix: Optional[str] = None, since_minutes: int = 10,
              follow: bool = False, poll_interval: float = 2.0,
              limit: Optional[int] = None,
              settings: Optional[Settings] = None) -> Iterator[LogEvent]:
    """Yield log events from a log group, oldest first.

    In follow mode polling continues from the newest timestamp seen until the
    caller stops iterating. Events already yielded are not repeated.
    """
    logs_client = get_logs_client(settings)
    start_time = int((time.time() - since_minutes * 60) * 1000)
    # event id -> timestamp, only for events at or after the next poll's start
    seen: Dict[str, int] = {}
    yielded = 0

    while True:
        kwargs: Dict[str, Any] = {'logGroupName': log_group, 'startTime': start_time}
        if stream_prefix:
            kwargs['logStreamNamePrefix'] = stream_prefix

        newest = start_time
        try:
            paginator = logs_client.get_paginator('filter_log_events')
            for page in paginator.paginate(**kwargs):
                for event in page.get('events', []):
                    event_id = event.get('eventId') or f"{event['logStreamName']}:{event['timestamp']}:{event['message']}"
                    if event_id in seen:
                        continue
                    seen[event_id] = event['timestamp']
                    newest = max(newest, event['timestamp'])
                    yield LogEvent(
                        timestamp=datetime.fromtimestamp(event['timestamp'] / 1000, tz=timezone.utc),
                        message=event.get('message', ''),
                        stream=event.get('logStreamName', ''),
                        event_id=event_id,
                    )
                    yielded += 1
                    if limit is not None and yielded >= limit:
                        return
        except ClientError as e:
            if error_code(e) == 'ResourceNotFoundException':
                raise ResourceNotFoundError('Log group', log_group) from e
            raise

        if not follow:
            return
        # Events sharing the newest millisecond are re-read and dropped by id
        start_time = newest
        seen = prune_seen(seen, newest)
        time.sleep(poll_interval)


def prune_seen(seen: Dict[str, int], newest: int) -> Dict[str, int]:
    """Keep only the ids a poll starting at `newest` can return again."""
    return {event_id: ts for event_id, ts in seen.items() if ts >= newest}
