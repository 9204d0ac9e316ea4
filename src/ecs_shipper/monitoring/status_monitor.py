"""
Deployment health checks.

Looks at the live cluster, service, recently stopped tasks and the running
task definition, and reports each problem together with the usual remedy.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any

from ecs_shipper.aws.ecs_cluster import ECSClusterManager
from ecs_shipper.aws.ecs_services import ECSServiceManager
from ecs_shipper.aws.task_definitions import TaskDefinitionBuilder
from ecs_shipper.monitoring.diagnostics import list_tasks, TaskSummary
from ecs_shipper.settings import Settings, get_settings

logger = logging.getLogger(__name__)

HEALTHY = 'healthy'
DEGRADED = 'degraded'
UNHEALTHY = 'unhealthy'

IMAGE_PULL_ERRORS = ('CannotPullContainerError', 'ResourceInitializationError')

REMEDY_APPLY = "run 'ecs-shipper apply' to create the missing resources"
REMEDY_REDEPLOY = "redeploy with 'ecs-shipper redeploy' after fixing the cause"
REMEDY_IMAGE = ("check that the image was pushed ('ecs-shipper deploy'), that the "
                "execution role can pull from ECR and that the subnets can reach it")
REMEDY_LOGS = "inspect the container output with 'ecs-shipper logs'"
REMEDY_PORT = "make CONTAINER_PORT and APP_PORT equal, then 'ecs-shipper apply'"


class StatusMonitor:
    """Monitor deployment health of the configured ECS service."""

    def __init__(self, settings: Optional[Settings] = None, stopped_task_limit: int = 10):
        self.settings = settings or get_settings()
        self.stopped_task_limit = stopped_task_limit

    def check_deployment_health(self) -> Dict[str, Any]:
        """
        Check the cluster, the service, stopped tasks and the port wiring.

        Returns:
            Dict with timestamp, overall_status, components, warnings, errors and hints
        """
        health_report = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'overall_status': HEALTHY,
            'components': {},
            'warnings': [],
            'errors': [],
            'hints': [],
        }

        cluster = self._run_check(health_report, 'cluster', self._check_cluster)
        if cluster.get('status') != HEALTHY:
            # Nothing else can be inspected without a cluster
            health_report['overall_status'] = UNHEALTHY
            return health_report

        service = self._run_check(health_report, 'service', self._check_service)
        if service.get('exists'):
            self._run_check(health_report, 'tasks', self._check_stopped_tasks)
            self._run_check(health_report, 'task_definition',
                            lambda: self._check_task_definition(service.get('task_definition')))

        if health_report['errors']:
            missing_service = not service.get('exists', False)
            health_report['overall_status'] = UNHEALTHY if missing_service else DEGRADED
        elif health_report['warnings']:
            health_report['overall_status'] = DEGRADED

        return health_report

    def _run_check(self, health_report: Dict[str, Any], name: str, check) -> Dict[str, Any]:
        try:
            component = check()
        except Exception as e:
            logger.error(f"{name} health check failed: {e}")
            component = {'status': 'error', 'error': str(e)}
            health_report['errors'].append(f"{name} health check failed: {e}")
        health_report['components'][name] = component
        health_report['warnings'].extend(component.pop('warnings', []))
        health_report['errors'].extend(component.pop('errors', []))
        for hint in component.pop('hints', []):
            if hint not in health_report['hints']:
                health_report['hints'].append(hint)
        return component

    def _check_cluster(self) -> Dict[str, Any]:
        cluster = ECSClusterManager(self.settings.cluster_name, self.settings).find_cluster()
        if cluster is None:
            return {
                'status': UNHEALTHY,
                'name': self.settings.cluster_name,
                'errors': [f"Cluster {self.settings.cluster_name} not found or not ACTIVE"],
                'hints': [REMEDY_APPLY],
            }
        return {
            'status': HEALTHY,
            'name': cluster['clusterName'],
            'running_tasks': cluster.get('runningTasksCount', 0),
            'active_services': cluster.get('activeServicesCount', 0),
        }

    def _check_service(self) -> Dict[str, Any]:
        service = ECSServiceManager(self.settings.cluster_name, self.settings.service_name, self.settings).find_service()
        if service is None:
            return {
                'status': UNHEALTHY,
                'exists': False,
                'name': self.settings.service_name,
                'errors': [f"Service {self.settings.service_name} not found"],
                'hints': [REMEDY_APPLY],
            }

        desired = service.get('desiredCount', 0)
        running = service.get('runningCount', 0)
        component = {
            'status': HEALTHY,
            'exists': True,
            'name': service['serviceName'],
            'desired': desired,
            'running': running,
            'pending': service.get('pendingCount', 0),
            'healthy': running == desired,
            'task_definition': service.get('taskDefinition'),
            'deployments': len(service.get('deployments', [])),
        }
        if running != desired:
            component['status'] = DEGRADED
            component['errors'] = [f"Service {service['serviceName']}: {running}/{desired} tasks running"]
            component['hints'] = [REMEDY_LOGS]
        if len(service.get('deployments', [])) > 1:
            component.setdefault('warnings', []).append(
                f"Service {service['serviceName']} has a rollout in progress"
            )
        return component

    def _check_stopped_tasks(self) -> Dict[str, Any]:
        stopped = list_tasks(self.settings.cluster_name, self.settings.service_name,
                             desired_status='STOPPED', settings=self.settings)
        stopped = stopped[:self.stopped_task_limit]

        component: Dict[str, Any] = {'status': HEALTHY, 'stopped': len(stopped), 'problems': []}
        errors: List[str] = []
        hints: List[str] = []
        for task in stopped:
            problem = self._classify_stopped_task(task)
            if problem is None:
                continue
            kind, message = problem
            component['problems'].append({'task': task.task_id, 'kind': kind, 'message': message})
            errors.append(f"Task {task.task_id}: {message}")
            hints.append(REMEDY_IMAGE if kind == 'image-pull' else REMEDY_LOGS)

        if errors:
            component['status'] = DEGRADED
            component['errors'] = errors
            component['hints'] = hints + [REMEDY_REDEPLOY]
        return component

    @staticmethod
    def _classify_stopped_task(task: TaskSummary) -> Optional[tuple]:
        reasons = [task.stopped_reason] + [c.reason for c in task.containers]
        for reason in reasons:
            if any(marker in (reason or '') for marker in IMAGE_PULL_ERRORS):
                return 'image-pull', reason
        for container in task.containers:
            if container.exit_code not in (None, 0):
                return 'crash', f"container {container.name} exited with code {container.exit_code}"
        if task.stop_code == 'TaskFailedToStart':
            return 'start-failure', task.stopped_reason or 'task failed to start'
        return None

    def _check_task_definition(self, task_definition_arn: Optional[str]) -> Dict[str, Any]:
        if not task_definition_arn:
            return {'status': 'unknown'}

        port = TaskDefinitionBuilder(self.settings.task_family, self.settings).container_port(
            task_definition_arn, self.settings.container_name
        )
        component = {
            'status': HEALTHY,
            'arn': task_definition_arn,
            'container_port': port,
            'app_port': self.settings.app_port,
        }
        if port is None:
            component['status'] = DEGRADED
            component['warnings'] = [f"No port mapping for container {self.settings.container_name}"]
        elif port != self.settings.app_port:
            component['status'] = DEGRADED
            component['errors'] = [
                f"Task definition maps port {port} but the application listens on {self.settings.app_port}"
            ]
            component['hints'] = [REMEDY_PORT]
        return component

    def generate_status_report(self, output_format: str = 'json',
                               health_data: Optional[Dict[str, Any]] = None) -> str:
        """
        Generate a status report.

        Args:
            output_format: Format for output ('json', 'text')
            health_data: A result of check_deployment_health() to render instead of checking again

        Returns:
            Formatted status report
        """
        if health_data is None:
            health_data = self.check_deployment_health()

        if output_format == 'json':
            return json.dumps(health_data, indent=2, default=str)

        elif output_format == 'text':
            components = health_data['components']
            report = []
            report.append("ECS Deployment Status Report")
            report.append(f"Generated: {health_data['timestamp']}")
            report.append(f"Overall Status: {health_data['overall_status'].upper()}")
            report.append("")

            if 'cluster' in components:
                cluster = components['cluster']
                status_icon = "✅" if cluster.get('status') == HEALTHY else "❌"
                report.append(f"Cluster: {status_icon} {cluster.get('name', self.settings.cluster_name)}")

            if 'service' in components:
                service = components['service']
                if service.get('exists'):
                    status_icon = "✅" if service['healthy'] else "❌"
                    report.append(f"Service: {status_icon} {service['name']}: "
                                  f"{service['running']}/{service['desired']} tasks")
                else:
                    report.append(f"Service: ❌ {service.get('name', self.settings.service_name)}: "
                                  f"{service.get('status', 'unknown')}")

            if 'task_definition' in components:
                task_def = components['task_definition']
                report.append(f"Container port: {task_def.get('container_port')} "
                              f"(app port {task_def.get('app_port')})")
            report.append("")

            if health_data['warnings']:
                report.append("Warnings:")
                for warning in health_data['warnings']:
                    report.append(f"  ⚠️  {warning}")
                report.append("")

            if health_data['errors']:
                report.append("Errors:")
                for error in health_data['errors']:
                    report.append(f"  ❌ {error}")
                report.append("")

            if health_data['hints']:
                report.append("Suggested fixes:")
                for hint in health_data['hints']:
                    report.append(f"  - {hint}")

            return "\n".join(report).rstrip() + "\n"

        else:
            raise ValueError(f"Unsupported output format: {output_format}")
