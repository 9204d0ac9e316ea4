"""
ecs-shipper command line.

Provision the stack, ship images, render the Terraform and workflow files,
and diagnose a running service.
"""

import functools
import json
import logging
import sys

import click
from botocore.exceptions import BotoCoreError, ClientError

from ecs_shipper.aws.clients import AWSClientManager
from ecs_shipper.errors import ShipperError
from ecs_shipper.settings import get_settings, get_settings_with_env_file

logger = logging.getLogger(__name__)

SECRET_FIELDS = ("aws_access_key_id", "aws_secret_access_key")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
        force=True,
    )
    # botocore is chatty at DEBUG
    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def handle_errors(func):
    """Turn expected failures into a message on stderr and exit code 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ShipperError as e:
            click.echo(f"❌ {e}", err=True)
            sys.exit(1)
        except (ClientError, BotoCoreError) as e:
            click.echo(f"❌ AWS error: {e}", err=True)
            sys.exit(1)
    return wrapper


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--env-file", type=click.Path(dir_okay=False), default=None,
              help="Extra .env file to load (e.g. .env.aws-prod)")
@click.pass_context
def cli(ctx, verbose, env_file):
    """Provision an ECS service and ship container images to it"""
    try:
        settings = get_settings_with_env_file(env_file)
    except ShipperError as e:
        raise click.UsageError(str(e))
    except ValueError as e:
        # pydantic ValidationError
        raise click.UsageError(f"Invalid configuration: {e}")
    AWSClientManager.reset()
    setup_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = settings


@cli.command("show-config")
@click.pass_obj
def show_config(settings):
    """Print the resolved settings"""
    values = settings.model_dump()
    for key in SECRET_FIELDS:
        if values.get(key):
            values[key] = "****"
    for key in sorted(values):
        click.echo(f"{key}: {values[key]}")


@cli.group()
def render():
    """Write the Terraform or CI workflow file"""


@render.command("terraform")
@click.option("--output", "output_dir", default="terraform", show_default=True,
              help="Directory for main.tf")
@click.option("--stdout", "to_stdout", is_flag=True, help="Print instead of writing a file")
@click.pass_obj
@handle_errors
def render_terraform_command(settings, output_dir, to_stdout):
    """Render the stack as Terraform"""
    from ecs_shipper.infrastructure.terraform import render_terraform, write_terraform
    from ecs_shipper.stack import StackSpec

    stack = StackSpec.from_settings(settings, resolve_image=False)
    if to_stdout:
        click.echo(render_terraform(stack), nl=False)
        return
    path = write_terraform(stack, output_dir)
    click.echo(f"✅ Wrote {path}")


@render.command("workflow")
@click.option("--output", "output_path", default=None,
              help="Workflow file path (default: WORKFLOW_PATH)")
@click.option("--stdout", "to_stdout", is_flag=True, help="Print instead of writing a file")
@click.pass_obj
@handle_errors
def render_workflow_command(settings, output_path, to_stdout):
    """Render the GitHub Actions deployment workflow"""
    from ecs_shipper.pipeline.workflow import render_workflow, write_workflow

    if to_stdout:
        click.echo(render_workflow(settings), nl=False)
        return
    path = write_workflow(settings, output_path)
    click.echo(f"✅ Wrote {path}")


@cli.command()
@click.pass_obj
@handle_errors
def plan(settings):
    """Show what apply would create or change"""
    from ecs_shipper.infrastructure.provisioner import StackProvisioner

    changes = StackProvisioner(settings).plan()
    for change in changes:
        click.echo(str(change))


@cli.command()
@click.pass_obj
@handle_errors
def apply(settings):
    """Create or update the registry, cluster, task definition and service"""
    from ecs_shipper.infrastructure.provisioner import StackProvisioner

    result = StackProvisioner(settings).apply()
    click.echo("✅ Stack is up to date")
    for key in ("repository_uri", "cluster_arn", "task_definition_arn", "service_arn", "log_group"):
        click.echo(f"  {key}: {result.get(key)}")


@cli.command()
@click.option("--keep-repository", is_flag=True, help="Do not delete the image repository")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
@handle_errors
def destroy(settings, keep_repository, yes):
    """Delete the service, task definitions, cluster, log group and repository"""
    from ecs_shipper.infrastructure.provisioner import StackProvisioner

    if not yes:
        click.confirm(
            f"Destroy service {settings.service_name} in cluster {settings.cluster_name}?",
            abort=True
        )
    result = StackProvisioner(settings).destroy(keep_repository=keep_repository)
    for key, value in result.items():
        click.echo(f"  {key}: {value}")


@cli.command()
@click.option("--tag", default=None, help="Image tag to push (default: IMAGE_TAG)")
@click.option("--no-delete-previous", is_flag=True, help="Keep the image currently holding the tag")
@click.option("--wait", is_flag=True, help="Wait for the service to become stable")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_obj
@handle_errors
def deploy(settings, tag, no_delete_previous, wait, as_json):
    """Build, push and roll out the image"""
    from ecs_shipper.pipeline.deploy import DeployPipeline

    overrides = {}
    if tag:
        overrides['image_tag'] = tag
    if no_delete_previous:
        overrides['delete_previous_image'] = False
    if wait:
        overrides['wait_for_stable'] = True
    if overrides:
        settings = settings.model_copy(update=overrides)

    result = DeployPipeline(settings).run()
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        for step in result.steps:
            click.echo(f"  {step.name:<24} {step.status:<10} {step.detail}")
    if not result.succeeded:
        click.echo(f"❌ Deployment failed: {result.error}", err=True)
        sys.exit(1)
    click.echo(f"✅ Deployed {result.image_uri}")


@cli.command()
@click.option("--wait", is_flag=True, help="Wait for the service to become stable")
@click.pass_obj
@handle_errors
def redeploy(settings, wait):
    """Force a new deployment without building"""
    from ecs_shipper.pipeline.deploy import redeploy_service

    service = redeploy_service(settings, wait=wait)
    click.echo(f"✅ Redeploying {settings.service_name} on {service.get('taskDefinition')}")


@cli.command()
@click.option("--service", "service_name", default=None, help="Only tasks of this service")
@click.option("--stopped", is_flag=True, help="List recently stopped tasks")
@click.pass_obj
@handle_errors
def tasks(settings, service_name, stopped):
    """List tasks in the cluster"""
    from ecs_shipper.monitoring.diagnostics import list_tasks

    summaries = list_tasks(settings.cluster_name, service_name, settings=settings,
                           desired_status="STOPPED" if stopped else "RUNNING")
    if not summaries:
        click.echo("No tasks found")
        return
    for task in summaries:
        click.echo(f"{task.task_id}  {task.last_status:<12} {task.health_status:<10} "
                   f"{task.task_definition_arn.rsplit('/', 1)[-1]}")
        if task.stopped_reason:
            click.echo(f"    stopped: {task.stopped_reason}")
        for container in task.containers:
            if container.exit_code is not None or container.reason:
                click.echo(f"    {container.name}: exit={container.exit_code} {container.reason}")


@cli.command()
@click.argument("names", nargs=-1)
@click.pass_obj
@handle_errors
def services(settings, names):
    """Describe services (default: the configured one)"""
    from ecs_shipper.monitoring.diagnostics import describe_services

    result = describe_services(settings.cluster_name, list(names) or [settings.service_name], settings)
    for service in result['services']:
        status_icon = "✅" if service.healthy else "❌"
        click.echo(f"{status_icon} {service.name}: {service.status} "
                   f"{service.running_count}/{service.desired_count} running, "
                   f"{service.pending_count} pending")
        click.echo(f"    task definition: {service.task_definition_arn}")
        for event in service.events:
            click.echo(f"    event: {event}")
    for name in result['missing']:
        click.echo(f"❌ {name}: MISSING")
    if result['missing']:
        sys.exit(1)


@cli.command()
@click.option("--follow", "-f", is_flag=True, help="Keep polling for new events")
@click.option("--since", default=10, show_default=True, type=int, help="Minutes of history")
@click.option("--prefix", default=None, help="Log stream name prefix")
@click.option("--limit", default=None, type=int, help="Stop after this many events")
@click.pass_obj
@handle_errors
def logs(settings, follow, since, prefix, limit):
    """Print container logs from CloudWatch"""
    from ecs_shipper.monitoring.diagnostics import tail_logs

    try:
        for event in tail_logs(settings.resolved_log_group, stream_prefix=prefix,
                               since_minutes=since, follow=follow, limit=limit,
                               settings=settings):
            click.echo(event.format())
    except KeyboardInterrupt:
        pass


@cli.command()
@click.option("--format", "output_format", type=click.Choice(["text", "json"]),
              default="text", show_default=True)
@click.pass_obj
@handle_errors
def health(settings, output_format):
    """Check deployment health and suggest fixes"""
    from ecs_shipper.monitoring.status_monitor import StatusMonitor, UNHEALTHY

    monitor = StatusMonitor(settings)
    health_data = monitor.check_deployment_health()
    click.echo(monitor.generate_status_report(output_format, health_data), nl=False)
    if health_data['overall_status'] == UNHEALTHY:
        sys.exit(1)


@cli.command()
@click.option("--root", default=".", type=click.Path(file_okay=False), help="Project directory")
@click.option("--terraform-dir", default="terraform", show_default=True)
@click.pass_obj
@handle_errors
def lint(settings, root, terraform_dir):
    """Check settings against the Dockerfile, workflow and Terraform files"""
    from ecs_shipper.monitoring.lint import ConsistencyChecker, has_errors

    findings = ConsistencyChecker(settings, root, terraform_dir).run()
    if not findings:
        click.echo("✅ No problems found")
        return
    for finding in findings:
        click.echo(str(finding))
    if has_errors(findings):
        sys.exit(1)


@cli.command()
@click.option("--limit", default=10, show_default=True, type=int)
@click.pass_obj
@handle_errors
def history(settings, limit):
    """Show recent deployments"""
    from ecs_shipper.state.state_manager import StateManager

    entries = StateManager(settings.state_file).history(limit)
    if not entries:
        click.echo("No deployments recorded")
        return
    for entry in entries:
        status_icon = "✅" if entry.get("succeeded") else "❌"
        target = entry.get("image_uri") or entry.get("task_definition_arn") or ""
        click.echo(f"{status_icon} {entry.get('recorded_at')} {entry.get('kind', 'deploy'):<9} "
                   f"{entry.get('deployment_id')} {target}")
        if entry.get("error"):
            click.echo(f"    {entry['error']}")


@cli.command()
@click.option("--revision", default=None, type=int,
              help="Task definition revision (default: the previous ACTIVE one)")
@click.option("--dry-run", is_flag=True, help="Only show the target revision")
@click.option("--wait", is_flag=True, help="Wait for the service to become stable")
@click.pass_obj
@handle_errors
def rollback(settings, revision, dry_run, wait):
    """Point the service back at an earlier task definition"""
    from ecs_shipper.state.rollback_manager import RollbackManager

    result = RollbackManager(settings).execute_rollback(revision, dry_run=dry_run, wait=wait)
    verb = "Would roll back" if dry_run else "✅ Rolled back"
    click.echo(f"{verb} {result['service']}: {result['from']} -> {result['to']}")


def main():
    cli(prog_name="ecs-shipper")


if __name__ == "__main__":
    main()
