"""CLI analytics commands for taskboard.

Every command loads a dataset file into an in-memory repository, validates
the caller parameters and prints one report, either as text (rich panels and
tabulate tables) or as JSON. ``export`` writes the overview report as JSON or
CSV to a file or to standard output.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import tabulate
from rich.console import Console
from rich.panel import Panel

from ..config import Config, ConfigModel, get_config
from ..errors import AnalyticsError
from ..services import AnalyticsService, ExportManager
from ..storage import DatasetError, load_dataset

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_DATASET = "dataset.json"
ROLE_CHOICES = ['admin', 'manager', 'developer', 'tester', 'designer']


# Console formatting helpers
def get_console() -> Console:
    return Console()


def format_table(data: List[Dict], headers: Optional[List[str]] = None,
                 tablefmt: str = "simple") -> str:
    """Format data as a table"""
    if not data:
        return "No data available"

    if headers is None:
        headers = "keys"

    return tabulate.tabulate(data, headers=headers, tablefmt=tablefmt)


def print_section(title: str, content: str = ""):
    """Print a formatted section"""
    click.echo(f"\n{title}")
    click.echo("-" * len(title))
    if content:
        click.echo(content)


def print_metrics(title: str, metrics: Dict[str, Any]):
    """Print a dictionary of scalar metrics as a two-column table"""
    rows = [{"Metric": key.replace('_', ' ').title(), "Value": value}
            for key, value in metrics.items() if not isinstance(value, (dict, list))]
    print_section(title, format_table(rows))


def configure_logging(config: ConfigModel, verbose: bool):
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)


def resolve_dataset_path(data: Optional[str], config: ConfigModel) -> Path:
    if data:
        return Path(data).expanduser()
    return Path(config.data_dir) / DEFAULT_DATASET


def report_options(with_project: bool = True):
    """Options shared by every report command."""
    options = [
        click.option('--data', '-d', type=click.Path(dir_okay=False), envvar='TASKBOARD_DATA',
                     help='Dataset file (JSON or YAML)'),
        click.option('--user-id', '-u', type=int, required=True, help='Caller user id'),
        click.option('--role', '-r', type=click.Choice(ROLE_CHOICES, case_sensitive=False),
                     required=True, help='Caller role'),
        click.option('--range', 'date_range', default=None,
                     help='Date range in days (7, 14, 30, 60, 90)'),
    ]
    if with_project:
        options.append(click.option('--project', '-p', 'project_id', type=int, default=None,
                                    help='Narrow the report to one project'))

    def decorator(func):
        for option in reversed(options):
            func = option(func)
        return func
    return decorator


def output_option(func):
    return click.option('--format', '-f', 'output_format', type=click.Choice(['text', 'json']),
                        default='text', help='Output format')(func)


def run_report(ctx: click.Context, operation: str, data: Optional[str], user_id: int, role: str,
               date_range: Optional[str], project_id: Optional[int], export_format: Optional[str] = None):
    """Load the dataset, validate the request and run one service operation."""
    config = ctx.obj['config']
    path = resolve_dataset_path(data, config)
    try:
        repository = load_dataset(path)
        service = AnalyticsService(repository, config)
        request = service.request(user_id, role, date_range, project_id, export_format)
        return asyncio.run(getattr(service, operation)(request))
    except FileNotFoundError:
        click.echo(f"Error: dataset file not found: {path}", err=True)
        sys.exit(1)
    except (AnalyticsError, DatasetError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def emit(report, output_format: str, render):
    if output_format == 'json':
        click.echo(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    else:
        render(report.to_dict())


# Main command group
@click.group(name='taskboard')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), default=None,
              help='Configuration file (defaults to ~/.taskboard/config.yaml)')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def analytics_cli(ctx: click.Context, config_path: Optional[str], verbose: bool):
    """Role-scoped analytics reports for projects, tasks and time entries"""
    config = Config.reload(Path(config_path)) if config_path else get_config()
    configure_logging(config, verbose)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


# -- Renderers ----------------------------------------------------------------

def _render_activities(activities: List[Dict[str, Any]]):
    rows = [{
        "When": a['occurred_at'][:16].replace('T', ' '),
        "Activity": a['type'],
        "Entity": a['entity_name'],
        "User": a['user_name'],
        "Project": a['project_name'],
    } for a in activities]
    print_section("Recent Activity", format_table(rows))


def _render_distribution(distribution: Dict[str, Any]):
    for key, title in (('by_status', "Tasks by Status"), ('by_priority', "Tasks by Priority"),
                       ('by_project', "Tasks by Project")):
        rows = [{"Name": b['name'], "Count": b['value']} for b in distribution.get(key, [])]
        print_section(title, format_table(rows))


def _render_overview(data: Dict[str, Any]):
    overview = data['overview']
    projects, tasks = overview['projects'], overview['tasks']
    get_console().print(Panel(
        f"Projects: {projects['total']} total, {projects['active']} active, "
        f"{projects['overdue']} overdue\n"
        f"Tasks: {tasks['total']} total, {tasks['completion_rate']}% complete, "
        f"{tasks['overdue']} overdue",
        title=f"Dashboard Overview (last {data['date_range']} days)",
    ))
    print_metrics("Projects", projects)
    print_metrics("Tasks", tasks)
    print_metrics("Task Status", tasks['by_status'])
    print_metrics("Users", overview['users'])
    print_metrics("Time Tracking", overview['time_tracking'])

    progress = [{
        "Project": p['name'],
        "Status": p['status'],
        "Progress": f"{p['progress']}%",
        "Tasks": f"{p['completed_tasks']}/{p['total_tasks']}",
        "Overdue": "yes" if p['is_overdue'] else "",
    } for p in data['charts']['project_progress']]
    print_section("Project Progress", format_table(progress))
    _render_activities(data['recent_activities'])


def _render_team(data: Dict[str, Any]):
    rows = [{
        "Member": m['name'],
        "Role": m['role'],
        "Assigned": m['assigned_tasks'],
        "Completed": m['completed_tasks'],
        "Overdue": m['overdue_tasks'],
        "Rate": f"{m['completion_rate']}%",
        "Avg Hours": m['average_completion_time'],
        "Projects": m['active_projects'],
    } for m in data['team_performance']]
    print_section(f"Team Performance (last {data['date_range']} days)", format_table(rows))


def _render_productivity(data: Dict[str, Any]):
    rows = [p for p in data['completion_trends'] if p['total']]
    print_section(f"Completion Trend (last {data['date_range']} days, active days only)",
                  format_table(rows))
    print_section("Time Allocation by Priority", format_table(data['time_allocation']))


def _render_project(data: Dict[str, Any]):
    get_console().print(Panel(
        f"{data['tasks']['total']} tasks, {data['tasks']['completion_rate']}% complete",
        title=f"Project {data['project_id']} (last {data['date_range']} days)",
    ))
    print_metrics("Project", data['project'])
    print_metrics("Tasks", data['tasks'])
    _render_distribution(data['distribution'])


def _render_user(data: Dict[str, Any]):
    print_metrics(f"My Statistics (last {data['date_range']} days)", data['statistics'])
    _render_activities(data['recent_activities'])
    _render_distribution(data['task_distribution'])


def _render_system(data: Dict[str, Any]):
    print_section("Active Users by Role", format_table(data['user_distribution']))
    print_section("Projects Created per Day", format_table(data['trends']['project_creation']))
    print_section("Tasks Completed per Day", format_table(data['trends']['task_completion']))
    print_section("Top Performers", format_table(data['top_performers']))


def _render_time(data: Dict[str, Any]):
    time_tracking = data['time_tracking']
    print_metrics(f"Time Tracking (last {data['date_range']} days)", time_tracking)
    print_section("Recent Entries", format_table(time_tracking['recent_entries']))


def _render_team_productivity(data: Dict[str, Any]):
    time_analytics = data['time_analytics']
    print_metrics("Team Time", time_analytics)
    print_section("Top Contributors by Hours", format_table(time_analytics['top_performers']))
    print_metrics("Team Tasks", data['task_analytics'])
    activity = data['activity_analytics']
    print_metrics("Team Activity", activity['activity_trend'])
    print_section("Most Active Users", format_table(activity['most_active_users']))


def _render_summary(data: Dict[str, Any]):
    _render_overview(data['overview'])
    if data['productivity']:
        _render_team_productivity(data['productivity'])


# -- Commands -----------------------------------------------------------------

@analytics_cli.command(name='overview')
@report_options()
@output_option
@click.pass_context
def overview_command(ctx, data, user_id, role, date_range, project_id, output_format):
    """Dashboard overview for the caller's scope"""
    report = run_report(ctx, 'overview', data, user_id, role, date_range, project_id)
    emit(report, output_format, _render_overview)


@analytics_cli.command(name='team')
@report_options()
@output_option
@click.pass_context
def team_command(ctx, data, user_id, role, date_range, project_id, output_format):
    """Team performance (managers and admins)"""
    report = run_report(ctx, 'team_performance', data, user_id, role, date_range, project_id)
    emit(report, output_format, _render_team)


@analytics_cli.command(name='productivity')
@report_options()
@output_option
@click.pass_context
def productivity_command(ctx, data, user_id, role, date_range, project_id, output_format):
    """Daily completion trend and time allocation"""
    report = run_report(ctx, 'productivity_analytics', data, user_id, role, date_range, project_id)
    emit(report, output_format, _render_productivity)


@analytics_cli.command(name='project')
@click.argument('project_ref', type=int)
@report_options(with_project=False)
@output_option
@click.pass_context
def project_command(ctx, project_ref, data, user_id, role, date_range, output_format):
    """Statistics for one project"""
    report = run_report(ctx, 'project_statistics', data, user_id, role, date_range, project_ref)
    emit(report, output_format, _render_project)


@analytics_cli.command(name='user')
@report_options()
@output_option
@click.pass_context
def user_command(ctx, data, user_id, role, date_range, project_id, output_format):
    """Personal dashboard of the caller"""
    report = run_report(ctx, 'user_dashboard', data, user_id, role, date_range, project_id)
    emit(report, output_format, _render_user)


@analytics_cli.command(name='system')
@report_options()
@output_option
@click.pass_context
def system_command(ctx, data, user_id, role, date_range, project_id, output_format):
    """System-wide analytics (admins only)"""
    report = run_report(ctx, 'system_analytics', data, user_id, role, date_range, project_id)
    emit(report, output_format, _render_system)


@analytics_cli.command(name='time')
@report_options()
@output_option
@click.pass_context
def time_command(ctx, data, user_id, role, date_range, project_id, output_format):
    """Time tracking summary"""
    report = run_report(ctx, 'time_analytics', data, user_id, role, date_range, project_id)
    emit(report, output_format, _render_time)


@analytics_cli.command(name='team-productivity')
@report_options()
@output_option
@click.pass_context
def team_productivity_command(ctx, data, user_id, role, date_range, project_id, output_format):
    """Team time, task and activity analytics (managers and admins)"""
    report = run_report(ctx, 'team_productivity', data, user_id, role, date_range, project_id)
    emit(report, output_format, _render_team_productivity)


@analytics_cli.command(name='summary')
@report_options()
@output_option
@click.pass_context
def summary_command(ctx, data, user_id, role, date_range, project_id, output_format):
    """Overview, team productivity and time tracking in one report"""
    report = run_report(ctx, 'analytics_summary', data, user_id, role, date_range, project_id)
    emit(report, output_format, _render_summary)


@analytics_cli.command(name='export')
@report_options()
@click.option('--format', '-f', 'export_format', type=click.Choice(['json', 'csv']),
              default='json', help='Export format')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write to file instead of stdout')
@click.pass_context
def export_command(ctx, data, user_id, role, date_range, project_id, export_format, output):
    """Export the dashboard overview as JSON or CSV"""
    content = run_report(ctx, 'export', data, user_id, role, date_range, project_id, export_format)
    if output:
        path = ExportManager().write(content, output)
        click.echo(f"Dashboard data exported to {path}")
    else:
        click.echo(content.decode("utf-8"))


def main(*args, **kwargs):
    return analytics_cli(*args, **kwargs)
