from cloudformation_pilot import util, cfn_stack, deployment_log
from cloudformation_pilot.changeset import Changeset

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from colorama import Fore, Style

import logging

log = logging.getLogger('stack-pilot')

OUTCOME_NO_CHANGES = 'NO_CHANGES'
OUTCOME_CHANGESET_FAILED = 'CHANGESET_FAILED'
OUTCOME_DRY_RUN = 'DRY_RUN'
OUTCOME_CHANGESET_CREATED = 'CHANGESET_CREATED'
OUTCOME_SUCCESS = 'SUCCESS'
OUTCOME_DEPLOYMENT_FAILED = 'DEPLOYMENT_FAILED'

DEPLOY_SUCCESS_STATES = ('CREATE_COMPLETE', 'UPDATE_COMPLETE', 'IMPORT_COMPLETE')
FAILED_RESOURCE_STATES = ('CREATE_FAILED', 'IMPORT_FAILED', 'DELETE_FAILED', 'UPDATE_FAILED')
EVENTS_POLL_INTERVAL = 3


@dataclass
class DeploymentOutcome:
    state: str
    changeset: Optional[Changeset] = None
    stack: Optional[Dict[str, Any]] = None
    failures: List[Dict[str, Any]] = field(default_factory=list)
    changeset_url: str = ''

    @property
    def succeeded(self) -> bool:
        return self.state not in (OUTCOME_CHANGESET_FAILED, OUTCOME_DEPLOYMENT_FAILED)


def event_line(event: Dict[str, Any]) -> str:
    return f'{util.rfc3339(event["Timestamp"])}: {event.get("ResourceType", "")} ' \
        f'{Fore.GREEN}{event.get("LogicalResourceId", "")}{Style.RESET_ALL} ' \
        f'in status {Fore.MAGENTA}{event.get("ResourceStatus", "")}{Style.RESET_ALL}'


class StackDeployment(object):
    """Drives one stack through change set creation, review and execution.

    The change set is created and polled until it settles. A change set without
    changes ends the run as ``NO_CHANGES`` and leaves the deployment log alone. A
    dry run deletes the change set again, together with the empty stack a new
    deployment leaves behind, while ``create_only`` keeps it for later review.
    Otherwise the change set is executed and stack events are reported until the
    stack settles. The terminal status is recorded in the deployment log.
    """

    def __init__(self, deploy_info: cfn_stack.DeployInfo, log_writer: deployment_log.DeploymentLogWriter,
                 account: str = '', region: str = '', deployer: str = '', create_only: bool = False,
                 changeset_poll_interval: float = cfn_stack.CHANGESET_POLL_INTERVAL,
                 events_poll_interval: float = EVENTS_POLL_INTERVAL, clock: Optional[util.Clock] = None) -> None:
        self.deploy_info: cfn_stack.DeployInfo = deploy_info
        self.log_writer: deployment_log.DeploymentLogWriter = log_writer
        self.account: str = account
        self.region: str = region
        self.deployer: str = deployer
        self.create_only: bool = create_only
        self.changeset_poll_interval: float = changeset_poll_interval
        self.events_poll_interval: float = events_poll_interval
        self.clock: util.Clock = clock or util.Clock()
        self.log_entry: Optional[deployment_log.DeploymentLog] = None

    def prepare(self, ctx: util.OperationContext) -> None:
        d = self.deploy_info
        d.is_new = d.is_new_stack(ctx)
        if not d.is_new:
            ready, status = d.is_ready_for_update(ctx)
            if not ready:
                raise util.DeploymentFailed(f'Stack {d.stack_name} is in status {status} and can\'t be updated')
        self.log_entry = deployment_log.new_deployment_log(self.account, self.region, self.deployer,
                                                           d.cleaned_stack_name, d.is_new, self.clock)
        if d.prechecks_failed:
            self.log_entry.prechecks = deployment_log.PRECHECKS_FAILED
        elif d.prechecks_ran:
            self.log_entry.prechecks = deployment_log.PRECHECKS_PASSED
        log.info(f'{"Creating new" if d.is_new else "Updating"} stack {Fore.GREEN}{d.stack_name}{Style.RESET_ALL}'
            f'{" (dry run)" if d.is_dry_run else ""}')

    def create_changeset(self, ctx: util.OperationContext) -> Changeset:
        d = self.deploy_info
        if d.template_url:
            log.info(f'Using template uploaded as {Fore.GREEN}{d.template_url}{Style.RESET_ALL}')
        d.create_change_set(ctx)
        cs = d.wait_until_changeset_done(ctx, self.changeset_poll_interval)
        self.log_writer.add_changeset(self.log_entry, cs)
        return cs

    def report_changes(self, cs: Changeset) -> None:
        for xc in cs.changes:
            log.info(f'{xc.action} {xc.resource_type} {Fore.GREEN}{xc.logical_id}{Style.RESET_ALL}'
                f'{" " + xc.resource_id if xc.resource_id else ""}'
                f'{" (replacement: " + xc.replacement + ")" if xc.replacement else ""}')
            for xd in xc.get_danger_details():
                log.warning(f'  {xd}')

    def remove_empty_new_stack(self, ctx: util.OperationContext) -> None:
        d = self.deploy_info
        if not d.is_new:
            return
        stack = d.get_fresh_stack(ctx)
        if stack['StackStatus'] in cfn_stack.NEW_STACK_STATES:
            log.info(f'Removing empty stack {Fore.GREEN}{d.stack_name}{Style.RESET_ALL} left by the change set')
            if not d.delete_stack(ctx):
                log.error(f'Failed to delete stack {d.stack_name}, please check manually')

    def report_events(self, since: Optional[datetime], ctx: util.OperationContext) -> Optional[datetime]:
        for xe in sorted(self.deploy_info.get_events(ctx), key=lambda x: x['Timestamp']):
            if since is not None and xe['Timestamp'] <= since:
                continue
            since = xe['Timestamp']
            if xe.get('ResourceStatus', '').endswith('FAILED'):
                log.warning(f'{event_line(xe)}: {xe.get("ResourceStatusReason", "")}')
            else:
                log.info(event_line(xe))
        return since

    def tail_events(self, ctx: util.OperationContext) -> None:
        latest = self.deploy_info.changeset.creation_time
        ctx.sleep(self.events_poll_interval)
        while True:
            latest = self.report_events(latest, ctx)
            ctx.sleep(self.events_poll_interval)
            if not self.deploy_info.is_ongoing(ctx):
                break
        # once more in case the last events landed after the final poll
        self.report_events(latest, ctx)

    def report_execution_times(self, ctx: util.OperationContext) -> None:
        for xr, xt in sorted(self.deploy_info.get_execution_times(ctx).items()):
            if len(xt) < 2:
                continue
            took = max(xt.values()) - min(xt.values())
            log.info(f'{xr} took {int(took.total_seconds())}s')

    def failed_events(self, ctx: util.OperationContext) -> List[Dict[str, Any]]:
        since = self.deploy_info.changeset.creation_time
        u = list()
        for xe in sorted(self.deploy_info.get_events(ctx), key=lambda x: x['Timestamp']):
            if since is not None and xe['Timestamp'] <= since:
                continue
            if xe.get('ResourceStatus') in FAILED_RESOURCE_STATES:
                u.append({
                    'CfnName': xe.get('LogicalResourceId', ''),
                    'Type': xe.get('ResourceType', ''),
                    'Status': xe['ResourceStatus'],
                    'Reason': xe.get('ResourceStatusReason', ''),
                })
        return u

    def run(self, ctx: Optional[util.OperationContext] = None) -> DeploymentOutcome:
        ctx = ctx or util.background_context()
        d = self.deploy_info
        util.log_section(f'Change set for {d.stack_name}', bold=True)
        self.prepare(ctx)
        cs = self.create_changeset(ctx)
        url = cs.generate_url(self.region)

        if cs.is_no_changes():
            log.info(f'Change set for stack {Fore.GREEN}{d.stack_name}{Style.RESET_ALL} contains no changes')
            cs.delete(ctx)
            self.remove_empty_new_stack(ctx)
            return DeploymentOutcome(OUTCOME_NO_CHANGES, changeset=cs, changeset_url=url)
        if cs.status != 'CREATE_COMPLETE':
            log.error(f'Change set creation failed in status {Fore.MAGENTA}{cs.status}{Style.RESET_ALL}: '
                f'{cs.status_reason}')
            log.error(f'Details in the console: {url}')
            cs.delete(ctx)
            self.remove_empty_new_stack(ctx)
            return DeploymentOutcome(OUTCOME_CHANGESET_FAILED, changeset=cs, changeset_url=url)

        self.report_changes(cs)
        if d.is_dry_run:
            log.info('Dry run, deleting the change set')
            cs.delete(ctx)
            self.remove_empty_new_stack(ctx)
            return DeploymentOutcome(OUTCOME_DRY_RUN, changeset=cs, changeset_url=url)
        if self.create_only:
            log.info(f'Change set {Fore.GREEN}{cs.name}{Style.RESET_ALL} is ready for review: {url}')
            return DeploymentOutcome(OUTCOME_CHANGESET_CREATED, changeset=cs, changeset_url=url)

        util.log_section(f'Deploying {d.stack_name}', bold=True)
        cs.execute(ctx)
        self.tail_events(ctx)
        stack = d.get_fresh_stack(ctx)
        status = stack['StackStatus']
        if status in DEPLOY_SUCCESS_STATES:
            log.info(f'Stack {Fore.GREEN}{d.stack_name}{Style.RESET_ALL} deployed in status '
                f'{Fore.MAGENTA}{status}{Style.RESET_ALL}')
            self.report_execution_times(ctx)
            self.log_entry.status_description = status
            self.log_writer.success(self.log_entry)
            return DeploymentOutcome(OUTCOME_SUCCESS, changeset=cs, stack=stack, changeset_url=url)

        failures = self.failed_events(ctx)
        for xf in failures:
            log.error(f'{xf["Type"]} {xf["CfnName"]} {xf["Status"]}: {xf["Reason"]}')
        self.log_entry.status_description = status
        self.log_writer.failed(self.log_entry, failures)
        log.error(f'Stack {d.stack_name} deployment failed in status {Fore.MAGENTA}{status}{Style.RESET_ALL}')
        if d.is_new:
            d.delete_stack(ctx)
        return DeploymentOutcome(OUTCOME_DEPLOYMENT_FAILED, changeset=cs, stack=stack, failures=failures,
                                 changeset_url=url)
