from cloudformation_pilot import util, changeset, projectors

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from colorama import Fore, Style
from botocore.exceptions import ClientError

import json
import logging

log = logging.getLogger('stack-pilot')

READY_STATES = (
    'CREATE_COMPLETE',
    'IMPORT_COMPLETE',
    'UPDATE_COMPLETE',
    'ROLLBACK_COMPLETE',
    'UPDATE_ROLLBACK_COMPLETE',
)
NEW_STACK_STATES = ('REVIEW_IN_PROGRESS',)
CHANGESET_CAPABILITIES = ['CAPABILITY_AUTO_EXPAND']
CHANGESET_POLL_INTERVAL = 5


def describe_stacks(stack_name: str, ctx: Optional[util.OperationContext] = None) -> List[Dict[str, Any]]:
    """Lists the stacks matching ``stack_name``.

    An empty name lists every stack, a name containing ``*`` lists every stack and
    keeps the ones matching the wildcard. A wildcard that matches nothing yields an
    empty list, a concrete name that does not exist raises ``StackNotFound``.
    """
    ctx = ctx or util.background_context()
    c = util.session.client('cloudformation')
    wildcard = '*' in stack_name
    kwargs = dict()
    if stack_name and not wildcard:
        kwargs['StackName'] = stack_name
    try:
        stacks = util.exhaust_pages(ctx, c.describe_stacks, 'Stacks', **kwargs)
    except ClientError as e:
        if util.client_error_code(e) == 'ValidationError' and 'does not exist' in util.client_error_message(e):
            raise util.StackNotFound(util.client_error_message(e)) from e
        raise
    if wildcard:
        stack_re = util.wildcard_regex(stack_name)
        stacks = [xs for xs in stacks if stack_re.match(xs['StackName'])]
    return stacks


def get_stack(stack_name: str, ctx: Optional[util.OperationContext] = None) -> Dict[str, Any]:
    stacks = describe_stacks(stack_name, ctx)
    if len(stacks) == 0:
        raise util.StackNotFound(f'Stack {stack_name} does not exist')
    return stacks[0]


def parse_parameter_string(parameters: str) -> List[projectors.StackParameter]:
    if not parameters:
        return list()
    try:
        body = json.loads(parameters)
    except json.JSONDecodeError as e:
        raise util.InvalidParameters(f'Unable to parse parameters: {e}') from None
    if not isinstance(body, list) or not all(isinstance(xp, dict) and 'ParameterKey' in xp for xp in body):
        raise util.InvalidParameters('Parameters must be a list of objects with a ParameterKey')
    return [projectors.StackParameter.from_api(xp) for xp in body]


def parse_tag_string(tags: str) -> List[Dict[str, str]]:
    if not tags:
        return list()
    try:
        body = json.loads(tags)
    except json.JSONDecodeError as e:
        raise util.InvalidParameters(f'Unable to parse tags: {e}') from None
    if not isinstance(body, list) or not all(isinstance(xt, dict) and 'Key' in xt for xt in body):
        raise util.InvalidParameters('Tags must be a list of objects with a Key')
    return [{'Key': str(xt['Key']), 'Value': str(xt.get('Value', ''))} for xt in body]


def parameters_map(parameters: List[projectors.StackParameter]) -> Dict[str, Any]:
    return {xp.key: xp.value for xp in parameters}


class DeployInfo(object):
    def __init__(self, stack_name: str, changeset_name: str = '', template: str = '', template_url: str = '',
                 parameters: Optional[List[projectors.StackParameter]] = None,
                 tags: Optional[List[Dict[str, str]]] = None,
                 is_dry_run: bool = False, prechecks_ran: bool = False, prechecks_failed: bool = False) -> None:
        self.stack_name: str = stack_name
        self.stack_arn: str = ''
        self.changeset_name: str = changeset_name
        self.changeset: Optional[changeset.Changeset] = None
        self.template: str = template
        self.template_url: str = template_url
        self.parameters: List[projectors.StackParameter] = parameters or list()
        self.tags: List[Dict[str, str]] = tags or list()
        self.is_new: bool = False
        self.is_dry_run: bool = is_dry_run
        self.prechecks_ran: bool = prechecks_ran
        self.prechecks_failed: bool = prechecks_failed
        self.raw_stack: Optional[Dict[str, Any]] = None

    @property
    def changeset_type(self) -> str:
        return 'CREATE' if self.is_new else 'UPDATE'

    @property
    def cleaned_stack_name(self) -> str:
        if self.stack_name.startswith('arn:'):
            return self.stack_name.split('/')[1]
        return self.stack_name

    def get_stack(self, ctx: Optional[util.OperationContext] = None) -> Dict[str, Any]:
        if self.raw_stack is None:
            self.raw_stack = get_stack(self.stack_name, ctx)
        return self.raw_stack

    def get_fresh_stack(self, ctx: Optional[util.OperationContext] = None) -> Dict[str, Any]:
        return get_stack(self.stack_arn or self.stack_name, ctx)

    def stack_exists(self, ctx: Optional[util.OperationContext] = None) -> bool:
        try:
            self.raw_stack = get_stack(self.stack_name, ctx)
        except util.StackNotFound:
            log.debug(f'Stack {Fore.GREEN}{self.stack_name}{Style.RESET_ALL} does not exist')
            return False
        return True

    def is_ready_for_update(self, ctx: Optional[util.OperationContext] = None) -> Tuple[bool, str]:
        try:
            stack = self.get_stack(ctx)
        except util.StackNotFound:
            return False, ''
        return stack['StackStatus'] in READY_STATES, stack['StackStatus']

    def is_ongoing(self, ctx: Optional[util.OperationContext] = None) -> bool:
        try:
            stack = self.get_fresh_stack(ctx)
        except util.StackNotFound:
            return False
        return stack['StackStatus'].endswith('_IN_PROGRESS')

    def is_new_stack(self, ctx: Optional[util.OperationContext] = None) -> bool:
        if not self.stack_exists(ctx):
            return True
        return self.get_fresh_stack(ctx)['StackStatus'] in NEW_STACK_STATES

    def create_change_set(self, ctx: Optional[util.OperationContext] = None) -> str:
        ctx = ctx or util.background_context()
        if self.template and self.template_url:
            raise util.InvalidParameters('Provide either a template body or a template URL, not both')
        c = util.session.client('cloudformation')
        kwargs = {
            'StackName': self.stack_name,
            'ChangeSetName': self.changeset_name,
            'ChangeSetType': self.changeset_type,
            'Capabilities': CHANGESET_CAPABILITIES,
        }
        if self.template_url:
            kwargs['TemplateURL'] = self.template_url
        elif self.template:
            kwargs['TemplateBody'] = self.template
        else:
            kwargs['UsePreviousTemplate'] = True
        if len(self.parameters) != 0:
            kwargs['Parameters'] = [xp.to_api() for xp in self.parameters]
        if len(self.tags) != 0:
            kwargs['Tags'] = self.tags
        ctx.check()
        log.info(f'Creating {self.changeset_type.lower()} change set {Fore.GREEN}{self.changeset_name}{Style.RESET_ALL} '
            f'for stack {Fore.GREEN}{self.stack_name}{Style.RESET_ALL}')
        r = c.create_change_set(**kwargs)
        if r.get('StackId'):
            self.stack_arn = r['StackId']
        return r['Id']

    def get_changeset(self, ctx: Optional[util.OperationContext] = None) -> List[Dict[str, Any]]:
        ctx = ctx or util.background_context()
        c = util.session.client('cloudformation')
        kwargs = {'ChangeSetName': self.changeset_name, 'StackName': self.stack_name}
        pages = list()
        while True:
            ctx.check()
            r = c.describe_change_set(**kwargs)
            pages.append(r)
            if not r.get('NextToken'):
                return pages
            kwargs['NextToken'] = r['NextToken']

    def wait_until_changeset_done(self, ctx: Optional[util.OperationContext] = None,
                                  poll_interval: float = CHANGESET_POLL_INTERVAL) -> changeset.Changeset:
        ctx = ctx or util.background_context()
        log.info(f'Waiting for change set {Fore.GREEN}{self.changeset_name}{Style.RESET_ALL} to be created...')
        ctx.sleep(poll_interval)
        pages = self.get_changeset(ctx)
        while pages[0].get('Status') not in changeset.CHANGESET_DONE_STATES:
            log.debug(f'Change set {self.changeset_name} is in status {pages[0].get("Status")}')
            ctx.sleep(poll_interval)
            pages = self.get_changeset(ctx)
        return self.add_changeset(pages)

    def add_changeset(self, pages: List[Dict[str, Any]]) -> changeset.Changeset:
        cs = changeset.Changeset.from_pages(pages)
        self.stack_arn = cs.stack_id
        self.changeset = cs
        return cs

    def get_events(self, ctx: Optional[util.OperationContext] = None) -> List[Dict[str, Any]]:
        ctx = ctx or util.background_context()
        c = util.session.client('cloudformation')
        return util.exhaust_pages(ctx, c.describe_stack_events, 'StackEvents',
                                  StackName=self.stack_arn or self.stack_name)

    def get_execution_times(self, ctx: Optional[util.OperationContext] = None) -> Dict[str, Dict[str, datetime]]:
        u: Dict[str, Dict[str, datetime]] = dict()
        since = self.changeset.creation_time if self.changeset is not None else None
        for xe in self.get_events(ctx):
            if since is not None and xe['Timestamp'] <= since:
                continue
            name = f'{xe["ResourceType"].replace(":", " ")} ({xe["LogicalResourceId"]})'
            u.setdefault(name, dict())[xe['ResourceStatus']] = xe['Timestamp']
        return u

    def delete_stack(self, ctx: Optional[util.OperationContext] = None) -> bool:
        ctx = ctx or util.background_context()
        c = util.session.client('cloudformation')
        ctx.check()
        try:
            c.delete_stack(StackName=self.stack_name)
        except ClientError as e:
            log.warning(f'Failed to delete stack {Fore.GREEN}{self.stack_name}{Style.RESET_ALL}: {e}')
            return False
        log.info(f'Deleting stack {Fore.GREEN}{self.stack_name}{Style.RESET_ALL}')
        return True
