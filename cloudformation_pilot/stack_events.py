from cloudformation_pilot import util, cfn_stack, outputs
from cloudformation_pilot.resources import CfnResource

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from colorama import Fore, Style

import logging

log = logging.getLogger('stack-pilot')

SUCCESS_STATES = ('CREATE_COMPLETE', 'IMPORT_COMPLETE', 'UPDATE_COMPLETE', 'DELETE_COMPLETE')

SESSION_TYPES = [
    ('REVIEW_IN_PROGRESS', 'Create'),
    ('CREATE_', 'Create'),
    ('UPDATE_', 'Update'),
    ('DELETE_', 'Delete'),
    ('IMPORT_', 'Import'),
]

RESOURCE_EVENT_TYPES = [
    ('CREATE', 'Add', 'CREATE_COMPLETE'),
    ('UPDATE', 'Modify', 'UPDATE_COMPLETE'),
    ('DELETE', 'Remove', 'DELETE_COMPLETE'),
]

REPLACEMENT_SUFFIX = '-replacement'
CLEANUP_SUFFIX = '-cleanup'


@dataclass
class ResourceEvent:
    resource: CfnResource
    key: str = ''
    event_type: str = ''
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    start_status: str = ''
    end_status: str = ''
    end_status_reason: str = ''
    expected_end_status: str = ''
    raw_info: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def duration(self) -> timedelta:
        return self.end_date - self.start_date


@dataclass
class StackEvent:
    type: str = ''
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    success: bool = False
    milestones: Dict[datetime, str] = field(default_factory=dict)
    resource_events: List[ResourceEvent] = field(default_factory=list)

    @property
    def duration(self) -> timedelta:
        return self.end_date - self.start_date


def update_resource_id(current: str, new: str) -> str:
    if new == '' or new in current:
        return current
    if current == '':
        return new
    return f'{current} => {new}'


def session_type(status: str) -> str:
    for xp, xt in SESSION_TYPES:
        if status.startswith(xp):
            return xt
    return ''


def is_session_end(status: str) -> bool:
    return status.endswith('COMPLETE') or status.endswith('FAILED')


def is_stack_row(stack_name: str, event: Dict[str, Any]) -> bool:
    return event.get('LogicalResourceId') == stack_name and event.get('ResourceType') == util.STACK_META_TYPE


def resource_event_key(base: str, finished: set, failed: set) -> str:
    if base in finished:
        replacement = base + REPLACEMENT_SUFFIX
        if replacement in finished or replacement in failed:
            return base + CLEANUP_SUFFIX
        return replacement
    if base in failed:
        return base + CLEANUP_SUFFIX
    return base


def new_resource_event(stack_name: str, key: str, event: Dict[str, Any]) -> ResourceEvent:
    status = event['ResourceStatus']
    u = ResourceEvent(
        resource=CfnResource(
            stack_name=stack_name,
            type=event.get('ResourceType', ''),
            resource_id=event.get('PhysicalResourceId', ''),
            logical_id=event.get('LogicalResourceId', ''),
        ),
        key=key,
        start_date=event['Timestamp'],
        end_date=event['Timestamp'],
        start_status=status,
        end_status=status,
        raw_info=[event],
    )
    for xp, xt, xs in RESOURCE_EVENT_TYPES:
        if xp in status:
            u.event_type = xt
            u.expected_end_status = xs
            break
    if u.event_type == 'Remove' and (key.endswith(REPLACEMENT_SUFFIX) or key.endswith(CLEANUP_SUFFIX)):
        u.event_type = 'Cleanup'
    return u


class SessionBuilder(object):
    def __init__(self, stack_name: str) -> None:
        self.stack_name: str = stack_name
        self.sessions: List[StackEvent] = list()
        self.current: Optional[StackEvent] = None
        self.resources: Dict[str, ResourceEvent] = dict()
        self.finished: set = set()
        self.failed: set = set()
        self.last_status: str = ''

    def open_session(self, timestamp: datetime, status: str) -> None:
        self.current = StackEvent(type=session_type(status), start_date=timestamp)
        self.sessions.append(self.current)
        self.resources = dict()
        self.finished = set()
        self.failed = set()

    def add_stack_row(self, event: Dict[str, Any]) -> None:
        status, timestamp = event['ResourceStatus'], event['Timestamp']
        if self.current is None or self.last_status == '' or is_session_end(self.last_status):
            self.open_session(timestamp, status)
        else:
            self.current.end_date = timestamp
            if 'IN_PROGRESS' not in status:
                self.current.success = status in SUCCESS_STATES
        self.last_status = status
        self.current.milestones[timestamp] = status

    def add_resource_row(self, event: Dict[str, Any]) -> None:
        if self.current is None:
            # rows older than the first stack-level row still need a session to live in
            self.open_session(event['Timestamp'], '')
        base = f'{util.slug(event.get("ResourceType", ""))}-{event.get("LogicalResourceId", "")}-' \
            f'{util.rfc3339(self.current.start_date)}'
        key = resource_event_key(base, self.finished, self.failed)
        if key not in self.resources:
            self.resources[key] = new_resource_event(self.stack_name, key, event)
            self.current.resource_events.append(self.resources[key])
            return
        u = self.resources[key]
        status = event['ResourceStatus']
        u.end_date = event['Timestamp']
        u.end_status = status
        u.raw_info.append(event)
        if 'COMPLETE' in status:
            self.finished.add(key)
        if 'FAILED' in status:
            self.failed.add(key)
            u.end_status_reason = event.get('ResourceStatusReason', '')
        u.resource.resource_id = update_resource_id(u.resource.resource_id, event.get('PhysicalResourceId', ''))

    def build(self, raw_events: List[Dict[str, Any]]) -> List[StackEvent]:
        for xe in sorted(raw_events, key=lambda x: x['Timestamp']):
            if is_stack_row(self.stack_name, xe):
                self.add_stack_row(xe)
            else:
                self.add_resource_row(xe)
        for xs in self.sessions:
            if xs.end_date is None:
                xs.end_date = xs.start_date
        return self.sessions


def build_stack_events(stack_name: str, raw_events: List[Dict[str, Any]]) -> List[StackEvent]:
    """Folds raw stack events into lifecycle sessions.

    Raw events can come in any order, they are replayed oldest first. A stack-level
    row opens a session when there is no previous stack status or the previous one
    ended in ``COMPLETE`` or ``FAILED``, any later stack-level row moves the session
    end. Resource rows are grouped per session into ``ResourceEvent`` windows keyed
    by type, logical id and session start. A resource that is created again in the
    same session gets a ``-replacement`` window, the one after that a ``-cleanup``.

    Every resource row ends up in exactly one window. A session still in progress
    is returned with ``success`` unset.
    """
    return SessionBuilder(stack_name).build(raw_events)


class CfnStack(object):
    def __init__(self, raw_info: Dict[str, Any]) -> None:
        self.raw_info: Dict[str, Any] = raw_info
        self.name: str = raw_info['StackName']
        self.id: str = raw_info['StackId']
        self.description: str = raw_info.get('Description', '')
        self.outputs: List[outputs.CfnOutput] = list()
        self.imported_by: List[str] = list()
        self.events: List[StackEvent] = list()

    def get_events(self, ctx: Optional[util.OperationContext] = None) -> List[StackEvent]:
        if len(self.events) != 0:
            return self.events
        ctx = ctx or util.background_context()
        c = util.session.client('cloudformation')
        raw_events = util.exhaust_pages(ctx, c.describe_stack_events, 'StackEvents', StackName=self.id)
        log.debug(f'Retrieved {len(raw_events)} events for stack {Fore.GREEN}{self.name}{Style.RESET_ALL}')
        self.events = build_stack_events(self.name, raw_events)
        return self.events


def get_cfn_stacks(ctx: Optional[util.OperationContext] = None, stack_name: str = '') -> Dict[str, CfnStack]:
    ctx = ctx or util.background_context()
    u = dict()
    for xs in cfn_stack.describe_stacks(stack_name, ctx):
        stack = CfnStack(xs)
        stack.outputs = outputs.get_outputs_for_stack(xs)
        for xo in stack.outputs:
            xo.fill_imports(ctx)
            if xo.imported:
                stack.imported_by.extend(xo.imported_by)
        u[stack.id] = stack
    return u
