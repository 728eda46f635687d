from cloudformation_pilot import util, console_urls

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from colorama import Fore, Style
from botocore.exceptions import ClientError

import logging
import re

log = logging.getLogger('stack-pilot')

CHANGESET_DONE_STATES = ('CREATE_COMPLETE', 'FAILED', 'DELETE_FAILED')

NO_CHANGES_PATTERNS = [
    "didn't contain changes",
    'No updates are to be performed',
]

WHITESPACE_RE = re.compile(r'\s+')


def normalise_reason(reason: str) -> str:
    return WHITESPACE_RE.sub('', reason or '').lower()


def is_no_changes_reason(reason: str) -> bool:
    normalised = normalise_reason(reason)
    return any(normalise_reason(xp) in normalised for xp in NO_CHANGES_PATTERNS)


@dataclass
class ResourceChangeDetail:
    evaluation: str = ''
    attribute: str = ''
    requires_recreation: str = ''
    causing_entity: str = ''
    change_source: str = ''

    @classmethod
    def from_api(cls, body: Dict[str, Any]) -> 'ResourceChangeDetail':
        target = body.get('Target', dict())
        attribute = target.get('Attribute', '')
        if target.get('Name'):
            attribute = f'{attribute}.{target["Name"]}'
        return cls(
            evaluation=body.get('Evaluation', ''),
            attribute=attribute,
            requires_recreation=target.get('RequiresRecreation', ''),
            causing_entity=body.get('CausingEntity', ''),
            change_source=body.get('ChangeSource', ''),
        )


@dataclass
class Change:
    action: str = ''
    logical_id: str = ''
    resource_type: str = ''
    resource_id: str = ''
    replacement: str = ''
    module: str = ''
    details: List[ResourceChangeDetail] = field(default_factory=list)

    @classmethod
    def from_api(cls, body: Dict[str, Any]) -> 'Change':
        rc = body.get('ResourceChange', dict())
        u = cls(
            action=rc.get('Action', ''),
            logical_id=rc.get('LogicalResourceId', ''),
            resource_type=rc.get('ResourceType', ''),
            resource_id=rc.get('PhysicalResourceId', ''),
            replacement=rc.get('Replacement', ''),
            details=[ResourceChangeDetail.from_api(xd) for xd in rc.get('Details', list())],
        )
        module_info = rc.get('ModuleInfo')
        if module_info is not None:
            u.module = f'{module_info.get("LogicalIdHierarchy", "")}({module_info.get("TypeHierarchy", "")})'
        return u

    def get_danger_details(self) -> List[str]:
        return [f'{xd.evaluation}: {xd.attribute} - {xd.causing_entity}' for xd in self.details
                if xd.requires_recreation in ('Always', 'Conditionally')]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'Action': self.action,
            'LogicalID': self.logical_id,
            'Type': self.resource_type,
            'ResourceID': self.resource_id,
            'Replacement': self.replacement,
            'Module': self.module,
            'Details': [{
                'Evaluation': xd.evaluation,
                'Attribute': xd.attribute,
                'RequiresRecreation': xd.requires_recreation,
                'CausingEntity': xd.causing_entity,
                'ChangeSource': xd.change_source,
            } for xd in self.details],
        }

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> 'Change':
        return cls(
            action=body.get('Action', ''),
            logical_id=body.get('LogicalID', ''),
            resource_type=body.get('Type', ''),
            resource_id=body.get('ResourceID', ''),
            replacement=body.get('Replacement', ''),
            module=body.get('Module', ''),
            details=[ResourceChangeDetail(
                evaluation=xd.get('Evaluation', ''),
                attribute=xd.get('Attribute', ''),
                requires_recreation=xd.get('RequiresRecreation', ''),
                causing_entity=xd.get('CausingEntity', ''),
                change_source=xd.get('ChangeSource', ''),
            ) for xd in body.get('Details') or list()],
        )


class Changeset(object):
    def __init__(self) -> None:
        self.id: str = ''
        self.name: str = ''
        self.stack_id: str = ''
        self.stack_name: str = ''
        self.status: str = ''
        self.status_reason: str = ''
        self.creation_time: Optional[datetime] = None
        self.changes: List[Change] = list()
        self.has_module: bool = False

    @classmethod
    def from_pages(cls, pages: List[Dict[str, Any]]) -> 'Changeset':
        if len(pages) == 0:
            raise util.ChangesetFailed('Change set description is empty')
        u = cls()
        for xp in pages:
            for xc in xp.get('Changes', list()):
                u.add_change(Change.from_api(xc))
        first = pages[0]
        u.stack_id = first.get('StackId', '')
        u.stack_name = first.get('StackName', '')
        u.status = first.get('Status', '')
        u.status_reason = first.get('StatusReason') or ''
        u.id = first.get('ChangeSetId', '')
        u.name = first.get('ChangeSetName', '')
        u.creation_time = first.get('CreationTime')
        return u

    def add_change(self, change: Change) -> None:
        self.changes.append(change)
        if change.module != '':
            self.has_module = True

    @property
    def is_done(self) -> bool:
        return self.status in CHANGESET_DONE_STATES

    def is_no_changes(self) -> bool:
        return self.status == 'FAILED' and is_no_changes_reason(self.status_reason)

    def is_failed(self) -> bool:
        return self.status in ('FAILED', 'DELETE_FAILED') and not self.is_no_changes()

    def get_stack(self, ctx: Optional[util.OperationContext] = None) -> Dict[str, Any]:
        from cloudformation_pilot import cfn_stack
        return cfn_stack.get_stack(self.stack_id, ctx)

    def delete(self, ctx: Optional[util.OperationContext] = None) -> bool:
        ctx = ctx or util.background_context()
        c = util.session.client('cloudformation')
        ctx.check()
        try:
            c.delete_change_set(StackName=self.stack_name, ChangeSetName=self.name)
        except ClientError as e:
            log.warning(f'Failed to delete change set {Fore.GREEN}{self.name}{Style.RESET_ALL}: {e}')
            return False
        log.info(f'Deleted change set {Fore.GREEN}{self.name}{Style.RESET_ALL}')
        return True

    def execute(self, ctx: Optional[util.OperationContext] = None) -> None:
        ctx = ctx or util.background_context()
        c = util.session.client('cloudformation')
        ctx.check()
        log.info(f'Executing change set {Fore.GREEN}{self.name}{Style.RESET_ALL} '
            f'on stack {Fore.GREEN}{self.stack_name}{Style.RESET_ALL}')
        c.execute_change_set(StackName=self.stack_name, ChangeSetName=self.name)

    def generate_url(self, region: str) -> str:
        return console_urls.generate_changeset_url(region, self.stack_id, self.id)
