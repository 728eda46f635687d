from cloudformation_pilot import util, changeset

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from colorama import Fore, Style

import json
import logging
import re

log = logging.getLogger('stack-pilot')

DEFAULT_LOG_FILENAME = 'fog-deployments.log'

DEPLOYMENT_TYPE_CREATE = 'CREATE'
DEPLOYMENT_TYPE_UPDATE = 'UPDATE'
STATUS_SUCCESS = 'SUCCESS'
STATUS_FAILED = 'FAILED'
PRECHECKS_NONE = 'NONE'
PRECHECKS_PASSED = 'PASSED'
PRECHECKS_FAILED = 'FAILED'

EPOCH = datetime(1, 1, 1, tzinfo=timezone.utc)
FRACTION_RE = re.compile(r'\.(\d{6})\d+')


def format_timestamp(dt: Optional[datetime]) -> str:
    if dt is None:
        dt = EPOCH
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return EPOCH
    # fromisoformat takes at most microseconds
    value = FRACTION_RE.sub(r'.\1', value.replace('Z', '+00:00'))
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class DeploymentLog:
    account: str = ''
    region: str = ''
    deployer: str = ''
    deployment_name: str = ''
    deployment_type: str = ''
    stack_name: str = ''
    prechecks: str = ''
    status: str = ''
    status_description: str = ''
    started_at: datetime = EPOCH
    updated_at: datetime = EPOCH
    changes: List[changeset.Change] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'Account': self.account,
            'Changes': [xc.to_dict() for xc in self.changes],
            'Deployer': self.deployer,
            'DeploymentName': self.deployment_name,
            'DeploymentType': self.deployment_type,
            'Failures': self.failures,
            'PreChecks': self.prechecks,
            'Region': self.region,
            'StackName': self.stack_name,
            'Status': self.status,
            'StatusDescription': self.status_description,
            'StartedAt': format_timestamp(self.started_at),
            'UpdatedAt': format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> 'DeploymentLog':
        return cls(
            account=body.get('Account', ''),
            region=body.get('Region', ''),
            deployer=body.get('Deployer', ''),
            deployment_name=body.get('DeploymentName', ''),
            deployment_type=body.get('DeploymentType', ''),
            stack_name=body.get('StackName', ''),
            prechecks=body.get('PreChecks', ''),
            status=body.get('Status', ''),
            status_description=body.get('StatusDescription', ''),
            started_at=parse_timestamp(body.get('StartedAt')),
            updated_at=parse_timestamp(body.get('UpdatedAt')),
            changes=[changeset.Change.from_dict(xc) for xc in body.get('Changes') or list()],
            failures=body.get('Failures') or list(),
        )


def generate_deployment_name(account: str, region: str, stack_name: str) -> str:
    return f'CFN-{account}-{region}-{stack_name}'


def new_deployment_log(account: str, region: str, deployer: str, stack_name: str, is_new: bool,
                       clock: Optional[util.Clock] = None) -> DeploymentLog:
    clock = clock or util.Clock()
    return DeploymentLog(
        account=account,
        region=region,
        deployer=deployer,
        stack_name=stack_name,
        deployment_name=generate_deployment_name(account, region, stack_name),
        deployment_type=DEPLOYMENT_TYPE_CREATE if is_new else DEPLOYMENT_TYPE_UPDATE,
        prechecks=PRECHECKS_NONE,
        started_at=clock.now(),
    )


class DeploymentLogWriter(object):
    """Appends deployment records to a JSON-lines file.

    Each record is written as a single newline-terminated line through an append-mode
    handle, so concurrent writers never interleave within a record. A disabled
    writer accepts every call and writes nothing.
    """

    def __init__(self, filename: str = DEFAULT_LOG_FILENAME, enabled: bool = False,
                 clock: Optional[util.Clock] = None) -> None:
        self.filename: str = filename
        self.enabled: bool = enabled
        self.clock: util.Clock = clock or util.Clock()

    def write(self, entry: DeploymentLog) -> None:
        if not self.enabled:
            return
        entry.updated_at = self.clock.now()
        line = json.dumps(entry.to_dict()) + '\n'
        with open(self.filename, 'a', encoding='utf-8') as f:
            f.write(line)
            f.flush()
        log.debug(f'Wrote deployment log entry for {Fore.GREEN}{entry.deployment_name}{Style.RESET_ALL} '
            f'to {self.filename}')

    def add_changeset(self, entry: DeploymentLog, cs: changeset.Changeset) -> None:
        entry.changes = list(cs.changes)

    def success(self, entry: DeploymentLog) -> None:
        entry.status = STATUS_SUCCESS
        self.write(entry)

    def failed(self, entry: DeploymentLog, failures: List[Dict[str, Any]]) -> None:
        entry.status = STATUS_FAILED
        entry.failures = failures
        self.write(entry)


def read_all_logs(filename: str = DEFAULT_LOG_FILENAME) -> List[DeploymentLog]:
    try:
        with open(filename, encoding='utf-8') as f:
            lines = [xl for xl in f.read().splitlines() if xl.strip() != '']
    except FileNotFoundError:
        log.debug(f'Deployment log {filename} does not exist yet')
        return list()
    u = list()
    for xi, xl in enumerate(lines):
        try:
            u.append(DeploymentLog.from_dict(json.loads(xl)))
        except (ValueError, TypeError, AttributeError) as e:
            if xi == len(lines) - 1:
                log.warning(f'Ignoring truncated final line in deployment log {filename}')
                break
            raise util.DeploymentLogCorrupt(f'Line {xi + 1} of deployment log {filename} is malformed: {e}') from None
    # newest first, later lines win ties
    return sorted(reversed(u), key=lambda x: x.started_at, reverse=True)


def get_latest_successful(deployment_name: str, filename: str = DEFAULT_LOG_FILENAME) -> DeploymentLog:
    for xl in read_all_logs(filename):
        if xl.deployment_name == deployment_name and xl.status == STATUS_SUCCESS:
            return xl
    return DeploymentLog()
