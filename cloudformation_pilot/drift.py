from cloudformation_pilot import util, cfn_stack, cfn_template, cloud_control, ec2_inspector, network_records, projectors, resources

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from colorama import Fore, Style

import json
import logging

log = logging.getLogger('stack-pilot')

IN_SYNC = 'IN_SYNC'
MODIFIED = 'MODIFIED'
UNCHECKED = 'UNCHECKED'
MISSING = 'MISSING'
EXTRA = 'EXTRA'
DELETED = 'DELETED'
UNMANAGED = 'UNMANAGED'

PROVIDER_DRIFT_KINDS = {
    'IN_SYNC': IN_SYNC,
    'MODIFIED': MODIFIED,
    'DELETED': DELETED,
    'NOT_CHECKED': UNCHECKED,
}

NACL_TYPE = 'AWS::EC2::NetworkAcl'
ROUTE_TABLE_TYPE = 'AWS::EC2::RouteTable'
TGW_ROUTE_TABLE_TYPE = 'AWS::EC2::TransitGatewayRouteTable'

DEFAULT_NACL_RULE_NUMBER = 32767
DETECTION_IN_PROGRESS = 'DETECTION_IN_PROGRESS'
DETECTION_FAILED = 'DETECTION_FAILED'
TYPE_SCOPE_SEPARATOR = '\0'


@dataclass
class DriftVerdict:
    kind: str
    reasons: List[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return self.kind == IN_SYNC


@dataclass
class DriftResult:
    logical_id: str
    resource_type: str
    verdict: DriftVerdict


@dataclass
class SpecialCases:
    nacls: Dict[str, str] = field(default_factory=dict)
    route_tables: Dict[str, str] = field(default_factory=dict)
    tgw_route_tables: Dict[str, str] = field(default_factory=dict)
    logical_to_physical: Dict[str, str] = field(default_factory=dict)


def compare_nacl(live_entries: List[network_records.NaclEntry],
                 expected: Dict[str, network_records.NaclEntry]) -> Dict[str, DriftVerdict]:
    leftover = dict(expected)
    u = dict()
    for xe in live_entries:
        key = xe.key
        if key in leftover:
            cfn_entry = leftover.pop(key)
            if network_records.compare_nacl_entries(xe, cfn_entry):
                u[key] = DriftVerdict(IN_SYNC)
            else:
                u[key] = DriftVerdict(MODIFIED, [
                    f'Expected: {network_records.nacl_entry_to_string(cfn_entry)} '
                    f'Actual: {network_records.nacl_entry_to_string(xe)}'])
        elif xe.rule_number != DEFAULT_NACL_RULE_NUMBER:
            u[key] = DriftVerdict(EXTRA, [f'Unmanaged entry: {network_records.nacl_entry_to_string(xe)}'])
    for key, cfn_entry in leftover.items():
        u[key] = DriftVerdict(MISSING, [f'Removed entry: {network_records.nacl_entry_to_string(cfn_entry)}'])
    return u


def compare_route_table(live_routes: List[network_records.Route], expected: Dict[str, network_records.Route],
                        aws_prefix_lists: Iterable[str] = (), include_prefix_lists: bool = False,
                        blackhole_ignore: Iterable[str] = ()) -> Dict[str, DriftVerdict]:
    """Matches live routes against the routes declared for the same table.

    Prefix-list routes can't be declared in a template, so they are skipped unless
    ``include_prefix_lists`` is set. AWS managed prefix lists are always skipped.
    The routes created together with the table are never reported.
    """
    aws_prefix_lists = set(aws_prefix_lists)
    leftover = dict(expected)
    u = dict()
    for xr in live_routes:
        key = network_records.route_destination(xr)
        if xr.destination_prefix_list_id is not None and \
                (not include_prefix_lists or xr.destination_prefix_list_id in aws_prefix_lists):
            continue
        if key in leftover:
            cfn_route = leftover.pop(key)
            if network_records.compare_routes(xr, cfn_route, blackhole_ignore):
                u[key] = DriftVerdict(IN_SYNC)
            else:
                u[key] = DriftVerdict(MODIFIED, [
                    f'Expected: {network_records.route_to_string(cfn_route)} '
                    f'Actual: {network_records.route_to_string(xr)}'])
        elif xr.origin != network_records.ROUTE_ORIGIN_CREATE_ROUTE_TABLE:
            u[key] = DriftVerdict(EXTRA, [f'Unmanaged route: {network_records.route_to_string(xr)}'])
    for key, cfn_route in leftover.items():
        # no destination means the route resolved to nothing, usually a condition
        if key == '':
            continue
        u[key] = DriftVerdict(MISSING, [f'Removed route: {network_records.route_to_string(cfn_route)}'])
    return u


def compare_tgw_route_table(live_routes: List[network_records.TransitGatewayRoute],
                            expected: Dict[str, network_records.TransitGatewayRoute],
                            blackhole_ignore: Iterable[str] = ()) -> Dict[str, DriftVerdict]:
    leftover = dict(expected)
    u = dict()
    for xr in live_routes:
        if xr.type == network_records.TGW_ROUTE_TYPE_PROPAGATED:
            continue
        key = network_records.tgw_route_destination(xr)
        if key in leftover:
            cfn_route = leftover.pop(key)
            if network_records.compare_tgw_routes(xr, cfn_route, blackhole_ignore):
                u[key] = DriftVerdict(IN_SYNC)
            else:
                u[key] = DriftVerdict(MODIFIED, [
                    f'Expected: {network_records.tgw_route_to_string(cfn_route)} '
                    f'Actual: {network_records.tgw_route_to_string(xr)}'])
        else:
            u[key] = DriftVerdict(EXTRA, [f'Unmanaged route: {network_records.tgw_route_to_string(xr)}'])
    for key, cfn_route in leftover.items():
        if key == '':
            continue
        u[key] = DriftVerdict(MISSING, [f'Removed route: {network_records.tgw_route_to_string(cfn_route)}'])
    return u


def summarise(logical_id: str, resource_type: str, verdicts: Dict[str, DriftVerdict]) -> DriftResult:
    reasons = list()
    for xv in verdicts.values():
        reasons.extend(xv.reasons)
    verdict = DriftVerdict(MODIFIED, reasons) if len(reasons) != 0 else DriftVerdict(IN_SYNC)
    return DriftResult(logical_id, resource_type, verdict)


def pretty_json(value: Optional[str]) -> str:
    if value is None:
        return ''
    try:
        return json.dumps(json.loads(value), indent=2)
    except json.JSONDecodeError:
        return value


def load_properties(value: Optional[str]) -> Dict[str, Any]:
    if not value:
        return dict()
    try:
        body = json.loads(value)
    except json.JSONDecodeError as e:
        raise util.DriftDetectionFailed(f'Unable to parse resource properties: {e}') from None
    return body if isinstance(body, dict) else dict()


def expected_and_actual_tags(expected: Dict[str, Any], actual: Dict[str, Any]) -> Dict[str, Dict[str, str]]:
    u: Dict[str, Dict[str, str]] = dict()
    for xt in expected.get('Tags') or list():
        u[xt['Key']] = {'Expected': xt.get('Value', ''), 'Actual': ''}
    for xt in actual.get('Tags') or list():
        u.setdefault(xt['Key'], {'Expected': ''})['Actual'] = xt.get('Value', '')
    return u


def parse_tags(value: Optional[str]) -> List[Dict[str, str]]:
    try:
        body = json.loads(value or '')
    except json.JSONDecodeError:
        return list()
    if isinstance(body, dict):
        return [body]
    return [xt for xt in body if isinstance(xt, dict)] if isinstance(body, list) else list()


class StackDrift(object):
    def __init__(self, stack_name: str, poll_interval: float = 5, max_attempts: int = 120,
                 ignore_tags: Iterable[str] = (), blackhole_ignore: Iterable[str] = (),
                 detect_unmanaged: Iterable[str] = (), ignore_unmanaged: Iterable[str] = (),
                 include_prefix_lists: bool = False) -> None:
        self.stack_name: str = stack_name
        self.poll_interval: float = poll_interval
        self.max_attempts: int = max_attempts
        self.ignore_tags: List[str] = [xt for xt in ignore_tags if xt]
        self.blackhole_ignore: List[str] = list(blackhole_ignore)
        self.detect_unmanaged: List[str] = list(detect_unmanaged)
        self.ignore_unmanaged: List[str] = list(ignore_unmanaged)
        self.include_prefix_lists: bool = include_prefix_lists

    def start_drift_detection(self, ctx: Optional[util.OperationContext] = None) -> str:
        ctx = ctx or util.background_context()
        c = util.session.client('cloudformation')
        ctx.check()
        log.info(f'Starting drift detection on stack {Fore.GREEN}{self.stack_name}{Style.RESET_ALL}')
        r = c.detect_stack_drift(StackName=self.stack_name)
        return r['StackDriftDetectionId']

    def wait_for_drift_detection(self, detection_id: str, ctx: Optional[util.OperationContext] = None) -> str:
        ctx = ctx or util.background_context()
        c = util.session.client('cloudformation')
        for _ in range(self.max_attempts):
            ctx.check()
            r = c.describe_stack_drift_detection_status(StackDriftDetectionId=detection_id)
            status = r['DetectionStatus']
            if status == DETECTION_FAILED:
                log.warning(f'Drift detection on stack {Fore.GREEN}{self.stack_name}{Style.RESET_ALL} '
                    f'finished in {Fore.MAGENTA}{status}{Style.RESET_ALL}: {r.get("DetectionStatusReason", "")}')
            if status != DETECTION_IN_PROGRESS:
                return status
            ctx.sleep(self.poll_interval)
        raise util.DriftDetectionFailed(f'Drift detection on stack {self.stack_name} '
            f'did not finish after {self.max_attempts} attempts')

    def get_default_stack_drift(self, ctx: Optional[util.OperationContext] = None) -> List[Dict[str, Any]]:
        ctx = ctx or util.background_context()
        c = util.session.client('cloudformation')
        return util.exhaust_pages(ctx, c.describe_stack_resource_drifts, 'StackResourceDrifts',
                                  StackName=self.stack_name)

    @staticmethod
    def separate_special_cases(drifts: List[Dict[str, Any]]) -> SpecialCases:
        u = SpecialCases()
        buckets = {NACL_TYPE: u.nacls, ROUTE_TABLE_TYPE: u.route_tables, TGW_ROUTE_TABLE_TYPE: u.tgw_route_tables}
        for xd in drifts:
            logical_id, physical_id = xd['LogicalResourceId'], xd.get('PhysicalResourceId', '')
            u.logical_to_physical[logical_id] = physical_id
            if xd['ResourceType'] in buckets:
                buckets[xd['ResourceType']][logical_id] = physical_id
        return u

    def get_unchecked_resources(self, checked: Iterable[str],
                                ctx: Optional[util.OperationContext] = None) -> List[resources.CfnResource]:
        checked = set(checked)
        return [xr for xr in resources.get_resources(self.stack_name, ctx) if xr.logical_id not in checked]

    def should_tag_be_handled(self, tag: str, drift: Dict[str, Any]) -> bool:
        """Tags can be ignored everywhere (``Name``), per resource type
        (``AWS::EC2::VPC:Name``) or per logical id (``MyVpc:Name``)."""
        if tag in self.ignore_tags:
            return False
        for xi in self.ignore_tags:
            marked = xi.replace('::', TYPE_SCOPE_SEPARATOR)
            if ':' not in marked:
                continue
            scope, name = marked.split(':', 1)
            if name.replace(TYPE_SCOPE_SEPARATOR, '::') != tag:
                continue
            if TYPE_SCOPE_SEPARATOR in scope:
                if scope.replace(TYPE_SCOPE_SEPARATOR, '::') == drift.get('ResourceType'):
                    return False
            elif scope == drift.get('LogicalResourceId'):
                return False
        return True

    def tag_difference(self, difference: Dict[str, Any], handled: List[str], tag_map: Dict[str, Dict[str, str]],
                       drift: Dict[str, Any]) -> Tuple[str, str]:
        path = difference['PropertyPath'].split('/')
        difference_type = difference['DifferenceType']
        if difference_type == 'REMOVE':
            for xt in parse_tags(difference.get('ExpectedValue')):
                if self.should_tag_be_handled(xt.get('Key', ''), drift):
                    return f'{difference_type}: {path[1]} - {xt.get("Key", "")}: {xt.get("Value", "")}', ''
            return '', ''
        if difference_type == 'ADD':
            for xt in parse_tags(difference.get('ActualValue')):
                if self.should_tag_be_handled(xt.get('Key', ''), drift):
                    return f'{difference_type}: {path[1]} - {xt.get("Key", "")}: {xt.get("Value", "")}', ''
            return '', ''
        tag_key, values = '', {'Expected': '', 'Actual': ''}
        for key, xv in tag_map.items():
            if xv.get('Expected') == difference.get('ExpectedValue') and xv.get('Actual') == difference.get('ActualValue'):
                tag_key, values = key, xv
        if not self.should_tag_be_handled(tag_key, drift):
            return '', ''
        if len(path) >= 4:
            if path[3] == 'Key' and values.get('Expected') == values.get('Actual'):
                return f'{difference_type}: Tag {difference.get("ExpectedValue", "")} sequence change', path[2]
            if path[3] == 'Value' and path[2] in handled:
                return '', ''
        return f'{difference_type}: {tag_key} - {values.get("Expected", "")} => {values.get("Actual", "")}', ''

    def property_differences(self, drift: Dict[str, Any]) -> List[str]:
        tag_map = expected_and_actual_tags(load_properties(drift.get('ExpectedProperties')),
                                           load_properties(drift.get('ActualProperties')))
        u = list()
        handled = list()
        for xp in drift.get('PropertyDifferences', list()):
            path = xp['PropertyPath']
            difference_type = xp['DifferenceType']
            if 'Tags' in path.split('/'):
                text, handled_tag = self.tag_difference(xp, handled, tag_map, drift)
                if text:
                    u.append(text)
                if handled_tag:
                    handled.append(handled_tag)
                continue
            if difference_type == 'REMOVE':
                u.append(f'{difference_type}: {path} - {pretty_json(xp.get("ExpectedValue"))}')
            elif difference_type == 'ADD':
                u.append(f'{difference_type}: {path} - {pretty_json(xp.get("ActualValue"))}')
            else:
                u.append(f'{difference_type}: {path} - {xp.get("ExpectedValue", "")} => {xp.get("ActualValue", "")}')
        return sorted(u)

    def provider_result(self, drift: Dict[str, Any]) -> DriftResult:
        kind = PROVIDER_DRIFT_KINDS.get(drift['StackResourceDriftStatus'], UNCHECKED)
        reasons = list()
        if kind == MODIFIED:
            reasons = self.property_differences(drift)
            if len(reasons) == 0:
                kind = IN_SYNC
        return DriftResult(drift['LogicalResourceId'], drift['ResourceType'], DriftVerdict(kind, reasons))

    def check_unmanaged(self, all_resources: Dict[str, str], logical_to_physical: Dict[str, str]) -> List[DriftResult]:
        managed = set(logical_to_physical.values())
        u = list()
        for identifier, resource_type in all_resources.items():
            if identifier in managed or identifier in self.ignore_unmanaged:
                continue
            u.append(DriftResult(identifier, resource_type,
                                 DriftVerdict(UNMANAGED, ['Not managed by this CloudFormation stack'])))
        return u

    def check_network(self, special: SpecialCases, template: cfn_template.Template,
                      params: List[projectors.StackParameter], ctx: util.OperationContext) -> List[DriftResult]:
        u = list()
        for logical_id, physical_id in special.nacls.items():
            verdicts = compare_nacl(ec2_inspector.get_nacl(physical_id, ctx),
                                    projectors.filter_nacl_entries_by_logical_id(logical_id, template, params))
            u.append(summarise(f'Entries for NACL {logical_id}', projectors.NACL_ENTRY_TYPE, verdicts))
        if len(special.route_tables) != 0:
            aws_prefix_lists = ec2_inspector.get_aws_managed_prefix_list_ids(ctx)
            for logical_id, physical_id in special.route_tables.items():
                expected = projectors.filter_routes_by_logical_id(logical_id, template, params,
                                                                  special.logical_to_physical)
                verdicts = compare_route_table(ec2_inspector.get_route_table(physical_id, ctx), expected,
                                               aws_prefix_lists, self.include_prefix_lists, self.blackhole_ignore)
                u.append(summarise(f'Routes for RouteTable {logical_id}', projectors.ROUTE_TYPE, verdicts))
        for logical_id, physical_id in special.tgw_route_tables.items():
            expected = projectors.filter_tgw_routes_by_logical_id(logical_id, template, params,
                                                                  special.logical_to_physical)
            live = ec2_inspector.get_transit_gateway_route_table_routes(ctx, physical_id)
            verdicts = compare_tgw_route_table(live, expected, self.blackhole_ignore)
            u.append(summarise(f'Routes for TransitGatewayRouteTable {logical_id}', projectors.TGW_ROUTE_TYPE,
                               verdicts))
        return u

    def detect(self, ctx: Optional[util.OperationContext] = None, results_only: bool = False) -> List[DriftResult]:
        ctx = ctx or util.background_context()
        if not results_only:
            self.wait_for_drift_detection(self.start_drift_detection(ctx), ctx)
        drifts = self.get_default_stack_drift(ctx)
        special = self.separate_special_cases(drifts)
        u = [self.provider_result(xd) for xd in drifts]

        stack = cfn_stack.get_stack(self.stack_name, ctx)
        params = [projectors.StackParameter.from_api(xp) for xp in stack.get('Parameters', list())]
        template = cfn_template.get_template_body(self.stack_name, cfn_stack.parameters_map(params), ctx)
        u.extend(self.check_network(special, template, params, ctx))

        for xr in self.get_unchecked_resources(special.logical_to_physical.keys(), ctx):
            u.append(DriftResult(xr.logical_id, xr.type, DriftVerdict(UNCHECKED)))
        for xt in self.detect_unmanaged:
            u.extend(self.check_unmanaged(cloud_control.list_all_resources(xt, ctx), special.logical_to_physical))
        log.debug(f'Drift detection on {Fore.GREEN}{self.stack_name}{Style.RESET_ALL} produced {len(u)} results')
        return u
