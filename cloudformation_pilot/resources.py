from cloudformation_pilot import util, cfn_stack

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from colorama import Fore, Style
from botocore.exceptions import ClientError

import logging

log = logging.getLogger('stack-pilot')

THROTTLE_RETRY_DELAY = 5


@dataclass
class CfnResource:
    stack_name: str = ''
    type: str = ''
    resource_id: str = ''
    logical_id: str = ''
    status: str = ''


def is_throttled(e: ClientError) -> bool:
    return util.client_error_code(e) == 'Throttling' and util.client_error_message(e) == 'Rate exceeded'


def describe_stack_resources(stack_name: str, ctx: util.OperationContext) -> List[Dict[str, Any]]:
    c = util.session.client('cloudformation')
    ctx.check()
    try:
        r = c.describe_stack_resources(StackName=stack_name)
    except ClientError as e:
        if not is_throttled(e):
            raise
        log.warning(f'Throttled while listing resources of {Fore.GREEN}{stack_name}{Style.RESET_ALL}, '
            f'retrying in {THROTTLE_RETRY_DELAY} seconds')
        ctx.sleep(THROTTLE_RETRY_DELAY)
        r = c.describe_stack_resources(StackName=stack_name)
    return r.get('StackResources', list())


def get_resources(stack_name: str, ctx: Optional[util.OperationContext] = None) -> List[CfnResource]:
    ctx = ctx or util.background_context()
    u = list()
    for xs in cfn_stack.describe_stacks(stack_name, ctx):
        for xr in describe_stack_resources(xs['StackName'], ctx):
            u.append(CfnResource(
                stack_name=xs['StackName'],
                type=xr.get('ResourceType', ''),
                resource_id=xr.get('PhysicalResourceId', ''),
                logical_id=xr.get('LogicalResourceId', ''),
                status=xr.get('ResourceStatus', ''),
            ))
    return u
