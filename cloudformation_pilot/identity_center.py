from cloudformation_pilot import util

from typing import Dict, List, Optional
from colorama import Fore, Style

import logging

log = logging.getLogger('stack-pilot')

PERMISSION_SET_TYPE = 'AWS::SSO::PermissionSet'
ASSIGNMENT_TYPE = 'AWS::SSO::Assignment'


def get_sso_instance_arn(ctx: Optional[util.OperationContext] = None) -> str:
    ctx = ctx or util.background_context()
    c = util.session.client('sso-admin')
    instances = util.exhaust_pages(ctx, c.list_instances, 'Instances')
    if len(instances) == 0:
        raise util.ResourceLookupFailed('No SSO instances found')
    log.debug(f'Using SSO instance {Fore.GREEN}{instances[0]["InstanceArn"]}{Style.RESET_ALL}')
    return instances[0]['InstanceArn']


def get_permission_set_arns(ctx: Optional[util.OperationContext] = None) -> Dict[str, str]:
    ctx = ctx or util.background_context()
    instance_arn = get_sso_instance_arn(ctx)
    c = util.session.client('sso-admin')
    permission_sets = util.exhaust_pages(ctx, c.list_permission_sets, 'PermissionSets', InstanceArn=instance_arn)
    return {f'{instance_arn}|{xp}': PERMISSION_SET_TYPE for xp in permission_sets}


def get_account_ids(ctx: Optional[util.OperationContext] = None) -> List[str]:
    ctx = ctx or util.background_context()
    c = util.session.client('organizations')
    return [xa['Id'] for xa in util.exhaust_pages(ctx, c.list_accounts, 'Accounts')]


def get_account_assignment_arns_for_permission_set(instance_arn: str, permission_set_arn: str,
                                                   account_ids: Optional[List[str]] = None,
                                                   ctx: Optional[util.OperationContext] = None) -> Dict[str, str]:
    ctx = ctx or util.background_context()
    if account_ids is None:
        account_ids = get_account_ids(ctx)
    c = util.session.client('sso-admin')
    u = dict()
    for xa in account_ids:
        assignments = util.exhaust_pages(ctx, c.list_account_assignments, 'AccountAssignments',
                                         AccountId=xa, InstanceArn=instance_arn, PermissionSetArn=permission_set_arn)
        for xs in assignments:
            key = f'{instance_arn}|{xs["AccountId"]}|AWS_ACCOUNT|{permission_set_arn}|' \
                f'{xs["PrincipalType"]}|{xs["PrincipalId"]}'
            u[key] = ASSIGNMENT_TYPE
    return u


def get_assignment_arns(ctx: Optional[util.OperationContext] = None) -> Dict[str, str]:
    ctx = ctx or util.background_context()
    instance_arn = get_sso_instance_arn(ctx)
    account_ids = get_account_ids(ctx)
    u = dict()
    for xp in get_permission_set_arns(ctx):
        permission_set_arn = xp.split('|')[1]
        u.update(get_account_assignment_arns_for_permission_set(instance_arn, permission_set_arn, account_ids, ctx))
    return u
