from cloudformation_pilot import util, network_records

from typing import Any, Dict, List, Optional
from colorama import Fore, Style
from botocore.config import Config
from botocore.exceptions import ClientError, ConnectTimeoutError, ReadTimeoutError

import logging

log = logging.getLogger('stack-pilot')

TGW_SEARCH_TIMEOUT = 30


def get_nacl(nacl_id: str, ctx: Optional[util.OperationContext] = None) -> List[network_records.NaclEntry]:
    ctx = ctx or util.background_context()
    c = util.session.client('ec2')
    ctx.check()
    log.debug(f'Retrieving network ACL {Fore.GREEN}{nacl_id}{Style.RESET_ALL}')
    r = c.describe_network_acls(NetworkAclIds=[nacl_id])
    acls = r.get('NetworkAcls', list())
    if len(acls) == 0:
        raise util.ResourceLookupFailed(f'Network ACL {nacl_id} not found')
    return [network_records.NaclEntry.from_api(xe) for xe in acls[0].get('Entries', list())]


def get_route_table(route_table_id: str, ctx: Optional[util.OperationContext] = None) -> List[network_records.Route]:
    ctx = ctx or util.background_context()
    c = util.session.client('ec2')
    ctx.check()
    log.debug(f'Retrieving route table {Fore.GREEN}{route_table_id}{Style.RESET_ALL}')
    r = c.describe_route_tables(RouteTableIds=[route_table_id])
    tables = r.get('RouteTables', list())
    if len(tables) == 0:
        raise util.ResourceLookupFailed(f'Route table {route_table_id} not found')
    return [network_records.Route.from_api(xr) for xr in tables[0].get('Routes', list())]


def get_managed_prefix_lists(ctx: Optional[util.OperationContext] = None) -> List[Dict[str, Any]]:
    ctx = ctx or util.background_context()
    c = util.session.client('ec2')
    return util.exhaust_pages(ctx, c.describe_managed_prefix_lists, 'PrefixLists')


def get_aws_managed_prefix_list_ids(ctx: Optional[util.OperationContext] = None) -> List[str]:
    return [xp['PrefixListId'] for xp in get_managed_prefix_lists(ctx) if xp.get('OwnerId') == 'AWS']


def get_transit_gateway_route_table_routes(ctx: Optional[util.OperationContext],
                                           route_table_id: str) -> List[network_records.TransitGatewayRoute]:
    ctx = (ctx or util.background_context()).derive(TGW_SEARCH_TIMEOUT)
    ctx.check()
    remaining = ctx.remaining()
    c = util.session.client('ec2', config=Config(connect_timeout=remaining, read_timeout=remaining,
                                                 retries={'max_attempts': 1}))
    log.debug(f'Searching routes of transit gateway route table {Fore.GREEN}{route_table_id}{Style.RESET_ALL}')
    try:
        r = c.search_transit_gateway_routes(
            TransitGatewayRouteTableId=route_table_id,
            Filters=[{'Name': 'state', 'Values': ['active', 'blackhole']}]
        )
    except (ConnectTimeoutError, ReadTimeoutError) as e:
        raise util.OperationTimedOut(f'API call timed out after {TGW_SEARCH_TIMEOUT} seconds: {e}') from e
    except ClientError as e:
        code = util.client_error_code(e)
        if code == 'InvalidRouteTableID.NotFound':
            raise util.ResourceLookupFailed(f'Transit gateway route table {route_table_id} not found: {e}') from e
        if code == 'UnauthorizedOperation':
            raise util.ResourceLookupFailed(
                f'Insufficient IAM permissions to search transit gateway routes: {e}') from e
        raise
    if ctx.expired():
        raise util.OperationTimedOut(f'API call timed out after {TGW_SEARCH_TIMEOUT} seconds')
    return [network_records.TransitGatewayRoute.from_api(xr) for xr in r.get('Routes', list())]
