from cloudformation_pilot import util, identity_center

from typing import Any, Dict, Optional

import json
import logging

log = logging.getLogger('stack-pilot')


def get_resource(type_name: str, identifier: str, ctx: Optional[util.OperationContext] = None) -> Dict[str, Any]:
    ctx = ctx or util.background_context()
    c = util.session.client('cloudcontrol')
    ctx.check()
    r = c.get_resource(TypeName=type_name, Identifier=identifier)
    return r.get('ResourceDescription', dict())


def get_resource_properties(type_name: str, identifier: str,
                            ctx: Optional[util.OperationContext] = None) -> Dict[str, Any]:
    properties = get_resource(type_name, identifier, ctx).get('Properties') or '{}'
    try:
        return json.loads(properties)
    except ValueError as e:
        raise util.ResourceLookupFailed(f'Unreadable properties for {type_name} {identifier}: {e}') from None


def list_all_resources(type_name: str, ctx: Optional[util.OperationContext] = None) -> Dict[str, str]:
    if type_name == identity_center.PERMISSION_SET_TYPE:
        return identity_center.get_permission_set_arns(ctx)
    if type_name == identity_center.ASSIGNMENT_TYPE:
        return identity_center.get_assignment_arns(ctx)
    log.warning(f'Listing unmanaged resources of type {type_name} is not supported, skipping')
    return dict()
