from cloudformation_pilot import cfn_template, intrinsics, network_records

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import logging

log = logging.getLogger('stack-pilot')

NACL_ENTRY_TYPE = 'AWS::EC2::NetworkAclEntry'
ROUTE_TYPE = 'AWS::EC2::Route'
TGW_ROUTE_TYPE = 'AWS::EC2::TransitGatewayRoute'


@dataclass
class StackParameter:
    key: str
    value: Optional[str] = None
    resolved_value: Optional[str] = None

    @classmethod
    def from_api(cls, body: Dict[str, Any]) -> 'StackParameter':
        return cls(body.get('ParameterKey', ''), body.get('ParameterValue'), body.get('ResolvedValue'))

    def to_api(self) -> Dict[str, str]:
        u = {'ParameterKey': self.key}
        if self.value is not None:
            u['ParameterValue'] = self.value
        return u

    @property
    def effective_value(self) -> str:
        if self.resolved_value is not None:
            return self.resolved_value
        return self.value or ''


def strip_ref(value: str) -> str:
    if value.startswith(intrinsics.UNRESOLVED_REF_PREFIX):
        return value[len(intrinsics.UNRESOLVED_REF_PREFIX):]
    return value


def parameter_value(name: str, params: List[StackParameter]) -> str:
    result = ''
    for xp in params:
        if xp.key == name:
            result = xp.effective_value
    return result


def resolve(properties: Dict[str, Any], name: str, params: List[StackParameter],
            mapping: Dict[str, str]) -> Optional[str]:
    if name not in properties:
        return None
    value = properties[name]
    result = ''
    if isinstance(value, str):
        stripped = strip_ref(value)
        result = mapping[stripped] if stripped in mapping else value
    elif isinstance(value, dict):
        ref_name = value.get('Ref')
        if isinstance(ref_name, str):
            result = mapping[ref_name] if ref_name in mapping else parameter_value(ref_name, params)
        import_name = value.get('Fn::ImportValue')
        if isinstance(import_name, str):
            result = mapping.get(import_name, import_name)
    if result == '':
        return None
    return result


def to_int32(value: Any) -> int:
    if isinstance(value, bool):
        log.warning(f'Expected a number, got [{value}], using 0')
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
    log.warning(f'Expected a number, got [{value}], using 0')
    return 0


def resolve_cidr(properties: Dict[str, Any], name: str, params: List[StackParameter]) -> str:
    value = properties.get(name)
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get('Ref'), str):
        return parameter_value(value['Ref'], params)
    return ''


def nacl_resource_to_entry(resource: cfn_template.Resource,
                           params: List[StackParameter]) -> network_records.NaclEntry:
    prop = resource.properties
    protocol = ''
    if isinstance(prop.get('Protocol'), str):
        protocol = prop['Protocol']
    elif isinstance(prop.get('Protocol'), (int, float)) and not isinstance(prop.get('Protocol'), bool):
        protocol = str(int(prop['Protocol']))

    cidr_block = resolve_cidr(prop, 'CidrBlock', params)
    ipv6_cidr_block = resolve_cidr(prop, 'Ipv6CidrBlock', params) if cidr_block == '' else ''

    rule_action = network_records.RULE_ACTION_ALLOW
    if prop.get('RuleAction') == network_records.RULE_ACTION_DENY:
        rule_action = network_records.RULE_ACTION_DENY

    egress = prop.get('Egress', False)
    if isinstance(egress, str):
        egress = egress.lower() == 'true'

    entry = network_records.NaclEntry(
        cidr_block=cidr_block if cidr_block != '' else None,
        ipv6_cidr_block=ipv6_cidr_block if ipv6_cidr_block != '' else None,
        egress=bool(egress),
        protocol=protocol,
        rule_action=rule_action,
        rule_number=to_int32(prop.get('RuleNumber')),
    )
    if prop.get('PortRange') is not None:
        ports = prop['PortRange']
        entry.port_range = network_records.PortRange(to_int32(ports.get('From')), to_int32(ports.get('To')))
    if prop.get('Icmp') is not None:
        icmp = prop['Icmp']
        entry.icmp_type_code = network_records.IcmpTypeCode(to_int32(icmp.get('Type')), to_int32(icmp.get('Code')))
    return entry


def route_resource_to_route(resource: cfn_template.Resource, params: List[StackParameter],
                            mapping: Dict[str, str]) -> network_records.Route:
    r = network_records.Route(
        origin=network_records.ROUTE_ORIGIN_CREATE_ROUTE,
        state=network_records.ROUTE_STATE_ACTIVE,
    )
    for attr, property_name in network_records.ROUTE_STRING_FIELDS:
        setattr(r, attr, resolve(resource.properties, property_name, params, mapping))
    return r


def tgw_route_resource_to_route(resource: cfn_template.Resource, params: List[StackParameter],
                                mapping: Dict[str, str]) -> network_records.TransitGatewayRoute:
    prop = resource.properties
    r = network_records.TransitGatewayRoute(
        destination_cidr_block=resolve(prop, 'DestinationCidrBlock', params, mapping),
        prefix_list_id=resolve(prop, 'DestinationPrefixListId', params, mapping),
        type=network_records.TGW_ROUTE_TYPE_STATIC,
    )
    if prop.get('Blackhole') is True:
        r.state = network_records.TGW_ROUTE_STATE_BLACKHOLE
        return r
    r.state = network_records.TGW_ROUTE_STATE_ACTIVE
    attachment_id = resolve(prop, 'TransitGatewayAttachmentId', params, mapping)
    if attachment_id:
        r.transit_gateway_attachments = [
            network_records.TransitGatewayRouteAttachment(transit_gateway_attachment_id=attachment_id)]
    return r


def owner_logical_id(resource: cfn_template.Resource, owner_property: str) -> str:
    value = resource.properties.get(owner_property)
    if isinstance(value, dict) and isinstance(value.get('Ref'), str):
        return value['Ref']
    if not isinstance(value, str):
        return ''
    return strip_ref(value)


def owned_resources(template: cfn_template.Template, resource_type: str, owner_property: str, logical_id: str):
    for xr in template.resources.values():
        if xr.type != resource_type or not template.should_have_resource(xr):
            continue
        if owner_logical_id(xr, owner_property) == logical_id:
            yield xr


def filter_nacl_entries_by_logical_id(logical_id: str, template: cfn_template.Template,
                                      params: List[StackParameter]) -> Dict[str, network_records.NaclEntry]:
    u = dict()
    for xr in owned_resources(template, NACL_ENTRY_TYPE, 'NetworkAclId', logical_id):
        entry = nacl_resource_to_entry(xr, params)
        u[entry.key] = entry
    return u


def filter_routes_by_logical_id(logical_id: str, template: cfn_template.Template, params: List[StackParameter],
                                mapping: Dict[str, str]) -> Dict[str, network_records.Route]:
    u = dict()
    for xr in owned_resources(template, ROUTE_TYPE, 'RouteTableId', logical_id):
        route = route_resource_to_route(xr, params, mapping)
        u[network_records.route_destination(route)] = route
    return u


def filter_tgw_routes_by_logical_id(logical_id: str, template: cfn_template.Template, params: List[StackParameter],
                                    mapping: Dict[str, str]) -> Dict[str, network_records.TransitGatewayRoute]:
    u = dict()
    for xr in owned_resources(template, TGW_ROUTE_TYPE, 'TransitGatewayRouteTableId', logical_id):
        route = tgw_route_resource_to_route(xr, params, mapping)
        u[network_records.tgw_route_destination(route)] = route
    return u
