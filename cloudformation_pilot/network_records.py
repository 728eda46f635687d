from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

RULE_ACTION_ALLOW = 'allow'
RULE_ACTION_DENY = 'deny'

ROUTE_ORIGIN_CREATE_ROUTE_TABLE = 'CreateRouteTable'
ROUTE_ORIGIN_CREATE_ROUTE = 'CreateRoute'
ROUTE_STATE_ACTIVE = 'active'
ROUTE_STATE_BLACKHOLE = 'blackhole'

TGW_ROUTE_TYPE_STATIC = 'static'
TGW_ROUTE_TYPE_PROPAGATED = 'propagated'
TGW_ROUTE_STATE_ACTIVE = 'active'
TGW_ROUTE_STATE_BLACKHOLE = 'blackhole'

ROUTE_STRING_FIELDS = [
    ('carrier_gateway_id', 'CarrierGatewayId'),
    ('core_network_arn', 'CoreNetworkArn'),
    ('destination_cidr_block', 'DestinationCidrBlock'),
    ('destination_ipv6_cidr_block', 'DestinationIpv6CidrBlock'),
    ('destination_prefix_list_id', 'DestinationPrefixListId'),
    ('egress_only_internet_gateway_id', 'EgressOnlyInternetGatewayId'),
    ('gateway_id', 'GatewayId'),
    ('instance_id', 'InstanceId'),
    ('instance_owner_id', 'InstanceOwnerId'),
    ('local_gateway_id', 'LocalGatewayId'),
    ('nat_gateway_id', 'NatGatewayId'),
    ('network_interface_id', 'NetworkInterfaceId'),
    ('transit_gateway_id', 'TransitGatewayId'),
    ('vpc_peering_connection_id', 'VpcPeeringConnectionId'),
]

ROUTE_TARGET_FIELDS = [
    'carrier_gateway_id',
    'core_network_arn',
    'egress_only_internet_gateway_id',
    'gateway_id',
    'instance_id',
    'local_gateway_id',
    'nat_gateway_id',
    'network_interface_id',
    'transit_gateway_id',
    'vpc_peering_connection_id',
]


@dataclass
class PortRange:
    from_port: Optional[int] = None
    to_port: Optional[int] = None

    @classmethod
    def from_api(cls, body: Optional[Dict[str, Any]]) -> Optional['PortRange']:
        if body is None:
            return None
        return cls(body.get('From'), body.get('To'))


@dataclass
class IcmpTypeCode:
    type: Optional[int] = None
    code: Optional[int] = None

    @classmethod
    def from_api(cls, body: Optional[Dict[str, Any]]) -> Optional['IcmpTypeCode']:
        if body is None:
            return None
        return cls(body.get('Type'), body.get('Code'))


@dataclass
class NaclEntry:
    cidr_block: Optional[str] = None
    ipv6_cidr_block: Optional[str] = None
    egress: Optional[bool] = None
    icmp_type_code: Optional[IcmpTypeCode] = None
    port_range: Optional[PortRange] = None
    protocol: Optional[str] = None
    rule_action: str = ''
    rule_number: Optional[int] = None

    @classmethod
    def from_api(cls, body: Dict[str, Any]) -> 'NaclEntry':
        return cls(
            cidr_block=body.get('CidrBlock'),
            ipv6_cidr_block=body.get('Ipv6CidrBlock'),
            egress=body.get('Egress'),
            icmp_type_code=IcmpTypeCode.from_api(body.get('IcmpTypeCode')),
            port_range=PortRange.from_api(body.get('PortRange')),
            protocol=body.get('Protocol'),
            rule_action=body.get('RuleAction', ''),
            rule_number=body.get('RuleNumber'),
        )

    @property
    def key(self) -> str:
        return f'{"E" if self.egress else "I"}{self.rule_number}'


@dataclass
class Route:
    carrier_gateway_id: Optional[str] = None
    core_network_arn: Optional[str] = None
    destination_cidr_block: Optional[str] = None
    destination_ipv6_cidr_block: Optional[str] = None
    destination_prefix_list_id: Optional[str] = None
    egress_only_internet_gateway_id: Optional[str] = None
    gateway_id: Optional[str] = None
    instance_id: Optional[str] = None
    instance_owner_id: Optional[str] = None
    local_gateway_id: Optional[str] = None
    nat_gateway_id: Optional[str] = None
    network_interface_id: Optional[str] = None
    transit_gateway_id: Optional[str] = None
    vpc_peering_connection_id: Optional[str] = None
    origin: str = ''
    state: str = ''

    @classmethod
    def from_api(cls, body: Dict[str, Any]) -> 'Route':
        r = cls(origin=body.get('Origin', ''), state=body.get('State', ''))
        for attr, api_key in ROUTE_STRING_FIELDS:
            setattr(r, attr, body.get(api_key))
        return r


@dataclass
class TransitGatewayRouteAttachment:
    transit_gateway_attachment_id: Optional[str] = None
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None

    @classmethod
    def from_api(cls, body: Dict[str, Any]) -> 'TransitGatewayRouteAttachment':
        return cls(body.get('TransitGatewayAttachmentId'), body.get('ResourceId'), body.get('ResourceType'))


@dataclass
class TransitGatewayRoute:
    destination_cidr_block: Optional[str] = None
    prefix_list_id: Optional[str] = None
    state: str = ''
    type: str = ''
    transit_gateway_attachments: List[TransitGatewayRouteAttachment] = field(default_factory=list)

    @classmethod
    def from_api(cls, body: Dict[str, Any]) -> 'TransitGatewayRoute':
        return cls(
            destination_cidr_block=body.get('DestinationCidrBlock'),
            prefix_list_id=body.get('PrefixListId'),
            state=body.get('State', ''),
            type=body.get('Type', ''),
            transit_gateway_attachments=[TransitGatewayRouteAttachment.from_api(xa)
                                         for xa in body.get('TransitGatewayAttachments', list())],
        )

    @property
    def first_attachment_id(self) -> str:
        if len(self.transit_gateway_attachments) == 0:
            return ''
        return self.transit_gateway_attachments[0].transit_gateway_attachment_id or ''


def string_pointer_equal(a: Optional[str], b: Optional[str]) -> bool:
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    return a == b


def int_pointer_equal(a: Optional[int], b: Optional[int]) -> bool:
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    return a == b


def bool_pointer_equal(a: Optional[bool], b: Optional[bool]) -> bool:
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    return a == b


def compare_nacl_entries(entry1: NaclEntry, entry2: NaclEntry) -> bool:
    if not string_pointer_equal(entry1.cidr_block, entry2.cidr_block):
        return False
    if not bool_pointer_equal(entry1.egress, entry2.egress):
        return False
    if (entry1.icmp_type_code is None) != (entry2.icmp_type_code is None):
        return False
    if entry1.icmp_type_code is not None and entry2.icmp_type_code is not None:
        if not int_pointer_equal(entry1.icmp_type_code.code, entry2.icmp_type_code.code):
            return False
        if not int_pointer_equal(entry1.icmp_type_code.type, entry2.icmp_type_code.type):
            return False
    if not string_pointer_equal(entry1.ipv6_cidr_block, entry2.ipv6_cidr_block):
        return False
    if (entry1.port_range is None) != (entry2.port_range is None):
        return False
    if entry1.port_range is not None and entry2.port_range is not None:
        if not int_pointer_equal(entry1.port_range.from_port, entry2.port_range.from_port):
            return False
        if not int_pointer_equal(entry1.port_range.to_port, entry2.port_range.to_port):
            return False
    if not string_pointer_equal(entry1.protocol, entry2.protocol):
        return False
    if entry1.rule_action != entry2.rule_action:
        return False
    return int_pointer_equal(entry1.rule_number, entry2.rule_number)


def compare_routes(route1: Route, route2: Route, blackhole_ignore: Iterable[str] = ()) -> bool:
    """The first route is the live one: a blackholed peering route listed in
    blackhole_ignore still matches its template counterpart."""
    for attr, _ in ROUTE_STRING_FIELDS:
        if not string_pointer_equal(getattr(route1, attr), getattr(route2, attr)):
            return False
    if route1.origin != route2.origin:
        return False
    if route1.state != route2.state:
        return route1.state == ROUTE_STATE_BLACKHOLE and route1.vpc_peering_connection_id is not None \
            and route1.vpc_peering_connection_id in list(blackhole_ignore)
    return True


def compare_tgw_routes(route1: TransitGatewayRoute, route2: TransitGatewayRoute,
                       blackhole_ignore: Iterable[str] = ()) -> bool:
    if not string_pointer_equal(route1.destination_cidr_block, route2.destination_cidr_block):
        return False
    if not string_pointer_equal(route1.prefix_list_id, route2.prefix_list_id):
        return False
    attachment1 = route1.first_attachment_id
    if attachment1 != route2.first_attachment_id:
        return False
    if route1.state != route2.state:
        return route1.state == TGW_ROUTE_STATE_BLACKHOLE and attachment1 != '' \
            and attachment1 in list(blackhole_ignore)
    return True


def route_destination(route: Route) -> str:
    if route.destination_cidr_block is not None:
        return route.destination_cidr_block
    if route.destination_prefix_list_id is not None:
        return route.destination_prefix_list_id
    return route.destination_ipv6_cidr_block or ''


def route_target(route: Route) -> str:
    for xf in ROUTE_TARGET_FIELDS:
        value = getattr(route, xf)
        if value is not None:
            return value
    return ''


def tgw_route_destination(route: TransitGatewayRoute) -> str:
    if route.destination_cidr_block is not None:
        return route.destination_cidr_block
    if route.prefix_list_id is not None:
        return route.prefix_list_id
    return ''


def tgw_route_target(route: TransitGatewayRoute) -> str:
    if route.state == TGW_ROUTE_STATE_BLACKHOLE:
        return 'blackhole'
    return route.first_attachment_id


def nacl_entry_to_string(entry: NaclEntry) -> str:
    direction = 'egress' if entry.egress else 'ingress'
    ports = 'Ports: All'
    if entry.port_range is not None:
        if entry.port_range.from_port == entry.port_range.to_port:
            ports = f'Port: {entry.port_range.from_port}'
        else:
            ports = f'Ports: {entry.port_range.from_port}-{entry.port_range.to_port}'
    if entry.icmp_type_code is not None:
        if entry.icmp_type_code.type == -1:
            ports = 'ICMP: All'
        else:
            ports = f'ICMP: {entry.icmp_type_code.type}-{entry.icmp_type_code.code}'
    cidr = ''
    if entry.cidr_block is not None:
        cidr = entry.cidr_block
    if entry.ipv6_cidr_block is not None:
        cidr = entry.ipv6_cidr_block
    return f'{direction} #{entry.rule_number} {entry.rule_action}: {entry.protocol or ""}, {cidr} {ports}'


def route_to_string(route: Route) -> str:
    status = f' ({route.state})' if route.state == ROUTE_STATE_BLACKHOLE else ''
    return f'{route_destination(route)}: {route_target(route)}{status}'


def tgw_route_to_string(route: TransitGatewayRoute) -> str:
    return f'{tgw_route_destination(route)}: {tgw_route_target(route)} ({route.type or TGW_ROUTE_TYPE_STATIC})'
