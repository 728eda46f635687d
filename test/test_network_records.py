import unittest
from dataclasses import replace
from cloudformation_pilot import network_records as nr


def s5_entry(**kwargs):
    e = nr.NaclEntry(cidr_block='10.0.0.0/24', egress=False, protocol='6', rule_action='allow', rule_number=100,
                     port_range=nr.PortRange(80, 443), icmp_type_code=nr.IcmpTypeCode(1, 2))
    return replace(e, **kwargs)


class TestPointerEquality(unittest.TestCase):
    def test_string_pointer_equal(self):
        self.assertTrue(nr.string_pointer_equal(None, None))
        self.assertFalse(nr.string_pointer_equal(None, ''))
        self.assertFalse(nr.string_pointer_equal('', None))
        self.assertTrue(nr.string_pointer_equal('a', 'a'))
        self.assertFalse(nr.string_pointer_equal('a', 'b'))

    def test_int_and_bool_pointer_equal(self):
        self.assertTrue(nr.int_pointer_equal(None, None))
        self.assertFalse(nr.int_pointer_equal(0, None))
        self.assertTrue(nr.bool_pointer_equal(False, False))
        self.assertFalse(nr.bool_pointer_equal(False, None))


class TestNaclEntries(unittest.TestCase):
    def test_identical_entries(self):
        self.assertTrue(nr.compare_nacl_entries(s5_entry(), s5_entry()))

    def test_changed_fields(self):
        self.assertFalse(nr.compare_nacl_entries(s5_entry(), s5_entry(egress=True)))
        self.assertFalse(nr.compare_nacl_entries(s5_entry(), s5_entry(port_range=nr.PortRange(42, 443))))
        self.assertFalse(nr.compare_nacl_entries(s5_entry(), s5_entry(icmp_type_code=None)))
        self.assertFalse(nr.compare_nacl_entries(s5_entry(cidr_block=None, ipv6_cidr_block='::/0'), s5_entry()))

    def test_from_api(self):
        e = nr.NaclEntry.from_api({'CidrBlock': '0.0.0.0/0', 'Egress': True, 'Protocol': '-1',
                                   'RuleAction': 'deny', 'RuleNumber': 32767})
        self.assertEqual(e.key, 'E32767')
        self.assertIsNone(e.port_range)

    def test_to_string(self):
        self.assertEqual(nr.nacl_entry_to_string(s5_entry(icmp_type_code=None)),
                         'ingress #100 allow: 6, 10.0.0.0/24 Ports: 80-443')
        self.assertEqual(nr.nacl_entry_to_string(s5_entry(icmp_type_code=nr.IcmpTypeCode(-1, -1), egress=True)),
                         'egress #100 allow: 6, 10.0.0.0/24 ICMP: All')


class TestRoutes(unittest.TestCase):
    def test_route_from_api(self):
        r = nr.Route.from_api({'DestinationCidrBlock': '0.0.0.0/0', 'GatewayId': 'igw-1',
                               'Origin': 'CreateRoute', 'State': 'active'})
        self.assertEqual(nr.route_destination(r), '0.0.0.0/0')
        self.assertEqual(nr.route_target(r), 'igw-1')
        self.assertEqual(nr.route_to_string(r), '0.0.0.0/0: igw-1')

    def test_compare_routes(self):
        live = nr.Route(destination_cidr_block='0.0.0.0/0', gateway_id='igw-1', origin='CreateRoute', state='active')
        self.assertTrue(nr.compare_routes(live, replace(live)))
        self.assertFalse(nr.compare_routes(live, replace(live, gateway_id='igw-2')))
        self.assertFalse(nr.compare_routes(live, replace(live, origin='CreateRouteTable')))

    def test_blackholed_peering_route(self):
        expected = nr.Route(destination_cidr_block='172.16.0.0/16', vpc_peering_connection_id='pcx-1',
                            origin='CreateRoute', state='active')
        live = replace(expected, state='blackhole')
        self.assertFalse(nr.compare_routes(live, expected))
        self.assertTrue(nr.compare_routes(live, expected, ['pcx-1']))
        self.assertEqual(nr.route_to_string(live), '172.16.0.0/16: pcx-1 (blackhole)')

    def test_tgw_routes(self):
        live = nr.TransitGatewayRoute.from_api({
            'DestinationCidrBlock': '0.0.0.0/0', 'State': 'blackhole', 'Type': 'static',
            'TransitGatewayAttachments': [{'TransitGatewayAttachmentId': 'tgw-attach-1'}]})
        expected = nr.TransitGatewayRoute(destination_cidr_block='0.0.0.0/0', state='active', type='static',
                                          transit_gateway_attachments=[nr.TransitGatewayRouteAttachment('tgw-attach-1')])
        self.assertFalse(nr.compare_tgw_routes(live, expected))
        self.assertTrue(nr.compare_tgw_routes(live, expected, ['tgw-attach-1']))
        self.assertEqual(nr.tgw_route_to_string(live), '0.0.0.0/0: blackhole (static)')
        self.assertEqual(nr.tgw_route_to_string(expected), '0.0.0.0/0: tgw-attach-1 (static)')
