import unittest
from unittest import mock
import boto3
from moto import mock_aws
from cloudformation_pilot import ec2_inspector, util
from . import common_class

REGION = 'ap-southeast-2'


class TestEc2Inspector(unittest.TestCase):
    @mock_aws
    def test_get_nacl(self):
        session = boto3.Session(region_name=REGION)
        ec2 = session.client('ec2')
        vpc_id = ec2.create_vpc(CidrBlock='10.0.0.0/16')['Vpc']['VpcId']
        nacl_id = ec2.create_network_acl(VpcId=vpc_id)['NetworkAcl']['NetworkAclId']
        ec2.create_network_acl_entry(NetworkAclId=nacl_id, RuleNumber=100, Protocol='6', RuleAction='allow',
                                     Egress=False, CidrBlock='0.0.0.0/0', PortRange={'From': 443, 'To': 443})
        with mock.patch('cloudformation_pilot.util.session', session):
            entries = {xe.key: xe for xe in ec2_inspector.get_nacl(nacl_id, common_class.fake_context())}
        self.assertIn('I100', entries)
        self.assertEqual(entries['I100'].cidr_block, '0.0.0.0/0')
        self.assertEqual(entries['I100'].port_range.from_port, 443)
        self.assertEqual(entries['I100'].rule_action, 'allow')

    @mock_aws
    def test_get_route_table(self):
        session = boto3.Session(region_name=REGION)
        ec2 = session.client('ec2')
        vpc_id = ec2.create_vpc(CidrBlock='10.0.0.0/16')['Vpc']['VpcId']
        igw_id = ec2.create_internet_gateway()['InternetGateway']['InternetGatewayId']
        ec2.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)
        rtb_id = ec2.create_route_table(VpcId=vpc_id)['RouteTable']['RouteTableId']
        ec2.create_route(RouteTableId=rtb_id, DestinationCidrBlock='0.0.0.0/0', GatewayId=igw_id)
        with mock.patch('cloudformation_pilot.util.session', session):
            routes = {xr.destination_cidr_block: xr
                      for xr in ec2_inspector.get_route_table(rtb_id, common_class.fake_context())}
        self.assertEqual(routes['0.0.0.0/0'].gateway_id, igw_id)
        self.assertEqual(routes['10.0.0.0/16'].gateway_id, 'local')

    @mock_aws
    def test_customer_prefix_lists_are_not_aws_managed(self):
        session = boto3.Session(region_name=REGION)
        pl_id = session.client('ec2').create_managed_prefix_list(
            PrefixListName='office', MaxEntries=5, AddressFamily='IPv4',
            Entries=[{'Cidr': '203.0.113.0/24'}])['PrefixList']['PrefixListId']
        with mock.patch('cloudformation_pilot.util.session', session):
            all_ids = [xp['PrefixListId'] for xp in ec2_inspector.get_managed_prefix_lists(common_class.fake_context())]
            aws_ids = ec2_inspector.get_aws_managed_prefix_list_ids(common_class.fake_context())
        self.assertIn(pl_id, all_ids)
        self.assertNotIn(pl_id, aws_ids)

    @mock.patch('cloudformation_pilot.util.session')
    def test_missing_resources(self, mock_session):
        c = mock_session.client.return_value
        c.describe_network_acls.return_value = {'NetworkAcls': []}
        c.describe_route_tables.return_value = {'RouteTables': []}
        with self.assertRaises(util.ResourceLookupFailed):
            ec2_inspector.get_nacl('acl-missing', common_class.fake_context())
        with self.assertRaises(util.ResourceLookupFailed):
            ec2_inspector.get_route_table('rtb-missing', common_class.fake_context())


class TestTransitGatewayRoutes(unittest.TestCase):
    @mock.patch('cloudformation_pilot.util.session')
    def test_routes(self, mock_session):
        mock_session.client.return_value.search_transit_gateway_routes.return_value = {'Routes': [
            {'DestinationCidrBlock': '10.0.0.0/8', 'State': 'active', 'Type': 'static',
             'TransitGatewayAttachments': [{'TransitGatewayAttachmentId': 'tgw-attach-1', 'ResourceType': 'vpc'}]}]}
        routes = ec2_inspector.get_transit_gateway_route_table_routes(common_class.fake_context(), 'tgw-rtb-1')
        self.assertEqual(routes[0].first_attachment_id, 'tgw-attach-1')
        config = mock_session.client.call_args.kwargs['config']
        self.assertEqual(config.retries, {'max_attempts': 1})

    @mock.patch('cloudformation_pilot.util.session')
    def test_errors(self, mock_session):
        c = mock_session.client.return_value
        for code in ['InvalidRouteTableID.NotFound', 'UnauthorizedOperation']:
            c.search_transit_gateway_routes.side_effect = common_class.client_error(code, 'nope')
            with self.assertRaises(util.ResourceLookupFailed, msg=f'{code} must be a lookup failure'):
                ec2_inspector.get_transit_gateway_route_table_routes(common_class.fake_context(), 'tgw-rtb-1')

    @mock.patch('cloudformation_pilot.util.session')
    def test_cancelled(self, mock_session):
        ctx = common_class.fake_context()
        ctx.cancel()
        with self.assertRaises(util.OperationCancelled):
            ec2_inspector.get_transit_gateway_route_table_routes(ctx, 'tgw-rtb-1')
        mock_session.client.return_value.search_transit_gateway_routes.assert_not_called()
